"""Run one crawl pass from the project root and print its summary.

    python run_crawl.py                  # filters from the environment
    python run_crawl.py --max-rent 900 --type wg_room --type studio --district Neukölln
"""
import argparse
import json

from rentscout.config import settings
from rentscout.db import Base, engine
from rentscout.schemas import SearchFilters
from rentscout.scrape import filters_from_settings, run_crawl
import rentscout.models  # noqa: F401 ensure models are imported so tables are known


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Crawl WG-Gesucht once and store the listings.")
    parser.add_argument("--min-rent", type=float)
    parser.add_argument("--max-rent", type=float)
    parser.add_argument("--min-rooms", type=float)
    parser.add_argument("--max-rooms", type=float)
    parser.add_argument("--type", dest="types", action="append", default=None,
                        help="wg_room, studio, apartment or house; repeatable")
    parser.add_argument("--district", dest="districts", action="append", default=None)
    parser.add_argument("--pages", type=int, help="result pages to walk")
    return parser.parse_args(argv)


def build_filters(args) -> SearchFilters:
    filters = filters_from_settings(settings)
    updates = {
        "min_rent": args.min_rent,
        "max_rent": args.max_rent,
        "min_rooms": args.min_rooms,
        "max_rooms": args.max_rooms,
        "property_types": args.types,
        "districts": args.districts,
    }
    return filters.model_copy(update={k: v for k, v in updates.items() if v is not None})


if __name__ == "__main__":
    args = parse_args()
    if args.pages:
        settings.MAX_PAGES = args.pages
    Base.metadata.create_all(bind=engine)
    summary = run_crawl(filters=build_filters(args), settings=settings)
    print(json.dumps(summary.model_dump(mode="json"), indent=2, ensure_ascii=False))
    raise SystemExit(0 if not (summary.blocked or summary.structural_change) else 1)
