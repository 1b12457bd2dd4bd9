# rentscout/scheduler.py
from apscheduler.schedulers.background import BackgroundScheduler
from .config import settings
from .scrape import run_crawl
from .utils import logger

scheduler = BackgroundScheduler()


def crawl_job():
    summary = run_crawl(settings=settings)
    logger.info("Scheduled crawl: saved %d of %d, %d failed", summary.saved, summary.found, summary.failed)


def start_scheduler(interval_hours=None):
    if scheduler.running:
        return scheduler
    scheduler.add_job(
        crawl_job, "interval",
        hours=interval_hours or settings.CRAWL_INTERVAL_HOURS,
        id="crawl", max_instances=1, coalesce=True, replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started, crawling every %s h", interval_hours or settings.CRAWL_INTERVAL_HOURS)
    return scheduler


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
