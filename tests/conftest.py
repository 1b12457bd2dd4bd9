import os
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rentscout.config import Settings
from rentscout.db import Base
import rentscout.models  # noqa: F401 ensure models are imported so tables are known

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


def load_fixture(name):
    with open(os.path.join(FIXTURES, name), "r", encoding="utf-8") as fh:
        return fh.read()


@pytest.fixture
def db():
    # in-memory sqlite shared across threads
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s.WG_GESUCHT_EMAIL = None
    s.WG_GESUCHT_PASSWORD = None
    s.SESSION_STATE_FILE = str(tmp_path / "session.json")
    s.MAX_PAGES = 2
    s.SCRAPE_MAX_ITEMS = 200
    s.CRAWL_CONCURRENCY = 2
    s.REQUEST_DELAY = 0
    s.BATCH_DELAY = 0
    s.HTTP_RETRIES = 2
    s.RETRY_DELAY = 0
    s.ZERO_RESULT_ESCALATION_MIN = 5
    s.SEARCH_DISTRICTS = []
    s.SEARCH_PROPERTY_TYPES = []
    s.SEARCH_MIN_RENT = None
    s.SEARCH_MAX_RENT = None
    s.STALE_MISSED_PASSES = 3
    s.AVAILABILITY_GRACE_DAYS = 3650
    s.REFETCH_BATCH = 0
    s.MATCH_THRESHOLD = 60
    s.RENT_DECAY_PCT = 0.20
    s.RENT_HARD_CEILING_PCT = 0.30
    return s


@pytest.fixture
def search_html():
    return load_fixture("search_results.html")


@pytest.fixture
def detail_html():
    return load_fixture("detail_page.html")
