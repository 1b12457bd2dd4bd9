# rentscout/utils.py
"""Shared utilities: logging, the retry decorator and soup construction."""
import os
import logging
import time
from functools import wraps
from dotenv import load_dotenv
from bs4 import BeautifulSoup

load_dotenv()

# prefer lxml when installed
try:
    import lxml  # type: ignore  # noqa: F401
    BS_PARSER = "lxml"
except Exception:
    BS_PARSER = "html.parser"


def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, level, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("rentscout")


def retry(exceptions, tries=3, delay=1, backoff=2, max_delay=None, logger=logger, sleep=time.sleep):
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
                    if max_delay is not None:
                        mdelay = min(mdelay, max_delay)
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


def make_soup(html):
    return BeautifulSoup(html or "", BS_PARSER)


def clean_text(value):
    if value is None:
        return None
    text = " ".join(str(value).split())
    return text or None
