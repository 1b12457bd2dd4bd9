# rentscout/contact.py
"""Phone reveal on the detail page.

Clicking "Telefonnummer anzeigen" either opens the number panel or, when logged
out, an inline login modal. In the second case we log in and click once more.
No reveal control means the landlord published no phone; that is not an error.
"""
import re
from dataclasses import dataclass
from typing import Optional

from playwright.sync_api import TimeoutError as PWTimeout

from .regions import is_excluded
from .utils import clean_text, logger, make_soup

REVEAL_SELECTORS = (
    ".contact-box-phone-button",
    "[data-target='#phone_numbers_modal']",
    'a:has-text("Telefonnummer anzeigen")',
    'button:has-text("Telefonnummer anzeigen")',
)
PANEL = ".phone_numbers_content"
LOGIN_PROMPT = "#login_modal #login_email_username"

_LABEL_RE = re.compile(r"^(?:mobil(?:nummer)?|handy|telefon(?:nummer)?|tel\.?)\s*:?\s*", re.I)


@dataclass
class ContactInfo:
    name: Optional[str] = None
    mobile: Optional[str] = None
    landline: Optional[str] = None
    email: Optional[str] = None

    @property
    def phone(self) -> Optional[str]:
        return self.mobile or self.landline


def _number(node) -> Optional[str]:
    if node is None:
        return None
    text = clean_text(node.get_text(" ", strip=True))
    return _LABEL_RE.sub("", text) if text else None


def parse_contact_panel(html) -> ContactInfo:
    soup = make_soup(html) if isinstance(html, str) else html
    panel = soup.select_one(PANEL)
    info = ContactInfo()
    if panel is not None:
        name = panel.select_one(".contacted_user_name")
        info.name = clean_text(name.get_text(" ", strip=True)) if name else None
        info.mobile = _number(panel.select_one(".mobile_number"))
        info.landline = _number(panel.select_one(".telephone_number"))
    if info.mobile is None and info.landline is None:
        for link in soup.select("a[href^='tel:']"):
            if not is_excluded(link):
                info.mobile = clean_text(link["href"][4:])
                break
    for link in soup.select("a[href^='mailto:']"):
        if not is_excluded(link):
            info.email = clean_text(link["href"][7:].split("?")[0])
            break
    return info


def _find_reveal_control(page):
    for selector in REVEAL_SELECTORS:
        control = page.query_selector(selector)
        if control is not None and control.is_visible():
            return control
    return None


def _wait_for_outcome(page, timeout_ms) -> Optional[str]:
    try:
        page.wait_for_selector(f"{PANEL}, {LOGIN_PROMPT}", state="visible", timeout=timeout_ms)
    except PWTimeout:
        return None
    panel = page.query_selector(PANEL)
    if panel is not None and panel.is_visible():
        return "panel"
    return "login"


def reveal_contact(page, session_manager=None, timeout_ms=5000) -> ContactInfo:
    """Contact details for the listing open in `page`.

    Raises LoginFailure when the inline login is needed and fails.
    """
    visible = parse_contact_panel(page.content())
    if visible.phone:
        return visible
    control = _find_reveal_control(page)
    if control is None:
        logger.debug("No phone reveal control on %s", page.url)
        return visible

    for attempt in range(2):
        control.click()
        outcome = _wait_for_outcome(page, timeout_ms)
        if outcome == "panel":
            info = parse_contact_panel(page.content())
            info.email = info.email or visible.email
            return info
        if outcome != "login" or attempt == 1 or session_manager is None:
            break
        session_manager.ensure_login(page, inline=True)
        control = _find_reveal_control(page)
        if control is None:
            return parse_contact_panel(page.content())
    logger.info("Phone panel never appeared on %s", page.url)
    return visible
