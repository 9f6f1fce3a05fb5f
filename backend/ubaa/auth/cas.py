"""
Parsing helpers for the CAS login page.
"""
import logging
import re
from typing import Optional

from bs4 import BeautifulSoup

from ..models.Auth import CaptchaInfo

logger = logging.getLogger(__name__)

SUBMIT_LABEL = "登录"
GRANT_TYPE = "username_password"
EVENT_ID = "submit"

ERROR_SELECTORS = [
    ".tip-text",
    "div.alert.alert-danger#errorDiv p",
    "div.alert.alert-danger#errorDiv",
    "div.errors",
    "p.errors",
    "span.errors",
]

CAPTCHA_PATTERN = re.compile(
    r"""config\.captcha\s*=\s*\{\s*type:\s*['"]([^'"]+)['"],\s*id:\s*['"]([^'"]+)['"]"""
)


def extract_execution(html: str) -> str:
    """Returns the one-time execution token, or "" if the page has none."""
    soup = BeautifulSoup(html, "html.parser")
    field = soup.find("input", {"name": "execution"})
    if field is None:
        return ""
    return (field.get("value") or "").strip()


def find_login_error(html: Optional[str]) -> Optional[str]:
    """Best-effort scrape of the human-readable error banner."""
    if not html or not html.strip():
        return None
    soup = BeautifulSoup(html, "html.parser")
    for selector in ERROR_SELECTORS:
        text = " ".join(el.get_text(" ", strip=True) for el in soup.select(selector)).strip()
        if text:
            return text
    return None


def detect_captcha(html: str, captcha_url_base: str) -> Optional[CaptchaInfo]:
    match = CAPTCHA_PATTERN.search(html or "")
    if match is None:
        return None
    captcha_type, captcha_id = match.group(1), match.group(2)
    logger.debug("Login page asks for a %s captcha (id=%s)", captcha_type, captcha_id)
    return CaptchaInfo(id=captcha_id, type=captcha_type, image_url=f"{captcha_url_base}?captchaId={captcha_id}")


def build_login_form(html: str, username: str, password: str, execution: str, captcha: Optional[str] = None) -> dict:
    """
    Builds the form-encoded credential body.

    Hidden inputs of the CAS form are carried through; the fixed fields always
    take precedence over whatever the page provides. A captcha answer goes in
    the ``captcha`` field, and also in ``captchaResponse`` when the form has one.
    """
    form_data = {}
    field_names = set()
    soup = BeautifulSoup(html, "html.parser")
    form = soup.select_one("form#fm1") or soup.select_one("form[action]")
    if form is not None:
        for field in form.find_all("input", attrs={"name": True}):
            name = field["name"].strip()
            field_names.add(name)
            if name and (field.get("type") or "").lower() == "hidden":
                form_data[name] = field.get("value") or ""

    form_data.update({
        "username": username,
        "password": password,
        "submit": SUBMIT_LABEL,
        "type": GRANT_TYPE,
        "execution": execution,
        "_eventId": EVENT_ID,
    })
    if captcha and captcha.strip():
        form_data["captcha"] = captcha.strip()
        if "captchaResponse" in field_names:
            form_data["captchaResponse"] = captcha.strip()
    return form_data
