"""
Scrape per-case poster pages for details that the RSS feed does not carry.

Poster markup is third-party and changes without notice, so everything here is
best-effort: `fetch_case_details` returns an empty `CaseDetails` on any network or
parse problem. Pattern matching is confined to `parse_poster_page` so it can be
replaced with a DOM parser without touching callers.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass, fields

import requests

LOGGER = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"<[^>]*>")
PHONE_PATTERN = re.compile(r"(?:1[\s.-]?)?\(?\d{3}\)?[\s.-]*\d{3}[\s.-]*\d{4}")

LABELLED_FIELDS = {
    "sex": "Sex",
    "race": "Race",
    "hair_color": "Hair Color",
    "eye_color": "Eye Color",
    "height": "Height",
    "weight": "Weight",
    "date_of_birth": "(?:Date of Birth|DOB)",
}

CIRCUMSTANCES_PATTERN = re.compile(
    r">\s*Circumstances\s*:?\s*(?:</[^>]+>\s*)+(.*?)</(?:p|div|dd|td|section|li)>",
    re.IGNORECASE | re.DOTALL,
)
CONTACT_PATTERNS = [
    re.compile(
        r">\s*(?:Investigating\s+Agency|Contact\s+Agency|Agency\s+Contact)\s*:?\s*(?:</[^>]+>\s*)+"
        r"(.*?)</(?:p|div|dd|td|section|li)>",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(
        r"anyone having information[^<]*?contact\s*:?\s*(?:</[^>]+>\s*)*(.*?)</(?:p|div|dd|td|section|li)>",
        re.IGNORECASE | re.DOTALL,
    ),
]


@dataclass
class CaseDetails:
    sex: str = ""
    race: str = ""
    hair_color: str = ""
    eye_color: str = ""
    height: str = ""
    weight: str = ""
    date_of_birth: str = ""
    circumstances: str = ""
    contact_agency: str = ""
    contact_phone: str = ""

    def is_empty(self) -> bool:
        return not any(getattr(self, item.name) for item in fields(self))


def strip_html_tags(value: str | None) -> str:
    """Reduce markup to plain text.

    Removal repeats until the string stops changing, so nested or split tags such as
    ``<scr<b>ipt>`` and entity-encoded tags cannot leave markup behind. Stray angle
    brackets that survive are dropped and whitespace is collapsed.
    """
    if not value:
        return ""
    text = value
    while True:
        stripped = TAG_PATTERN.sub("", html.unescape(text))
        if stripped == text:
            break
        text = stripped
    text = text.replace("<", "").replace(">", "")
    return re.sub(r"\s+", " ", text).strip()


def _labelled_value(document: str, label: str) -> str:
    patterns = (
        # <dt>Sex</dt><dd>Female</dd>, <strong>Sex:</strong> <span>Female</span>
        rf">\s*{label}\s*:?\s*(?:</[^>]+>\s*)+(?:<[^/!][^>]*>\s*)*([^<]+)",
        # <li>Sex: Female</li>
        rf">\s*{label}\s*:\s*([^<]+)",
    )
    for pattern in patterns:
        match = re.search(pattern, document, re.IGNORECASE)
        if match:
            value = strip_html_tags(match.group(1))
            if value:
                return value
    return ""


def _split_contact(block: str) -> tuple[str, str]:
    text = strip_html_tags(block)
    phone_match = PHONE_PATTERN.search(text)
    phone = phone_match.group(0).strip() if phone_match else ""
    agency = PHONE_PATTERN.sub("", text) if phone else text
    agency = re.sub(r"\s+", " ", agency).strip(" ,;:-")
    return agency, phone


def parse_poster_page(document: str) -> CaseDetails:
    details = CaseDetails()
    if not document:
        return details
    for attr, label in LABELLED_FIELDS.items():
        setattr(details, attr, _labelled_value(document, label))

    circumstances = CIRCUMSTANCES_PATTERN.search(document)
    if circumstances:
        details.circumstances = strip_html_tags(circumstances.group(1))

    for pattern in CONTACT_PATTERNS:
        match = pattern.search(document)
        if not match:
            continue
        agency, phone = _split_contact(match.group(1))
        if agency:
            details.contact_agency = agency
            details.contact_phone = phone
            break
    return details


def fetch_case_details(
    source_id: str,
    base_url: str,
    timeout: float = 15.0,
    user_agent: str | None = None,
    session: requests.Session | None = None,
) -> CaseDetails:
    url = f"{base_url.rstrip('/')}/{source_id}"
    headers = {"User-Agent": user_agent} if user_agent else {}
    http = session or requests
    LOGGER.debug("Fetching case details: %s", url)
    try:
        response = http.get(url, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        LOGGER.warning("Case details request failed for %s: %s", source_id, exc)
        return CaseDetails()
    try:
        return parse_poster_page(response.text)
    except Exception:  # noqa: BLE001
        LOGGER.warning("Failed to parse case details for %s", source_id, exc_info=True)
        return CaseDetails()
