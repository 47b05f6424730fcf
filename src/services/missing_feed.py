"""
Fetch and parse the NCMEC missing children RSS feed.

`fetch_feed_items` never raises for transport or parse problems: it returns an empty list,
which callers must read as "no update available" rather than "no open cases".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List

import feedparser
import requests
from bs4 import BeautifulSoup

LOGGER = logging.getLogger(__name__)

AGE_PATTERN = re.compile(r"Age Now:\s*(\d+)", re.IGNORECASE)
MISSING_DATE_PATTERN = re.compile(r"Missing:\s*([\d/-]+)", re.IGNORECASE)
MISSING_FROM_PATTERN = re.compile(r"Missing From\s+([^,]+),\s*(\w+)", re.IGNORECASE)
TITLE_NAME_PATTERN = re.compile(r"^(.+?)\s*\(")
NAME_PREFIX_PATTERN = re.compile(r"^(?:Endangered\s+)?Missing\s*:\s*", re.IGNORECASE)

MISSING_DATE_FORMATS = ("%m/%d/%Y", "%Y-%m-%d")


@dataclass
class FeedItem:
    title: str
    link: str
    description: str
    pub_date: str
    guid: str
    photo_url: str
    age: int | None
    missing_date: str | None
    missing_city: str | None
    missing_state: str | None
    name: str


def parse_missing_date(raw: str | None) -> datetime | None:
    if not raw:
        return None
    value = raw.strip()
    for fmt in MISSING_DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return None


def _clean_html_fragment(value: str | None) -> str:
    if not value:
        return ""
    soup = BeautifulSoup(value, "html.parser")
    text = soup.get_text(" ", strip=True)
    return re.sub(r"\s+", " ", text).strip()


def extract_name(title: str | None) -> str:
    """Pull the person's name out of titles like ``Missing: Jane Doe (CA)``."""
    title = (title or "").strip()
    match = TITLE_NAME_PATTERN.match(title)
    raw_name = match.group(1).strip() if match else title
    raw_name = NAME_PREFIX_PATTERN.sub("", raw_name)
    raw_name = re.sub(r"^:\s*", "", raw_name)
    return raw_name.strip()


def _photo_url(entry: Any) -> str:
    for enclosure in entry.get("enclosures") or []:
        href = enclosure.get("href") or enclosure.get("url")
        if href:
            return href
    return ""


def _entry_to_item(entry: Any) -> FeedItem:
    title = (entry.get("title") or "").strip()
    description = _clean_html_fragment(entry.get("summary") or entry.get("description"))
    age_match = AGE_PATTERN.search(description)
    date_match = MISSING_DATE_PATTERN.search(description)
    from_match = MISSING_FROM_PATTERN.search(description)

    missing_date = date_match.group(1) if date_match else None
    if missing_date and parse_missing_date(missing_date) is None:
        LOGGER.debug("Dropping malformed missing date %r for %s", missing_date, title)
        missing_date = None

    return FeedItem(
        title=title,
        link=(entry.get("link") or "").strip(),
        description=description,
        pub_date=(entry.get("published") or "").strip(),
        guid=(entry.get("id") or entry.get("guid") or "").strip(),
        photo_url=_photo_url(entry),
        age=int(age_match.group(1)) if age_match else None,
        missing_date=missing_date,
        missing_city=from_match.group(1).strip() if from_match else None,
        missing_state=from_match.group(2).strip() if from_match else None,
        name=extract_name(title),
    )


def parse_feed(document: str | bytes) -> List[FeedItem]:
    """Parse RSS XML into feed items, skipping entries without a guid."""
    parsed = feedparser.parse(document)
    if parsed.bozo:
        LOGGER.warning("Missing persons feed parse issue: %s", parsed.bozo_exception)
    items: List[FeedItem] = []
    for entry in parsed.entries:
        item = _entry_to_item(entry)
        if not item.guid:
            LOGGER.debug("Skipping feed entry without guid: %s", item.title)
            continue
        items.append(item)
    LOGGER.debug("Parsed %s items from feed", len(items))
    return items


def fetch_feed_items(
    url: str,
    timeout: float = 30.0,
    user_agent: str | None = None,
    session: requests.Session | None = None,
) -> List[FeedItem]:
    headers = {"User-Agent": user_agent} if user_agent else {}
    http = session or requests
    LOGGER.info("Fetching missing persons feed %s", url)
    try:
        response = http.get(url, headers=headers, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        LOGGER.warning("Missing persons feed request failed: %s", exc)
        return []
    try:
        return parse_feed(response.content)
    except Exception:  # noqa: BLE001
        LOGGER.warning("Failed to parse missing persons feed", exc_info=True)
        return []
