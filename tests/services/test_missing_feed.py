from __future__ import annotations

import requests

from src.services import missing_feed


SAMPLE_FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>NCMEC California</title>
    <link>https://www.missingkids.org</link>
    <description>Missing children</description>
    <item>
      <title>Missing: JANE DOE (CA)</title>
      <link>https://www.missingkids.org/poster/NCMC/2059400/1</link>
      <description><![CDATA[Jane Doe, Age Now: 15, Missing: 08/19/2025. Missing From OAKLAND, CA. ANYONE HAVING INFORMATION SHOULD CONTACT: Oakland Police Department.]]></description>
      <pubDate>Tue, 19 Aug 2025 17:00:00 GMT</pubDate>
      <guid>NCMC/2059400/1</guid>
      <enclosure url="https://api.missingkids.org/photographs/NCMC2059400c1.jpg" length="0" type="image/jpeg" />
    </item>
    <item>
      <title>Endangered Missing: JOHN ROE (CA)</title>
      <link>https://www.missingkids.org/poster/NCMC/2059411/1</link>
      <description>John Roe, Missing: 13/45/2025. Missing From Fresno, CA.</description>
      <pubDate>not a date</pubDate>
      <guid>NCMC/2059411/1</guid>
    </item>
    <item>
      <title>No guid here</title>
      <description>Nobody, Age Now: 9</description>
    </item>
  </channel>
</rss>
"""


class FakeResponse:
    def __init__(self, content: bytes, status_code: int = 200) -> None:
        self.content = content
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    def __init__(self, response: FakeResponse | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_parse_feed_extracts_description_fields() -> None:
    items = missing_feed.parse_feed(SAMPLE_FEED)
    assert [item.guid for item in items] == ["NCMC/2059400/1", "NCMC/2059411/1"]

    jane = items[0]
    assert jane.name == "JANE DOE"
    assert jane.age == 15
    assert jane.missing_date == "08/19/2025"
    assert jane.missing_city == "OAKLAND"
    assert jane.missing_state == "CA"
    assert jane.photo_url == "https://api.missingkids.org/photographs/NCMC2059400c1.jpg"
    assert jane.link == "https://www.missingkids.org/poster/NCMC/2059400/1"


def test_parse_feed_tolerates_missing_age_photo_and_bad_date() -> None:
    john = missing_feed.parse_feed(SAMPLE_FEED)[1]
    assert john.name == "JOHN ROE"
    assert john.age is None
    assert john.photo_url == ""
    assert john.missing_date is None
    assert john.missing_city == "Fresno"


def test_extract_name_strips_editorial_prefixes() -> None:
    assert missing_feed.extract_name("Missing: Jane Doe (CA)") == "Jane Doe"
    assert missing_feed.extract_name("Endangered Missing: Jane Doe (CA)") == "Jane Doe"
    assert missing_feed.extract_name(": Jane Doe (CA)") == "Jane Doe"
    assert missing_feed.extract_name("Jane Doe") == "Jane Doe"
    assert missing_feed.extract_name(None) == ""


def test_parse_missing_date_accepts_feed_and_iso_formats() -> None:
    assert missing_feed.parse_missing_date("08/19/2025").day == 19
    assert missing_feed.parse_missing_date("2025-08-01").month == 8
    assert missing_feed.parse_missing_date("19/08/2025") is None
    assert missing_feed.parse_missing_date(None) is None


def test_fetch_feed_items_returns_empty_on_transport_error() -> None:
    session = FakeSession(error=requests.ConnectionError("boom"))
    assert missing_feed.fetch_feed_items("https://example.com/rss", session=session) == []


def test_fetch_feed_items_returns_empty_on_http_error() -> None:
    session = FakeSession(FakeResponse(b"", status_code=503))
    assert missing_feed.fetch_feed_items("https://example.com/rss", session=session) == []


def test_fetch_feed_items_passes_timeout_and_user_agent() -> None:
    session = FakeSession(FakeResponse(SAMPLE_FEED.encode("utf-8")))
    items = missing_feed.fetch_feed_items(
        "https://example.com/rss",
        timeout=7,
        user_agent="test-agent",
        session=session,
    )
    assert len(items) == 2
    url, kwargs = session.calls[0]
    assert url == "https://example.com/rss"
    assert kwargs["timeout"] == 7
    assert kwargs["headers"] == {"User-Agent": "test-agent"}
