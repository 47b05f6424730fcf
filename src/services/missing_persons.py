"""
Missing persons sync: NCMEC feed -> Bay Area cases JSON.

Each run fetches the California RSS feed, keeps the cases whose "missing from" city is
in a Bay Area county, gives every case a stable public id, scrapes the poster page and
asks the LLM for a summary on first sight only, and then writes, replicates and
announces the result. Known cases are carried forward from the previous artifact
verbatim, and an unchanged feed short-circuits before any write.
"""

from __future__ import annotations

import argparse
import functools
import json
import logging
import os
import sys
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Sequence

from dotenv import load_dotenv
from tenacity import before_sleep_log, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.services.blob_upload import BlobUploader
from src.services.case_details import CaseDetails, fetch_case_details
from src.services.case_enrichment import DEFAULT_CASE_TYPE, Enrichment, EnrichmentClient
from src.services.case_ids import IdentifierStore
from src.services.log_sanitize import install_sanitizer
from src.services.missing_feed import FeedItem, fetch_feed_items, parse_missing_date
from src.services.push_notify import PushNotifier
from src.services.regions import (
    AgencyContact,
    load_city_agencies,
    load_city_regions,
    lookup_agency,
    resolve_region,
)
from src.services.sync_config import NCMEC_HOTLINE, REPO_ROOT, SyncConfig

LOGGER = logging.getLogger(__name__)

SOURCE_NAME = "ncmec"

CASE_FIELD_ORDER = [
    "id",
    "sourceId",
    "source",
    "name",
    "age",
    "missingDate",
    "missingFrom",
    "photoUrl",
    "posterUrl",
    "contact",
    "physical",
    "dateOfBirth",
    "circumstances",
    "summary",
    "caseType",
    "lastSeenWearing",
    "enrichedByLlm",
    "syncedAt",
]

# Populated on first sight only and copied forward afterwards.
FIRST_SIGHTING_FIELDS = (
    "physical",
    "dateOfBirth",
    "circumstances",
    "contact",
    "summary",
    "caseType",
    "lastSeenWearing",
    "enrichedByLlm",
)

VOLATILE_FIELDS = frozenset({"syncedAt"})

RENAME_ATTEMPTS = 3
RENAME_BACKOFF_SECONDS = 0.2


class PersistenceError(RuntimeError):
    """The output artifact could not be committed."""


@dataclass
class SyncResult:
    status: str
    cases: List[Dict[str, Any]] = field(default_factory=list)
    new_cases: List[Dict[str, Any]] = field(default_factory=list)
    written: bool = False
    uploaded: bool = False
    notified: int = 0

    @property
    def exit_code(self) -> int:
        return 1 if self.status == "feed_empty" else 0


def _order_fields(record: Mapping[str, Any]) -> Dict[str, Any]:
    ordered = {name: record.get(name) for name in CASE_FIELD_ORDER if name in record}
    for key, value in record.items():
        if key not in ordered:
            ordered[key] = value
    return ordered


def load_previous(path: Path) -> Dict[str, Any]:
    """Read the last committed artifact; a missing or corrupt file reads as empty."""
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, ValueError):
        LOGGER.warning("Could not parse existing data at %s, starting fresh", path, exc_info=True)
        return {}
    if not isinstance(payload, dict):
        LOGGER.warning("Existing data at %s is not an object, starting fresh", path)
        return {}
    return payload


def build_case(
    item: FeedItem,
    case_id: str,
    county: str,
    synced_at: str,
    poster_base: str,
) -> Dict[str, Any]:
    return {
        "id": case_id,
        "sourceId": item.guid,
        "source": SOURCE_NAME,
        "name": item.name,
        "age": item.age,
        "missingDate": item.missing_date,
        "missingFrom": {
            "city": item.missing_city,
            "county": county,
            "state": item.missing_state or "CA",
        },
        "photoUrl": item.photo_url or "",
        "posterUrl": item.link or f"{poster_base.rstrip('/')}/{item.guid}",
        "contact": {"agency": "", "phone": NCMEC_HOTLINE},
        "syncedAt": synced_at,
    }


def apply_details(
    case: Dict[str, Any],
    details: CaseDetails,
    agencies: Mapping[str, AgencyContact],
) -> Dict[str, Any]:
    """Fold poster-page details into a new case, using the city agency table as fallback."""
    case["physical"] = {
        "sex": details.sex,
        "race": details.race,
        "height": details.height,
        "weight": details.weight,
        "hairColor": details.hair_color,
        "eyeColor": details.eye_color,
    }
    case["dateOfBirth"] = details.date_of_birth
    case["circumstances"] = details.circumstances
    contact = dict(case.get("contact") or {})
    if details.contact_agency:
        contact["agency"] = details.contact_agency
        if details.contact_phone:
            contact["phone"] = details.contact_phone
    else:
        fallback = lookup_agency((case.get("missingFrom") or {}).get("city"), agencies)
        if fallback:
            LOGGER.debug("Using fallback agency %s for %s", fallback.agency, case.get("id"))
            contact["agency"] = fallback.agency
            if fallback.phone:
                contact["phone"] = fallback.phone
    case["contact"] = contact
    return case


def apply_enrichment(case: Dict[str, Any], enrichment: Enrichment | None) -> Dict[str, Any]:
    if enrichment is None:
        case["summary"] = ""
        case["caseType"] = DEFAULT_CASE_TYPE
        case["lastSeenWearing"] = ""
        case["enrichedByLlm"] = False
        return case
    case["summary"] = enrichment.summary
    case["caseType"] = enrichment.case_type or DEFAULT_CASE_TYPE
    case["lastSeenWearing"] = enrichment.last_seen_wearing
    case["enrichedByLlm"] = True
    if enrichment.normalized_name:
        case["name"] = enrichment.normalized_name
    return case


def carry_forward(case: Mapping[str, Any], previous: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Return a copy of `case` with first-sighting fields taken from the previous record."""
    merged = dict(case)
    if not previous:
        merged.setdefault("caseType", DEFAULT_CASE_TYPE)
        merged.setdefault("enrichedByLlm", False)
        return merged
    for name in FIRST_SIGHTING_FIELDS:
        if name in previous:
            merged[name] = previous[name]
    # The LLM-normalized name replaced the feed name on first sight; keep it.
    if previous.get("enrichedByLlm") and previous.get("name"):
        merged["name"] = previous["name"]
    return merged


def sort_cases(cases: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Most recent `missingDate` first; missing or unparseable dates sort last."""
    oldest = datetime.min

    def _key(case: Mapping[str, Any]) -> datetime:
        return parse_missing_date(case.get("missingDate")) or oldest

    return sorted(cases, key=_key, reverse=True)


def fingerprint(cases: Sequence[Mapping[str, Any]]) -> bytes:
    stable = [
        {key: value for key, value in case.items() if key not in VOLATILE_FIELDS}
        for case in cases
    ]
    return json.dumps(stable, sort_keys=True, ensure_ascii=True, separators=(",", ":")).encode("utf-8")


def has_changes(
    cases: Sequence[Mapping[str, Any]],
    previous_cases: Sequence[Mapping[str, Any]],
    new_count: int,
) -> bool:
    return new_count > 0 or fingerprint(cases) != fingerprint(previous_cases)


@retry(
    stop=stop_after_attempt(RENAME_ATTEMPTS),
    wait=wait_exponential(multiplier=RENAME_BACKOFF_SECONDS, max=2),
    retry=retry_if_exception_type(OSError),
    before_sleep=before_sleep_log(LOGGER, logging.WARNING),
    reraise=True,
)
def _replace_into_place(source: str, target: Path) -> None:
    os.replace(source, target)


def write_json_atomic(path: Path, text: str) -> None:
    """Write `text` next to `path` and rename it into place.

    The rename is retried a few times. On failure the temporary file is removed and
    `PersistenceError` is raised with the previous artifact untouched.
    """
    temp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            delete=False,
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            encoding="utf-8",
        ) as handle:
            temp_name = handle.name
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        _replace_into_place(temp_name, path)
        temp_name = None
    except OSError as exc:
        raise PersistenceError(f"Failed to write {path}: {exc}") from exc
    finally:
        if temp_name:
            Path(temp_name).unlink(missing_ok=True)


def serialize_output(output: Mapping[str, Any]) -> str:
    return json.dumps(output, indent=2, ensure_ascii=False) + "\n"


class CaseAssembler:
    """Runs one sync pass. Collaborators are injectable so runs can be exercised offline."""

    def __init__(
        self,
        config: SyncConfig,
        city_regions: Mapping[str, str],
        agencies: Mapping[str, AgencyContact] | None = None,
        feed_fetcher: Callable[[], List[FeedItem]] | None = None,
        details_fetcher: Callable[[str], CaseDetails] | None = None,
        enricher: EnrichmentClient | None = None,
        uploader: BlobUploader | None = None,
        notifier: PushNotifier | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.city_regions = city_regions
        self.agencies = agencies or {}
        timeouts = config.timeouts
        self.feed_fetcher = feed_fetcher or functools.partial(
            fetch_feed_items,
            config.feed_url,
            timeout=timeouts.feed,
            user_agent=config.user_agent,
        )
        self.details_fetcher = details_fetcher or functools.partial(
            fetch_case_details,
            base_url=config.poster_base,
            timeout=timeouts.detail,
            user_agent=config.user_agent,
        )
        self.enricher = enricher or EnrichmentClient(
            config.carl_api_url,
            config.carl_model,
            timeout=timeouts.enrichment,
        )
        self.uploader = uploader or BlobUploader(
            config.storage_account,
            config.storage_container,
            config.storage_blob,
            config.storage_key,
            timeout=timeouts.upload,
        )
        self.notifier = notifier or PushNotifier(
            config.push_send_url,
            config.push_function_key,
            timeout=timeouts.push,
        )
        self.sleep = sleep

    def run(self) -> SyncResult:
        LOGGER.info("Starting missing persons sync")
        output_path = self.config.output_path
        previous = load_previous(output_path)
        previous_cases = [case for case in previous.get("cases") or [] if isinstance(case, dict)]
        previous_by_source = {case.get("sourceId"): case for case in previous_cases if case.get("sourceId")}
        id_store = IdentifierStore.from_artifact(previous)

        items = self.feed_fetcher()
        if not items:
            LOGGER.warning("No items from feed, keeping existing data")
            return SyncResult(status="feed_empty", cases=previous_cases)

        regional: List[tuple[FeedItem, str]] = []
        for item in items:
            county = resolve_region(item.missing_city, self.city_regions, self.config.regions)
            if not county:
                continue
            LOGGER.debug("Region match: %s from %s (%s)", item.name, item.missing_city, county)
            regional.append((item, county))
        LOGGER.info("%s of %s feed cases are in the configured region", len(regional), len(items))

        synced_at = datetime.now(timezone.utc).isoformat()
        cases: List[Dict[str, Any]] = []
        new_cases: List[Dict[str, Any]] = []
        seen_sources: set[str] = set()
        for item, county in regional:
            if item.guid in seen_sources:
                continue
            seen_sources.add(item.guid)
            case_id, is_new = id_store.issue_or_get(item.guid)
            case = build_case(item, case_id, county, synced_at, self.config.poster_base)
            if is_new:
                case = self._enrich_new_case(case, item, first=not new_cases)
                new_cases.append(case)
            else:
                case = carry_forward(case, previous_by_source.get(item.guid))
            cases.append(_order_fields(case))
        if id_store.issued:
            LOGGER.info("Issued %s new case id(s); %s known in total", len(id_store.issued), len(id_store))

        # Cases that dropped out of the feed are retained as-is.
        retained = [case for source_id, case in previous_by_source.items() if source_id not in seen_sources]
        if retained:
            LOGGER.info("Retaining %s cases no longer listed in the feed", len(retained))
        cases = sort_cases(cases + retained)

        if not has_changes(cases, previous_cases, len(new_cases)):
            LOGGER.info("No changes since last sync; skipping write, upload and notifications")
            return SyncResult(status="unchanged", cases=cases)

        output = {
            "cases": cases,
            "idMap": id_store.to_dict(),
            "lastSync": synced_at,
            "totalInRegionSource": len(items),
            "totalFiltered": len(regional),
            "newCasesThisSync": len(new_cases),
        }
        result = SyncResult(status="updated", cases=cases, new_cases=new_cases)
        if self.config.dry_run:
            LOGGER.info("Dry run: %s cases (%s new) not written", len(cases), len(new_cases))
            result.status = "dry_run"
            return result

        payload = serialize_output(output)
        self._snapshot_previous(output_path)
        write_json_atomic(output_path, payload)
        result.written = True
        LOGGER.info("Wrote %s cases (%s new) to %s", len(cases), len(new_cases), output_path)

        if self.config.skip_upload:
            LOGGER.info("Blob upload disabled for this run")
        else:
            result.uploaded = self.uploader.upload(payload)

        if new_cases:
            LOGGER.info("%s new case(s) detected", len(new_cases))
            if self.config.skip_notify:
                LOGGER.info("Notifications disabled for this run")
            else:
                for case in new_cases:
                    if self.notifier.notify(case):
                        result.notified += 1
        LOGGER.info("Sync complete")
        return result

    def _enrich_new_case(self, case: Dict[str, Any], item: FeedItem, first: bool) -> Dict[str, Any]:
        if not first and self.config.detail_delay > 0:
            self.sleep(self.config.detail_delay)
        details = self.details_fetcher(item.guid)
        if details.is_empty():
            LOGGER.info("No poster details found for %s", item.guid)
        apply_details(case, details, self.agencies)
        enrichment = self.enricher.enrich(
            {
                **case,
                "missingCity": item.missing_city,
                "missingState": item.missing_state,
                "sex": details.sex,
            }
        )
        return apply_enrichment(case, enrichment)

    def _snapshot_previous(self, output_path: Path) -> None:
        previous_path = self.config.previous_path
        if not previous_path or not output_path.exists():
            return
        try:
            write_json_atomic(previous_path, output_path.read_text(encoding="utf-8"))
        except (OSError, PersistenceError):
            LOGGER.warning("Failed to snapshot previous artifact to %s", previous_path, exc_info=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Sync NCMEC missing children alerts for the Bay Area.")
    parser.add_argument("--out", type=Path, default=None, help="Output artifact path.")
    parser.add_argument(
        "--previous-out",
        type=Path,
        default=None,
        help="Where to snapshot the previous artifact before overwriting it.",
    )
    parser.add_argument("--cities", type=Path, default=None, help="City -> county YAML table.")
    parser.add_argument("--agencies", type=Path, default=None, help="City -> agency YAML table.")
    parser.add_argument(
        "--detail-delay",
        type=float,
        default=None,
        help="Seconds to pause between poster page fetches (default: 1.0).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Assemble cases without writing anything.")
    parser.add_argument("--skip-upload", action="store_true", help="Do not replicate to blob storage.")
    parser.add_argument("--skip-notify", action="store_true", help="Do not send push notifications.")
    parser.add_argument("--verbose", action="store_true", help="Shorthand for --log-level DEBUG.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    args = parser.parse_args(argv)

    level_name = "DEBUG" if args.verbose else args.log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True,
    )
    install_sanitizer()

    dotenv_loaded = load_dotenv(dotenv_path=REPO_ROOT / ".env")
    if dotenv_loaded:
        LOGGER.debug("Loaded environment variables from .env file.")

    config = SyncConfig.from_env(
        output_path=args.out,
        previous_path=args.previous_out,
        cities_path=args.cities,
        agencies_path=args.agencies,
        detail_delay=args.detail_delay,
        dry_run=args.dry_run or None,
        skip_upload=args.skip_upload or None,
        skip_notify=args.skip_notify or None,
    )
    LOGGER.info(
        "Config: out=%s upload=%s notify=%s dry_run=%s",
        config.output_path,
        config.upload_enabled,
        config.notify_enabled,
        config.dry_run,
    )

    try:
        city_regions = load_city_regions(config.cities_path)
    except Exception:  # noqa: BLE001
        LOGGER.exception("Failed to load city reference data from %s", config.cities_path)
        return 1
    agencies = load_city_agencies(config.agencies_path)

    assembler = CaseAssembler(config, city_regions, agencies)
    try:
        result = assembler.run()
    except PersistenceError:
        LOGGER.exception("Failed to write output")
        return 1
    except Exception:  # noqa: BLE001
        LOGGER.exception("Missing persons sync failed.")
        return 1
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
