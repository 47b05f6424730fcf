"""
Runtime configuration for the missing persons sync.

Everything the pipeline reads from the process environment is collected here once at
startup. Components receive the resulting `SyncConfig` (or the handful of values they
need) explicitly instead of calling `os.getenv` themselves.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping

REPO_ROOT = Path(__file__).resolve().parents[2]

NCMEC_RSS_URL = (
    "https://www.missingkids.org/missingkids/servlet/XmlServlet"
    "?act=rss&LanguageCountry=en_US&orgPrefix=NCMC&state=CA"
)
NCMEC_POSTER_BASE = "https://www.missingkids.org/poster"
NCMEC_HOTLINE = "1-800-THE-LOST (1-800-843-5678)"

DEFAULT_CARL_API_URL = "https://ai.baytides.org"
DEFAULT_CARL_MODEL = "qwen2.5:3b"
DEFAULT_PUSH_SEND_URL = "https://baynavigator-push.azurewebsites.net/api/push-send"

DEFAULT_OUTPUT_PATH = REPO_ROOT / "public" / "api" / "missing-persons.json"
DEFAULT_PREVIOUS_PATH = REPO_ROOT / "public" / "api" / "missing-persons-previous.json"
DEFAULT_CITIES_PATH = REPO_ROOT / "src" / "data" / "cities.yml"
DEFAULT_AGENCIES_PATH = REPO_ROOT / "src" / "data" / "city_agencies.yml"

BAY_AREA_COUNTIES = (
    "Alameda County",
    "Contra Costa County",
    "Marin County",
    "Napa County",
    "San Francisco",
    "San Mateo County",
    "Santa Clara County",
    "Solano County",
    "Sonoma County",
)

USER_AGENT = "BayNavigator/1.0 (missing-persons-sync)"


def previous_path_for(output_path: Path) -> Path:
    return output_path.with_name(f"{output_path.stem}-previous{output_path.suffix}")


@dataclass(frozen=True)
class Timeouts:
    """Per-call network timeouts in seconds."""

    feed: float = 30.0
    detail: float = 15.0
    enrichment: float = 30.0
    upload: float = 30.0
    push: float = 15.0


@dataclass(frozen=True)
class SyncConfig:
    feed_url: str = NCMEC_RSS_URL
    poster_base: str = NCMEC_POSTER_BASE
    output_path: Path = DEFAULT_OUTPUT_PATH
    previous_path: Path | None = DEFAULT_PREVIOUS_PATH
    cities_path: Path = DEFAULT_CITIES_PATH
    agencies_path: Path | None = DEFAULT_AGENCIES_PATH
    regions: tuple[str, ...] = BAY_AREA_COUNTIES
    carl_api_url: str = DEFAULT_CARL_API_URL
    carl_model: str = DEFAULT_CARL_MODEL
    storage_account: str = "baytidesstorage"
    storage_container: str = "missing-persons"
    storage_blob: str = "missing-persons.json"
    storage_key: str = ""
    push_send_url: str = DEFAULT_PUSH_SEND_URL
    push_function_key: str = ""
    detail_delay: float = 1.0
    dry_run: bool = False
    skip_upload: bool = False
    skip_notify: bool = False
    user_agent: str = USER_AGENT
    timeouts: Timeouts = field(default_factory=Timeouts)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> "SyncConfig":
        """Build a config from environment variables, then apply explicit overrides."""
        env = os.environ if environ is None else environ

        def _get(name: str, default: str) -> str:
            value = (env.get(name) or "").strip()
            return value or default

        config = cls(
            feed_url=_get("MISSING_PERSONS_FEED_URL", NCMEC_RSS_URL),
            carl_api_url=_get("CARL_API_URL", DEFAULT_CARL_API_URL).rstrip("/"),
            carl_model=_get("CARL_MODEL", DEFAULT_CARL_MODEL),
            storage_account=_get("AZURE_STORAGE_ACCOUNT", "baytidesstorage"),
            storage_container=_get("AZURE_STORAGE_CONTAINER", "missing-persons"),
            storage_blob=_get("AZURE_STORAGE_BLOB", "missing-persons.json"),
            storage_key=_get("AZURE_STORAGE_KEY", ""),
            push_send_url=_get("PUSH_SEND_URL", DEFAULT_PUSH_SEND_URL),
            push_function_key=_get("PUSH_FUNCTION_KEY", ""),
        )
        applied = {key: value for key, value in overrides.items() if value is not None}
        # The snapshot lives next to the artifact unless placed explicitly.
        if "output_path" in applied and "previous_path" not in applied:
            applied["previous_path"] = previous_path_for(Path(applied["output_path"]))  # type: ignore[arg-type]
        if applied:
            config = replace(config, **applied)
        return config

    @property
    def upload_enabled(self) -> bool:
        return bool(self.storage_key) and not self.skip_upload

    @property
    def notify_enabled(self) -> bool:
        return bool(self.push_function_key) and not self.skip_notify
