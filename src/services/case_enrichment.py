"""
LLM enrichment for newly discovered cases.

Talks to an OpenAI-compatible chat completions endpoint (Ollama in production) and asks
for a single JSON object. Any failure, whether HTTP, timeout, or unparseable output,
yields None so the caller keeps its defaults.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

import requests

LOGGER = logging.getLogger(__name__)

DEFAULT_CASE_TYPE = "Missing"
CASE_TYPES = (
    "Missing",
    "Endangered Runaway",
    "Family Abduction",
    "Non-Family Abduction",
    "Lost/Injured/Missing",
    "Unknown",
)


@dataclass
class Enrichment:
    summary: str
    case_type: str
    last_seen_wearing: str
    normalized_name: str


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Return the first ``{...}`` block in `text` as a dict, tolerating wrapping prose."""
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        payload = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        LOGGER.debug("Failed to parse model output as JSON.", exc_info=True)
        return None
    return payload if isinstance(payload, dict) else None


def _text(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


class EnrichmentClient:
    def __init__(
        self,
        api_url: str,
        model: str,
        temperature: float = 0.1,
        max_tokens: int = 300,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.endpoint = f"{api_url.rstrip('/')}/v1/chat/completions"
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_prompt(self, case: Mapping[str, Any]) -> str:
        case_types = ", ".join(f'"{value}"' for value in CASE_TYPES)
        return (
            "You are a data processor. Given this missing person case data, output ONLY a valid "
            "JSON object with these fields:\n"
            '- "summary": A 1-2 sentence plain-language summary suitable for a public alert\n'
            f'- "caseType": One of: {case_types}\n'
            '- "lastSeenWearing": Extract clothing description if available, or ""\n'
            '- "normalizedName": The person\'s full name in "First Last" format\n\n'
            "Raw case data:\n"
            f"Name: {case.get('name') or ''}\n"
            f"Age: {case.get('age') if case.get('age') is not None else 'Unknown'}\n"
            f"Missing Date: {case.get('missingDate') or 'Unknown'}\n"
            f"Missing From: {case.get('missingCity') or ''}, {case.get('missingState') or ''}\n"
            f"Circumstances: {case.get('circumstances') or 'Not available'}\n"
            f"Sex: {case.get('sex') or 'Unknown'}\n\n"
            "Output ONLY the JSON object, no markdown, no explanation."
        )

    def enrich(self, case: Mapping[str, Any]) -> Enrichment | None:
        body = {
            "model": self.model,
            "messages": [{"role": "user", "content": self.build_prompt(case)}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        try:
            response = self.session.post(self.endpoint, json=body, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Enrichment request failed for %s: %s", case.get("name"), exc)
            return None
        if not response.ok:
            LOGGER.warning("Enrichment API HTTP %s for %s", response.status_code, case.get("name"))
            return None
        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            LOGGER.warning("Enrichment API returned an unexpected payload for %s", case.get("name"))
            return None
        payload = extract_json_object(content if isinstance(content, str) else "")
        if payload is None:
            LOGGER.warning("Enrichment output for %s was not a JSON object", case.get("name"))
            return None
        case_type = _text(payload, "caseType")
        if case_type not in CASE_TYPES:
            case_type = DEFAULT_CASE_TYPE
        return Enrichment(
            summary=_text(payload, "summary"),
            case_type=case_type,
            last_seen_wearing=_text(payload, "lastSeenWearing"),
            normalized_name=_text(payload, "normalizedName"),
        )
