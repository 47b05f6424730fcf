"""Stable public case identifiers keyed by the upstream feed id."""

from __future__ import annotations

import logging
import secrets
from typing import Callable, Dict, Mapping

LOGGER = logging.getLogger(__name__)

CASE_ID_PREFIX = "BN"
CASE_ID_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"
CASE_ID_LENGTH = 6


def _random_index(alphabet_size: int, random_bytes: Callable[[int], bytes]) -> int:
    # Largest multiple of the alphabet size that fits in a byte; anything at or above it
    # would over-weight the first (256 % n) characters.
    max_valid = (256 // alphabet_size) * alphabet_size
    while True:
        byte = random_bytes(1)[0]
        if byte < max_valid:
            return byte % alphabet_size


def generate_case_id(
    prefix: str = CASE_ID_PREFIX,
    alphabet: str = CASE_ID_ALPHABET,
    length: int = CASE_ID_LENGTH,
    random_bytes: Callable[[int], bytes] = secrets.token_bytes,
) -> str:
    if not alphabet or len(alphabet) > 256:
        raise ValueError("alphabet must contain between 1 and 256 characters")
    chars = [alphabet[_random_index(len(alphabet), random_bytes)] for _ in range(length)]
    return prefix + "".join(chars)


class IdentifierStore:
    """Append-only ``sourceId -> id`` mapping persisted inside the output artifact."""

    def __init__(
        self,
        id_map: Mapping[str, str] | None = None,
        id_factory: Callable[[], str] = generate_case_id,
    ) -> None:
        self._ids: Dict[str, str] = {
            str(key): str(value) for key, value in (id_map or {}).items() if key and value
        }
        self._id_factory = id_factory
        self.issued: list[str] = []

    @classmethod
    def from_artifact(cls, payload: Mapping[str, object] | None, **kwargs: object) -> "IdentifierStore":
        raw = payload.get("idMap") if isinstance(payload, Mapping) else None
        if not isinstance(raw, Mapping):
            raw = {}
        return cls(raw, **kwargs)  # type: ignore[arg-type]

    def __len__(self) -> int:
        return len(self._ids)

    def issue_or_get(self, source_id: str) -> tuple[str, bool]:
        """Return ``(case_id, is_new)``, minting and recording an id on first sight."""
        existing = self._ids.get(source_id)
        if existing:
            return existing, False
        taken = set(self._ids.values())
        case_id = self._id_factory()
        while case_id in taken:
            LOGGER.debug("Case id collision on %s; drawing again.", case_id)
            case_id = self._id_factory()
        self._ids[source_id] = case_id
        self.issued.append(source_id)
        LOGGER.debug("Issued case id %s for %s", case_id, source_id)
        return case_id, True

    def to_dict(self) -> Dict[str, str]:
        return dict(self._ids)
