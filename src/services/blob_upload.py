"""
Replicate the output artifact to Azure Blob Storage.

Uses the Blob REST API directly with SharedKey authorization. The blob is a secondary
copy, so every failure is logged and reported as False rather than raised.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from email.utils import formatdate

import requests

LOGGER = logging.getLogger(__name__)

API_VERSION = "2020-10-02"
BLOB_TYPE = "BlockBlob"
CONTENT_TYPE = "application/json"
CACHE_CONTROL = "public, max-age=300, stale-while-revalidate=900"


def build_string_to_sign(
    content_length: int,
    content_type: str,
    canonical_headers: dict[str, str],
    canonical_resource: str,
) -> str:
    header_block = "\n".join(f"{name}:{canonical_headers[name]}" for name in sorted(canonical_headers))
    return "\n".join(
        [
            "PUT",
            "",  # Content-Encoding
            "",  # Content-Language
            str(content_length) if content_length else "",
            "",  # Content-MD5
            content_type,
            "",  # Date (x-ms-date is signed instead)
            "",  # If-Modified-Since
            "",  # If-Match
            "",  # If-None-Match
            "",  # If-Unmodified-Since
            "",  # Range
            header_block,
            canonical_resource,
        ]
    )


def sign(string_to_sign: str, account_key: str) -> str:
    key = base64.b64decode(account_key)
    digest = hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class BlobUploader:
    def __init__(
        self,
        account: str,
        container: str,
        blob: str,
        account_key: str,
        timeout: float = 30.0,
        service_host: str = "blob.core.windows.net",
        session: requests.Session | None = None,
    ) -> None:
        self.account = account
        self.container = container
        self.blob = blob
        self.account_key = account_key
        self.timeout = timeout
        self.service_host = service_host
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.account_key)

    @property
    def url(self) -> str:
        return f"https://{self.account}.{self.service_host}/{self.container}/{self.blob}"

    def build_headers(self, body: bytes, timestamp: str | None = None) -> dict[str, str]:
        now = timestamp or formatdate(usegmt=True)
        signed = {
            "x-ms-blob-cache-control": CACHE_CONTROL,
            "x-ms-blob-content-type": CONTENT_TYPE,
            "x-ms-blob-type": BLOB_TYPE,
            "x-ms-date": now,
            "x-ms-version": API_VERSION,
        }
        resource = f"/{self.account}/{self.container}/{self.blob}"
        string_to_sign = build_string_to_sign(len(body), CONTENT_TYPE, signed, resource)
        signature = sign(string_to_sign, self.account_key)
        return {
            "Authorization": f"SharedKey {self.account}:{signature}",
            "Content-Type": CONTENT_TYPE,
            "Content-Length": str(len(body)),
            **signed,
        }

    def upload(self, payload: str) -> bool:
        if not self.enabled:
            LOGGER.debug("No storage key configured; skipping blob upload.")
            return False
        body = payload.encode("utf-8")
        try:
            headers = self.build_headers(body)
        except (ValueError, TypeError) as exc:
            LOGGER.warning("Blob upload skipped; storage key is not valid base64: %s", exc)
            return False
        LOGGER.info("Uploading %s bytes to %s", len(body), self.url)
        try:
            response = self.session.put(self.url, data=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            LOGGER.warning("Blob upload error: %s", exc)
            return False
        if not response.ok:
            LOGGER.warning("Blob upload failed: HTTP %s - %s", response.status_code, response.text[:200])
            return False
        LOGGER.info("Uploaded artifact to blob storage")
        return True
