"""Push notifications for newly discovered cases."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

LOGGER = logging.getLogger(__name__)

NOTIFICATION_TYPE = "missing-persons"
SUBSCRIPTION_TAG = "missing-persons:enabled"


def build_notification(case: Mapping[str, Any]) -> dict[str, Any]:
    name = case.get("name") or "Unknown"
    case_id = case.get("id")
    city = (case.get("missingFrom") or {}).get("city") or "the Bay Area"
    age = case.get("age")
    age_clause = f", age {age}" if age is not None else ""
    return {
        "notification": {
            "title": f"Missing Person Alert: {name}",
            "body": f"{name}{age_clause}, missing from {city}. Tap for details.",
            "data": {
                "type": NOTIFICATION_TYPE,
                "tag": f"missing-{case_id}",
                "url": f"/alerts/{case_id}",
                "requireInteraction": True,
                "threadId": NOTIFICATION_TYPE,
                "channelId": NOTIFICATION_TYPE,
            },
        },
        "tags": [SUBSCRIPTION_TAG],
    }


class PushNotifier:
    def __init__(
        self,
        send_url: str,
        function_key: str,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.send_url = send_url
        self.function_key = function_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.function_key)

    def notify(self, case: Mapping[str, Any]) -> bool:
        if not self.enabled:
            LOGGER.debug("No push function key configured; skipping notification.")
            return False
        LOGGER.info("Sending push notification for %s", case.get("name"))
        try:
            response = self.session.post(
                self.send_url,
                params={"code": self.function_key},
                json=build_notification(case),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            LOGGER.warning("Push notification error for %s: %s", case.get("id"), exc)
            return False
        if not response.ok:
            LOGGER.warning("Push notification failed for %s: HTTP %s", case.get("id"), response.status_code)
            return False
        return True
