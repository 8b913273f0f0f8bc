from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Dict

import httpx

logger = logging.getLogger(__name__)


class Notifier:
    """Best-effort fan-out of race events to a webhook.

    Nothing here raises: a failed notification is logged and the caller's
    build or result stays committed.
    """

    def __init__(self, url: str | None = None, timeout: float | None = None) -> None:
        self.url = url if url is not None else os.getenv("RACE_NOTIFY_URL", "")
        if timeout is None:
            try:
                timeout = float(os.getenv("RACE_NOTIFY_TIMEOUT", "5"))
            except ValueError:
                timeout = 5.0
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def publish(self, event: str, room: str, payload: Dict[str, Any]) -> bool:
        if not self.enabled:
            logger.debug("Notification %s for %s skipped: no RACE_NOTIFY_URL", event, room)
            return False

        body = {
            "event": event,
            "room": room,
            "payload": payload,
            "sentAt": dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.url, json=body)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Notification %s for %s failed (%s)", event, room, exc)
            return False
        except Exception:  # pragma: no cover - logging side effect
            logger.exception("Unexpected error sending notification %s", event)
            return False
        return True

    def race_built(self, event_id: str, race_id: str, rounds: Any) -> bool:
        return self.publish("race-built", f"event-{event_id}", {"raceId": race_id, "motos": rounds})

    def final_assigned(self, event_id: str, race_id: str, assignments: Any) -> bool:
        return self.publish("final-assigned", f"event-{event_id}", {"raceId": race_id, "assignments": assignments})

    def results_recorded(self, race_id: str, results: Any, heat_id: str | None = None) -> bool:
        if heat_id is None:
            return self.publish("result-created", f"race-{race_id}", {"results": results})
        return self.publish("bulk-results-created", f"race-{race_id}", {"heatId": heat_id, "results": results})

    def result_updated(self, race_id: str, result: Any) -> bool:
        return self.publish("result-updated", f"race-{race_id}", {"result": result})

    def result_deleted(self, race_id: str, heat_entry_id: str) -> bool:
        return self.publish("result-deleted", f"race-{race_id}", {"heatEntryId": heat_entry_id})
