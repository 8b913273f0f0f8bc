from typing import Any, Dict, List

import httpx
import pytest

from bmx_core import Notifier
from bmx_core import notify as notify_module


class _RecordingClient:
    posts: List[Dict[str, Any]] = []
    status_code = 200

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.timeout = kwargs.get("timeout")

    def __enter__(self) -> "_RecordingClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # pragma: no cover - nothing to clean up
        return None

    def post(self, url: str, json: Dict[str, Any]) -> httpx.Response:
        _RecordingClient.posts.append({"url": url, "json": json, "timeout": self.timeout})
        return httpx.Response(_RecordingClient.status_code, request=httpx.Request("POST", url))


@pytest.fixture(autouse=True)
def recording_client(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("RACE_NOTIFY_URL", raising=False)
    monkeypatch.delenv("RACE_NOTIFY_TIMEOUT", raising=False)
    monkeypatch.setattr(notify_module.httpx, "Client", _RecordingClient)
    _RecordingClient.posts = []
    _RecordingClient.status_code = 200
    yield


def test_disabled_without_url() -> None:
    notifier = Notifier()
    assert not notifier.enabled
    assert notifier.race_built("ev-1", "race-1", []) is False
    assert _RecordingClient.posts == []


def test_events_are_posted_to_rooms(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RACE_NOTIFY_URL", "https://hooks.example/race")
    monkeypatch.setenv("RACE_NOTIFY_TIMEOUT", "2.5")
    notifier = Notifier()

    assert notifier.race_built("ev-1", "race-1", [{"orderNo": 1}])
    assert notifier.results_recorded("race-1", [{"heatEntryId": "e1"}], heat_id="race-1:1:1")
    assert notifier.results_recorded("race-1", {"heatEntryId": "e2"})

    events = [(post["json"]["event"], post["json"]["room"]) for post in _RecordingClient.posts]
    assert events == [
        ("race-built", "event-ev-1"),
        ("bulk-results-created", "race-race-1"),
        ("result-created", "race-race-1"),
    ]
    assert _RecordingClient.posts[0]["timeout"] == 2.5
    assert _RecordingClient.posts[0]["json"]["sentAt"].endswith("Z")


def test_failed_delivery_is_swallowed() -> None:
    _RecordingClient.status_code = 503
    notifier = Notifier(url="https://hooks.example/race")

    assert notifier.final_assigned("ev-1", "race-1", []) is False
    assert len(_RecordingClient.posts) == 1


def test_result_corrections_are_posted_to_race_room() -> None:
    notifier = Notifier(url="https://hooks.example/race")

    assert notifier.result_updated("race-1", {"heatEntryId": "e1", "finishPos": 2})
    assert notifier.result_deleted("race-1", "e1")

    assert [post["json"]["event"] for post in _RecordingClient.posts] == ["result-updated", "result-deleted"]
    assert _RecordingClient.posts[1]["json"]["payload"] == {"heatEntryId": "e1"}
