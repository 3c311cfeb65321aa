from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from heavens_hunt.errors import ConcurrencyConflict, StoreWriteError, UnknownRequestError, UnknownTeamError, ValidationError
from heavens_hunt.store import JsonFileStore, MemoryStore, _save_json
from heavens_hunt.sync import (
    ADMIN_REQUESTS_TOPIC,
    ADMIN_TEAMS_TOPIC,
    CONFIG_TOPIC,
    OP_INSERT,
    OP_UPDATE,
    ChangeEvent,
    SyncChannel,
    team_topic,
)


def _collect(channel: SyncChannel, topic: str) -> list[ChangeEvent]:
    events: list[ChangeEvent] = []
    channel.subscribe(topic, events.append)
    return events


def test_team_topic_sanitizes_name() -> None:
    assert team_topic("Orion") == "team_sync_Orion"
    assert team_topic("Star Gazers #1") == "team_sync_Star_Gazers__1"


def test_channel_sequences_and_unsubscribe() -> None:
    channel = SyncChannel()
    received = _collect(channel, "t")
    other = _collect(channel, "u")
    sub = channel.subscribe("t", lambda event: None)
    first = channel.publish("t", table="teams", operation=OP_UPDATE, record={"name": "a"})
    second = channel.publish("u", table="teams", operation=OP_UPDATE, record={"name": "b"})
    assert second.seq == first.seq + 1
    assert [event.record["name"] for event in received] == ["a"]
    assert [event.record["name"] for event in other] == ["b"]

    sub.unsubscribe()
    assert channel.subscriber_count("t") == 1
    assert not sub.active


def test_failing_handler_does_not_block_others() -> None:
    errors: list[str] = []
    channel = SyncChannel(on_error=lambda event, exc: errors.append(str(exc)))

    def _boom(event: ChangeEvent) -> None:
        raise RuntimeError("handler exploded")

    channel.subscribe("t", _boom)
    received = _collect(channel, "t")
    channel.publish("t", table="teams", operation=OP_INSERT, record={})
    assert errors == ["handler exploded"]
    assert len(received) == 1


def test_publish_rejects_unknown_operation() -> None:
    with pytest.raises(ValueError):
        SyncChannel().publish("t", table="teams", operation="UPSERT", record={})


def test_team_writes_push_to_team_and_admin_topics() -> None:
    store = MemoryStore()
    team_events = _collect(store.channel, team_topic("Orion"))
    admin_events = _collect(store.channel, ADMIN_TEAMS_TOPIC)

    created = store.insert_team({"name": "Orion", "password_hash": "h"})
    assert created["version"] == 1
    assert "password_hash" not in created
    updated = store.update_team("Orion", {"points": 100, "solved_indices": [0]})
    assert updated["version"] == 2

    assert [event.operation for event in team_events] == [OP_INSERT, OP_UPDATE]
    assert len(admin_events) == 2
    assert all("password_hash" not in event.record for event in team_events)


def test_duplicate_team_and_unknown_fields_are_rejected() -> None:
    store = MemoryStore()
    store.insert_team({"name": "Orion", "password_hash": "h"})
    with pytest.raises(ValidationError):
        store.insert_team({"name": "Orion", "password_hash": "x"})
    with pytest.raises(ValidationError):
        store.update_team("Orion", {"role": "admin"})
    with pytest.raises(UnknownTeamError):
        store.update_team("Lyra", {"points": 1})


def test_versioned_update_detects_conflict() -> None:
    store = MemoryStore()
    store.insert_team({"name": "Orion", "password_hash": "h"})
    store.update_team("Orion", {"points": 100}, expected_version=1)
    with pytest.raises(ConcurrencyConflict) as exc:
        store.update_team("Orion", {"points": 300}, expected_version=1)
    assert exc.value.context["current_version"] == 2
    assert store.get_team("Orion")["points"] == 100


def test_find_team_matches_credentials_and_role() -> None:
    store = MemoryStore()
    store.insert_team({"name": "Admin", "password_hash": "k", "role": "admin"})
    assert store.find_team("Admin", password_hash="k", role="admin") is not None
    assert store.find_team("Admin", password_hash="nope") is None
    assert store.find_team("Admin", password_hash="k", role="user") is None
    assert store.find_team("Ghost") is None


def test_requests_and_config_push_to_admin_topics() -> None:
    store = MemoryStore()
    request_events = _collect(store.channel, ADMIN_REQUESTS_TOPIC)
    config_events = _collect(store.channel, CONFIG_TOPIC)

    row = store.insert_request(
        {"team_name": "Orion", "star_name": "aldebaran", "timestamp": "2026-01-01T00:00:00+00:00", "status": "pending", "type": "submission"}
    )
    assert row["id"]
    store.update_request_status(row["id"], "approved")
    assert store.get_request(row["id"])["status"] == "approved"
    assert [event.operation for event in request_events] == [OP_INSERT, OP_UPDATE]

    with pytest.raises(UnknownRequestError):
        store.update_request_status("missing", "approved")
    with pytest.raises(ValidationError):
        store.update_request_status(row["id"], "pending")

    config = store.update_config({"section_3_unlocked": True})
    assert config == {"id": 1, "sections_1_2_unlocked": False, "section_3_unlocked": True}
    assert config_events[-1].record["section_3_unlocked"] is True


def test_list_requests_newest_first_with_filters() -> None:
    store = MemoryStore()
    for idx, team in enumerate(["Orion", "Lyra", "Orion"]):
        store.insert_request(
            {"team_name": team, "star_name": "x", "timestamp": f"2026-01-0{idx + 1}T00:00:00+00:00", "status": "pending", "type": "submission"}
        )
    rows = store.list_requests(team_name="Orion")
    assert [row["timestamp"][:10] for row in rows] == ["2026-01-03", "2026-01-01"]
    assert store.list_requests(status="approved") == []


def test_list_teams_orders_by_points_and_hides_admins() -> None:
    store = MemoryStore()
    store.insert_team({"name": "Admin", "password_hash": "k", "role": "admin"})
    for name, points in [("Lyra", 150), ("Orion", 300), ("Cygnus", 150)]:
        store.insert_team({"name": name, "password_hash": "h"})
        store.update_team(name, {"points": points})
    assert [row["name"] for row in store.list_teams()] == ["Orion", "Cygnus", "Lyra"]
    assert len(store.list_teams(include_admins=True)) == 4


def test_json_file_store_persists_across_instances(tmp_path: Path) -> None:
    first = JsonFileStore(tmp_path / "store")
    first.insert_team({"name": "Orion", "password_hash": "h"})
    first.update_config({"section_3_unlocked": True})

    second = JsonFileStore(tmp_path / "store")
    assert second.get_team("Orion")["name"] == "Orion"
    assert second.get_config()["section_3_unlocked"] is True
    assert (tmp_path / "store" / "teams.json").exists()


def test_failed_write_raises_and_publishes_nothing(monkeypatch) -> None:  # type: ignore[no-untyped-def]
    store = MemoryStore()
    store.insert_team({"name": "Orion", "password_hash": "h"})
    events = _collect(store.channel, team_topic("Orion"))

    def _fail(table: str, value: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(store, "_write", _fail)
    with pytest.raises(StoreWriteError):
        store.update_team("Orion", {"points": 100})
    assert events == []
    monkeypatch.undo()
    assert store.get_team("Orion")["points"] == 0


def test_concurrent_saves_of_one_file_all_land(tmp_path: Path) -> None:
    target = tmp_path / "session" / "hth_profile.json"

    def _save(n: int) -> None:
        _save_json(target, {"name": "Orion", "points": n})

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(_save, range(64)))
    assert json.loads(target.read_text(encoding="utf-8"))["name"] == "Orion"
    assert [path.name for path in target.parent.iterdir()] == ["hth_profile.json"]
