from __future__ import annotations

"""Durable tables (`teams`, `verification_requests`, `game_config`) that push every write."""

import copy
import json
import os
import tempfile
import threading
import time
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .errors import ConcurrencyConflict, StoreWriteError, UnknownRequestError, UnknownTeamError, ValidationError
from .models import ROLE_ADMIN, STATUS_PENDING, VALID_STATUSES
from .sync import (
    ADMIN_REQUESTS_TOPIC,
    ADMIN_TEAMS_TOPIC,
    CONFIG_TOPIC,
    OP_INSERT,
    OP_UPDATE,
    TABLE_CONFIG,
    TABLE_REQUESTS,
    TABLE_TEAMS,
    SyncChannel,
    team_topic,
)


TABLES = (TABLE_TEAMS, TABLE_REQUESTS, TABLE_CONFIG)
PRIVATE_TEAM_FIELDS = {"password_hash"}
WRITABLE_TEAM_FIELDS = {
    "points",
    "stars_found",
    "solved_indices",
    "attempts",
    "forget_password_clicked",
    "tablet_discovered",
}
DEFAULT_CONFIG = {"id": 1, "sections_1_2_unlocked": False, "section_3_unlocked": False}


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    return json.loads(path.read_text(encoding="utf-8"))


def _save_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(value, indent=2)
    # One temp file per call; concurrent saves of the same path never collide.
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
        for attempt in range(5):
            try:
                temp_path.replace(path)
                return
            except PermissionError:
                if attempt == 4:
                    raise
                time.sleep(0.02 * (attempt + 1))
    finally:
        temp_path.unlink(missing_ok=True)


def public_team(record: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in record.items() if key not in PRIVATE_TEAM_FIELDS}


def _empty_table(table: str) -> Any:
    if table == TABLE_TEAMS:
        return {}
    if table == TABLE_REQUESTS:
        return []
    return dict(DEFAULT_CONFIG)


class HuntStore:
    """Table operations shared by every backend.

    Backends only implement `_read` and `_write`. Writes publish a change
    event after they are durable; a failing backend raises `StoreWriteError`
    and publishes nothing.
    """

    def __init__(self, channel: SyncChannel | None = None) -> None:
        self.channel = channel or SyncChannel()
        self._lock = threading.RLock()

    def _read(self, table: str) -> Any:
        raise NotImplementedError

    def _write(self, table: str, value: Any) -> None:
        raise NotImplementedError

    def _commit(self, table: str, value: Any) -> None:
        try:
            self._write(table, value)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreWriteError(f"Could not write {table}: {exc}", table=table) from exc

    def _publish_team(self, operation: str, record: dict[str, Any]) -> None:
        payload = public_team(record)
        self.channel.publish(team_topic(record["name"]), table=TABLE_TEAMS, operation=operation, record=payload)
        self.channel.publish(ADMIN_TEAMS_TOPIC, table=TABLE_TEAMS, operation=operation, record=payload)

    # teams

    def get_team(self, name: str) -> dict[str, Any] | None:
        with self._lock:
            record = self._read(TABLE_TEAMS).get(name)
        return public_team(record) if record else None

    def find_team(self, name: str, *, password_hash: str | None = None, role: str | None = None) -> dict[str, Any] | None:
        with self._lock:
            record = self._read(TABLE_TEAMS).get(name)
        if record is None:
            return None
        if password_hash is not None and record.get("password_hash") != password_hash:
            return None
        if role is not None and record.get("role") != role:
            return None
        return public_team(record)

    def insert_team(self, record: dict[str, Any]) -> dict[str, Any]:
        name = str(record.get("name", ""))
        with self._lock:
            teams = copy.deepcopy(self._read(TABLE_TEAMS))
            if name in teams:
                raise ValidationError("Team name already claimed.", code="TEAM_NAME_TAKEN", team=name)
            row = {
                "id": str(uuid.uuid4()),
                "name": name,
                "password_hash": record.get("password_hash"),
                "role": record.get("role", "user"),
                "points": 0,
                "stars_found": 0,
                "solved_indices": [],
                "attempts": {},
                "forget_password_clicked": False,
                "tablet_discovered": False,
                "created_at": _now_iso(),
                "version": 1,
            }
            teams[name] = row
            self._commit(TABLE_TEAMS, teams)
        self._publish_team(OP_INSERT, row)
        return public_team(row)

    def update_team(
        self,
        name: str,
        fields: dict[str, Any],
        *,
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        unknown = set(fields) - WRITABLE_TEAM_FIELDS
        if unknown:
            raise ValidationError(f"Fields not writable: {sorted(unknown)}", code="FIELD_NOT_WRITABLE")
        with self._lock:
            teams = copy.deepcopy(self._read(TABLE_TEAMS))
            row = teams.get(name)
            if row is None:
                raise UnknownTeamError(f"Team not found: {name}", team=name)
            current_version = int(row.get("version") or 0)
            if expected_version is not None and current_version != expected_version:
                raise ConcurrencyConflict(
                    "Team row changed since it was read.",
                    team=name,
                    expected_version=expected_version,
                    current_version=current_version,
                )
            row.update(copy.deepcopy(fields))
            row["version"] = current_version + 1
            self._commit(TABLE_TEAMS, teams)
        self._publish_team(OP_UPDATE, row)
        return public_team(row)

    def list_teams(self, *, include_admins: bool = False) -> list[dict[str, Any]]:
        with self._lock:
            rows = [public_team(row) for row in self._read(TABLE_TEAMS).values()]
        if not include_admins:
            rows = [row for row in rows if row.get("role") != ROLE_ADMIN]
        return sorted(rows, key=lambda row: (-int(row.get("points") or 0), row.get("name", "")))

    # verification_requests

    def insert_request(self, record: dict[str, Any]) -> dict[str, Any]:
        row = dict(record)
        row["id"] = row.get("id") or str(uuid.uuid4())
        row.setdefault("timestamp", _now_iso())
        if row.get("status") not in VALID_STATUSES:
            raise ValidationError(f"Unknown status: {row.get('status')}", code="STATUS_INVALID")
        with self._lock:
            requests = copy.deepcopy(self._read(TABLE_REQUESTS))
            requests.append(row)
            self._commit(TABLE_REQUESTS, requests)
        self.channel.publish(ADMIN_REQUESTS_TOPIC, table=TABLE_REQUESTS, operation=OP_INSERT, record=row)
        return dict(row)

    def get_request(self, request_id: str) -> dict[str, Any] | None:
        with self._lock:
            for row in self._read(TABLE_REQUESTS):
                if row.get("id") == request_id:
                    return dict(row)
        return None

    def update_request_status(self, request_id: str, status: str) -> dict[str, Any]:
        if status not in VALID_STATUSES or status == STATUS_PENDING:
            raise ValidationError(f"Not a terminal status: {status}", code="STATUS_INVALID")
        with self._lock:
            requests = copy.deepcopy(self._read(TABLE_REQUESTS))
            for row in requests:
                if row.get("id") == request_id:
                    row["status"] = status
                    row["decided_at"] = _now_iso()
                    break
            else:
                raise UnknownRequestError(f"Verification request not found: {request_id}", request_id=request_id)
            self._commit(TABLE_REQUESTS, requests)
        self.channel.publish(ADMIN_REQUESTS_TOPIC, table=TABLE_REQUESTS, operation=OP_UPDATE, record=row)
        return dict(row)

    def reopen_request(self, request_id: str) -> dict[str, Any]:
        """Put a decided request back to pending so it can be decided again."""

        with self._lock:
            requests = copy.deepcopy(self._read(TABLE_REQUESTS))
            for row in requests:
                if row.get("id") == request_id:
                    row["status"] = STATUS_PENDING
                    row.pop("decided_at", None)
                    break
            else:
                raise UnknownRequestError(f"Verification request not found: {request_id}", request_id=request_id)
            self._commit(TABLE_REQUESTS, requests)
        self.channel.publish(ADMIN_REQUESTS_TOPIC, table=TABLE_REQUESTS, operation=OP_UPDATE, record=row)
        return dict(row)

    def list_requests(self, *, status: str | None = None, team_name: str | None = None) -> list[dict[str, Any]]:
        """Newest first."""

        with self._lock:
            rows = [dict(row) for row in self._read(TABLE_REQUESTS)]
        if status is not None:
            rows = [row for row in rows if row.get("status") == status]
        if team_name is not None:
            rows = [row for row in rows if row.get("team_name") == team_name]
        return sorted(rows, key=lambda row: str(row.get("timestamp", "")), reverse=True)

    # game_config

    def get_config(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._read(TABLE_CONFIG))

    def update_config(self, fields: dict[str, Any]) -> dict[str, Any]:
        allowed = {"sections_1_2_unlocked", "section_3_unlocked"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Fields not writable: {sorted(unknown)}", code="FIELD_NOT_WRITABLE")
        with self._lock:
            config = dict(self._read(TABLE_CONFIG))
            config.update({key: bool(value) for key, value in fields.items()})
            config["id"] = 1
            self._commit(TABLE_CONFIG, config)
        self.channel.publish(CONFIG_TOPIC, table=TABLE_CONFIG, operation=OP_UPDATE, record=config)
        return dict(config)


class MemoryStore(HuntStore):
    def __init__(self, channel: SyncChannel | None = None) -> None:
        super().__init__(channel)
        self._tables: dict[str, Any] = {table: _empty_table(table) for table in TABLES}

    def _read(self, table: str) -> Any:
        return self._tables[table]

    def _write(self, table: str, value: Any) -> None:
        self._tables[table] = value


class JsonFileStore(HuntStore):
    """One JSON file per table under `root`, re-read on every access."""

    def __init__(self, root: Path, channel: SyncChannel | None = None) -> None:
        super().__init__(channel)
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def table_path(self, table: str) -> Path:
        return self.root / f"{table}.json"

    def _read(self, table: str) -> Any:
        data = _load_json(self.table_path(table), _empty_table(table))
        expected = type(_empty_table(table))
        if not isinstance(data, expected):
            return _empty_table(table)
        return data

    def _write(self, table: str, value: Any) -> None:
        _save_json(self.table_path(table), value)
