from __future__ import annotations

"""Append-only JSONL log of hunt actions, sync traffic, and write failures.

Credentials never reach the file: PIN-like keys are masked and long or
control-laden strings are cleaned before an event is written. Whenever that
cleaning changes something a `risk.flagged` event follows the original one.
"""

import hashlib
import json
import platform
import sys
import threading
import unicodedata
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = frozenset(
    {
        "service.started",
        "team.registered",
        "team.logged_in",
        "auth.denied",
        "password.reset_requested",
        "session.restored",
        "section.selected",
        "answer.submitted",
        "pointing.requested",
        "verification.decided",
        "config.updated",
        "sync.received",
        "store.write_failed",
        "risk.flagged",
    }
)
VALID_ACTOR_KINDS = frozenset({"player", "admin", "system"})
VALID_SOURCES = frozenset({"cli", "api", "client"})
SENSITIVE_KEYS = frozenset({"password", "pin", "confirm_pin", "admin_pin"})
MAX_STRING_LENGTH = 200
REDACTED = "[redacted]"


def _timestamp() -> str:
    return datetime.now(tz=UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _clean_text(value: str) -> str:
    printable = "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))
    return printable.strip()


@dataclass
class Scrubber:
    """Cleans one event payload and counts what it had to change."""

    redacted_fields: int = 0
    truncated_fields: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.redacted_fields or self.truncated_fields)

    def text(self, value: str) -> str:
        cleaned = _clean_text(value)
        if len(cleaned) <= MAX_STRING_LENGTH:
            return cleaned
        self.truncated_fields += 1
        return cleaned[:MAX_STRING_LENGTH] + "...[truncated]"

    def scrub(self, value: Any) -> Any:
        if isinstance(value, dict):
            result: dict[str, Any] = {}
            for key, item in value.items():
                name = str(key)
                if name.lower() in SENSITIVE_KEYS:
                    self.redacted_fields += 1
                    result[name] = REDACTED
                else:
                    result[name] = self.scrub(item)
            return result
        if isinstance(value, (list, tuple)):
            return [self.scrub(item) for item in value]
        if value is None or isinstance(value, (bool, int, float)):
            return value
        return self.text(str(value))


def sanitize_event_data(data: Any) -> tuple[Any, Scrubber]:
    scrubber = Scrubber()
    return scrubber.scrub(data), scrubber


def sanitize_actor_id(value: Any) -> str:
    if value is None:
        return "unknown"
    return Scrubber().text(str(value)) or "unknown"


def detect_version() -> str:
    try:
        return package_version("hunting-the-heavens")
    except PackageNotFoundError:
        return "0.1.0"


class TelemetryLogger:
    """Thread-safe JSONL writer. `log_event` never raises into callers."""

    def __init__(self, events_path: Path) -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self.build = {
            "version": detect_version(),
            "python_version": platform.python_version(),
            "platform": platform.platform(),
        }

    def _event(
        self,
        event_type: str,
        *,
        actor: str,
        actor_id: str | None,
        source: str,
        data: dict[str, Any],
        trace_id: str | None,
    ) -> dict[str, Any]:
        if event_type not in VALID_EVENT_TYPES:
            digest = hashlib.sha256(event_type.encode("utf-8")).hexdigest()
            event_type, data = "risk.flagged", {"reason": "invalid_event_type", "invalid_event_type_hash": digest}
        return {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _timestamp(),
            "event_type": event_type,
            "actor": {
                "kind": actor if actor in VALID_ACTOR_KINDS else "system",
                "id": sanitize_actor_id(actor_id),
            },
            "source": source if source in VALID_SOURCES else "client",
            "build": dict(self.build),
            "trace_id": trace_id,
            "data": data,
        }

    def _append(self, *events: dict[str, Any]) -> None:
        lines = "".join(json.dumps(event, sort_keys=True, separators=(",", ":")) + "\n" for event in events)
        with self._lock:
            with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
                handle.write(lines)

    def log_event(
        self,
        event_type: str,
        *,
        actor: str,
        source: str,
        data: dict[str, Any],
        actor_id: str | None = None,
        trace_id: str | None = None,
    ) -> None:
        try:
            cleaned, scrubber = sanitize_event_data(data)
            events = [
                self._event(
                    event_type,
                    actor=actor,
                    actor_id=actor_id,
                    source=source,
                    data=cleaned if isinstance(cleaned, dict) else {"value": cleaned},
                    trace_id=trace_id,
                )
            ]
            if scrubber.changed:
                events.append(
                    self._event(
                        "risk.flagged",
                        actor="system",
                        actor_id=actor_id,
                        source=source,
                        trace_id=trace_id,
                        data={
                            "reason": "telemetry_sanitized",
                            "trigger_event_type": event_type,
                            "fields_redacted_count": scrubber.redacted_fields,
                            "fields_truncated_count": scrubber.truncated_fields,
                        },
                    )
                )
            self._append(*events)
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] could not record {event_type}: {exc}", file=sys.stderr)

    def iter_events(self, event_type: str | None = None) -> list[dict[str, Any]]:
        """Parsed events in file order; unreadable lines are skipped."""

        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        for line in self.events_path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(event, dict) and (event_type is None or event.get("event_type") == event_type):
                events.append(event)
        return events

    def summary(self) -> dict[str, Any]:
        events = self.iter_events()
        by_type = Counter(str(event.get("event_type")) for event in events)
        submissions = [event for event in events if event.get("event_type") == "answer.submitted"]
        outcomes = Counter(str(event.get("data", {}).get("outcome")) for event in submissions)
        solves = Counter(
            str(event.get("actor", {}).get("id"))
            for event in submissions
            if event.get("data", {}).get("outcome") == "solved"
        )
        return {
            "schema_version": SCHEMA_VERSION,
            "events_considered": len(events),
            "events_by_type": dict(sorted(by_type.items())),
            "submission_outcomes": dict(sorted(outcomes.items())),
            "solves_by_team": dict(sorted(solves.items())),
            "write_failures": by_type.get("store.write_failed", 0),
        }
