from __future__ import annotations

"""Team, verification, config, and session records with their wire shapes."""

from dataclasses import dataclass, field, replace
from typing import Any

from .indexing import AttemptKey, attempts_from_wire, attempts_to_wire


ROLE_USER = "user"
ROLE_ADMIN = "admin"
VALID_ROLES = {ROLE_USER, ROLE_ADMIN}

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_AUTO_VERIFIED = "auto-verified"
STATUS_REJECTED = "rejected"
VALID_STATUSES = {STATUS_PENDING, STATUS_APPROVED, STATUS_AUTO_VERIFIED, STATUS_REJECTED}

KIND_SUBMISSION = "submission"
KIND_POINTING = "pointing"
KIND_DISCOVERY = "discovery"
VALID_KINDS = {KIND_SUBMISSION, KIND_POINTING, KIND_DISCOVERY}

SCREENS = (
    "LOGIN",
    "REGISTER",
    "MENU",
    "START",
    "PLAYING",
    "SOLVED",
    "PENDING_VERIFICATION",
    "COMPLETED",
    "ADMIN",
)
DEFAULT_SCREEN = "LOGIN"

# Team-row fields a remote push may carry into a cached profile.
REMOTE_MERGE_FIELDS = (
    "points",
    "stars_found",
    "solved_indices",
    "attempts",
    "tablet_discovered",
    "forget_password_clicked",
)


@dataclass(frozen=True)
class TeamProfile:
    name: str
    id: str | None = None
    points: int = 0
    stars_found: int = 0
    role: str = ROLE_USER
    current_section: int | None = None
    solved_indices: tuple[int, ...] = ()
    attempts: dict[AttemptKey, int] = field(default_factory=dict)
    has_requested_pointing: bool = False
    forget_password_clicked: bool = False
    tablet_discovered: bool = False
    version: int = 0

    def attempts_for(self, key: AttemptKey) -> int:
        return self.attempts.get(key, 0)

    def with_changes(self, **changes: Any) -> "TeamProfile":
        if "role" in changes and changes["role"] != self.role:
            raise ValueError("role is immutable after creation")
        return replace(self, **changes)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "TeamProfile":
        """Build a profile from a `teams` row."""

        role = record.get("role", ROLE_USER)
        return cls(
            id=record.get("id"),
            name=str(record.get("name", "")),
            points=int(record.get("points") or 0),
            stars_found=int(record.get("stars_found") or 0),
            role=role if role in VALID_ROLES else ROLE_USER,
            solved_indices=tuple(int(i) for i in record.get("solved_indices") or []),
            attempts=attempts_from_wire(record.get("attempts")),
            forget_password_clicked=bool(record.get("forget_password_clicked", False)),
            tablet_discovered=bool(record.get("tablet_discovered", False)),
            version=int(record.get("version") or 0),
        )

    def to_record(self) -> dict[str, Any]:
        """Store-facing fields only; local-only flags are not persisted remotely."""

        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "points": self.points,
            "stars_found": self.stars_found,
            "solved_indices": list(self.solved_indices),
            "attempts": attempts_to_wire(self.attempts),
            "forget_password_clicked": self.forget_password_clicked,
            "tablet_discovered": self.tablet_discovered,
            "version": self.version,
        }

    def progress_fields(self) -> dict[str, Any]:
        """Fields written back after a local submission."""

        return {
            "attempts": attempts_to_wire(self.attempts),
            "points": self.points,
            "stars_found": self.stars_found,
            "solved_indices": list(self.solved_indices),
            "tablet_discovered": self.tablet_discovered,
        }

    def to_snapshot(self) -> dict[str, Any]:
        """Full local snapshot, including flags the store never sees."""

        payload = self.to_record()
        payload["current_section"] = self.current_section
        payload["has_requested_pointing"] = self.has_requested_pointing
        return payload

    @classmethod
    def from_snapshot(cls, payload: dict[str, Any]) -> "TeamProfile":
        profile = cls.from_record(payload)
        section = payload.get("current_section")
        return replace(
            profile,
            current_section=int(section) if section is not None else None,
            has_requested_pointing=bool(payload.get("has_requested_pointing", False)),
        )


@dataclass(frozen=True)
class VerificationRequest:
    team_name: str
    star_name: str
    timestamp: str
    status: str
    type: str
    id: str | None = None
    submitted_answer: str | None = None
    section: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != STATUS_PENDING

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "VerificationRequest":
        section = record.get("section")
        return cls(
            id=record.get("id"),
            team_name=str(record.get("team_name", "")),
            star_name=str(record.get("star_name", "")),
            submitted_answer=record.get("submitted_answer"),
            timestamp=str(record.get("timestamp", "")),
            status=str(record.get("status", STATUS_PENDING)),
            type=str(record.get("type", KIND_SUBMISSION)),
            section=int(section) if section is not None else None,
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "team_name": self.team_name,
            "star_name": self.star_name,
            "submitted_answer": self.submitted_answer,
            "timestamp": self.timestamp,
            "status": self.status,
            "type": self.type,
            "section": self.section,
        }


@dataclass(frozen=True)
class GameConfig:
    sections_1_2_unlocked: bool = False
    section_3_unlocked: bool = False

    @classmethod
    def from_record(cls, record: dict[str, Any] | None) -> "GameConfig":
        record = record or {}
        return cls(
            sections_1_2_unlocked=bool(record.get("sections_1_2_unlocked", False)),
            section_3_unlocked=bool(record.get("section_3_unlocked", False)),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": 1,
            "sections_1_2_unlocked": self.sections_1_2_unlocked,
            "section_3_unlocked": self.section_3_unlocked,
        }


@dataclass(frozen=True)
class SessionState:
    """Everything a client needs to resume after a restart."""

    profile: TeamProfile | None = None
    screen: str = DEFAULT_SCREEN
    config: GameConfig = field(default_factory=GameConfig)

    @property
    def logged_in(self) -> bool:
        return self.profile is not None

    def with_changes(self, **changes: Any) -> "SessionState":
        screen = changes.get("screen")
        if screen is not None and screen not in SCREENS:
            raise ValueError(f"Unknown screen: {screen}")
        return replace(self, **changes)
