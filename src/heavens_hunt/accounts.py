from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Any

from .errors import AuthorizationError, UnknownTeamError, ValidationError
from .models import ROLE_ADMIN, ROLE_USER, TeamProfile
from .store import HuntStore
from .telemetry import TelemetryLogger


ADMIN_NAME = "Admin"
PIN_PATTERN = re.compile(r"^[a-zA-Z0-9]{4,10}$")

FORGOT_WARNING = "The admin won't be responsible if you cannot login later."
FORGOT_ALREADY_ISSUED = "Warning already issued. Contact Admin personally."


def hash_pin(pin: str) -> str:
    return hashlib.sha256(pin.encode()).hexdigest()


def validate_pin(pin: str) -> None:
    if not PIN_PATTERN.match(pin or ""):
        raise ValidationError(
            "PIN must be 4-10 alphanumeric characters.",
            code="PIN_INVALID",
            hint="Use only letters and digits.",
        )


@dataclass(frozen=True)
class ForgotPasswordResult:
    stage: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "message": self.message}


@dataclass
class AccountService:
    store: HuntStore
    telemetry: TelemetryLogger | None = None

    def _log(self, event_type: str, *, actor: str, actor_id: str | None, source: str, data: dict[str, Any]) -> None:
        if self.telemetry is not None:
            self.telemetry.log_event(event_type, actor=actor, actor_id=actor_id, source=source, data=data)

    def register(self, name: str, pin: str, confirm_pin: str, *, source: str = "client") -> TeamProfile:
        """Create a player team. Checks run in the order players see them."""

        if pin != confirm_pin:
            raise ValidationError("Passwords do not match.", code="PIN_MISMATCH")
        validate_pin(pin)
        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("All fields are required.", code="NAME_REQUIRED")
        if trimmed.lower() == ADMIN_NAME.lower():
            raise ValidationError("Team name already claimed.", code="TEAM_NAME_TAKEN", team=trimmed)
        if self.store.get_team(trimmed) is not None:
            raise ValidationError("Team name already claimed.", code="TEAM_NAME_TAKEN", team=trimmed)

        record = self.store.insert_team({"name": trimmed, "password_hash": hash_pin(pin), "role": ROLE_USER})
        self._log("team.registered", actor="player", actor_id=trimmed, source=source, data={"team": trimmed})
        return TeamProfile.from_record(record)

    def login(self, name: str, pin: str, *, source: str = "client") -> TeamProfile:
        trimmed = (name or "").strip()
        record = self.store.find_team(trimmed, password_hash=hash_pin(pin or ""))
        if record is None:
            self._log("auth.denied", actor="player", actor_id=trimmed, source=source, data={"surface": "team"})
            raise AuthorizationError("Access Denied. Check credentials.")
        self._log("team.logged_in", actor="player", actor_id=trimmed, source=source, data={"role": record.get("role")})
        return TeamProfile.from_record(record)

    def admin_login(self, pin: str, *, source: str = "client") -> TeamProfile:
        record = self.store.find_team(ADMIN_NAME, password_hash=hash_pin(pin or ""), role=ROLE_ADMIN)
        if record is None:
            self._log("auth.denied", actor="admin", actor_id=ADMIN_NAME, source=source, data={"surface": "admin"})
            raise AuthorizationError("Access Denied. Invalid Authorization Key.")
        self._log("team.logged_in", actor="admin", actor_id=ADMIN_NAME, source=source, data={"role": ROLE_ADMIN})
        return TeamProfile.from_record(record)

    def bootstrap_admin(self, pin: str) -> TeamProfile:
        """Create the admin row once; an existing admin is returned untouched."""

        validate_pin(pin)
        existing = self.store.get_team(ADMIN_NAME)
        if existing is not None:
            return TeamProfile.from_record(existing)
        record = self.store.insert_team({"name": ADMIN_NAME, "password_hash": hash_pin(pin), "role": ROLE_ADMIN})
        return TeamProfile.from_record(record)

    def forgot_password(self, name: str, *, confirm: bool = False, source: str = "client") -> ForgotPasswordResult:
        """Two-step, one-shot warning.

        Without `confirm` the caller only learns whether the warning is still
        available. Confirming sets `forget_password_clicked` on the team row.
        """

        trimmed = (name or "").strip()
        if not trimmed:
            raise ValidationError("Please enter your team name.", code="NAME_REQUIRED")
        team = self.store.get_team(trimmed)
        if team is None:
            raise UnknownTeamError("Team not found.", team=trimmed)
        if team.get("forget_password_clicked"):
            return ForgotPasswordResult(stage="already-issued", message=FORGOT_ALREADY_ISSUED)
        if not confirm:
            return ForgotPasswordResult(stage="confirm", message="Confirm to flag this team for admin recovery.")
        self.store.update_team(trimmed, {"forget_password_clicked": True})
        self._log("password.reset_requested", actor="player", actor_id=trimmed, source=source, data={"team": trimmed})
        return ForgotPasswordResult(stage="issued", message=FORGOT_WARNING)
