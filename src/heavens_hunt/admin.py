from __future__ import annotations

"""Verification review log, admin decisions, and the live admin console."""

from dataclasses import dataclass, field
from typing import Any

from .catalog import RiddleCatalog
from .engine import POINTING_POINTS, SECTION_POINTS
from .errors import ConcurrencyConflict, UnknownRequestError, ValidationError
from .models import (
    KIND_POINTING,
    KIND_SUBMISSION,
    ROLE_ADMIN,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    GameConfig,
    VerificationRequest,
)
from .store import HuntStore
from .sync import ADMIN_REQUESTS_TOPIC, ADMIN_TEAMS_TOPIC, CONFIG_TOPIC, ChangeEvent, Subscription
from .telemetry import TelemetryLogger


DECISIONS = {"approve": STATUS_APPROVED, "reject": STATUS_REJECTED}
SECTION_TOGGLES = {"1_2": "sections_1_2_unlocked", "3": "section_3_unlocked"}


@dataclass
class VerificationQueue:
    store: HuntStore

    def append(self, entry: VerificationRequest) -> VerificationRequest:
        return VerificationRequest.from_record(self.store.insert_request(entry.to_record()))

    def get(self, request_id: str) -> VerificationRequest:
        record = self.store.get_request(request_id)
        if record is None:
            raise UnknownRequestError(f"Verification request not found: {request_id}", request_id=request_id)
        return VerificationRequest.from_record(record)

    def all(self) -> list[VerificationRequest]:
        return [VerificationRequest.from_record(row) for row in self.store.list_requests()]

    def pending(self) -> list[VerificationRequest]:
        return [VerificationRequest.from_record(row) for row in self.store.list_requests(status=STATUS_PENDING)]

    def processed(self) -> list[VerificationRequest]:
        return [item for item in self.all() if item.is_terminal]

    def for_team(self, team_name: str) -> list[VerificationRequest]:
        return [VerificationRequest.from_record(row) for row in self.store.list_requests(team_name=team_name)]

    def stats(self) -> dict[str, int]:
        requests = self.all()
        return {
            "pending": sum(1 for item in requests if item.status == STATUS_PENDING),
            "approved": sum(1 for item in requests if item.status == STATUS_APPROVED),
            "teams": len(self.store.list_teams()),
        }


def compute_award(request: VerificationRequest, team: dict[str, Any], catalog: RiddleCatalog) -> dict[str, Any] | None:
    """Team fields to write for an approved request, or None when nothing is owed.

    Section 1 approvals dedupe on the riddle index; later sections do not,
    since they normally never reach review.
    """

    points = int(team.get("points") or 0)
    stars = int(team.get("stars_found") or 0)
    solved = [int(i) for i in team.get("solved_indices") or []]

    if request.type == KIND_POINTING:
        return {"points": points + POINTING_POINTS}
    if request.type != KIND_SUBMISSION:
        return None
    if request.section in (None, 1):
        riddle = catalog.find_by_target(1, request.star_name)
        if riddle is None or riddle.local_index in solved:
            return None
        solved.append(riddle.local_index)
        return {
            "points": points + SECTION_POINTS[1],
            "stars_found": stars + 1,
            "solved_indices": solved,
        }
    return {
        "points": points + SECTION_POINTS.get(request.section, SECTION_POINTS[1]),
        "stars_found": stars + 1,
    }


@dataclass(frozen=True)
class DecisionResult:
    request: VerificationRequest
    applied: bool
    team: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request": self.request.to_record(),
            "applied": self.applied,
            "team": self.team,
        }


@dataclass
class AdminReconciler:
    """Applies approve/reject decisions.

    The terminal status is written first, then the team row is re-fetched and
    the award written back. With `use_version_check` the write-back is
    conditional on the version seen at re-fetch and retried on conflict; when
    the retries run out the request goes back to pending.
    """

    store: HuntStore
    catalog: RiddleCatalog
    telemetry: TelemetryLogger | None = None
    use_version_check: bool = False
    max_retries: int = 3

    def decide(
        self,
        request_id: str,
        decision: str,
        *,
        actor_id: str | None = None,
        source: str = "client",
    ) -> DecisionResult:
        status = DECISIONS.get(decision)
        if status is None:
            raise ValidationError(f"Unknown decision: {decision}", code="DECISION_INVALID", hint="Use approve or reject.")
        record = self.store.get_request(request_id)
        if record is None:
            raise UnknownRequestError(f"Verification request not found: {request_id}", request_id=request_id)
        request = VerificationRequest.from_record(record)
        if request.is_terminal:
            return DecisionResult(request=request, applied=False)

        decided = VerificationRequest.from_record(self.store.update_request_status(request_id, status))
        try:
            team = self._award(decided) if status == STATUS_APPROVED else None
        except ConcurrencyConflict:
            # The award never landed; reopen so a later decision can apply it.
            self.store.reopen_request(request_id)
            if self.telemetry is not None:
                self.telemetry.log_event(
                    "risk.flagged",
                    actor="admin",
                    actor_id=actor_id,
                    source=source,
                    data={"reason": "award_conflict", "request_id": request_id, "team": decided.team_name},
                )
            raise
        if self.telemetry is not None:
            self.telemetry.log_event(
                "verification.decided",
                actor="admin",
                actor_id=actor_id,
                source=source,
                data={
                    "request_id": request_id,
                    "decision": decision,
                    "type": decided.type,
                    "section": decided.section,
                    "team": decided.team_name,
                    "awarded": team is not None,
                },
            )
        return DecisionResult(request=decided, applied=True, team=team)

    def _award(self, request: VerificationRequest) -> dict[str, Any] | None:
        attempt = 0
        while True:
            team = self.store.get_team(request.team_name)
            if team is None:
                return None
            fields = compute_award(request, team, self.catalog)
            if fields is None:
                return None
            expected = int(team.get("version") or 0) if self.use_version_check else None
            try:
                return self.store.update_team(request.team_name, fields, expected_version=expected)
            except ConcurrencyConflict:
                attempt += 1
                if attempt > self.max_retries:
                    raise


def total_attempts(team: dict[str, Any]) -> int:
    return sum(int(value) for value in (team.get("attempts") or {}).values())


@dataclass
class AdminConsole:
    """Live admin view kept current by the admin topics."""

    store: HuntStore
    reconciler: AdminReconciler
    queue: VerificationQueue
    requests: list[VerificationRequest] = field(default_factory=list)
    teams: list[dict[str, Any]] = field(default_factory=list)
    config: GameConfig = field(default_factory=GameConfig)
    _subscriptions: list[Subscription] = field(default_factory=list)

    def open(self) -> "AdminConsole":
        channel = self.store.channel
        for topic in (ADMIN_REQUESTS_TOPIC, ADMIN_TEAMS_TOPIC, CONFIG_TOPIC):
            self._subscriptions.append(channel.subscribe(topic, self._on_event))
        self.refresh()
        return self

    def close(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

    def _on_event(self, event: ChangeEvent) -> None:
        self.refresh()

    def refresh(self) -> None:
        self.requests = self.queue.all()
        self.teams = self.store.list_teams()
        self.config = GameConfig.from_record(self.store.get_config())

    def pending(self) -> list[VerificationRequest]:
        return [item for item in self.requests if item.status == STATUS_PENDING]

    def processed(self) -> list[VerificationRequest]:
        return [item for item in self.requests if item.is_terminal]

    def stats(self) -> dict[str, int]:
        return {
            "pending": len(self.pending()),
            "approved": sum(1 for item in self.requests if item.status == STATUS_APPROVED),
            "teams": sum(1 for team in self.teams if team.get("role") != ROLE_ADMIN),
        }

    def decide(self, request_id: str, decision: str, *, source: str = "client") -> DecisionResult:
        return self.reconciler.decide(request_id, decision, actor_id="Admin", source=source)

    def toggle_section(self, toggle: str, value: bool | None = None) -> GameConfig:
        field_name = SECTION_TOGGLES.get(str(toggle))
        if field_name is None:
            raise ValidationError(f"Unknown section toggle: {toggle}", code="TOGGLE_INVALID", hint="Use 1_2 or 3.")
        current = GameConfig.from_record(self.store.get_config())
        new_value = (not getattr(current, field_name)) if value is None else bool(value)
        config = GameConfig.from_record(self.store.update_config({field_name: new_value}))
        if self.reconciler.telemetry is not None:
            self.reconciler.telemetry.log_event(
                "config.updated",
                actor="admin",
                actor_id="Admin",
                source="client",
                data={field_name: new_value},
            )
        return config

    def leaderboard(self) -> list[dict[str, Any]]:
        return leaderboard_rows(self.teams)


def leaderboard_rows(teams: list[dict[str, Any]]) -> list[dict[str, Any]]:
    players = [team for team in teams if team.get("role") != ROLE_ADMIN]
    players.sort(key=lambda team: (-int(team.get("points") or 0), str(team.get("name", ""))))
    return [
        {
            "rank": rank,
            "name": team.get("name"),
            "points": int(team.get("points") or 0),
            "stars_found": int(team.get("stars_found") or 0),
            "total_attempts": total_attempts(team),
            "forget_password_clicked": bool(team.get("forget_password_clicked", False)),
        }
        for rank, team in enumerate(players, start=1)
    ]
