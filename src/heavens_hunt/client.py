from __future__ import annotations

"""Player session: optimistic local progress, durable write-through, live sync."""

from dataclasses import dataclass, field
from typing import Any

from .accounts import AccountService, ForgotPasswordResult
from .admin import VerificationQueue
from .catalog import RiddleCatalog
from .engine import (
    EFFECT_COMPLETED,
    EFFECT_POINTING,
    EFFECT_TABLET,
    OUTCOME_ALREADY_SOLVED,
    OUTCOME_LOCKED,
    OUTCOME_SOLVED,
    ProgressEngine,
    SubmissionResult,
)
from .errors import AuthorizationError, HuntError, SectionLockedError, StoreWriteError, UnknownTeamError, ValidationError
from .gate import GATE_NOT_YET_AVAILABLE, GATE_OPEN, check_section, riddle_open, section_overview
from .indexing import AttemptKey, MAX_ATTEMPTS, encode_global_index
from .models import KIND_POINTING, ROLE_ADMIN, GameConfig, SessionState, TeamProfile, VerificationRequest
from .profile_store import ProfileStore
from .reconcile import reduce
from .store import HuntStore
from .sync import CONFIG_TOPIC, OP_UPDATE, ORIGIN_LOCAL, ORIGIN_REMOTE, TABLE_CONFIG, TABLE_TEAMS, ChangeEvent, Subscription, team_topic
from .telemetry import TelemetryLogger


DEFAULT_NOTICE_TTL = 3.0
PASSWORD_NOTICE_TTL = 5.0

MSG_SECTION_SEALED = "This path remains veiled."
MSG_SECTION_UNAVAILABLE = "Horizon Connection Pending."
MSG_RIDDLE_SEALED = "Solve the earlier riddles of this section first."
MSG_LOCKED = "No attempts remain for this riddle."
MSG_SYNC_FAILED = "Progress saved locally; the archive could not be reached."


@dataclass(frozen=True)
class Notice:
    kind: str
    message: str
    ttl_seconds: float = DEFAULT_NOTICE_TTL

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "ttl_seconds": self.ttl_seconds}


def riddle_board(catalog: RiddleCatalog, section: int, profile: TeamProfile | None = None) -> list[dict[str, Any]]:
    """Prompts for one section, with the team's per-riddle standing when a profile is given."""

    rows: list[dict[str, Any]] = []
    for riddle in catalog.riddles(section):
        row = riddle.public_view()
        if profile is not None:
            key = AttemptKey(section, riddle.local_index)
            used = profile.attempts_for(key)
            row.update(
                {
                    "solved": encode_global_index(section, riddle.local_index) in profile.solved_indices,
                    "attempts_used": used,
                    "attempts_left": max(0, MAX_ATTEMPTS - used) if key.capped else None,
                    "open": riddle_open(section, riddle.local_index, profile),
                }
            )
        rows.append(row)
    return rows


@dataclass
class HuntClient:
    store: HuntStore
    catalog: RiddleCatalog
    profile_store: ProfileStore
    telemetry: TelemetryLogger | None = None
    source: str = "client"
    notices: list[Notice] = field(default_factory=list)
    _subscriptions: list[Subscription] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.engine = ProgressEngine(self.catalog)
        self.queue = VerificationQueue(self.store)
        self.accounts = AccountService(self.store, self.telemetry)

    @property
    def state(self) -> SessionState:
        return self.profile_store.state

    @property
    def profile(self) -> TeamProfile:
        profile = self.state.profile
        if profile is None:
            raise AuthorizationError("Log in first.", code="NOT_LOGGED_IN")
        return profile

    def _log(self, event_type: str, data: dict[str, Any]) -> None:
        if self.telemetry is None:
            return
        profile = self.state.profile
        self.telemetry.log_event(
            event_type,
            actor="admin" if profile is not None and profile.role == ROLE_ADMIN else "player",
            actor_id=profile.name if profile is not None else None,
            source=self.source,
            data=data,
        )

    def notify(self, kind: str, message: str, ttl_seconds: float = DEFAULT_NOTICE_TTL) -> Notice:
        notice = Notice(kind=kind, message=message, ttl_seconds=ttl_seconds)
        self.notices.append(notice)
        return notice

    def drain_notices(self) -> list[Notice]:
        drained, self.notices = self.notices, []
        return drained

    # sync

    def _apply(self, event: ChangeEvent) -> SessionState:
        return self.profile_store.save(reduce(self.state, event))

    def _on_event(self, event: ChangeEvent) -> None:
        self._apply(event)
        self._log("sync.received", {"topic": event.topic, "table": event.table, "seq": event.seq})

    def _subscribe(self) -> None:
        self._unsubscribe()
        channel = self.store.channel
        self._subscriptions.append(channel.subscribe(team_topic(self.profile.name), self._on_event))
        self._subscriptions.append(channel.subscribe(CONFIG_TOPIC, self._on_event))

    def _unsubscribe(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

    def resync(self) -> SessionState:
        """Pull the current team row and config as if they had just been pushed."""

        profile = self.profile
        record = self.store.get_team(profile.name)
        if record is None:
            self.logout()
            raise UnknownTeamError(f"Team not found: {profile.name}", team=profile.name)
        self._apply(
            ChangeEvent(topic=CONFIG_TOPIC, table=TABLE_CONFIG, operation=OP_UPDATE, record=self.store.get_config())
        )
        return self._apply(
            ChangeEvent(
                topic=team_topic(profile.name),
                table=TABLE_TEAMS,
                operation=OP_UPDATE,
                record=record,
                origin=ORIGIN_REMOTE,
            )
        )

    # accounts

    def register(self, name: str, pin: str, confirm_pin: str) -> TeamProfile:
        try:
            profile = self.accounts.register(name, pin, confirm_pin, source=self.source)
        except ValidationError as exc:
            self.notify("error", exc.message)
            raise
        self.notify("success", "Profile Established. Log In to proceed.")
        return profile

    def login(self, name: str, pin: str) -> SessionState:
        try:
            profile = self.accounts.login(name, pin, source=self.source)
        except AuthorizationError as exc:
            self.notify("error", exc.message)
            raise
        return self._start_session(profile, screen="ADMIN" if profile.role == ROLE_ADMIN else "MENU")

    def admin_login(self, pin: str) -> SessionState:
        try:
            profile = self.accounts.admin_login(pin, source=self.source)
        except AuthorizationError as exc:
            self.notify("error", exc.message)
            raise
        return self._start_session(profile, screen="ADMIN")

    def _start_session(self, profile: TeamProfile, *, screen: str) -> SessionState:
        config = GameConfig.from_record(self.store.get_config())
        # The flag is local-only; a fresh login recovers it from the review log.
        if any(entry.type == KIND_POINTING for entry in self.queue.for_team(profile.name)):
            profile = profile.with_changes(has_requested_pointing=True)
        self.profile_store.save(SessionState(profile=profile, screen=screen, config=config))
        self._subscribe()
        return self.state

    def resume(self) -> SessionState | None:
        """Reattach a persisted session; returns None when there is none."""

        if not self.state.logged_in:
            return None
        self._subscribe()
        state = self.resync()
        self._log("session.restored", {"screen": state.screen})
        return state

    def close(self) -> None:
        """Stop listening; the stored session is kept."""

        self._unsubscribe()

    def logout(self) -> None:
        self._unsubscribe()
        self.profile_store.clear()

    def forgot_password(self, name: str, *, confirm: bool = False) -> ForgotPasswordResult:
        try:
            result = self.accounts.forgot_password(name, confirm=confirm, source=self.source)
        except HuntError as exc:
            self.notify("error", exc.message)
            raise
        if result.stage != "confirm":
            self.notify("error", result.message, PASSWORD_NOTICE_TTL)
        return result

    # play

    def sections(self) -> list[dict[str, object]]:
        return section_overview(self.profile, self.state.config, self.catalog)

    def select_section(self, section: int) -> SessionState:
        decision = check_section(section, self.profile, self.state.config, self.catalog)
        if decision != GATE_OPEN:
            message = MSG_SECTION_UNAVAILABLE if decision == GATE_NOT_YET_AVAILABLE else MSG_SECTION_SEALED
            self.notify("error", message)
            raise SectionLockedError(message, section=section, gate=decision)
        self._log("section.selected", {"section": section})
        return self.profile_store.update(profile=self.profile.with_changes(current_section=section), screen="START")

    def riddle_board(self, section: int) -> list[dict[str, Any]]:
        return riddle_board(self.catalog, section, self.profile)

    def submit_answer(self, section: int, local_index: int, submitted_text: str) -> SubmissionResult:
        profile = self.profile
        if check_section(section, profile, self.state.config, self.catalog) != GATE_OPEN:
            self.notify("error", MSG_SECTION_SEALED)
            raise SectionLockedError(MSG_SECTION_SEALED, section=section)
        try:
            riddle = self.catalog.get_riddle(section, local_index)
        except KeyError as exc:
            raise ValidationError(
                f"No riddle {local_index} in section {section}.",
                code="RIDDLE_NOT_FOUND",
                section=section,
                local_index=local_index,
            ) from exc
        if not riddle_open(section, local_index, profile):
            self.notify("error", MSG_RIDDLE_SEALED)
            raise SectionLockedError(MSG_RIDDLE_SEALED, section=section, local_index=local_index)

        result = self.engine.submit_answer(profile, section, local_index, riddle, submitted_text)
        self._log(
            "answer.submitted",
            {"section": section, "local_index": local_index, "outcome": result.outcome},
        )
        if result.outcome == OUTCOME_LOCKED:
            self.notify("error", MSG_LOCKED)
            return result
        if result.outcome == OUTCOME_ALREADY_SOLVED:
            return result

        if EFFECT_COMPLETED in result.effects:
            screen = "COMPLETED"
        elif result.outcome == OUTCOME_SOLVED:
            screen = "SOLVED"
        else:
            screen = "PLAYING"
        self._apply(
            ChangeEvent(
                topic=team_topic(profile.name),
                table=TABLE_TEAMS,
                operation=OP_UPDATE,
                record=result.next_profile.to_snapshot(),
                origin=ORIGIN_LOCAL,
            )
        )
        self.profile_store.update(screen=screen)

        self._write_through(lambda: self.store.update_team(profile.name, result.next_profile.progress_fields()), "teams")
        if result.verification_entry is not None:
            entry = result.verification_entry
            self._write_through(lambda: self.queue.append(entry), "verification_requests")

        if EFFECT_TABLET in result.effects:
            self.notify("success", "The tablet has been discovered.")
        if EFFECT_POINTING in result.effects:
            self.notify("success", "Telescope pointing unlocked.")
        return result

    def _write_through(self, write: Any, table: str) -> Any:
        """Issue a durable write; failures are logged and never roll back."""

        try:
            return write()
        except (StoreWriteError, UnknownTeamError) as exc:
            self._log("store.write_failed", {"table": table, "code": exc.code, "error": exc.message})
            self.notify("error", MSG_SYNC_FAILED)
            return None

    def pointing_candidates(self) -> list[dict[str, str]]:
        return [
            {"id": subject_id, "name": self.catalog.star_name(subject_id)}
            for subject_id in self.engine.pointing_candidates(self.profile)
        ]

    def request_pointing(self, subject_id: str) -> VerificationRequest:
        try:
            next_profile, entry = self.engine.request_pointing(self.profile, subject_id)
        except ValidationError as exc:
            self.notify("error", exc.message)
            raise
        self.profile_store.update(profile=next_profile, screen="PENDING_VERIFICATION")
        self._log("pointing.requested", {"subject": subject_id})
        stored = self._write_through(lambda: self.queue.append(entry), "verification_requests")
        return stored or entry

    def status(self) -> dict[str, Any]:
        profile = self.profile
        return {
            "team": profile.name,
            "role": profile.role,
            "points": profile.points,
            "stars_found": profile.stars_found,
            "solved_indices": list(profile.solved_indices),
            "tablet_discovered": profile.tablet_discovered,
            "has_requested_pointing": profile.has_requested_pointing,
            "pointing_eligible": self.engine.pointing_eligible(profile),
            "screen": self.state.screen,
            "current_section": profile.current_section,
            "version": profile.version,
        }
