from __future__ import annotations

"""Wires the catalog, durable store, push channel, and telemetry from one home directory."""

import hashlib
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .accounts import AccountService
from .admin import AdminConsole, AdminReconciler, VerificationQueue, leaderboard_rows
from .catalog import RiddleCatalog
from .client import HuntClient
from .models import GameConfig, TeamProfile
from .paths import catalog_path, ensure_home_dirs, hunt_home
from .profile_store import ProfileStore
from .store import JsonFileStore
from .sync import ChangeEvent, SyncChannel
from .telemetry import TelemetryLogger


@dataclass
class HuntService:
    home: Path
    dirs: dict[str, Path]
    catalog: RiddleCatalog
    store: JsonFileStore
    telemetry: TelemetryLogger
    use_version_check: bool = False
    _accounts: AccountService | None = field(default=None, repr=False)

    @classmethod
    def create(cls, home: Path | None = None, *, use_version_check: bool | None = None) -> "HuntService":
        """Build a service rooted at `home` (default: HTH_HOME) and log startup."""

        home = home or hunt_home()
        dirs = ensure_home_dirs(home)
        telemetry = TelemetryLogger(events_path=dirs["telemetry"] / "events.jsonl")

        def _handler_failed(event: ChangeEvent, exc: Exception) -> None:
            telemetry.log_event(
                "risk.flagged",
                actor="system",
                actor_id="system:sync",
                source="client",
                data={"reason": "sync_handler_failed", "topic": event.topic, "error": str(exc)},
            )

        channel = SyncChannel(on_error=_handler_failed)
        catalog = RiddleCatalog.load(catalog_path())
        store = JsonFileStore(dirs["store"], channel=channel)
        if use_version_check is None:
            use_version_check = os.environ.get("HTH_VERSION_CHECK", "").strip().lower() in {"1", "true", "yes"}
        service = cls(
            home=home,
            dirs=dirs,
            catalog=catalog,
            store=store,
            telemetry=telemetry,
            use_version_check=use_version_check,
        )
        telemetry.log_event(
            "service.started",
            actor="system",
            actor_id="system:service",
            source="cli",
            data={
                "home_path_hash": hashlib.sha256(str(home).encode("utf-8")).hexdigest(),
                "catalog_id": catalog.catalog_id,
            },
        )
        return service

    @property
    def channel(self) -> SyncChannel:
        return self.store.channel

    @property
    def accounts(self) -> AccountService:
        if self._accounts is None:
            self._accounts = AccountService(self.store, self.telemetry)
        return self._accounts

    def client(self, *, source: str = "cli", session_root: Path | None = None, persist: bool = True) -> HuntClient:
        profile_store = ProfileStore(session_root or self.dirs["session"]) if persist else ProfileStore()
        return HuntClient(
            store=self.store,
            catalog=self.catalog,
            profile_store=profile_store,
            telemetry=self.telemetry,
            source=source,
        )

    def team_client(self, team: str, pin: str, *, source: str = "api") -> HuntClient:
        """A freshly logged-in client whose session is never written to disk."""

        client = self.client(source=source, persist=False)
        client.login(team, pin)
        return client

    def reconciler(self) -> AdminReconciler:
        return AdminReconciler(
            store=self.store,
            catalog=self.catalog,
            telemetry=self.telemetry,
            use_version_check=self.use_version_check,
        )

    def queue(self) -> VerificationQueue:
        return VerificationQueue(self.store)

    def admin_console(self) -> AdminConsole:
        return AdminConsole(store=self.store, reconciler=self.reconciler(), queue=self.queue()).open()

    def verify_admin(self, pin: str, *, source: str = "api") -> TeamProfile:
        return self.accounts.admin_login(pin, source=source)

    def config(self) -> GameConfig:
        return GameConfig.from_record(self.store.get_config())

    def leaderboard(self) -> list[dict[str, Any]]:
        return leaderboard_rows(self.store.list_teams())
