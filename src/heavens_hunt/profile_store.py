from __future__ import annotations

"""Local session snapshot kept under two keys so a client can resume after restart."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import DEFAULT_SCREEN, SCREENS, GameConfig, SessionState, TeamProfile
from .store import _load_json, _save_json


PROFILE_KEY = "hth_profile"
GAME_STATE_KEY = "hth_game_state"


@dataclass
class ProfileStore:
    """Loads once on construction; every mutation is saved straight away.

    With no `root` the session lives only in memory, one per API request.
    """

    root: Path | None = None
    state: SessionState = field(init=False)

    def __post_init__(self) -> None:
        if self.root is not None:
            self.root.mkdir(parents=True, exist_ok=True)
        self.state = self.load()

    def key_path(self, key: str) -> Path:
        if self.root is None:
            raise ValueError("in-memory profile store has no key files")
        return self.root / f"{key}.json"

    def load(self) -> SessionState:
        if self.root is None:
            return SessionState()
        profile_path = self.key_path(PROFILE_KEY)
        game_path = self.key_path(GAME_STATE_KEY)
        if not profile_path.exists() or not game_path.exists():
            return SessionState()

        try:
            raw_profile = _load_json(profile_path, None)
            if not isinstance(raw_profile, dict) or not raw_profile.get("name"):
                raise ValueError("profile snapshot is not a team record")
            profile = TeamProfile.from_snapshot(raw_profile)
        except (json.JSONDecodeError, TypeError, ValueError):
            profile_path.unlink(missing_ok=True)
            return SessionState()

        try:
            raw_game: Any = _load_json(game_path, {})
        except json.JSONDecodeError:
            raw_game = {}
        if not isinstance(raw_game, dict):
            raw_game = {}
        screen = raw_game.get("screen")
        return SessionState(
            profile=profile,
            screen=screen if screen in SCREENS else DEFAULT_SCREEN,
            config=GameConfig.from_record(raw_game.get("config")),
        )

    def save(self, state: SessionState | None = None) -> SessionState:
        if state is not None:
            self.state = state
        if self.state.profile is None:
            self.clear()
            return self.state
        if self.root is None:
            return self.state
        _save_json(self.key_path(PROFILE_KEY), self.state.profile.to_snapshot())
        _save_json(
            self.key_path(GAME_STATE_KEY),
            {"screen": self.state.screen, "config": self.state.config.to_record()},
        )
        return self.state

    def update(self, **changes: Any) -> SessionState:
        return self.save(self.state.with_changes(**changes))

    def clear(self) -> None:
        if self.root is not None:
            self.key_path(PROFILE_KEY).unlink(missing_ok=True)
            self.key_path(GAME_STATE_KEY).unlink(missing_ok=True)
        self.state = SessionState()
