from __future__ import annotations

"""Pure reducer folding change events into a client's session state."""

from dataclasses import replace
from typing import Any

from .models import DEFAULT_SCREEN, REMOTE_MERGE_FIELDS, GameConfig, SessionState, TeamProfile
from .sync import OP_DELETE, ORIGIN_LOCAL, TABLE_CONFIG, TABLE_TEAMS, ChangeEvent


def merge_remote(profile: TeamProfile, record: dict[str, Any]) -> TeamProfile:
    """Overlay store-owned fields from a pushed team row.

    Only fields present in the record are taken; local-only fields
    (`current_section`, `has_requested_pointing`) always survive.
    """

    incoming = TeamProfile.from_record({**profile.to_record(), **record})
    changes = {name: getattr(incoming, name) for name in REMOTE_MERGE_FIELDS if name in record}
    if "version" in record:
        changes["version"] = incoming.version
    return replace(profile, **changes)


def reduce(state: SessionState, event: ChangeEvent) -> SessionState:
    if event.table == TABLE_CONFIG:
        return replace(state, config=GameConfig.from_record(event.record))
    if event.table != TABLE_TEAMS or state.profile is None:
        return state
    if event.record.get("name") != state.profile.name:
        return state

    if event.operation == OP_DELETE:
        return SessionState(screen=DEFAULT_SCREEN, config=state.config)
    if event.origin == ORIGIN_LOCAL:
        return replace(state, profile=TeamProfile.from_snapshot(event.record))

    remote_version = event.record.get("version")
    if remote_version is not None and int(remote_version) < state.profile.version:
        return state
    return replace(state, profile=merge_remote(state.profile, event.record))
