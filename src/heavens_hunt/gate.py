from __future__ import annotations

from .catalog import RiddleCatalog
from .indexing import SECTIONS, encode_global_index, solved_in_section
from .models import GameConfig, TeamProfile


GATE_OPEN = "open"
GATE_SEALED = "sealed"
GATE_NOT_YET_AVAILABLE = "not-yet-available"


def naturally_unlocked(profile: TeamProfile, catalog: RiddleCatalog) -> bool:
    solved = list(profile.solved_indices)
    return len(solved_in_section(solved, 1)) >= catalog.riddle_count(1) and len(
        solved_in_section(solved, 2)
    ) >= catalog.riddle_count(2)


def check_section(section: int, profile: TeamProfile, config: GameConfig, catalog: RiddleCatalog) -> str:
    """Return `open`, `sealed`, or `not-yet-available` for one section.

    Recomputed from the profile and config on every call; callers must not
    cache the answer across config pushes or new solves.
    """

    if section not in SECTIONS:
        return GATE_NOT_YET_AVAILABLE
    if section <= 2:
        return GATE_OPEN
    if config.section_3_unlocked or naturally_unlocked(profile, catalog):
        return GATE_OPEN
    return GATE_SEALED


def is_unlocked(section: int, profile: TeamProfile, config: GameConfig, catalog: RiddleCatalog) -> bool:
    return check_section(section, profile, config, catalog) == GATE_OPEN


def riddle_open(section: int, local_index: int, profile: TeamProfile) -> bool:
    """Section 3 riddles open one at a time, in order."""

    if section != 3:
        return True
    return all(encode_global_index(3, idx) in profile.solved_indices for idx in range(local_index))


def section_overview(profile: TeamProfile, config: GameConfig, catalog: RiddleCatalog) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for section in SECTIONS:
        rows.append(
            {
                "section": section,
                "title": catalog.section_titles.get(section, f"Section {section}"),
                "gate": check_section(section, profile, config, catalog),
                "solved": len(solved_in_section(list(profile.solved_indices), section)),
                "riddle_count": catalog.riddle_count(section),
            }
        )
    return rows
