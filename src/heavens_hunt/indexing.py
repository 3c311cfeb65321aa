from __future__ import annotations

"""Codec between (section, local index) pairs and their stored encodings."""

from typing import NamedTuple


SECTIONS = (1, 2, 3)
SECTION_STRIDE = 100
UNCAPPED_SECTION = 3
MAX_ATTEMPTS = 2


def _check(section: int, local_index: int) -> None:
    if section not in SECTIONS:
        raise ValueError(f"section must be one of {SECTIONS}, got {section!r}")
    if not 0 <= local_index < SECTION_STRIDE:
        raise ValueError(f"local index must be in [0, {SECTION_STRIDE}), got {local_index!r}")


def encode_global_index(section: int, local_index: int) -> int:
    _check(section, local_index)
    return local_index + (section - 1) * SECTION_STRIDE


def decode_global_index(global_index: int) -> tuple[int, int]:
    if global_index < 0:
        raise ValueError(f"global index must be non-negative, got {global_index!r}")
    section = global_index // SECTION_STRIDE + 1
    local_index = global_index % SECTION_STRIDE
    _check(section, local_index)
    return section, local_index


def section_bounds(section: int) -> range:
    """Global index range owned by one section, e.g. section 2 -> [100, 200)."""

    _check(section, 0)
    start = (section - 1) * SECTION_STRIDE
    return range(start, start + SECTION_STRIDE)


def solved_in_section(solved_indices: list[int], section: int) -> list[int]:
    bounds = section_bounds(section)
    return [index for index in solved_indices if index in bounds]


def local_solved(solved_indices: list[int], section: int) -> list[int]:
    return [index % SECTION_STRIDE for index in solved_in_section(solved_indices, section)]


class AttemptKey(NamedTuple):
    """Attempt counter key; serialized as ``"<section>-<local_index>"``."""

    section: int
    local_index: int

    def to_wire(self) -> str:
        return f"{self.section}-{self.local_index}"

    @classmethod
    def from_wire(cls, value: str) -> "AttemptKey":
        raw_section, sep, raw_index = str(value).partition("-")
        if not sep or not raw_section.isdigit() or not raw_index.isdigit():
            raise ValueError(f"attempt key must look like '1-0', got {value!r}")
        key = cls(int(raw_section), int(raw_index))
        _check(key.section, key.local_index)
        return key

    @property
    def capped(self) -> bool:
        return self.section != UNCAPPED_SECTION


def attempts_from_wire(raw: dict[str, int] | None) -> dict[AttemptKey, int]:
    attempts: dict[AttemptKey, int] = {}
    for key, value in (raw or {}).items():
        try:
            parsed = AttemptKey.from_wire(key)
        except ValueError:
            continue
        attempts[parsed] = max(0, int(value))
    return attempts


def attempts_to_wire(attempts: dict[AttemptKey, int]) -> dict[str, int]:
    return {key.to_wire(): int(value) for key, value in attempts.items()}
