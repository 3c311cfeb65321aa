from __future__ import annotations

from typing import Iterable


def normalize_answer(value: str) -> str:
    return value.strip().lower()


def is_correct(submitted: str, accepted_answers: Iterable[str]) -> bool:
    """Exact match after trimming and lowercasing both sides."""

    candidate = normalize_answer(submitted)
    return any(candidate == normalize_answer(answer) for answer in accepted_answers)
