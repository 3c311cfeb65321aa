from __future__ import annotations

"""Submit-answer and pointing transactions over an immutable team profile."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from .answers import is_correct
from .catalog import Riddle, RiddleCatalog
from .errors import ValidationError
from .indexing import MAX_ATTEMPTS, UNCAPPED_SECTION, AttemptKey, encode_global_index, local_solved
from .models import (
    KIND_POINTING,
    KIND_SUBMISSION,
    STATUS_AUTO_VERIFIED,
    STATUS_PENDING,
    STATUS_REJECTED,
    TeamProfile,
    VerificationRequest,
)


OUTCOME_LOCKED = "locked"
OUTCOME_ALREADY_SOLVED = "already-solved"
OUTCOME_SOLVED = "solved"
OUTCOME_INCORRECT = "incorrect"

SECTION_POINTS = {1: 100, 2: 150, 3: 200}
POINTING_POINTS = 200
POINTING_MIN_SECTION_1_SOLVES = 3
TABLET_RIDDLE = (3, 2)

EFFECT_TABLET = "tablet_discovered"
EFFECT_COMPLETED = "hunt_completed"
EFFECT_POINTING = "pointing_unlocked"


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(frozen=True)
class SubmissionResult:
    outcome: str
    next_profile: TeamProfile
    verification_entry: VerificationRequest | None = None
    effects: frozenset[str] = field(default_factory=frozenset)

    @property
    def changed(self) -> bool:
        return self.outcome in {OUTCOME_SOLVED, OUTCOME_INCORRECT}


def submission_status(riddle: Riddle, correct: bool) -> str:
    if not riddle.auto_verified:
        return STATUS_PENDING
    return STATUS_AUTO_VERIFIED if correct else STATUS_REJECTED


@dataclass
class ProgressEngine:
    """Pure transaction logic; persistence is the caller's job."""

    catalog: RiddleCatalog

    def submit_answer(
        self,
        profile: TeamProfile,
        section: int,
        local_index: int,
        riddle: Riddle | None,
        submitted_text: str,
        *,
        timestamp: str | None = None,
    ) -> SubmissionResult:
        key = AttemptKey(section, local_index)
        global_index = encode_global_index(section, local_index)
        if section != UNCAPPED_SECTION and profile.attempts_for(key) >= MAX_ATTEMPTS:
            return SubmissionResult(outcome=OUTCOME_LOCKED, next_profile=profile)
        if global_index in profile.solved_indices:
            return SubmissionResult(outcome=OUTCOME_ALREADY_SOLVED, next_profile=profile)

        riddle = riddle or self.catalog.get_riddle(section, local_index)
        correct = is_correct(submitted_text, riddle.accepted_answers)

        attempts = profile.attempts
        if key.capped:
            attempts = dict(profile.attempts)
            attempts[key] = profile.attempts_for(key) + 1

        solved = list(profile.solved_indices)
        points = profile.points
        stars = profile.stars_found
        new_solve = correct and global_index not in solved
        if new_solve:
            solved.append(global_index)
            points += SECTION_POINTS[section]
            stars += 1

        effects: set[str] = set()
        tablet = profile.tablet_discovered
        if new_solve and (section, local_index) == TABLET_RIDDLE:
            tablet = True
            effects.add(EFFECT_TABLET)
        if new_solve and section == 3 and local_index == self.catalog.riddle_count(3) - 1:
            effects.add(EFFECT_COMPLETED)
        if (
            new_solve
            and section == 1
            and len(local_solved(solved, 1)) == POINTING_MIN_SECTION_1_SOLVES
            and not profile.has_requested_pointing
        ):
            effects.add(EFFECT_POINTING)

        next_profile = profile.with_changes(
            attempts=attempts,
            solved_indices=tuple(solved),
            points=points,
            stars_found=stars,
            tablet_discovered=tablet,
        )
        entry = VerificationRequest(
            team_name=profile.name,
            star_name=riddle.target,
            submitted_answer=submitted_text,
            timestamp=timestamp or _now_iso(),
            status=submission_status(riddle, correct),
            type=KIND_SUBMISSION,
            section=section,
        )
        return SubmissionResult(
            outcome=OUTCOME_SOLVED if new_solve else OUTCOME_INCORRECT,
            next_profile=next_profile,
            verification_entry=entry,
            effects=frozenset(effects),
        )

    def pointing_eligible(self, profile: TeamProfile) -> bool:
        solved_count = len(local_solved(list(profile.solved_indices), 1))
        return solved_count >= POINTING_MIN_SECTION_1_SOLVES and not profile.has_requested_pointing

    def pointing_candidates(self, profile: TeamProfile) -> list[str]:
        """Section-1 subject ids the team may nominate for telescope pointing."""

        riddles = self.catalog.riddles(1)
        return [
            riddles[idx].target
            for idx in local_solved(list(profile.solved_indices), 1)
            if idx < len(riddles)
        ]

    def request_pointing(
        self,
        profile: TeamProfile,
        subject_id: str,
        *,
        timestamp: str | None = None,
    ) -> tuple[TeamProfile, VerificationRequest]:
        if profile.has_requested_pointing:
            raise ValidationError("Pointing was already requested.", code="POINTING_ALREADY_REQUESTED")
        if not self.pointing_eligible(profile):
            raise ValidationError(
                "Pointing opens after three section 1 solves.",
                code="POINTING_NOT_ELIGIBLE",
                hint=f"Solve {POINTING_MIN_SECTION_1_SOLVES} section 1 riddles first.",
            )
        if subject_id not in self.pointing_candidates(profile):
            raise ValidationError("Pick one of your solved section 1 subjects.", code="POINTING_SUBJECT_INVALID")

        entry = VerificationRequest(
            team_name=profile.name,
            star_name=self.catalog.star_name(subject_id),
            timestamp=timestamp or _now_iso(),
            status=STATUS_PENDING,
            type=KIND_POINTING,
        )
        return profile.with_changes(has_requested_pointing=True), entry
