from __future__ import annotations

import pytest

from heavens_hunt.catalog import RiddleCatalog
from heavens_hunt.engine import (
    EFFECT_COMPLETED,
    EFFECT_POINTING,
    EFFECT_TABLET,
    OUTCOME_ALREADY_SOLVED,
    OUTCOME_INCORRECT,
    OUTCOME_LOCKED,
    OUTCOME_SOLVED,
    ProgressEngine,
)
from heavens_hunt.errors import ValidationError
from heavens_hunt.indexing import AttemptKey, encode_global_index
from heavens_hunt.models import KIND_POINTING, STATUS_AUTO_VERIFIED, STATUS_PENDING, STATUS_REJECTED, TeamProfile
from heavens_hunt.paths import catalog_path


def _engine() -> ProgressEngine:
    return ProgressEngine(RiddleCatalog.load(catalog_path()))


def _answer(engine: ProgressEngine, section: int, index: int) -> str:
    return engine.catalog.get_riddle(section, index).accepted_answers[0]


@pytest.mark.parametrize("section", [1, 2])
def test_third_submission_after_two_misses_is_locked(section: int) -> None:
    engine = _engine()
    profile = TeamProfile(name="Vega")
    for _ in range(2):
        result = engine.submit_answer(profile, section, 1, None, "wrong")
        assert result.outcome == OUTCOME_INCORRECT
        profile = result.next_profile

    locked = engine.submit_answer(profile, section, 1, None, _answer(engine, section, 1))
    assert locked.outcome == OUTCOME_LOCKED
    assert locked.next_profile is profile
    assert locked.verification_entry is None
    assert profile.attempts_for(AttemptKey(section, 1)) == 2
    assert encode_global_index(section, 1) not in profile.solved_indices


def test_resubmitting_solved_riddle_changes_nothing() -> None:
    engine = _engine()
    solved = engine.submit_answer(TeamProfile(name="Vega"), 2, 0, None, "Polaris").next_profile
    again = engine.submit_answer(solved, 2, 0, None, "Polaris")
    assert again.outcome == OUTCOME_ALREADY_SOLVED
    assert again.next_profile == solved
    assert again.verification_entry is None


def test_locked_guard_runs_before_solved_guard() -> None:
    engine = _engine()
    profile = TeamProfile(name="Vega", solved_indices=(0,), attempts={AttemptKey(1, 0): 2})
    assert engine.submit_answer(profile, 1, 0, None, "aldebaran").outcome == OUTCOME_LOCKED


def test_section_three_never_locks_and_logs_every_attempt() -> None:
    engine = _engine()
    profile = TeamProfile(name="Vega")
    for _ in range(7):
        result = engine.submit_answer(profile, 3, 0, None, "wrong")
        assert result.outcome == OUTCOME_INCORRECT
        assert result.verification_entry is not None
        assert result.verification_entry.status == STATUS_REJECTED
        profile = result.next_profile
    assert profile.attempts == {}
    assert engine.submit_answer(profile, 3, 0, None, "sagittarius a*").outcome == OUTCOME_SOLVED


@pytest.mark.parametrize(("section", "points"), [(1, 100), (2, 150), (3, 200)])
def test_new_solve_scores_by_section(section: int, points: int) -> None:
    engine = _engine()
    base = TeamProfile(name="Vega", points=10, stars_found=1, solved_indices=(99,))
    result = engine.submit_answer(base, section, 0, None, _answer(engine, section, 0))
    assert result.outcome == OUTCOME_SOLVED
    assert result.next_profile.points == base.points + points
    assert result.next_profile.stars_found == base.stars_found + 1
    assert result.next_profile.solved_indices == (99, encode_global_index(section, 0))


def test_incorrect_submission_scores_nothing() -> None:
    engine = _engine()
    result = engine.submit_answer(TeamProfile(name="Vega"), 1, 0, None, "betelgeuse")
    assert result.next_profile.points == 0
    assert result.next_profile.stars_found == 0
    assert result.next_profile.attempts_for(AttemptKey(1, 0)) == 1


def test_verification_status_by_section() -> None:
    engine = _engine()
    profile = TeamProfile(name="Vega")
    first = engine.submit_answer(profile, 1, 0, None, "Aldebaran").verification_entry
    assert first is not None and first.status == STATUS_PENDING and first.star_name == "aldebaran"
    assert first.section == 1 and first.submitted_answer == "Aldebaran"
    second = engine.submit_answer(profile, 2, 0, None, "polaris").verification_entry
    assert second is not None and second.status == STATUS_AUTO_VERIFIED
    wrong = engine.submit_answer(profile, 2, 1, None, "nowhere").verification_entry
    assert wrong is not None and wrong.status == STATUS_REJECTED
    assert not engine.catalog.get_riddle(1, 0).auto_verified
    assert engine.catalog.get_riddle(2, 0).auto_verified


def test_tablet_and_completion_effects() -> None:
    engine = _engine()
    profile = TeamProfile(name="Vega")
    effects: set[str] = set()
    for index in range(engine.catalog.riddle_count(3)):
        result = engine.submit_answer(profile, 3, index, None, _answer(engine, 3, index))
        effects |= set(result.effects)
        profile = result.next_profile
        if index == 2:
            assert EFFECT_TABLET in result.effects
    assert profile.tablet_discovered
    assert EFFECT_COMPLETED in effects
    assert profile.points == 200 * engine.catalog.riddle_count(3)


def test_pointing_unlocks_on_third_section_one_solve() -> None:
    engine = _engine()
    profile = TeamProfile(name="Vega")
    for index in range(3):
        result = engine.submit_answer(profile, 1, index, None, _answer(engine, 1, index))
        profile = result.next_profile
    assert EFFECT_POINTING in result.effects
    assert engine.pointing_eligible(profile)
    assert engine.pointing_candidates(profile) == ["aldebaran", "mirfak", "sirius"]


def test_request_pointing_is_one_shot() -> None:
    engine = _engine()
    profile = TeamProfile(name="Vega", solved_indices=(0, 1, 2), stars_found=3, points=300)
    updated, entry = engine.request_pointing(profile, "sirius")
    assert updated.has_requested_pointing
    assert updated.points == 300
    assert entry.type == KIND_POINTING
    assert entry.status == STATUS_PENDING
    assert entry.star_name == "Sirius"

    with pytest.raises(ValidationError) as exc:
        engine.request_pointing(updated, "sirius")
    assert exc.value.code == "POINTING_ALREADY_REQUESTED"


def test_request_pointing_rejects_ineligible_and_unsolved_subjects() -> None:
    engine = _engine()
    with pytest.raises(ValidationError) as not_eligible:
        engine.request_pointing(TeamProfile(name="Vega", solved_indices=(0, 1)), "aldebaran")
    assert not_eligible.value.code == "POINTING_NOT_ELIGIBLE"

    with pytest.raises(ValidationError) as wrong_subject:
        engine.request_pointing(TeamProfile(name="Vega", solved_indices=(0, 1, 2)), "jupiter")
    assert wrong_subject.value.code == "POINTING_SUBJECT_INVALID"


def test_role_is_immutable() -> None:
    with pytest.raises(ValueError):
        TeamProfile(name="Vega").with_changes(role="admin")
