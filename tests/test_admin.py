from __future__ import annotations

import pytest

from heavens_hunt.accounts import AccountService
from heavens_hunt.admin import AdminConsole, AdminReconciler, VerificationQueue, compute_award
from heavens_hunt.catalog import RiddleCatalog
from heavens_hunt.errors import ConcurrencyConflict, UnknownRequestError, ValidationError
from heavens_hunt.models import (
    KIND_DISCOVERY,
    KIND_POINTING,
    KIND_SUBMISSION,
    STATUS_APPROVED,
    STATUS_AUTO_VERIFIED,
    STATUS_PENDING,
    STATUS_REJECTED,
    VerificationRequest,
)
from heavens_hunt.paths import catalog_path
from heavens_hunt.store import MemoryStore


def _setup() -> tuple[MemoryStore, RiddleCatalog, VerificationQueue]:
    store = MemoryStore()
    AccountService(store).register("Orion", "star42", "star42")
    return store, RiddleCatalog.load(catalog_path()), VerificationQueue(store)


def _entry(kind: str = KIND_SUBMISSION, star: str = "mirfak", section: int | None = 1, status: str = STATUS_PENDING) -> VerificationRequest:
    return VerificationRequest(
        team_name="Orion",
        star_name=star,
        timestamp="2026-02-01T20:00:00+00:00",
        status=status,
        type=kind,
        section=section,
    )


def test_approving_section_one_submission_awards_once() -> None:
    store, catalog, queue = _setup()
    store.update_team("Orion", {"points": 100, "stars_found": 1, "solved_indices": [0]})
    request = queue.append(_entry(star="mirfak"))
    reconciler = AdminReconciler(store, catalog)

    result = reconciler.decide(request.id, "approve")
    assert result.applied
    assert result.request.status == STATUS_APPROVED
    team = store.get_team("Orion")
    assert team["solved_indices"] == [0, 1]
    assert team["points"] == 200
    assert team["stars_found"] == 2

    again = reconciler.decide(request.id, "approve")
    assert not again.applied
    assert store.get_team("Orion")["points"] == 200


def test_approval_uses_latest_team_row() -> None:
    store, catalog, queue = _setup()
    request = queue.append(_entry(star="sirius"))
    # Progress written after the request was queued must survive the award.
    store.update_team("Orion", {"points": 150, "stars_found": 1, "solved_indices": [100]})
    AdminReconciler(store, catalog).decide(request.id, "approve")
    team = store.get_team("Orion")
    assert team["solved_indices"] == [100, 2]
    assert team["points"] == 250


def test_section_one_approval_of_already_solved_subject_awards_nothing() -> None:
    store, catalog, queue = _setup()
    store.update_team("Orion", {"points": 100, "stars_found": 1, "solved_indices": [0]})
    request = queue.append(_entry(star="aldebaran"))
    result = AdminReconciler(store, catalog).decide(request.id, "approve")
    assert result.applied
    assert result.team is None
    assert store.get_team("Orion")["points"] == 100


def test_pointing_approval_is_flat_bonus() -> None:
    store, catalog, queue = _setup()
    request = queue.append(_entry(kind=KIND_POINTING, star="Sirius", section=None))
    AdminReconciler(store, catalog).decide(request.id, "approve")
    team = store.get_team("Orion")
    assert team["points"] == 200
    assert team["stars_found"] == 0
    assert team["solved_indices"] == []


def test_reject_marks_status_without_award() -> None:
    store, catalog, queue = _setup()
    request = queue.append(_entry())
    result = AdminReconciler(store, catalog).decide(request.id, "reject")
    assert result.request.status == STATUS_REJECTED
    assert store.get_team("Orion")["points"] == 0


def test_decide_rejects_unknown_ids_and_decisions() -> None:
    store, catalog, queue = _setup()
    reconciler = AdminReconciler(store, catalog)
    with pytest.raises(UnknownRequestError):
        reconciler.decide("missing", "approve")
    request = queue.append(_entry())
    with pytest.raises(ValidationError):
        reconciler.decide(request.id, "maybe")


def test_compute_award_for_later_sections_and_discoveries() -> None:
    catalog = RiddleCatalog.load(catalog_path())
    team = {"points": 10, "stars_found": 1, "solved_indices": [200]}
    assert compute_award(_entry(section=2, star="polaris"), team, catalog) == {"points": 160, "stars_found": 2}
    assert compute_award(_entry(section=3, star="twin_suns"), team, catalog) == {"points": 210, "stars_found": 2}
    assert compute_award(_entry(kind=KIND_DISCOVERY, section=None), team, catalog) is None


class _RacingStore(MemoryStore):
    """Simulates a player write landing between re-fetch and write-back."""

    def __init__(self, races: int) -> None:
        super().__init__()
        self.races = races

    def get_team(self, name: str):  # type: ignore[no-untyped-def]
        record = super().get_team(name)
        if record is not None and self.races > 0:
            self.races -= 1
            current = int(record.get("points") or 0)
            super().update_team(name, {"points": current + 150})
        return record


def test_version_check_retries_after_conflict() -> None:
    store = _RacingStore(races=0)
    AccountService(store).register("Orion", "star42", "star42")
    request = VerificationQueue(store).append(_entry(kind=KIND_POINTING, section=None))
    store.races = 2
    catalog = RiddleCatalog.load(catalog_path())

    result = AdminReconciler(store, catalog, use_version_check=True, max_retries=3).decide(request.id, "approve")
    assert result.applied
    # Both racing writes and the pointing bonus survive.
    assert store.get_team("Orion")["points"] == 150 + 150 + 200


def test_version_check_gives_up_after_max_retries() -> None:
    store = _RacingStore(races=0)
    AccountService(store).register("Orion", "star42", "star42")
    request = VerificationQueue(store).append(_entry(kind=KIND_POINTING, section=None))
    store.races = 5
    catalog = RiddleCatalog.load(catalog_path())
    reconciler = AdminReconciler(store, catalog, use_version_check=True, max_retries=1)
    with pytest.raises(ConcurrencyConflict):
        reconciler.decide(request.id, "approve")
    assert store.get_request(request.id)["status"] == STATUS_PENDING
    assert "decided_at" not in store.get_request(request.id)
    assert store.get_team("Orion")["points"] == 300

    store.races = 0
    retried = reconciler.decide(request.id, "approve")
    assert retried.applied
    assert store.get_team("Orion")["points"] == 500
    assert reconciler.decide(request.id, "approve").applied is False
    assert store.get_team("Orion")["points"] == 500


def test_without_version_check_last_write_wins() -> None:
    store = _RacingStore(races=0)
    AccountService(store).register("Orion", "star42", "star42")
    request = VerificationQueue(store).append(_entry(kind=KIND_POINTING, section=None))
    store.races = 1
    AdminReconciler(store, RiddleCatalog.load(catalog_path())).decide(request.id, "approve")
    assert store.get_team("Orion")["points"] == 200


def test_queue_views_and_stats() -> None:
    store, _, queue = _setup()
    AccountService(store).bootstrap_admin("admin42")
    pending = queue.append(_entry())
    queue.append(_entry(section=2, star="polaris", status=STATUS_AUTO_VERIFIED))
    store.update_request_status(queue.append(_entry(star="sirius")).id, STATUS_APPROVED)

    assert [item.id for item in queue.pending()] == [pending.id]
    assert len(queue.processed()) == 2
    assert len(queue.for_team("Orion")) == 3
    assert queue.stats() == {"pending": 1, "approved": 1, "teams": 1}
    with pytest.raises(UnknownRequestError):
        queue.get("missing")


def test_console_refreshes_on_push_and_toggles_sections() -> None:
    store, catalog, queue = _setup()
    console = AdminConsole(store=store, reconciler=AdminReconciler(store, catalog), queue=queue).open()
    assert console.pending() == []

    request = queue.append(_entry(star="mirfak"))
    assert [item.id for item in console.pending()] == [request.id]

    console.decide(request.id, "approve")
    assert console.pending() == []
    assert console.stats()["approved"] == 1
    assert console.leaderboard()[0]["points"] == 100

    assert console.toggle_section("3").section_3_unlocked is True
    assert console.config.section_3_unlocked is True
    assert console.toggle_section("3").section_3_unlocked is False
    with pytest.raises(ValidationError):
        console.toggle_section("4")

    console.close()
    queue.append(_entry(star="menkar"))
    assert len(console.pending()) == 0


def test_leaderboard_counts_total_attempts_and_hides_admin() -> None:
    store, catalog, queue = _setup()
    AccountService(store).bootstrap_admin("admin42")
    AccountService(store).register("Lyra", "lyra99", "lyra99")
    store.update_team("Orion", {"points": 100, "attempts": {"1-0": 1, "1-1": 2}})
    store.update_team("Lyra", {"points": 250, "attempts": {"2-0": 1}})
    console = AdminConsole(store=store, reconciler=AdminReconciler(store, catalog), queue=queue).open()
    rows = console.leaderboard()
    assert [row["name"] for row in rows] == ["Lyra", "Orion"]
    assert [row["total_attempts"] for row in rows] == [1, 3]
    assert rows[0]["rank"] == 1
