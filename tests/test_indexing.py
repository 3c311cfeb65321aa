from __future__ import annotations

import pytest

from heavens_hunt.answers import is_correct, normalize_answer
from heavens_hunt.indexing import (
    SECTION_STRIDE,
    AttemptKey,
    attempts_from_wire,
    attempts_to_wire,
    decode_global_index,
    encode_global_index,
    local_solved,
    solved_in_section,
)


@pytest.mark.parametrize("section", [1, 2, 3])
def test_global_index_round_trip(section: int) -> None:
    for local_index in range(SECTION_STRIDE):
        assert decode_global_index(encode_global_index(section, local_index)) == (section, local_index)


def test_global_index_layout() -> None:
    assert encode_global_index(1, 0) == 0
    assert encode_global_index(2, 4) == 104
    assert encode_global_index(3, 5) == 205


@pytest.mark.parametrize(
    ("section", "local_index"),
    [(0, 0), (4, 0), (1, -1), (2, 100)],
)
def test_encode_rejects_out_of_domain(section: int, local_index: int) -> None:
    with pytest.raises(ValueError):
        encode_global_index(section, local_index)


@pytest.mark.parametrize("global_index", [-1, 300, 1000])
def test_decode_rejects_out_of_domain(global_index: int) -> None:
    with pytest.raises(ValueError):
        decode_global_index(global_index)


def test_section_filters() -> None:
    solved = [0, 3, 101, 199, 200, 205]
    assert solved_in_section(solved, 1) == [0, 3]
    assert solved_in_section(solved, 2) == [101, 199]
    assert local_solved(solved, 3) == [0, 5]


def test_attempt_key_wire_format() -> None:
    key = AttemptKey(1, 4)
    assert key.to_wire() == "1-4"
    assert AttemptKey.from_wire("2-0") == AttemptKey(2, 0)
    assert key.capped
    assert not AttemptKey(3, 0).capped


def test_attempts_from_wire_skips_bad_keys_and_clamps() -> None:
    parsed = attempts_from_wire({"1-1": 2, "bogus": 7, "9-0": 1, "2-3": -4})
    assert parsed == {AttemptKey(1, 1): 2, AttemptKey(2, 3): 0}
    assert attempts_to_wire(parsed) == {"1-1": 2, "2-3": 0}
    assert attempts_from_wire(None) == {}


def test_answer_normalization() -> None:
    assert normalize_answer("  Sirius \n") == "sirius"
    assert is_correct(" ALDEBARAN ", ["aldebaran"])
    assert is_correct("binary system", ["Binary Star", "Binary System"])
    assert not is_correct("Aldebaran b", ["aldebaran"])
    assert not is_correct("anything", [])
