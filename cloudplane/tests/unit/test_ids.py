from __future__ import annotations

import random

import pytest

from cloudplane.core import ids
from cloudplane.core.ids import ID_ALPHABET, ID_LENGTH, IdGenerator, is_valid_id


@pytest.mark.parametrize("seed", [0, 1, 7, 42, 1337])
def test_generated_ids_have_fixed_length_and_alphabet(seed: int) -> None:
    # Every identifier is 26 characters drawn from the custom alphabet.
    generator = IdGenerator(rng=random.Random(seed))
    for _ in range(500):
        value = generator.new_id()
        assert len(value) == ID_LENGTH
        assert set(value) <= set(ID_ALPHABET)
        assert is_valid_id(value)


@pytest.mark.parametrize("seed", [3, 11, 99])
def test_cluster_ids_always_start_with_lowercase_letter(seed: int) -> None:
    # Cluster IDs are used in DNS labels and must lead with a letter.
    generator = IdGenerator(rng=random.Random(seed))
    for _ in range(500):
        value = generator.new_cluster_id()
        assert len(value) == ID_LENGTH
        assert value[0].isalpha() and value[0].islower()


def test_seeded_generators_are_reproducible() -> None:
    # Injected randomness makes identifiers deterministic in tests.
    first = IdGenerator(rng=random.Random(5))
    second = IdGenerator(rng=random.Random(5))
    assert [first.new_id() for _ in range(10)] == [second.new_id() for _ in range(10)]


def test_leading_digit_is_replaced_without_touching_the_rest() -> None:
    # Only the first character is re-rolled; the remaining 25 are kept.
    class FixedSource:
        def getrandbits(self, k: int) -> int:
            # 0xFF.. maps to the last alphabet symbols, and "9" is a digit.
            return (1 << k) - 1

        def choice(self, seq):
            return "q"

    generator = IdGenerator(rng=FixedSource())
    raw = generator.new_id()
    assert raw[0].isdigit()
    cluster_id = generator.new_cluster_id()
    assert cluster_id[0] == "q"
    assert cluster_id[1:] == raw[1:]


def test_module_level_helpers_use_default_generator() -> None:
    # Convenience helpers produce valid IDs without explicit construction.
    assert is_valid_id(ids.new_id())
    assert ids.new_cluster_id()[0].isalpha()


def test_invalid_alphabet_is_rejected() -> None:
    # The encoder translation needs exactly 32 distinct symbols.
    with pytest.raises(ValueError):
        IdGenerator(alphabet="abc")
    with pytest.raises(ValueError):
        IdGenerator(alphabet="a" * 32)


def test_is_valid_id_rejects_foreign_characters() -> None:
    # Characters the encoder never emits mark an ID as invalid.
    assert not is_valid_id("0" * ID_LENGTH)
    assert not is_valid_id("y" * (ID_LENGTH - 1))
