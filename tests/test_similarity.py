import math

import pytest

from copyguard.errors import LengthMismatch
from copyguard.services.similarity import cosine_similarity, hamming_distance


def test_hamming_identity_and_symmetry():
    a = "0110" * 16
    b = "1110" * 16
    assert hamming_distance(a, a) == 0
    assert hamming_distance(a, b) == hamming_distance(b, a) == 16


def test_hamming_range():
    assert hamming_distance("0" * 64, "1" * 64) == 64


def test_hamming_length_mismatch():
    with pytest.raises(LengthMismatch):
        hamming_distance("0" * 64, "0" * 63)


def test_cosine_self_similarity_and_symmetry():
    a = [0.3, -1.2, 4.0]
    b = [1.0, 0.5, -0.25]
    assert math.isclose(cosine_similarity(a, a), 1.0, rel_tol=1e-9)
    assert math.isclose(cosine_similarity(a, b), cosine_similarity(b, a))


def test_cosine_orthogonal_and_opposite():
    assert cosine_similarity([1, 0], [0, 1]) == 0.0
    assert math.isclose(cosine_similarity([1, 2], [-1, -2]), -1.0)


@pytest.mark.parametrize("a,b", [
    (None, [1.0]),
    ([1.0], None),
    ([], []),
    ([1.0, 2.0], [1.0, 2.0, 3.0]),
    ([0.0, 0.0], [1.0, 1.0]),
])
def test_cosine_degenerate_inputs_are_zero(a, b):
    assert cosine_similarity(a, b) == 0.0
