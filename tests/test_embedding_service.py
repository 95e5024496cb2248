import math

import numpy as np
import pytest

from borne_biometrique.config import EmbeddingThresholds
from borne_biometrique.exceptions import DimensionMismatchError, MalformedVectorError, ValidationError
from borne_biometrique.schemas.biometric import Candidate, MatchLevel
from borne_biometrique.services.embedding_service import EmbeddingMatcher

from conftest import DIM, basis, vector_at_distance


def random_unit_vectors(count, dim=DIM, seed=7):
    rng = np.random.default_rng(seed)
    vectors = rng.normal(size=(count, dim))
    return [v / np.linalg.norm(v) for v in vectors]


def test_distance_to_itself_is_zero(matcher):
    for v in random_unit_vectors(20):
        assert matcher.distance(v, v) == pytest.approx(0.0, abs=1e-9)


def test_distance_is_symmetric(matcher):
    vectors = random_unit_vectors(10)
    for a in vectors:
        for b in vectors:
            assert matcher.distance(a, b) == pytest.approx(matcher.distance(b, a), abs=1e-12)


def test_distance_range(matcher):
    assert matcher.distance(basis(0), basis(1)) == pytest.approx(1.0)
    opposite = [-x for x in basis(0)]
    assert matcher.distance(basis(0), opposite) == pytest.approx(2.0)
    assert matcher.distance(basis(0), vector_at_distance(0.3)) == pytest.approx(0.3)


def test_normalize_gives_unit_norm(matcher):
    v = matcher.normalize([3.0, 4.0] + [0.0] * (DIM - 2))
    assert np.linalg.norm(v) == pytest.approx(1.0)
    assert v[0] == pytest.approx(0.6)


def test_average_is_normalized(matcher):
    avg = matcher.average([basis(0), basis(1)])
    assert np.linalg.norm(avg) == pytest.approx(1.0)
    assert avg[0] == pytest.approx(avg[1])


def test_validate_rejects_wrong_dimension(matcher):
    with pytest.raises(DimensionMismatchError) as exc:
        matcher.validate([1.0] * (DIM + 1))
    assert exc.value.expected == DIM
    assert exc.value.received == DIM + 1


@pytest.mark.parametrize("bad", [
    [float("nan")] + [1.0] * (DIM - 1),
    [float("inf")] + [1.0] * (DIM - 1),
    [0.0] * DIM,
    ["a"] * DIM,
])
def test_validate_rejects_malformed_vectors(matcher, bad):
    with pytest.raises(MalformedVectorError):
        matcher.validate(bad)


def test_validation_errors_share_a_base_class():
    assert issubclass(DimensionMismatchError, ValidationError)
    assert issubclass(MalformedVectorError, ValidationError)


@pytest.mark.parametrize("distance, level", [
    (0.10, MatchLevel.HIGH),
    (0.40, MatchLevel.MEDIUM),
    (0.50, MatchLevel.LOW),
    (0.55, MatchLevel.NONE),
    (0.70, MatchLevel.NONE),
])
def test_classify_bands(matcher, distance, level):
    assert matcher.classify(distance) == level


def test_needs_backup_only_in_borderline_band(matcher):
    assert matcher.needs_backup(0.50)
    assert not matcher.needs_backup(0.30)
    assert not matcher.needs_backup(0.60)


def test_compare_reports_similarity_and_match(matcher):
    result = matcher.compare(vector_at_distance(0.1), basis(0))
    assert result.distance == pytest.approx(0.1)
    assert result.similarity == pytest.approx(95.0)
    assert result.is_match
    assert result.match_level == MatchLevel.HIGH

    borderline = matcher.compare(vector_at_distance(0.5), basis(0))
    assert not borderline.is_match
    assert borderline.match_level == MatchLevel.LOW


def test_best_match_keeps_minimum_distance(matcher):
    candidates = [
        Candidate(subject_id="far", embedding=vector_at_distance(0.6)),
        Candidate(subject_id="near", embedding=vector_at_distance(0.05)),
        Candidate(subject_id="mid", embedding=vector_at_distance(0.3)),
    ]
    best, result = matcher.best_match(basis(0), candidates)
    assert best.subject_id == "near"
    assert result.distance == pytest.approx(0.05)


def test_best_match_ties_go_to_first_seen(matcher):
    candidates = [
        Candidate(subject_id="first", embedding=basis(0)),
        Candidate(subject_id="second", embedding=basis(0)),
    ]
    best, _ = matcher.best_match(basis(0), candidates)
    assert best.subject_id == "first"


def test_best_match_is_deterministic(matcher):
    vectors = random_unit_vectors(30, seed=3)
    candidates = [Candidate(subject_id=f"s{i}", embedding=list(v)) for i, v in enumerate(vectors)]
    query = random_unit_vectors(1, seed=11)[0]

    first = matcher.best_match(query, candidates)
    for _ in range(5):
        again = matcher.best_match(query, candidates)
        assert again[0].subject_id == first[0].subject_id
        assert again[1].distance == first[1].distance


def test_best_match_skips_invalid_candidates(matcher):
    candidates = [
        Candidate(subject_id="short", embedding=[1.0, 0.0]),
        Candidate(subject_id="nan", embedding=[math.nan] * DIM),
        Candidate(subject_id="ok", embedding=vector_at_distance(0.2)),
    ]
    best, result = matcher.best_match(basis(0), candidates)
    assert best.subject_id == "ok"
    assert result.match_level == MatchLevel.HIGH


def test_best_match_without_candidates(matcher):
    best, result = matcher.best_match(basis(0), [])
    assert best is None
    assert result.match_level == MatchLevel.NONE
    assert not result.is_match


def test_best_match_validates_query(matcher):
    with pytest.raises(DimensionMismatchError):
        matcher.best_match([1.0, 0.0], [Candidate(subject_id="a", embedding=basis(0))])


def test_quality_from_samples(matcher):
    assert matcher.quality_from_samples([basis(0)]) == 1.0
    assert matcher.quality_from_samples([basis(0), basis(0), basis(0)]) == pytest.approx(1.0)

    tight = matcher.quality_from_samples([vector_at_distance(d) for d in (0.0, 0.02, 0.04)])
    loose = matcher.quality_from_samples([vector_at_distance(d) for d in (0.0, 0.3, 0.6)])
    assert 0.0 <= loose < tight <= 1.0


def test_custom_thresholds_change_bands():
    strict = EmbeddingMatcher(EmbeddingThresholds(dimension=DIM, match_high=0.1, match_medium=0.2, match_low=0.3))
    assert strict.classify(0.15) == MatchLevel.MEDIUM
    assert strict.classify(0.35) == MatchLevel.NONE
