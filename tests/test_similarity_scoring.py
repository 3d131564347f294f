"""Unit tests for similarity scoring and duplicate classification."""

import math
from datetime import timedelta

import pytest

from incidentcore.config import ClassifierConfig, DedupConfig, ScoringConfig
from incidentcore.deduplication.classifier import DuplicateClassifier, MatchKind
from incidentcore.deduplication.similarity_scoring import SimilarityResult, SimilarityScorer
from incidentcore.deduplication.text_similarity import text_similarity
from incidentcore.models import LocalizedText

from conftest import BASE_DESCRIPTION, BASE_TIME

ARABIC_DESCRIPTION = "غارة جوية استهدفت مبنى سكنيا في الحي الشرقي من المدينة"


@pytest.fixture
def batch_scorer():
    return SimilarityScorer(ScoringConfig())


@pytest.fixture
def sync_scorer():
    return SimilarityScorer(DedupConfig().sync_scoring())


@pytest.fixture
def classifier():
    return DuplicateClassifier(ClassifierConfig())


def make_result(**overrides) -> SimilarityResult:
    values = dict(
        same_type=True,
        within_time_window=True,
        within_location_radius=True,
        same_perpetrator=True,
        casualty_similarity=1.0,
        description_similarity=1.0,
        total=1.0,
        distance_m=0.0,
        location_method="coordinates",
    )
    values.update(overrides)
    return SimilarityResult(**values)


class TestSimilarityScorer:
    """Test the composite scorer."""

    def test_identical_records_score_one(self, batch_scorer, make_record):
        a = make_record()
        b = make_record()
        result = batch_scorer.score(a, b)

        assert result.total == pytest.approx(1.0)
        assert result.same_type and result.within_time_window and result.location_match
        assert result.distance_m == 0.0
        assert result.location_method == "coordinates"

    def test_weights_applied(self, batch_scorer, make_record):
        """Different type and perpetrator remove exactly their weights."""
        a = make_record()
        b = make_record(type="SHELLING", perpetrator_affiliation="isis")
        result = batch_scorer.score(a, b)

        assert not result.same_type
        assert not result.same_perpetrator
        assert result.total == pytest.approx(0.6)

    def test_time_window(self, batch_scorer, make_record):
        a = make_record()
        inside = make_record(occurred_at=BASE_TIME - timedelta(hours=23))
        outside = make_record(occurred_at=BASE_TIME - timedelta(hours=25))

        assert batch_scorer.score(a, inside).within_time_window
        assert not batch_scorer.score(a, outside).within_time_window

    def test_scores_in_range_and_symmetric(self, batch_scorer, make_record, make_location):
        records = [
            make_record(),
            make_record(casualties=8, location=make_location(d_lat=0.01)),
            make_record(type="SHELLING", description={"en": "Shelling of the old souk area overnight"}),
            make_record(location=make_location(coordinates=None), casualties=0),
        ]
        for a in records:
            for b in records:
                forward = batch_scorer.score(a, b)
                backward = batch_scorer.score(b, a)
                assert 0.0 <= forward.total <= 1.0
                assert forward.total == pytest.approx(backward.total)
                assert forward.location_match == backward.location_match

    def test_casualty_similarity(self, make_record):
        none = make_record(casualties=0)
        four = make_record(casualties=4)
        eight = make_record(casualties=8)

        assert SimilarityScorer.casualty_similarity(none, make_record(casualties=0)) == 1.0
        assert SimilarityScorer.casualty_similarity(none, four) == 0.5
        assert SimilarityScorer.casualty_similarity(four, eight) == pytest.approx(0.5)

    def test_casualty_similarity_uses_all_counts(self, make_record):
        a = make_record(casualties=2, injured_count=2)
        b = make_record(casualties=4)
        assert SimilarityScorer.casualty_similarity(a, b) == 1.0

    def test_location_name_fallback(self, batch_scorer, make_record, make_location):
        """Without coordinates on both sides, matching names count as distance 0."""
        a = make_record(location=make_location(coordinates=None))
        b = make_record()
        result = batch_scorer.score(a, b)

        assert result.location_method == "name"
        assert result.location_match
        assert result.distance_m == 0.0

    def test_location_name_mismatch(self, batch_scorer, make_record, make_location):
        a = make_record(location=make_location(coordinates=None))
        b = make_record(location=make_location(
            coordinates=None, name={"en": "Deir ez-Zor", "ar": "دير الزور"}
        ))
        result = batch_scorer.score(a, b)

        assert result.location_method == "name"
        assert not result.location_match
        assert math.isinf(result.distance_m)

    def test_cross_language_description_penalised(self, batch_scorer):
        """Only cross-language text available: score carries the penalty."""
        a = LocalizedText(en="Airstrike on the market")
        b = LocalizedText(ar="Airstrike on the market")
        assert batch_scorer.description_similarity(a, b) == pytest.approx(0.7)

    def test_same_language_preferred(self, batch_scorer):
        a = LocalizedText(en="Airstrike on the market", ar="غارة على السوق")
        b = LocalizedText(en="Airstrike on the market", ar="")
        assert batch_scorer.description_similarity(a, b) == 1.0

    def test_to_dict_rounds_and_handles_infinity(self):
        data = make_result(distance_m=math.inf, total=0.123456).to_dict()
        assert data["distance_m"] is None
        assert data["total"] == 0.1235


class TestScenarios:
    """End-to-end pair decisions."""

    def test_nearby_identical_counts_is_exact_match(self, sync_scorer, classifier, make_record, make_location):
        """Same type and date, ~45 m apart, casualties 5 and 5."""
        a = make_record(casualties=5)
        b = make_record(casualties=5, location=make_location(d_lat=0.0004))

        result = sync_scorer.score(a, b)
        decision = classifier.classify_creation(result, a, b)

        assert result.distance_m < 100
        assert decision.kind == MatchKind.EXACT
        assert decision.counts_equal

    def test_different_counts_is_similarity_match(self, sync_scorer, classifier, make_record, make_location):
        """As above with casualties 5 and 8: no exact match, but a similarity match."""
        a = make_record(casualties=5)
        b = make_record(casualties=8, location=make_location(d_lat=0.0004))

        result = sync_scorer.score(a, b)
        decision = classifier.classify_creation(result, a, b)

        assert result.total == pytest.approx(0.9625)
        assert decision.kind == MatchKind.SIMILARITY
        assert not decision.counts_equal

    def test_ten_kilometres_apart_is_not_duplicate(self, batch_scorer, classifier, make_record, make_location):
        """Identical descriptions 10 km apart fail the 5 km location criterion."""
        a = make_record()
        b = make_record(location=make_location(d_lat=0.09))

        result = batch_scorer.score(a, b)

        assert result.distance_m > 9000
        assert not result.location_match
        assert result.description_similarity == 1.0
        assert not classifier.is_duplicate(result)

    def test_unrelated_records_not_matched(self, sync_scorer, classifier, make_record):
        a = make_record()
        b = make_record(
            type="DETENTION",
            occurred_at=BASE_TIME - timedelta(days=3),
            perpetrator_affiliation="sdf",
            description={"en": "Security forces detained several journalists at a checkpoint"},
        )
        result = sync_scorer.score(a, b)
        assert classifier.classify_creation(result, a, b).kind == MatchKind.NONE


class TestDuplicateClassifier:
    """Test classifier thresholds."""

    def test_strong_match_relaxes_description_floor(self, classifier):
        result = make_result(description_similarity=0.45, total=0.9)
        assert classifier.is_duplicate(result)

    def test_description_floor_without_perpetrator(self, classifier):
        result = make_result(same_perpetrator=False, description_similarity=0.45, total=0.9)
        assert not classifier.is_duplicate(result)

    def test_essential_criteria_required(self, classifier):
        assert not classifier.is_duplicate(make_result(within_location_radius=False))
        assert not classifier.is_duplicate(make_result(same_type=False))
        assert not classifier.is_duplicate(make_result(within_time_window=False))

    def test_threshold_override(self, classifier):
        result = make_result(total=0.86)
        assert classifier.is_duplicate(result)
        assert not classifier.is_duplicate(result, threshold=0.9)

    def test_insufficient_information_is_not_duplicate(self, classifier):
        """Missing data resolves to False rather than raising."""
        result = make_result(
            within_location_radius=False,
            location_method="none",
            distance_m=math.inf,
            description_similarity=0.0,
            total=0.65,
        )
        assert classifier.is_duplicate(result) is False

    def test_explain(self, sync_scorer, classifier, make_record):
        a = make_record()
        decision = classifier.classify_creation(sync_scorer.score(a, a), a, a)
        explanation = decision.explain()

        assert explanation["match_type"] == "exact"
        assert explanation["similarity"]["total"] == pytest.approx(1.0)
        assert decision.is_duplicate


@pytest.fixture
def record_matrix(make_record, make_location):
    """Pairs of these cover cross-language, summary, paraphrase and location variants."""
    return [
        make_record(),
        make_record(description={"en": BASE_DESCRIPTION, "ar": ARABIC_DESCRIPTION}),
        make_record(description={"en": "Translated report of an air raid on homes", "ar": ARABIC_DESCRIPTION}),
        make_record(description={"en": "Airstrike hit residential building in eastern district", "ar": ""},
                    casualties=4),
        make_record(description={"en": "Warplanes struck a housing block in the east of the city", "ar": ""},
                    location=make_location(d_lat=0.0004)),
        make_record(casualties=5, location=make_location(d_lat=0.02)),
        make_record(location=make_location(coordinates=None), perpetrator_affiliation="unknown"),
        make_record(type="SHELLING", occurred_at=BASE_TIME - timedelta(hours=30)),
    ]


class TestClassifierSymmetry:
    """Decisions do not depend on which record comes first."""

    def test_is_duplicate_symmetric(self, batch_scorer, classifier, record_matrix):
        decisions = set()
        for a in record_matrix:
            for b in record_matrix:
                forward = classifier.is_duplicate(batch_scorer.score(a, b))
                backward = classifier.is_duplicate(batch_scorer.score(b, a))
                assert forward == backward
                decisions.add(forward)
        assert decisions == {True, False}

    def test_classify_creation_symmetric(self, sync_scorer, classifier, record_matrix):
        kinds = set()
        for a in record_matrix:
            for b in record_matrix:
                forward = classifier.classify_creation(sync_scorer.score(a, b), a, b)
                backward = classifier.classify_creation(sync_scorer.score(b, a), b, a)
                assert forward.kind == backward.kind
                assert forward.counts_equal == backward.counts_equal
                kinds.add(forward.kind)
        assert MatchKind.EXACT in kinds
        assert MatchKind.NONE in kinds

    def test_description_similarity_symmetric(self, batch_scorer, record_matrix):
        for a in record_matrix:
            for b in record_matrix:
                assert batch_scorer.description_similarity(a.description, b.description) == \
                    batch_scorer.description_similarity(b.description, a.description)

    def test_cross_language_similarity_symmetric(self, batch_scorer):
        english = LocalizedText(en="Airstrike on the market")
        arabic = LocalizedText(ar="غارة على السوق Airstrike")
        assert batch_scorer.description_similarity(english, arabic) == \
            batch_scorer.description_similarity(arabic, english)


class TestLocationNameMatching:
    """Name comparison when coordinates are missing."""

    def test_transliteration_variant_matches(self, batch_scorer, make_record, make_location):
        a = make_record(location=make_location(coordinates=None, name={"en": "Douma", "ar": ""}))
        b = make_record(location=make_location(coordinates=None, name={"en": "Duma", "ar": ""}))

        assert text_similarity("Douma", "Duma") < 0.8
        assert batch_scorer.name_similarity(a.location.name, b.location.name) == pytest.approx(0.89)

        result = batch_scorer.score(a, b)
        assert result.location_method == "name"
        assert result.location_match
        assert result.distance_m == 0.0

    def test_different_places_do_not_match(self, batch_scorer, make_record, make_location):
        a = make_record(location=make_location(coordinates=None, name={"en": "Douma", "ar": ""}))
        b = make_record(location=make_location(coordinates=None, name={"en": "Daraa", "ar": ""}))

        result = batch_scorer.score(a, b)
        assert result.location_method == "name"
        assert not result.location_match
