"""Tests for the quality catalog and quality extraction."""

import pytest

from src.voice.qualities import (
    CLOSE,
    EXCELLENT,
    GOOD,
    NOT_QUITE,
    QUALITY_CATALOG,
    VERY_GOOD,
    QualityLevel,
    find_by_keyword,
    find_by_score,
)
from src.voice.quality_extractor import extract


class TestQualityCatalog:
    """Test suite for the quality catalog."""

    def test_catalog_order_is_increasing_score(self):
        """Test the catalog is ordered from lowest to highest score."""
        scores = [level.score for level in QUALITY_CATALOG]
        assert scores == sorted(scores)
        assert scores == [1, 2, 3, 4, 5]

    def test_scores_are_positive(self):
        """Test every catalog score is a positive integer."""
        assert all(level.score >= 1 for level in QUALITY_CATALOG)

    def test_non_positive_score_rejected(self):
        """Test a zero score raises."""
        with pytest.raises(ValueError):
            QualityLevel(keyword='Bad', score=0)

    def test_find_by_keyword(self):
        """Test keyword lookup is case-insensitive."""
        assert find_by_keyword('very good') is VERY_GOOD
        assert find_by_keyword('EXCELLENT') is EXCELLENT
        assert find_by_keyword('fantastic') is None

    def test_find_by_score(self):
        """Test score lookup."""
        assert find_by_score(2) is CLOSE
        assert find_by_score(9) is None

    def test_to_dict(self):
        """Test dictionary conversion."""
        data = GOOD.to_dict()
        assert data['keyword'] == 'Good'
        assert data['score'] == 3
        assert data['synonyms'] == ['good']


class TestExtract:
    """Test suite for quality extraction."""

    @pytest.mark.parametrize('transcript,expected', [
        ('smith answered not quite', NOT_QUITE),
        ('jones answered close', CLOSE),
        ('smith answered good', GOOD),
        ('smith answered very good', VERY_GOOD),
        ('smith answered excellent', EXCELLENT),
    ])
    def test_direct_keywords(self, transcript, expected):
        """Test each direct keyword maps to its level."""
        assert extract(transcript) is expected

    def test_very_good_is_not_good(self):
        """Test 'very good' never resolves to Good."""
        assert extract('that was a very good answer') is VERY_GOOD

    def test_good_alone_still_good(self):
        """Test 'good' without 'very' resolves to Good."""
        assert extract('a good point from smith') is GOOD

    def test_case_insensitive(self):
        """Test matching ignores case."""
        assert extract('Smith Answered EXCELLENT') is EXCELLENT

    def test_synonym_fallback(self):
        """Test synonyms are used when no keyword is present."""
        solid = QualityLevel(keyword='Good', score=3, synonyms=('good', 'solid'))
        assert extract('a solid response from lee', (NOT_QUITE, solid)) is solid

    def test_everyday_praise_is_not_a_quality(self):
        """Test words outside the catalog keywords score nothing."""
        assert extract('great question smith') is None
        assert extract('smith answered outstanding') is None

    def test_no_quality(self):
        """Test a transcript without any quality returns None."""
        assert extract('smith answered the question') is None

    def test_empty_transcript(self):
        """Test empty input returns None."""
        assert extract('') is None

    def test_custom_catalog(self):
        """Test a caller-supplied catalog is used."""
        fair = QualityLevel(keyword='Fair', score=2, synonyms=('okay',))
        catalog = (NOT_QUITE, fair)
        assert extract('smith answered okay', catalog) is fair
        assert extract('smith answered excellent', catalog) is None

    def test_empty_catalog(self):
        """Test an empty catalog never matches."""
        assert extract('smith answered excellent', ()) is None

    def test_answer_was_very_good(self):
        """Test a trailing 'very good' scores 4, not 3."""
        assert extract('the answer was very good').score == 4
