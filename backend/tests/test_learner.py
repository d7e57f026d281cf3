"""Tests for the spatial pattern learner."""

import logging

import pytest

from dockmatch.services.learner import SpatialPatternLearner
from dockmatch.services.manifest import ManifestEntry
from dockmatch.services.tokens import Token


def _tok(text, x, y):
    return Token(text=text, x=x, y=y, width=10.0 * len(text))


@pytest.fixture
def learner(settings):
    return SpatialPatternLearner(settings)


@pytest.fixture
def page():
    """Header, three data rows and a footer."""
    return [
        _tok("Pedido", 50, 700), _tok("Referencia", 200, 700), _tok("Bultos", 350, 700),
        _tok("87654321", 50, 680), _tok("FBA15ABCDEF", 200, 680), _tok("2", 350, 680),
        _tok("87654322", 52, 660), _tok("FBA15XYZ987", 198, 660), _tok("1", 352, 660),
        _tok("87654323", 49, 640), _tok("X001234567", 203, 640),
        _tok("Total", 50, 100), _tok("3", 200, 100),
    ]


class TestSpatialPatternLearner:
    """Test layout replay."""

    def test_header_and_footer_skipped(self, learner, page):
        entries = learner.learn([page], page[3], page[4])

        assert len(entries) == 3
        assert [e.order_number for e in entries] == ["87654321", "87654322", "87654323"]
        assert entries[2].amazon_ref == "X001234567"

    def test_packages_column(self, learner, page):
        entries = learner.learn([page], page[3], page[4], packages_example=page[5])
        assert [e.total_packages for e in entries] == [2, 1, 0]

    def test_split_token_concatenated(self, learner):
        tokens = [
            _tok("87654321", 50, 500),
            _tok("ABCDEF", 225, 500),
            _tok("FBA15", 195, 500),
        ]
        entries = learner.learn([tokens], tokens[0], tokens[2])
        assert entries == [ManifestEntry("87654321", "FBA15ABCDEF")]

    def test_tokens_outside_tolerance_ignored(self, learner):
        tokens = [
            _tok("87654321", 50, 500),
            _tok("FBA15ABCDEF", 200, 500),
            _tok("NOTE", 500, 500),
        ]
        entries = learner.learn([tokens], tokens[0], tokens[1])
        assert entries[0].amazon_ref == "FBA15ABCDEF"

    def test_order_digit_bounds(self, learner):
        tokens = [
            _tok("12345", 50, 500), _tok("FBA15ABCDEF", 200, 500),
            _tok("12345678901", 50, 480), _tok("FBA15XYZ987", 200, 480),
        ]
        assert learner.learn([tokens], tokens[0], tokens[1]) == []

    def test_multiple_pages_deduplicated(self, learner, page):
        entries = learner.learn([page, page], page[3], page[4])
        assert len(entries) == 3

    def test_examples_on_different_lines_warn(self, learner, page, caplog):
        with caplog.at_level(logging.WARNING, logger="dockmatch.services.learner"):
            entries = learner.learn([page], page[3], page[7])

        assert "not on the same line" in caplog.text
        assert len(entries) == 3

    def test_assign_columns_nearest_anchor(self, learner):
        line = [_tok("87654321", 60, 10), _tok("FBA1", 110, 10)]
        columns = learner.assign_columns(line, {"order": 50.0, "reference": 120.0})
        assert columns == {"order": "87654321", "reference": "FBA1"}

    def test_jittered_row_read_as_one_line(self, learner, caplog):
        tokens = [_tok("87654321", 50, 681), _tok("FBA15ABCDEF", 200, 683)]
        with caplog.at_level(logging.WARNING, logger="dockmatch.services.learner"):
            entries = learner.learn([tokens], tokens[0], tokens[1])

        assert entries == [ManifestEntry("87654321", "FBA15ABCDEF")]
        assert "not on the same line" not in caplog.text
