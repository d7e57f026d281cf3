"""Tests for positional tokens."""

import pytest

from dockmatch.services.ocr import OCRBox
from dockmatch.services.tokens import (
    Token,
    same_line,
    group_into_lines,
    index_tokens,
    tokens_from_text_items,
    tokens_from_ocr_boxes,
    joined_text,
)


def _item(text, x, y, width=20.0):
    return {"str": text, "transform": [1, 0, 0, 10, x, y], "width": width, "height": 10}


class TestLineGrouping:
    """Test grouping tokens into lines."""

    def test_same_line_within_quantum(self):
        assert same_line(100.0, 101.5, 4.0)
        assert not same_line(100.0, 110.0, 4.0)

    def test_same_line_rejects_non_positive_quantum(self):
        with pytest.raises(ValueError):
            same_line(10.0, 10.0, 0)

    def test_jitter_across_multiple_of_quantum_stays_on_one_line(self):
        tokens = [Token("87654321", 50, 681, 40), Token("FBA15ABCDEF", 200, 683, 80), Token("87654322", 50, 660, 40)]
        lines = group_into_lines(tokens, 4.0)

        assert [[t.text for t in line] for line in lines] == [["87654321", "FBA15ABCDEF"], ["87654322"]]

    def test_index_tokens_assigns_positions(self):
        tokens = index_tokens([Token("b", 90, 402, 10), Token("a", 10, 399, 10), Token("c", 10, 300, 10)], 4.0)
        positions = {t.text: (t.line_index, t.token_index) for t in tokens}

        assert positions == {"a": (0, 0), "b": (0, 1), "c": (1, 0)}

    def test_lines_top_to_bottom_left_to_right(self):
        tokens = [
            Token("b", 50, 100, 10),
            Token("c", 10, 50, 10),
            Token("a", 10, 101, 10),
        ]
        lines = group_into_lines(tokens, 4.0)

        assert [[t.text for t in line] for line in lines] == [["a", "b"], ["c"]]


class TestTokenBuilders:
    """Test building tokens from embedded text and OCR boxes."""

    def test_text_items_skip_blank(self):
        tokens = tokens_from_text_items([_item("FBA15ABC", 10, 700), _item("   ", 50, 700)])
        assert [t.text for t in tokens] == ["FBA15ABC"]

    def test_text_items_indexed(self):
        tokens = tokens_from_text_items([
            _item("world", 80, 700),
            _item("hello", 10, 700),
            _item("next", 10, 650),
        ])
        by_text = {t.text: t for t in tokens}

        assert by_text["hello"].line_index == 0
        assert by_text["hello"].token_index == 0
        assert by_text["world"].token_index == 1
        assert by_text["next"].line_index == 1

    def test_ocr_boxes_flip_y(self):
        box = OCRBox(text="87654321", confidence=0.9, bbox=[[10, 20], [90, 20], [90, 40], [10, 40]])
        tokens = tokens_from_ocr_boxes([box], page_height=1000)

        assert tokens[0].x == 10
        assert tokens[0].y == 960
        assert tokens[0].width == 80
        assert tokens[0].height == 20

    def test_joined_text_reading_order(self):
        tokens = tokens_from_text_items([
            _item("2", 200, 600),
            _item("Bultos:", 10, 600),
            _item("FBA15ABC", 10, 700),
        ])
        assert joined_text(tokens) == "FBA15ABC Bultos: 2"
