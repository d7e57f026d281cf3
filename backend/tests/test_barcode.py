"""Tests for DataMatrix decoding and payload parsing."""

import numpy as np
import pytest

from dockmatch.services.barcode import FILTER_ORDER, BarcodeDecoder, parse_payload
from dockmatch.services.imaging import CropArea, FilterKind

from conftest import ScriptedDecoder


class TestParsePayload:
    """Test payload parsing."""

    def test_carrier_format(self):
        parsed = parse_payload("SABCDEFGHI00002")

        assert parsed.ref == "ABCDEFGHI"
        assert parsed.sequence == 1
        assert parsed.total_from_payload == 2

    def test_carrier_total_not_numeric(self):
        parsed = parse_payload("SABCDEFGHIXXABC")

        assert parsed.ref == "ABCDEFGHI"
        assert parsed.total_from_payload is None

    def test_control_characters_stripped(self):
        parsed = parse_payload("\x1dSABCDEFGHI00003\x04")

        assert parsed.ref == "ABCDEFGHI"
        assert parsed.total_from_payload == 3

    def test_carrier_format_with_trailing_data(self):
        parsed = parse_payload("SABC123456XX003rest")

        assert parsed.ref == "ABC123456"
        assert parsed.total_from_payload == 3

    def test_short_sentinel_not_carrier(self):
        assert parse_payload("S123") is None

    def test_fba_prefix(self):
        assert parse_payload("]d2 FBA15ABCDEF 0001").ref == "FBA15ABCDEF"

    def test_x00_prefix(self):
        assert parse_payload("x001abcdef").ref == "X001ABCDEF"

    def test_nine_char_mixed_word(self):
        assert parse_payload("ORDER:AB12CD34E;").ref == "AB12CD34E"

    def test_eight_digit_word(self):
        assert parse_payload("ID 87654321").ref == "87654321"

    def test_nine_letters_only_rejected(self):
        assert parse_payload("ABCDEFGHI") is None

    def test_empty(self):
        assert parse_payload("") is None
        assert parse_payload(None) is None


class TestBarcodeDecoder:
    """Test the filter cascade."""

    @pytest.fixture
    def page(self):
        return np.full((120, 160, 3), 255, dtype=np.uint8)

    def test_filter_order_gentlest_first(self):
        assert FILTER_ORDER == (
            FilterKind.RAW,
            FilterKind.GRAYSCALE,
            FilterKind.THRESHOLD,
            FilterKind.HIGH_CONTRAST,
        )

    def test_first_filter_wins(self, settings, page):
        decode = ScriptedDecoder("SABCDEFGHI00002")
        result = BarcodeDecoder(settings, decode_fn=decode).decode(page)

        assert decode.calls == 1
        assert result.filter_kind is FilterKind.RAW
        assert result.parsed.ref == "ABCDEFGHI"

    def test_falls_through_filters(self, settings, page):
        decode = ScriptedDecoder(None, None, "FBA15ABCDEF")
        result = BarcodeDecoder(settings, decode_fn=decode).decode(page, CropArea(0.5, 0.0, 0.5, 0.5))

        assert decode.calls == 3
        assert result.filter_kind is FilterKind.THRESHOLD
        assert result.image.shape[:2] == (180, 240)

    def test_all_filters_fail(self, settings, page):
        decode = ScriptedDecoder()
        assert BarcodeDecoder(settings, decode_fn=decode).decode(page) is None
        assert decode.calls == len(FILTER_ORDER)

    def test_decoder_error_tries_next_filter(self, settings, page):
        calls = []

        def flaky(image):
            calls.append(image)
            if len(calls) == 1:
                raise RuntimeError("decoder crashed")
            return "ID 87654321"

        result = BarcodeDecoder(settings, decode_fn=flaky).decode(page)

        assert result.filter_kind is FilterKind.GRAYSCALE
        assert result.parsed.ref == "87654321"

    def test_unparseable_payload_kept_raw(self, settings, page):
        result = BarcodeDecoder(settings, decode_fn=ScriptedDecoder("hello")).decode(page)

        assert result.raw_text == "hello"
        assert result.parsed is None
