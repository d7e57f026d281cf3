"""Tests for manifest (dock list) parsing."""

import pytest

from dockmatch.services.manifest import ManifestEntry, ManifestParser, dedupe_entries, parse_manifest_text


@pytest.fixture
def parser():
    """Create manifest parser instance."""
    return ManifestParser()


class TestManifestEntry:
    """Test entry construction."""

    def test_create_uppercases_reference(self):
        entry = ManifestEntry.create(" 87654321 ", "fba15abc", 2)
        assert entry == ManifestEntry("87654321", "FBA15ABC", 2)

    def test_create_requires_both_fields(self):
        assert ManifestEntry.create("", "FBA15ABC") is None
        assert ManifestEntry.create("87654321", None) is None

    @pytest.mark.parametrize("order, ref", [("", "FBA15ABC"), ("87654321", ""), ("  ", "FBA15ABC"), ("87654321", " ")])
    def test_empty_key_fields_rejected(self, order, ref):
        with pytest.raises(ValueError):
            ManifestEntry(order, ref)

    def test_unknown_packages_is_zero(self):
        assert ManifestEntry.create("87654321", "FBA15ABC").total_packages == 0

    def test_dedupe_keeps_first(self):
        a = ManifestEntry("1", "A", 1)
        b = ManifestEntry("1", "A", 5)
        c = ManifestEntry("2", "A", 1)
        assert dedupe_entries([a, b, c]) == [a, c]


class TestManifestParserBasic:
    """Test delimited parsing."""

    def test_named_columns(self, parser):
        content = """order_number,amazon_ref,total_packages
87654321,fba15abcdef,2
87654322,FBA15XYZ123,"""

        entries, errors = parser.parse(content)

        assert len(entries) == 2
        assert len(errors) == 0
        assert entries[0] == ManifestEntry("87654321", "FBA15ABCDEF", 2)
        assert entries[1].total_packages == 0

    def test_spanish_headers_semicolon(self, parser):
        content = """Pedido;Referencia;Bultos
1234567;FBA15ABC;3"""

        entries, errors = parser.parse(content)

        assert entries == [ManifestEntry("1234567", "FBA15ABC", 3)]
        assert errors == []

    def test_tab_delimited(self, parser):
        content = "order\tref\n1234567\tX001234567"
        entries, _ = parser.parse(content)
        assert entries == [ManifestEntry("1234567", "X001234567", 0)]

    def test_positional_without_header(self, parser):
        content = """87654321,FBA15ABCDEF
FBA15XYZ123,87654322"""

        entries, errors = parser.parse(content)

        assert [(e.order_number, e.amazon_ref) for e in entries] == [
            ("87654321", "FBA15ABCDEF"),
            ("87654322", "FBA15XYZ123"),
        ]
        assert errors == []

    def test_duplicates_removed(self, parser):
        content = """order,ref
1234567,FBA15ABC
1234567,fba15abc"""

        entries, _ = parser.parse(content)
        assert len(entries) == 1


class TestManifestParserValidation:
    """Test row-level validation."""

    def test_empty_content(self, parser):
        entries, errors = parser.parse("   ")

        assert entries == []
        assert errors[0].message == "Manifest is empty"

    def test_missing_order(self, parser):
        content = """order_number,amazon_ref
,FBA15ABC"""

        entries, errors = parser.parse(content)

        assert entries == []
        assert len(errors) == 1
        assert errors[0].field == "order_number"
        assert errors[0].row_number == 2

    def test_invalid_packages_keeps_row(self, parser):
        content = """order,ref,packages
1234567,FBA15ABC,lots"""

        entries, errors = parser.parse(content)

        assert entries == [ManifestEntry("1234567", "FBA15ABC", 0)]
        assert errors[0].field == "total_packages"

    def test_negative_packages(self, parser):
        content = """order,ref,packages
1234567,FBA15ABC,-2"""

        _, errors = parser.parse(content)
        assert "positive" in errors[0].message

    def test_single_column_row(self, parser):
        content = "87654321\n87654322,FBA15ABCDEF"
        entries, errors = parser.parse(content)

        assert len(entries) == 1
        assert errors[0].row_number == 1


class TestManifestFreeText:
    """Test free-text manifest scanning."""

    def test_line_pairs(self):
        text = """DOCK LIST 2024-05-01
Pedido 1234567 Ref FBA15ABCDEF
Pedido 7654321 Ref FBA15GHIJKL
Total: 2"""

        entries = parse_manifest_text(text)

        assert [e.order_number for e in entries] == ["1234567", "7654321"]
        assert entries[0].amazon_ref == "FBA15ABCDEF"

    def test_proximity_fallback(self):
        text = "1234567\nCliente Foo\nFBA15ABCDEF"
        assert parse_manifest_text(text) == [ManifestEntry("1234567", "FBA15ABCDEF")]

    def test_empty(self):
        assert parse_manifest_text("") == []
