"""
Unit tests for printer canonicalization and compatibility.
"""

import pytest

from printers import COREXY_CLUSTER, compatible_printer_aliases, is_compatible_printer, normalize_printer_name


class TestNormalizePrinterName:
    """Tests for normalize_printer_name()"""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Bambu Lab P2S", "bambulabp2s"),
            ("P2S", "bambulabp2s"),
            ("X1 Carbon", "bambulabx1c"),
            ("Bambu Lab X1C", "bambulabx1c"),
            ("A1 mini", "bambulaba1mini"),
            ("Bambu Lab A1", "bambulaba1"),
            ("Prusa MK4", "prusamk4"),
        ],
    )
    def test_known_and_unknown_families(self, raw, expected):
        assert normalize_printer_name(raw) == expected

    def test_empty(self):
        assert normalize_printer_name("  ") == ""


class TestCompatibility:
    """Tests for compatible_printer_aliases() and is_compatible_printer()"""

    def test_cluster_member_expands(self):
        assert compatible_printer_aliases("P2S") == set(COREXY_CLUSTER)

    def test_non_cluster_printer_is_alone(self):
        assert compatible_printer_aliases("A1") == {"bambulaba1"}

    def test_exact_family(self):
        assert is_compatible_printer("Bambu Lab P2S", "P2S") is True

    def test_cluster_member(self):
        assert is_compatible_printer("Bambu Lab X1 Carbon", "P2S") is True
        assert is_compatible_printer("X1C", "Bambu Lab P2S") is True

    def test_unrelated_printer(self):
        assert is_compatible_printer("Prusa MK4", "P2S") is False
        assert is_compatible_printer("Bambu Lab A1 mini", "P2S") is False

    def test_sub_model_substring(self):
        assert is_compatible_printer("Bambu Lab A1", "A1 mini") is True

    def test_unknown_printer(self):
        assert is_compatible_printer("", "P2S") is False
