"""Tests for percentage configuration validation (classification matrix, seasonality)."""

from allocation.validation import validate_matrix_rows, validate_seasonality_rows
from db.models import MONTH_COLUMNS


def _matrix_row(cls, a, b, c):
    return {"destination_classification": cls, "pct_from_a": a, "pct_from_b": b, "pct_from_c": c}


def _season(year, months):
    return {"year": year, **dict(zip(MONTH_COLUMNS, months))}


class TestMatrixValidation:
    def test_valid_matrix(self):
        rows = [_matrix_row("A", 0, 60, 40), _matrix_row("B", 50, 0, 50), _matrix_row("C", 33.3, 33.3, 33.4)]
        assert validate_matrix_rows(rows) == []

    def test_empty_matrix_is_valid(self):
        assert validate_matrix_rows([]) == []

    def test_sum_within_tolerance(self):
        assert validate_matrix_rows([_matrix_row("A", 50.05, 30, 20)], tolerance=0.1) == []

    def test_sum_outside_tolerance(self):
        problems = validate_matrix_rows([_matrix_row("B", 50, 31, 20)], tolerance=0.1)
        assert len(problems) == 1
        assert "destination_classification=B" in problems[0]
        assert "sum to 101.00" in problems[0]

    def test_unknown_classification(self):
        problems = validate_matrix_rows([_matrix_row("D", 50, 30, 20)])
        assert any("destination_classification" in p for p in problems)

    def test_out_of_range_percentage(self):
        problems = validate_matrix_rows([_matrix_row("A", 120, -10, -10)])
        assert any("pct_from_a" in p for p in problems)
        assert any("pct_from_b" in p for p in problems)

    def test_duplicated_classification(self):
        problems = validate_matrix_rows([_matrix_row("A", 100, 0, 0), _matrix_row("A", 0, 100, 0)])
        assert problems == ["destination_classification=A: duplicated row"]


class TestSeasonalityValidation:
    def test_valid_curve(self):
        assert validate_seasonality_rows([_season(2026, [10.0] * 10 + [0.0, 0.0])]) == []

    def test_uniform_rounded_curve_is_within_tolerance(self):
        assert validate_seasonality_rows([_season(2026, [round(100 / 12, 4)] * 12)]) == []

    def test_curve_must_sum_to_100(self):
        problems = validate_seasonality_rows([_season(2026, [10.0] * 12)])
        assert problems == ["year=2026: percentages sum to 120.00, expected 100 ± 0.1"]

    def test_year_out_of_range(self):
        problems = validate_seasonality_rows([_season(1990, [10.0] * 10 + [0.0, 0.0])])
        assert any("'year'" in p for p in problems)
