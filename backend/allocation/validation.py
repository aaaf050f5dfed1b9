"""
Configuration Validation — Pandera schemas for percentage-based allocation config.

Two stored invariants:
  1. Classification matrix: per destination classification,
     pct_from_a + pct_from_b + pct_from_c ≈ 100 (± tolerance)
  2. Product seasonality: the 12 monthly percentages ≈ 100 (± tolerance)

Rows breaking either are rejected at write time (config API) and again at
read time (ConfigurationStore), never silently used by the engine.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import pandas as pd
import pandera as pa
import structlog
from pandera import Check, Column, DataFrameSchema

from db.models import CLASSIFICATIONS, MONTH_COLUMNS

logger = structlog.get_logger()

MATRIX_PCT_COLUMNS = ["pct_from_a", "pct_from_b", "pct_from_c"]
DEFAULT_TOLERANCE = 0.1

_pct_column = Column(
    float,
    checks=[Check.in_range(0, 100, error="percentage must be within 0-100")],
    nullable=False,
    coerce=True,
)

ClassificationMatrixSchema = DataFrameSchema(
    columns={
        "destination_classification": Column(
            str,
            checks=[Check.isin(list(CLASSIFICATIONS), error="classification must be A, B or C")],
            nullable=False,
        ),
        **{col: _pct_column for col in MATRIX_PCT_COLUMNS},
    },
    strict=False,
    coerce=True,
    name="ClassificationMatrix",
)

SeasonalitySchema = DataFrameSchema(
    columns={
        "year": Column(int, checks=[Check.in_range(2000, 2100)], nullable=False, coerce=True),
        **{col: _pct_column for col in MONTH_COLUMNS},
    },
    strict=False,
    coerce=True,
    name="ProductSeasonality",
)


def _schema_problems(schema: DataFrameSchema, df: pd.DataFrame) -> list[str]:
    try:
        schema.validate(df, lazy=True)
    except pa.errors.SchemaErrors as exc:
        return [
            f"{schema.name}: column '{case.column}' failed {case.check} (value: {case.failure_case})"
            for case in exc.failure_cases.itertuples()
        ]
    return []


def _sum_problems(
    df: pd.DataFrame,
    columns: list[str],
    label_column: str,
    tolerance: float,
) -> list[str]:
    values = df[columns].apply(pd.to_numeric, errors="coerce").fillna(0.0)
    totals = values.sum(axis=1)
    off = (totals - 100.0).abs() > tolerance + 1e-9
    return [
        f"{label_column}={df.loc[idx, label_column]}: percentages sum to {totals[idx]:.2f}, expected 100 ± {tolerance}"
        for idx in df.index[off]
    ]


def validate_matrix_rows(rows: Iterable[Mapping[str, Any]], tolerance: float = DEFAULT_TOLERANCE) -> list[str]:
    """Return human-readable problems for classification matrix rows; empty when valid."""
    df = pd.DataFrame(list(rows), columns=["destination_classification", *MATRIX_PCT_COLUMNS])
    if df.empty:
        return []
    problems = _schema_problems(ClassificationMatrixSchema, df)
    problems += _sum_problems(df, MATRIX_PCT_COLUMNS, "destination_classification", tolerance)
    duplicated = df["destination_classification"][df["destination_classification"].duplicated()]
    problems += [f"destination_classification={cls}: duplicated row" for cls in duplicated.unique()]
    if problems:
        logger.warning("allocation.matrix_invalid", problems=len(problems))
    return problems


def validate_seasonality_rows(rows: Iterable[Mapping[str, Any]], tolerance: float = DEFAULT_TOLERANCE) -> list[str]:
    """Return human-readable problems for seasonality records; empty when valid."""
    df = pd.DataFrame(list(rows), columns=["year", *MONTH_COLUMNS])
    if df.empty:
        return []
    problems = _schema_problems(SeasonalitySchema, df)
    problems += _sum_problems(df, list(MONTH_COLUMNS), "year", tolerance)
    if problems:
        logger.warning("allocation.seasonality_invalid", problems=len(problems))
    return problems
