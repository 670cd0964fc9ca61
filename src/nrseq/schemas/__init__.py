"""Schema validators for simulation and fit tables."""

from __future__ import annotations

import polars as pl
from dataclasses import dataclass
import pandas as pd

from ..exceptions import ValidationError


@dataclass(frozen=True)
class Schema:
    name: str
    schema: pl.Schema

    @property
    def columns(self) -> list[str]:
        return list(self.schema.names())

    def validate(self, frame: pd.DataFrame) -> None:
        missing = [col for col in self.columns if col not in frame.columns]
        if missing:
            msg = f"{self.name} schema validation failed: missing columns {missing}"
            raise ValidationError(msg, {"missing": missing})
        try:
            pl.DataFrame(frame[self.columns]).cast(dict(self.schema))
        except Exception as exc:
            msg = f"{self.name} schema validation failed: {exc}"
            raise ValidationError(msg) from exc


READ_SCHEMA = Schema(
    name="reads",
    schema=pl.Schema(
        {
            "feature_id": pl.Utf8,
            "site_count": pl.Int64,
            "is_new": pl.Boolean,
            "mutation_count": pl.Int64,
        }
    ),
)

OBSERVATION_SCHEMA = Schema(
    name="observations",
    schema=pl.Schema(
        {
            "feature_id": pl.Utf8,
            "mutation_count": pl.Int64,
            "site_count": pl.Int64,
            "multiplicity": pl.Int64,
        }
    ),
)

TRUTH_SCHEMA = Schema(
    name="truth",
    schema=pl.Schema(
        {
            "feature_id": pl.Utf8,
            "kdeg": pl.Float64,
            "ksyn": pl.Float64,
            "steady_state_abundance": pl.Float64,
            "relative_abundance": pl.Float64,
            "mutable_site_fraction": pl.Float64,
            "fraction_new_truth": pl.Float64,
        }
    ),
)

FIT_RESULT_SCHEMA = Schema(
    name="fit_results",
    schema=pl.Schema(
        {
            "feature_id": pl.Utf8,
            "p_high_hat": pl.Float64,
            "p_low_hat": pl.Float64,
            "fraction_new_hat": pl.Float64,
            "converged": pl.Boolean,
            "status": pl.Utf8,
            "n_reads": pl.Int64,
            "neg_log_likelihood": pl.Float64,
            "n_iterations": pl.Int64,
            "strategy": pl.Utf8,
        }
    ),
)
