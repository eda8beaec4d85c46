"""
Pandera schemas for calibration outputs

This module defines data validation schemas using Pandera for the
DataFrames returned by the summaries, the tuning grid search and the
Hamilton pipeline.
"""

import pandera.pandas as pa
from pandera.typing import Series

# ============================================================================
# POSTERIOR SUMMARY SCHEMAS
# ============================================================================

class CsmfSummarySchema(pa.DataFrameModel):
    """Schema for per-cause CSMF posterior summaries"""
    cause: Series[str] = pa.Field(unique=True, description="Cause label")
    mean: Series[float] = pa.Field(ge=0, le=1, description="Posterior mean CSMF")
    lower: Series[float] = pa.Field(ge=0, le=1, description="Lower credible bound")
    upper: Series[float] = pa.Field(ge=0, le=1, description="Upper credible bound")

    @pa.dataframe_check
    def check_interval_order(cls, df):
        return df["lower"] <= df["upper"] + 1e-12

    @pa.dataframe_check
    def check_means_sum_to_one(cls, df):
        return abs(df["mean"].sum() - 1.0) < 1e-6


class CsmfSamplesSchema(pa.DataFrameModel):
    """Schema for kept CSMF draws (one column per cause)"""
    class Config:
        strict = False  # Cause columns vary by run

    @pa.dataframe_check
    def check_rows_sum_to_one(cls, df):
        return (df.sum(axis=1) - 1.0).abs() < 1e-9


# ============================================================================
# MODEL SELECTION SCHEMAS
# ============================================================================

class WaicTableSchema(pa.DataFrameModel):
    """Schema for the WAIC table of a shrinkage grid search"""
    value: Series[float] = pa.Field(gt=0, unique=True, description="Shrinkage strength (alpha or lambda)")
    waic: Series[float] = pa.Field(description="WAIC (lower is better)")
    lppd: Series[float] = pa.Field(description="Log pointwise predictive density")
    p_waic: Series[float] = pa.Field(ge=0, description="Effective number of parameters")
    rhat_max: Series[float] = pa.Field(nullable=True, description="Largest CSMF R-hat across chains")
    converged: Series[bool] = pa.Field(description="False when a convergence warning was raised")
    issues: Series[str] = pa.Field(description="Semicolon-separated convergence issues")
