"""Calibration feedback from realised scores."""

from .loop import (
    CalibrationLoop,
    CalibrationObservation,
    CalibrationReport,
    CalibrationState,
    RoleAdjustment,
    RoleReport,
    apply_calibration,
)
from .metrics import gaussian_crps, interval_coverage, quantile_ece, sample_crps

__all__ = [
    "CalibrationLoop",
    "CalibrationObservation",
    "CalibrationReport",
    "CalibrationState",
    "RoleAdjustment",
    "RoleReport",
    "apply_calibration",
    "gaussian_crps",
    "interval_coverage",
    "quantile_ece",
    "sample_crps",
]
