"""Distribution fitting and correlated sampling."""

from .truncated import FitResult, TruncatedNormal, fit_from_mean, fit_from_quantiles
from .factors import FactorModel

__all__ = [
    "FactorModel",
    "FitResult",
    "TruncatedNormal",
    "fit_from_mean",
    "fit_from_quantiles",
]
