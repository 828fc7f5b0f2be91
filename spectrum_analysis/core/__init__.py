"""Core background-fitting utilities for spectrum images.

Modules:
- fits: background models and the batched least-squares solve
- model_fit: per-pixel scale fit against a precomputed background shape
- operators: subtraction, integration, HCM integration, oversampling
- calibration: one-/two-point energy-axis recalibration
- request: analysis windows and parameters
"""

from .fits import (
    FitModel,
    FitResult,
    Fit,
    NoFit,
    ConstantFit,
    LinearFit,
    ExponentialFit,
    PowerFit,
    LCPLFit,
    get_fit,
)
from .model_fit import ModelFit
from .operators import (
    subtract_background,
    integrate,
    hcm_integrate,
    model_integrate,
    oversample,
    preview_profile,
)
from .calibration import Calibration, CalibrationError, recalibrate
from .request import AnalysisRequest, Window
