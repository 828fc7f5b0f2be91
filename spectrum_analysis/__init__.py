"""
Spectrum Image Analysis Package
-------------------
Background fitting, windowed integration and (weighted) PCA for spectrum images.
"""

__version__ = "1.0.0"

# Import key components for easier access
from .analyzer import AnalysisState, SpectrumAnalyzer
from .cube import SpectrumCube, as_cube
from .core.calibration import Calibration, CalibrationError, recalibrate
from .core.fits import FitModel, FitResult, get_fit
from .core.request import AnalysisRequest, Window
from .advanced.pca import PCAResult, compute_pca
from .runner import AnalysisCancelled, AnalysisRunner

__all__ = [
    'SpectrumAnalyzer',
    'AnalysisState',
    'SpectrumCube',
    'as_cube',
    'Calibration',
    'CalibrationError',
    'recalibrate',
    'FitModel',
    'FitResult',
    'get_fit',
    'AnalysisRequest',
    'Window',
    'PCAResult',
    'compute_pca',
    'AnalysisRunner',
    'AnalysisCancelled',
]
