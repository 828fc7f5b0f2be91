"""
Analysis session for spectrum images.
"""
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Union
import logging

import numpy as np
import pandas as pd

from config.config_loader import load_config
from .advanced.pca import PCAResult, compute_pca, svd_filter
from .core.calibration import Calibration, recalibrate
from .core.operators import (
    hcm_integrate,
    integrate,
    model_for,
    model_integrate,
    preview_profile,
    subtract_background,
)
from .core.request import AnalysisRequest, Window
from .cube import SpectrumCube, as_cube

logger = logging.getLogger(__name__)

Progress = Optional[Callable[[float], None]]


class AnalysisState(Enum):
    IDLE = 'idle'
    FIT_CONFIGURED = 'fit_configured'
    SUBTRACTED = 'subtracted'
    INTEGRATED = 'integrated'
    PCA_COMPUTED = 'pca_computed'
    RECONSTRUCTED = 'reconstructed'


class SpectrumAnalyzer:
    """Background fitting, integration and PCA over one spectrum cube.

    The analyzer owns the current ``AnalysisRequest`` and calibration. Any
    change to either discards every result computed so far; nothing is
    updated incrementally.
    """

    def __init__(self, cube: Union[SpectrumCube, np.ndarray], calibration: Optional[Calibration] = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize the analyzer.

        Args:
            cube: Spectrum cube, or an array shaped (channels, ...)
            calibration: Axis calibration; read from config when None
            config: Configuration dictionary; `config/config.yaml` when None
        """
        self.config = config or load_config()
        self.cube = as_cube(cube)
        self.calibration = calibration or Calibration.from_config(self.config)
        self.request = AnalysisRequest.from_config(self.config, self.cube.channel_count)
        self.request.validate(self.cube.channel_count)
        self.state = AnalysisState.IDLE
        self.results: Dict[str, Any] = {}

    @property
    def x(self) -> np.ndarray:
        return self.calibration.axis(self.cube.channel_count)

    @property
    def pca_result(self) -> Optional[PCAResult]:
        return self.results.get('pca')

    def _invalidate(self):
        self.results = {}
        self.state = AnalysisState.FIT_CONFIGURED

    def configure(self, **changes) -> AnalysisRequest:
        """Apply window/model/flag changes; downstream results are discarded."""
        request = self.request.replace(**changes).validate(self.cube.channel_count)
        self.request = request
        self._invalidate()
        logger.debug(f"Configured analysis: {request}")
        return request

    def subtract(self, progress: Progress = None) -> SpectrumCube:
        subtracted, fit_result = subtract_background(self.cube, self.x, self.request, progress=progress)
        self.results['fit'] = fit_result
        self.results['subtracted'] = subtracted
        self.state = AnalysisState.SUBTRACTED
        return subtracted

    def integrate(self, progress: Progress = None) -> np.ndarray:
        signal = integrate(self.cube, self.x, self.request, progress=progress)
        self.results['integrated'] = signal
        self.state = AnalysisState.INTEGRATED
        return signal

    def hcm_integrate(self, progress: Progress = None) -> np.ndarray:
        signal = hcm_integrate(self.cube, self.x, self.request, progress=progress)
        self.results['hcm_integrated'] = signal
        self.state = AnalysisState.INTEGRATED
        return signal

    def model_integrate(self, progress: Progress = None) -> Tuple[np.ndarray, np.ndarray]:
        scale, net = model_integrate(self.cube, self.x, self.request, progress=progress)
        self.results['model_integrated'] = (scale, net)
        self.state = AnalysisState.INTEGRATED
        return scale, net

    def pca(self, progress: Progress = None) -> PCAResult:
        result = compute_pca(self.cube, self.x, self.request, progress=progress)
        self.results['pca'] = result
        self.results.pop('reconstruction', None)
        self.state = AnalysisState.PCA_COMPUTED
        return result

    def reconstruct(self, components: int) -> SpectrumCube:
        """Rebuild the PCA window from the first ``components`` components."""
        if self.state not in (AnalysisState.PCA_COMPUTED, AnalysisState.RECONSTRUCTED) or self.pca_result is None:
            raise RuntimeError(f"Reconstruction needs a computed PCA (current state: {self.state.value})")
        filtered = self.pca_result.filter(components)
        self.results['reconstruction'] = filtered
        self.state = AnalysisState.RECONSTRUCTED
        return filtered

    def svd_filter(self, components: int, window: Optional[Window] = None,
                   progress: Progress = None) -> SpectrumCube:
        """Truncated-SVD filter of the raw counts in ``window`` (the fit window by default)."""
        return svd_filter(self.cube, window or self.request.fit_window, components, progress=progress)

    def recalibrate(self, e0, e1, cx0: Optional[int] = None, cx1: Optional[int] = None,
                    unit: Optional[str] = None, two_point: bool = True) -> Calibration:
        """
        Remap the axis from reference channels (the calibration window by default).

        On error the calibration and all results are left untouched.
        """
        cx0 = self.request.calibration_window.start if cx0 is None else cx0
        cx1 = self.request.calibration_window.end if cx1 is None else cx1
        calibration = recalibrate(self.calibration, self.cube.channel_count, cx0, cx1, e0, e1,
                                  unit=unit, two_point=two_point)
        self.calibration = calibration
        self._invalidate()
        return calibration

    def profile_frame(self, roi=None) -> pd.DataFrame:
        return pd.DataFrame({'energy': self.x, 'intensity': self.cube.profile(roi)})

    def preview(self, roi=None) -> pd.DataFrame:
        """Background fit of the ROI profile over the current fit window."""
        return preview_profile(self.x, self.cube.profile(roi), model_for(self.request), self.request.fit_window)
