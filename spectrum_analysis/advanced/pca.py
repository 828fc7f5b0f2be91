from dataclasses import dataclass
import logging
from typing import Callable, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import linalg
from sklearn.utils.extmath import svd_flip

from ..core.operators import check_axis, remove_background, report
from ..core.request import AnalysisRequest, Window
from ..cube import SpectrumCube

logger = logging.getLogger(__name__)

DEFAULT_SCREE_CONSTANT = 1e4


@dataclass(eq=False)
class PCAResult:
    """Decomposition of a background-removed PCA window.

    ``spectra`` (window channels x k) and ``maps`` (k x pixels) are already
    divided by the noise weights, so ``spectra @ diag(s) @ maps`` plus the
    centering offset reproduces the window in physical units.
    """
    singular_values: np.ndarray
    spectra: np.ndarray
    maps: np.ndarray
    x: np.ndarray
    window: Window
    cube: SpectrumCube
    row_weights: np.ndarray
    column_weights: np.ndarray
    offset: np.ndarray
    weighted: bool = False
    mean_centered: bool = False
    scree_constant: float = DEFAULT_SCREE_CONSTANT

    @property
    def component_count(self) -> int:
        return int(self.singular_values.size)

    @property
    def sigma_max(self) -> float:
        return float(self.singular_values.max()) if self.singular_values.size else 0.0

    @property
    def scree(self) -> np.ndarray:
        """``log(1 + c * s / s_max)``; all zero for an all-zero window."""
        if self.sigma_max == 0:
            return np.zeros_like(self.singular_values)
        return np.log1p(self.scree_constant * self.singular_values / self.sigma_max)

    @property
    def component_numbers(self) -> np.ndarray:
        return np.arange(1, self.component_count + 1)

    def _check_index(self, i: int):
        if not 0 <= i < self.component_count:
            raise IndexError(f"Component index {i} out of range [0, {self.component_count})")

    def component_map(self, i: int) -> np.ndarray:
        self._check_index(i)
        return self.cube.pixel_map(self.maps[i])

    def component_spectrum(self, i: int) -> Tuple[np.ndarray, np.ndarray]:
        self._check_index(i)
        return self.x, self.spectra[:, i]

    def amplitudes(self, k: Optional[int] = None) -> np.ndarray:
        """Singular values recovered from the scree series, ``(exp(scree) - 1) * s_max / c``."""
        k = self.component_count if k is None else k
        return np.expm1(self.scree[:k]) * self.sigma_max / self.scree_constant

    def scree_table(self) -> pd.DataFrame:
        return pd.DataFrame({
            'component': self.component_numbers,
            'singular_value': self.singular_values,
            'scree': self.scree,
        })

    def spectra_frame(self) -> pd.DataFrame:
        frame = pd.DataFrame({'energy': self.x})
        for i in range(self.component_count):
            frame[f'PC{i + 1}'] = self.spectra[:, i]
        return frame

    def reconstruct(self, k: int) -> np.ndarray:
        """Window counts rebuilt from the first ``k`` components, (window channels x pixels)."""
        k = int(k)
        if not 1 <= k <= self.component_count:
            raise ValueError(f"Number of components must be between 1 and {self.component_count}, got {k}")
        filtered = (self.spectra[:, :k] * self.amplitudes(k)[None, :]) @ self.maps[:k]
        if self.mean_centered:
            filtered += self.offset[:, None] / (self.row_weights[:, None] * self.column_weights[None, :])
        return filtered

    def filter(self, k: int) -> SpectrumCube:
        """Reconstruction as a cube of PCA-window depth."""
        return self.cube.like(self.reconstruct(k))


def noise_weights(y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Row (channel) and column (pixel) weights for count data.

    Each weight is ``mean(|y|) ** -0.5`` along the other axis, normalised so
    the weights sum to one. Rows or columns with zero mean take the smallest
    non-zero mean.

    Args:
        y: Raw counts, (channels x pixels)

    Returns:
        (g, h): channel weights and pixel weights
    """
    abs_y = np.abs(np.asarray(y, dtype=float))
    g = _inverse_sqrt(abs_y.mean(axis=1))
    h = _inverse_sqrt(abs_y.mean(axis=0))
    return g / g.sum(), h / h.sum()


def _inverse_sqrt(means: np.ndarray) -> np.ndarray:
    means = np.array(means, dtype=float)
    positive = means > 0
    if not positive.any():
        return np.ones_like(means)
    means[~positive] = means[positive].min()
    return means ** -0.5


def decompose(y: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Thin SVD with deterministic signs. Failures are fatal for the caller."""
    try:
        u, s, vt = linalg.svd(y, full_matrices=False)
    except (np.linalg.LinAlgError, ValueError) as e:
        logger.error(f"Singular value decomposition failed on a {y.shape[0]}x{y.shape[1]} matrix: {e}")
        raise
    u, vt = svd_flip(u, vt)
    return u, s, vt


def compute_pca(cube: SpectrumCube, x, request: AnalysisRequest,
                progress: Optional[Callable[[float], None]] = None) -> PCAResult:
    """
    PCA (optionally noise weighted) of the background-removed PCA window.

    Args:
        cube: Spectrum cube
        x: Calibrated axis
        request: Model, fit and PCA windows, ``mean_centering``, ``weighted_pca``
        progress: Optional progress callable, reported around the SVD

    Returns:
        PCAResult
    """
    x = check_axis(x, cube)
    window = request.pca_window.validate(cube.channel_count, 'PCA window')
    if window.is_empty:
        raise ValueError("PCA window is empty")
    report(progress, 0.0)

    y = remove_background(cube, x, request, window)
    report(progress, 0.25)

    if request.weighted_pca:
        g, h = noise_weights(cube.to_matrix(window.start, window.end))
        y = y * g[:, None] * h[None, :]
    else:
        g = np.ones(window.width)
        h = np.ones(cube.pixel_count)

    offset = np.zeros(window.width)
    if request.mean_centering:
        offset = y.mean(axis=1)
        y = y - offset[:, None]
    report(progress, 0.5)

    u, s, vt = decompose(y)
    report(progress, 0.9)

    result = PCAResult(
        singular_values=s,
        spectra=u / g[:, None],
        maps=vt / h[None, :],
        x=x[window.slice].copy(),
        window=window,
        cube=cube,
        row_weights=g,
        column_weights=h,
        offset=offset,
        weighted=request.weighted_pca,
        mean_centered=request.mean_centering,
        scree_constant=request.scree_constant,
    )
    report(progress, 1.0)
    logger.info(f"{'Weighted ' if request.weighted_pca else ''}PCA of channels [{window.start}, {window.end}): "
                f"{result.component_count} components, s_max={result.sigma_max:.4g}")
    return result


def svd_filter(cube: SpectrumCube, window: Window, n_components: int,
               progress: Optional[Callable[[float], None]] = None) -> SpectrumCube:
    """
    Truncated-SVD denoising of the raw counts in ``window``.

    No background is removed and rows are not centered. Channels outside the
    window are zero in the returned full-depth cube.
    """
    window = window.validate(cube.channel_count)
    if window.is_empty:
        raise ValueError("SVD filter window is empty")
    y = cube.to_matrix(window.start, window.end)
    n_components = int(n_components)
    limit = min(y.shape)
    if not 1 <= n_components <= limit:
        raise ValueError(f"Number of components must be between 1 and {limit}, got {n_components}")
    report(progress, 0.0)
    u, s, vt = decompose(y)
    report(progress, 0.5)
    out = np.zeros((cube.channel_count, cube.pixel_count))
    out[window.slice] = (u[:, :n_components] * s[:n_components]) @ vt[:n_components]
    report(progress, 1.0)
    logger.info(f"SVD filter kept {n_components}/{limit} components over channels [{window.start}, {window.end})")
    return cube.like(out)
