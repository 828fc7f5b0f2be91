"""Background subtraction and windowed integration over spectrum cubes.

All operators take the cube, its calibrated axis and an ``AnalysisRequest``;
an optional ``progress`` callable receives fractions in [0, 1].
"""
import logging
from typing import Callable, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.ndimage import gaussian_filter

from ..cube import SpectrumCube
from .fits import Fit, FitResult, NoFit, get_fit
from .model_fit import ModelFit
from .request import AnalysisRequest, Window

logger = logging.getLogger(__name__)

Progress = Optional[Callable[[float], None]]

# FWHM -> Gaussian sigma
FWHM_TO_SIGMA = 1.0 / (2.0 * np.sqrt(2.0 * np.log(2.0)))
CHANNEL_CHUNK = 64


def report(progress: Progress, fraction: float):
    if progress is not None:
        progress(fraction)


def check_axis(x, cube: SpectrumCube) -> np.ndarray:
    x = np.asarray(x, dtype=float)
    if x.shape != (cube.channel_count,):
        raise ValueError(f"Axis has {x.size} values but the cube has {cube.channel_count} channels")
    return x


def oversample(cube: SpectrumCube, fwhm: float) -> SpectrumCube:
    """Spatially blurred copy of ``cube`` (channels untouched); ``fwhm <= 0`` is a no-op."""
    if fwhm <= 0 or cube.rank == 0:
        return cube
    sigma = float(fwhm) * FWHM_TO_SIGMA
    blurred = gaussian_filter(cube.data, sigma=(0.0,) + (sigma,) * cube.rank, mode='nearest')
    logger.debug(f"Oversampled cube with FWHM {fwhm} px (sigma {sigma:.3f})")
    return type(cube)(blurred)


def model_for(request: AnalysisRequest) -> Fit:
    if request.fit_window.is_empty:
        return NoFit()
    return get_fit(request.model, **request.fit_options())


def fit_background(cube: SpectrumCube, x, request: AnalysisRequest) -> FitResult:
    """Fit the request's model over its fit window, on the oversampled cube if asked."""
    x = check_axis(x, cube)
    window = request.fit_window.validate(cube.channel_count, 'fit window')
    source = oversample(cube, request.oversampling_fwhm)
    result = model_for(request).create_fit(x, source.as_matrix(), window.start, window.end)
    logger.debug(f"{request.model.value} fit over channels [{window.start}, {window.end}): "
                 f"{int(np.count_nonzero(result.fitted))}/{result.pixel_count} pixels fitted")
    return result


def subtract_background(cube: SpectrumCube, x, request: AnalysisRequest,
                        progress: Progress = None) -> Tuple[SpectrumCube, FitResult]:
    """
    Subtract the fitted background from every channel from the fit start on.

    Args:
        cube: Spectrum cube
        x: Calibrated axis
        request: Analysis parameters (model, fit window, oversampling)
        progress: Optional progress callable

    Returns:
        (subtracted cube, fit result); channels before the fit start are zero
    """
    x = check_axis(x, cube)
    result = fit_background(cube, x, request)
    report(progress, 0.5)

    y = cube.as_matrix()
    out = np.zeros_like(y)
    n = cube.channel_count
    start = request.fit_window.start
    for lo in range(start, n, CHANNEL_CHUNK):
        hi = min(n, lo + CHANNEL_CHUNK)
        out[lo:hi] = y[lo:hi] - result.evaluate(x[lo:hi])
        report(progress, 0.5 + 0.5 * (hi - start) / (n - start))
    report(progress, 1.0)
    logger.info(f"Background subtracted via {request.model.value} fit from channel {start} "
                f"({cube.pixel_count} pixels)")
    return cube.like(out), result


def integration_weights(window: Window, channel_count: int, endpoint: float = 1.0,
                        interior: float = 1.0) -> np.ndarray:
    """Per-channel weights of the integration rule.

    Endpoints are ``start`` and ``end`` (clamped to the last channel); the
    interior runs over ``start < k < end - 1``.
    """
    weights = np.zeros(channel_count)
    if window.is_empty:
        return weights
    last = min(window.end, channel_count - 1)
    weights[window.start + 1:max(window.start + 1, window.end - 1)] = interior
    weights[window.start] += endpoint
    if last != window.start:
        weights[last] += endpoint
    return weights


def _net_signal(cube: SpectrumCube, x, request: AnalysisRequest, progress: Progress):
    """Observed and background-subtracted counts at the integration channels."""
    x = check_axis(x, cube)
    window = request.integration_window.validate(cube.channel_count, 'integration window')
    result = fit_background(cube, x, request)
    report(progress, 0.5)
    weights = integration_weights(window, cube.channel_count)
    channels = np.nonzero(weights)[0]
    observed = cube.as_matrix()[channels]
    signal = observed - result.evaluate(x[channels])
    return channels, observed, signal


def integrate(cube: SpectrumCube, x, request: AnalysisRequest, progress: Progress = None) -> np.ndarray:
    """Background-subtracted counts summed over the integration window, one value per pixel."""
    window = request.integration_window
    if window.is_empty:
        report(progress, 1.0)
        return cube.pixel_map(np.zeros(cube.pixel_count))
    channels, _, signal = _net_signal(cube, x, request, progress)
    weights = integration_weights(window, cube.channel_count)[channels]
    total = weights @ signal
    report(progress, 1.0)
    logger.info(f"Integrated channels [{window.start}, {window.end}) of background subtracted via "
                f"{request.model.value} fit")
    return cube.pixel_map(total)


def hcm_integrate(cube: SpectrumCube, x, request: AnalysisRequest, progress: Progress = None) -> np.ndarray:
    """
    Chi-squared-like significance map: ``residual**2 / observed`` summed over
    the window, endpoints at half weight.

    Pixels with zero observed counts in the window come out ``inf`` (or ``nan``
    when the residual is also zero); they are left for the caller to mask.
    """
    window = request.integration_window
    if window.is_empty:
        report(progress, 1.0)
        return cube.pixel_map(np.zeros(cube.pixel_count))
    channels, observed, signal = _net_signal(cube, x, request, progress)
    weights = integration_weights(window, cube.channel_count, endpoint=0.5)[channels]
    with np.errstate(divide='ignore', invalid='ignore'):
        total = weights @ (signal * signal / observed)
    bad = int(np.count_nonzero(~np.isfinite(total)))
    if bad:
        logger.warning(f"HCM integration: {bad} pixel(s) have zero observed counts in the window (non-finite result)")
    report(progress, 1.0)
    return cube.pixel_map(total)


def model_integrate(cube: SpectrumCube, x, request: AnalysisRequest,
                    progress: Progress = None) -> Tuple[np.ndarray, np.ndarray]:
    """
    Batched variant of ``integrate``.

    The background shape is fitted on the (optionally oversampled) cube, then
    only its scale is refitted against the raw counts of each pixel.

    Returns:
        (scale map, net integrated signal map)
    """
    x = check_axis(x, cube)
    fw = request.fit_window.validate(cube.channel_count, 'fit window')
    iw = request.integration_window.validate(cube.channel_count, 'integration window')
    source = oversample(cube, request.oversampling_fwhm)
    model_fit = ModelFit()
    model_fit.create_model_nog(x, source.as_matrix(), fw.start, fw.end, iw.start, iw.end, model_for(request))
    report(progress, 0.5)
    coeffs = model_fit.create_fit_nog(cube.as_matrix(), fw.start, fw.end, iw.start, iw.end)
    report(progress, 1.0)
    logger.info(f"Model-integrated channels [{iw.start}, {iw.end}) with {request.model.value} background "
                f"(oversampling FWHM {request.oversampling_fwhm:g})")
    return cube.pixel_map(coeffs[0]), cube.pixel_map(coeffs[1])


def remove_background(cube: SpectrumCube, x, request: AnalysisRequest, window: Window) -> np.ndarray:
    """Counts of ``window`` minus the fitted background, as (window channels x pixels)."""
    x = check_axis(x, cube)
    window = window.validate(cube.channel_count)
    result = fit_background(cube, x, request)
    return cube.to_matrix(window.start, window.end) - result.evaluate(x[window.slice])


def preview_profile(x, y, fit: Fit, window: Window) -> pd.DataFrame:
    """
    Background fit of a single spectrum, for display next to the raw profile.

    Args:
        x: Calibrated axis
        y: One spectrum
        fit: Background model
        window: Fit window

    Returns:
        pd.DataFrame with columns ['energy', 'intensity', 'background', 'subtracted'];
        ``subtracted`` is 0 before the fit start, where the background is 0,
        and where the background exceeds ten times the counts
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.shape != y.shape:
        raise ValueError(f"Axis and profile lengths differ: {x.size} vs {y.size}")
    if window.is_empty:
        fit = NoFit()
    result = fit.create_fit(x, y, window.start, window.end)
    background = result.evaluate(x)[:, 0]
    subtracted = y - background
    keep = (np.arange(y.size) >= window.start) & (background != 0) & (np.abs(background) <= np.abs(10 * y))
    subtracted = np.where(keep, subtracted, 0.0)
    return pd.DataFrame({
        'energy': x,
        'intensity': y,
        'background': background,
        'subtracted': subtracted,
    })
