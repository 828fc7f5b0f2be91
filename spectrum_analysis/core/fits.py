"""Parametric background models for spectrum images.

Every model is linearised through ``fx``/``fy`` and solved by ordinary least
squares once for all pixels: the basis matrix ``M`` (window channels x terms)
is shared, the target matrix ``N`` holds ``fy`` of every pixel's counts.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple, Type

import numpy as np

logger = logging.getLogger(__name__)

# Counts (and energies for power laws) are floored here before taking logs.
LOG_FLOOR = 1e-3


class FitModel(str, Enum):
    """Background models selectable for an analysis."""
    NONE = 'none'
    CONSTANT = 'constant'
    LINEAR = 'linear'
    EXPONENTIAL = 'exponential'
    POWER = 'power'
    LCPL = 'lcpl'

    @classmethod
    def parse(cls, value) -> 'FitModel':
        """Accept enum members, config strings and menu labels ("No Fit", "Power Law")."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for ch in (' ', '_', '-'):
            key = key.replace(ch, '')
        aliases = {
            'none': cls.NONE,
            'nofit': cls.NONE,
            'constant': cls.CONSTANT,
            'linear': cls.LINEAR,
            'exponential': cls.EXPONENTIAL,
            'exp': cls.EXPONENTIAL,
            'power': cls.POWER,
            'powerlaw': cls.POWER,
            'lcpl': cls.LCPL,
        }
        if key not in aliases:
            raise ValueError(f"Unknown fit model: {value!r}. Must be one of {[m.value for m in cls]}")
        return aliases[key]


@dataclass(frozen=True, eq=False)
class FitResult:
    """Per-pixel background coefficients for one fit window.

    ``coeffs`` is always 2 x pixels; single-term models leave row 1 at zero.
    ``fitted`` separates genuinely fitted pixels from unfit ones, which
    evaluate to exactly 0 everywhere.
    """
    fit: 'Fit'
    coeffs: np.ndarray
    fitted: np.ndarray
    start: int
    end: int
    residual: Optional[np.ndarray] = None
    params: Tuple[float, ...] = ()

    @property
    def pixel_count(self) -> int:
        return int(self.coeffs.shape[1])

    @property
    def any_fitted(self) -> bool:
        return bool(np.any(self.fitted))

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        """Background at every channel of ``x`` for every pixel, shape (len(x), pixels)."""
        return self.fit.evaluate(self.coeffs, x, params=self.params, fitted=self.fitted)

    def value_at(self, pixel: int, xi: float) -> float:
        if not self.fitted[pixel]:
            return 0.0
        return self.fit.get_fit_at_x(self.coeffs[0, pixel], self.coeffs[1, pixel], xi, self.params)


def _as_matrix(y) -> np.ndarray:
    arr = np.asarray(y, dtype=float)
    if arr.ndim == 1:
        arr = arr[:, None]
    if arr.ndim != 2:
        raise ValueError(f"Expected a (channels x pixels) matrix, got shape {arr.shape}")
    return arr


def _solve(m: np.ndarray, n: np.ndarray) -> Optional[np.ndarray]:
    """Least squares M @ coeffs ~= N, or None when the basis is degenerate."""
    if not np.all(np.isfinite(m)):
        logger.warning("Background basis contains non-finite values; leaving pixels unfit")
        return None
    try:
        coeffs, _, rank, _ = np.linalg.lstsq(m, n, rcond=None)
    except np.linalg.LinAlgError as e:
        logger.warning(f"Least squares solve failed ({e}); leaving pixels unfit")
        return None
    if rank < m.shape[1]:
        logger.warning(f"Background basis is rank deficient (rank {rank} < {m.shape[1]}); leaving pixels unfit")
        return None
    return coeffs


class Fit:
    """Base class for the background models.

    Subclasses provide ``fx``/``fy`` (the linearising transforms) and
    ``curve`` (the model evaluated in physical units).
    """
    model = None
    n_terms = 2
    # Log-domain models treat an all-zero coefficient pair as "unfit".
    zero_is_unfit = False

    def fx(self, xi):
        return xi

    def fy(self, yi):
        return yi

    def curve(self, c0, c1, x, params: Sequence[float] = ()):
        raise NotImplementedError

    def basis(self, x_window: np.ndarray, params: Sequence[float] = ()) -> np.ndarray:
        return np.column_stack([np.ones_like(x_window), self.fx(x_window)])

    def _unfit(self, pixels: int, start: int, end: int, params: Tuple[float, ...] = ()) -> FitResult:
        return FitResult(fit=self, coeffs=np.zeros((2, pixels)), fitted=np.zeros(pixels, dtype=bool),
                         start=start, end=end, residual=None, params=params)

    def _solve_window(self, x, y, start, end, params: Tuple[float, ...] = ()) -> FitResult:
        pixels = y.shape[1]
        if end <= start:
            return self._unfit(pixels, start, end, params)
        x_window = x[start:end]
        m = self.basis(x_window, params)
        with np.errstate(divide='ignore', invalid='ignore'):
            n = self.fy(y[start:end])
        solved = _solve(m, n)
        if solved is None:
            return self._unfit(pixels, start, end, params)
        coeffs = np.zeros((2, pixels))
        coeffs[:m.shape[1]] = solved
        residual = m @ solved - n
        if self.zero_is_unfit:
            fitted = ~((coeffs[0] == 0) & (coeffs[1] == 0))
        else:
            fitted = np.ones(pixels, dtype=bool)
        return FitResult(fit=self, coeffs=coeffs, fitted=fitted, start=start, end=end,
                         residual=residual, params=params)

    def create_fit(self, x, y, start: int, end: int) -> FitResult:
        """Fit the model over channels [start, end) of every column of ``y``.

        Args:
            x: Calibrated channel axis, one value per channel
            y: Counts as a (channels x pixels) matrix (a 1D spectrum is one pixel)
            start: First channel of the fit window
            end: Channel after the last one of the fit window

        Returns:
            FitResult; a singular or empty window yields all pixels unfit
        """
        return self._solve_window(np.asarray(x, dtype=float), _as_matrix(y), int(start), int(end))

    def evaluate(self, coeffs: np.ndarray, x, params: Sequence[float] = (),
                 fitted: Optional[np.ndarray] = None) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        c0 = coeffs[0][None, :]
        c1 = coeffs[1][None, :]
        with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
            values = np.asarray(self.curve(c0, c1, x[:, None], params), dtype=float)
        values = np.broadcast_to(values, (x.size, coeffs.shape[1])).copy()
        mask = np.ones(coeffs.shape[1], dtype=bool) if fitted is None else np.asarray(fitted, dtype=bool)
        if self.zero_is_unfit:
            mask = mask & ~((coeffs[0] == 0) & (coeffs[1] == 0))
        values[:, ~mask] = 0.0
        return values

    def get_fit_at_x(self, c0: float, c1: float, xi: float, params: Sequence[float] = ()) -> float:
        if self.zero_is_unfit and c0 == 0 and c1 == 0:
            return 0.0
        with np.errstate(over='ignore', divide='ignore', invalid='ignore'):
            return float(self.curve(c0, c1, xi, params))


class NoFit(Fit):
    """Background subtraction disabled: coefficients and background are zero."""
    model = FitModel.NONE

    def fx(self, xi):
        return np.zeros_like(np.asarray(xi, dtype=float))

    def fy(self, yi):
        return np.zeros_like(np.asarray(yi, dtype=float))

    def curve(self, c0, c1, x, params=()):
        return np.zeros_like(np.asarray(x, dtype=float)) * c0

    def create_fit(self, x, y, start, end):
        return self._unfit(_as_matrix(y).shape[1], int(start), int(end))


class ConstantFit(Fit):
    model = FitModel.CONSTANT
    n_terms = 1

    def basis(self, x_window, params=()):
        return np.ones((x_window.size, 1))

    def curve(self, c0, c1, x, params=()):
        return c0 + np.zeros_like(np.asarray(x, dtype=float))


class LinearFit(Fit):
    model = FitModel.LINEAR

    def curve(self, c0, c1, x, params=()):
        return c0 + c1 * np.asarray(x, dtype=float)


class ExponentialFit(Fit):
    model = FitModel.EXPONENTIAL
    zero_is_unfit = True

    def fy(self, yi):
        return np.log(np.maximum(yi, LOG_FLOOR))

    def curve(self, c0, c1, x, params=()):
        return np.exp(c0 + c1 * np.asarray(x, dtype=float))


class PowerFit(Fit):
    model = FitModel.POWER
    zero_is_unfit = True

    def fx(self, xi):
        return np.log(np.maximum(xi, LOG_FLOOR))

    def fy(self, yi):
        return np.log(np.maximum(yi, LOG_FLOOR))

    def curve(self, c0, c1, x, params=()):
        return np.exp(c0 + c1 * self.fx(np.asarray(x, dtype=float)))


class LCPLFit(Fit):
    """Linear combination of two power laws, ``c0*x**R1 + c1*x**R2``.

    The exponents come from the distribution of per-pixel power-law
    exponents over the same window, taken at the ``low``/``high``
    percentiles; ``R2`` is clamped to be non-positive. The amplitudes are then
    a plain linear least squares problem.
    """
    model = FitModel.LCPL
    zero_is_unfit = True

    def __init__(self, low: float = 0.2, high: float = 0.8):
        if not 0.0 <= low <= 1.0 or not 0.0 <= high <= 1.0:
            raise ValueError(f"LCPL percentiles must lie in [0, 1], got ({low}, {high})")
        self.low = float(low)
        self.high = float(high)

    def exponents(self, x, y, start: int, end: int) -> Optional[Tuple[float, float]]:
        power = PowerFit().create_fit(x, y, start, end)
        if not power.any_fitted:
            return None
        slopes = np.sort(power.coeffs[1][power.fitted])
        n = slopes.size
        r1 = slopes[min(int(n * self.low), n - 1)]
        r2 = min(slopes[min(int(n * self.high), n - 1)], 0.0)
        return float(r1), float(r2)

    def basis(self, x_window, params=()):
        r1, r2 = params
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.column_stack([np.power(x_window, r1), np.power(x_window, r2)])

    def curve(self, c0, c1, x, params=()):
        x = np.asarray(x, dtype=float)
        if not params:
            return np.zeros_like(x) * c0
        r1, r2 = params
        return c0 * np.power(x, r1) + c1 * np.power(x, r2)

    def create_fit(self, x, y, start, end):
        x = np.asarray(x, dtype=float)
        y = _as_matrix(y)
        start, end = int(start), int(end)
        exps = self.exponents(x, y, start, end)
        if exps is None:
            return self._unfit(y.shape[1], start, end)
        logger.debug(f"LCPL exponents R1={exps[0]:.4g}, R2={exps[1]:.4g}")
        return self._solve_window(x, y, start, end, params=exps)


FIT_CLASSES: Dict[FitModel, Type[Fit]] = {
    FitModel.NONE: NoFit,
    FitModel.CONSTANT: ConstantFit,
    FitModel.LINEAR: LinearFit,
    FitModel.EXPONENTIAL: ExponentialFit,
    FitModel.POWER: PowerFit,
    FitModel.LCPL: LCPLFit,
}


def get_fit(model, **options) -> Fit:
    """Instantiate the background model for ``model`` (enum member or name).

    Options are forwarded only to models that take them (LCPL ``low``/``high``).
    """
    model = FitModel.parse(model)
    if model is FitModel.LCPL:
        return LCPLFit(**options)
    return FIT_CLASSES[model]()
