"""Immutable parameter objects passed into every operator call."""
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from config.config_loader import config_value
from .fits import FitModel


@dataclass(frozen=True)
class Window:
    """Half-open channel range [start, end)."""
    start: int
    end: int

    @classmethod
    def parse(cls, value, default: 'Window') -> 'Window':
        if value is None:
            return default
        if isinstance(value, Window):
            return value
        if isinstance(value, dict):
            return cls(int(value['start']), int(value['end']))
        start, end = value
        return cls(int(start), int(end))

    @property
    def width(self) -> int:
        return max(0, self.end - self.start)

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    @property
    def slice(self) -> slice:
        return slice(self.start, self.end)

    def validate(self, channel_count: int, name: str = 'window') -> 'Window':
        if not (0 <= self.start <= self.end <= channel_count):
            raise ValueError(
                f"Invalid {name} [{self.start}, {self.end}): must satisfy 0 <= start <= end <= {channel_count}"
            )
        return self

    def clamp(self, channel_count: int) -> 'Window':
        start = min(max(0, self.start), channel_count)
        end = min(max(start, self.end), channel_count)
        return Window(start, end)

    def __iter__(self):
        yield self.start
        yield self.end


def default_window(channel_count: int) -> Window:
    """First twentieth of the channels, at least one channel wide."""
    return Window(0, min(channel_count, max(1, channel_count // 20)))


@dataclass(frozen=True)
class AnalysisRequest:
    """Everything an operator needs besides the cube and its axis.

    Any change produces a new request; the session then discards every
    result computed from the previous one.
    """
    model: FitModel = FitModel.POWER
    fit_window: Window = Window(0, 1)
    integration_window: Window = Window(0, 1)
    pca_window: Window = Window(0, 1)
    calibration_window: Window = Window(0, 1)
    mean_centering: bool = False
    weighted_pca: bool = False
    scale_counts: bool = False
    oversampling_fwhm: float = 0.0
    lcpl_percentiles: Tuple[float, float] = (0.2, 0.8)
    scree_constant: float = 1e4

    def __post_init__(self):
        object.__setattr__(self, 'model', FitModel.parse(self.model))
        for name in ('fit_window', 'integration_window', 'pca_window', 'calibration_window'):
            value = getattr(self, name)
            if not isinstance(value, Window):
                object.__setattr__(self, name, Window.parse(value, Window(0, 1)))
        object.__setattr__(self, 'lcpl_percentiles', tuple(float(p) for p in self.lcpl_percentiles))

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]], channel_count: int) -> 'AnalysisRequest':
        cfg = cfg or {}
        fallback = default_window(channel_count)
        fit_window = Window.parse(config_value(cfg, 'fit.window'), fallback)
        integration_window = Window.parse(config_value(cfg, 'integration.window'), fallback)
        pca_window = Window.parse(config_value(cfg, 'pca.window'), integration_window)
        calibration_window = Window.parse(config_value(cfg, 'calibration_window'),
                                          Window(0, max(0, channel_count - 1)))
        return cls(
            model=FitModel.parse(config_value(cfg, 'fit.model', FitModel.POWER)),
            fit_window=fit_window,
            integration_window=integration_window,
            pca_window=pca_window,
            calibration_window=calibration_window,
            mean_centering=bool(config_value(cfg, 'pca.mean_centering', False)),
            weighted_pca=bool(config_value(cfg, 'pca.weighted', False)),
            scale_counts=bool(config_value(cfg, 'display.scale_counts', False)),
            oversampling_fwhm=float(config_value(cfg, 'oversampling.fwhm', 0.0)),
            lcpl_percentiles=tuple(config_value(cfg, 'fit.lcpl_percentiles', (0.2, 0.8))),
            scree_constant=float(config_value(cfg, 'pca.scree_constant', 1e4)),
        )

    def replace(self, **changes) -> 'AnalysisRequest':
        return replace(self, **changes)

    def validate(self, channel_count: int) -> 'AnalysisRequest':
        self.fit_window.validate(channel_count, 'fit window')
        self.integration_window.validate(channel_count, 'integration window')
        self.pca_window.validate(channel_count, 'PCA window')
        if self.oversampling_fwhm < 0:
            raise ValueError(f"Oversampling FWHM must be non-negative, got {self.oversampling_fwhm}")
        if self.scree_constant <= 0:
            raise ValueError(f"Scree constant must be positive, got {self.scree_constant}")
        return self

    def fit_options(self) -> Dict[str, float]:
        if self.model is FitModel.LCPL:
            low, high = self.lcpl_percentiles
            return {'low': low, 'high': high}
        return {}
