"""Energy-axis calibration.

The axis is linear in the channel index, ``x[i] = (i - z_origin) * pixel_depth``.
Recalibration maps two reference channels onto two energies (or one channel
onto an energy plus an energy-per-channel) and returns a new calibration;
the previous one is never mutated.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import numpy as np

from config.config_loader import config_value

logger = logging.getLogger(__name__)

Number = Union[float, int, str]


class CalibrationError(ValueError):
    """Recalibration rejected; ``field`` names the offending input."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


@dataclass(frozen=True)
class Calibration:
    pixel_depth: float = 1.0
    z_origin: float = 0.0
    unit: str = 'Channel'

    def __post_init__(self):
        if not np.isfinite(self.pixel_depth) or self.pixel_depth == 0:
            raise CalibrationError(f"Channel width must be finite and non-zero, got {self.pixel_depth}",
                                   field='pixel_depth')

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> 'Calibration':
        cfg = cfg or {}
        return cls(
            pixel_depth=float(config_value(cfg, 'calibration.pixel_depth', 1.0)),
            z_origin=float(config_value(cfg, 'calibration.z_origin', 0.0)),
            unit=str(config_value(cfg, 'calibration.unit', 'Channel')),
        )

    def axis(self, channel_count: int) -> np.ndarray:
        return (np.arange(channel_count, dtype=float) - self.z_origin) * self.pixel_depth

    def value_of(self, channel: float) -> float:
        return (channel - self.z_origin) * self.pixel_depth

    def channel_of(self, value: float) -> float:
        return value / self.pixel_depth + self.z_origin


def _parse(value: Number, message: str, field: str) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise CalibrationError(message, field=field) from None
    if not np.isfinite(parsed):
        raise CalibrationError(message, field=field)
    return parsed


def recalibrate(calibration: Calibration, channel_count: int, cx0: int, cx1: int,
                e0: Number, e1: Number, unit: Optional[str] = None,
                two_point: bool = True) -> Calibration:
    """
    Build a new calibration from reference channels and energies.

    Args:
        calibration: Current calibration (returned unchanged on error)
        channel_count: Number of channels of the cube
        cx0: Channel of the first reference point
        cx1: Channel of the second reference point (ignored in one-point mode)
        e0: Energy at ``cx0``
        e1: Energy at ``cx1`` in two-point mode, energy per channel otherwise
        unit: New axis unit label; keeps the current one when None
        two_point: Two-point (True) or one-point (False) mode

    Returns:
        Calibration with ``x[cx0] == e0`` and ``x[cx1] == e1``

    Raises:
        CalibrationError: unparsable numbers, an empty channel window or a
            non-positive energy range
    """
    e0 = _parse(e0, "Please enter a valid Energy 1.", 'e0')
    cx0 = int(cx0)
    if two_point:
        e1 = _parse(e1, "Please enter a valid Energy 2.", 'e1')
        cx1 = int(cx1)
    else:
        e1 = e0 + _parse(e1, "Please enter a valid Energy Per Channel.", 'width')
        cx1 = cx0 + 1

    if cx0 >= cx1:
        raise CalibrationError("Can't calibrate: window is too small.", field='window')
    if e0 >= e1:
        raise CalibrationError("Can't calibrate: energy range is nonpositive.", field='energy')
    if cx0 < 0 or (two_point and cx1 >= channel_count) or cx0 >= channel_count:
        raise CalibrationError(
            f"Can't calibrate: reference channels must lie in [0, {channel_count}).", field='window')

    slope = (e1 - e0) / (cx1 - cx0)
    offset = e0 - slope * cx0
    new = Calibration(pixel_depth=slope, z_origin=-offset / slope,
                      unit=calibration.unit if unit is None else str(unit))
    logger.info(f"Recalibrated axis: {slope:.6g} {new.unit}/channel, channel {cx0} -> {e0:g} {new.unit}")
    return new
