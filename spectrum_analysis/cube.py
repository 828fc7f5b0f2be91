"""Spectrum-image containers.

Every cube stores its counts as an array shaped ``(channels, *spatial)`` and
is addressable as a ``(channels x pixels)`` matrix with pixels enumerated in
row-major order. Subclasses only differ in their spatial geometry and in how
a region of interest is averaged into a profile.
"""
import logging
from typing import Optional, Sequence, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)


class SpectrumCube:
    """Base class; use ``as_cube`` to wrap a raw array."""
    rank = None

    def __init__(self, data: np.ndarray):
        data = np.asarray(data, dtype=float)
        if data.ndim != self.rank + 1:
            raise ValueError(f"{type(self).__name__} expects a {self.rank + 1}D array, got shape {data.shape}")
        if data.shape[0] == 0:
            raise ValueError("Spectrum cube has no channels")
        self.data = data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(channels={self.channel_count}, spatial={self.spatial_shape})"

    @property
    def channel_count(self) -> int:
        return int(self.data.shape[0])

    @property
    def spatial_shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape[1:])

    @property
    def pixel_count(self) -> int:
        return int(np.prod(self.spatial_shape, dtype=int))

    def channel_at(self, pixel: int, channel: int) -> float:
        return float(self.data.reshape(self.channel_count, -1)[channel, pixel])

    def _spatial_index(self, x: int, y: int) -> Tuple[int, ...]:
        raise NotImplementedError

    def get_pixel_value(self, channel: int, x: int = 0, y: int = 0) -> float:
        return float(self.data[(channel,) + self._spatial_index(x, y)])

    def set_pixel_value(self, channel: int, x: int, y: int, value: float):
        self.data[(channel,) + self._spatial_index(x, y)] = value

    def as_matrix(self) -> np.ndarray:
        """All channels as a (channels x pixels) view of the cube data."""
        return self.data.reshape(self.channel_count, self.pixel_count)

    def to_matrix(self, start: int = 0, end: Optional[int] = None) -> np.ndarray:
        """Channels [start, end) as a (channels x pixels) matrix (a copy)."""
        end = self.channel_count if end is None else end
        return self.data[start:end].reshape(end - start, self.pixel_count).copy()

    def like(self, matrix: np.ndarray) -> 'SpectrumCube':
        """New cube of this geometry built from a (channels x pixels) matrix."""
        matrix = np.asarray(matrix, dtype=float)
        return type(self)(matrix.reshape((matrix.shape[0],) + self.spatial_shape))

    def pixel_map(self, values: np.ndarray) -> np.ndarray:
        """Reshape one value per pixel to the spatial geometry."""
        return np.asarray(values).reshape(self.spatial_shape)

    def copy(self) -> 'SpectrumCube':
        return type(self)(self.data.copy())

    def profile(self, roi=None) -> np.ndarray:
        raise NotImplementedError


class SpectrumCube0D(SpectrumCube):
    """A single spectrum: one pixel."""
    rank = 0

    def _spatial_index(self, x, y):
        return ()

    def profile(self, roi=None) -> np.ndarray:
        return self.data.copy()


class SpectrumCube1D(SpectrumCube):
    """A line scan shaped (channels, positions)."""
    rank = 1

    def _spatial_index(self, x, y):
        return (y,)

    def profile(self, roi: Optional[Tuple[int, int]] = None) -> np.ndarray:
        """Mean spectrum over positions [start, stop), all positions when None."""
        if roi is None:
            return self.data.mean(axis=1)
        start, stop = (int(v) for v in roi)
        if stop <= start:
            raise ValueError(f"Empty position range [{start}, {stop})")
        return self.data[:, start:stop].mean(axis=1)


class SpectrumCube2D(SpectrumCube):
    """A spectrum image shaped (channels, height, width); pixel = width*row + col."""
    rank = 2

    @property
    def width(self) -> int:
        return int(self.data.shape[2])

    @property
    def height(self) -> int:
        return int(self.data.shape[1])

    def _spatial_index(self, x, y):
        return (y, x)

    def profile(self, roi: Optional[Union[np.ndarray, Sequence[int]]] = None) -> np.ndarray:
        """
        Mean spectrum over a region of interest.

        Args:
            roi: None for the whole image, a boolean (height, width) mask, or a
                 rectangle (x, y, width, height)

        Returns:
            np.ndarray: One mean value per channel
        """
        if roi is None:
            return self.data.reshape(self.channel_count, -1).mean(axis=1)
        roi_arr = np.asarray(roi)
        if roi_arr.dtype == bool:
            if roi_arr.shape != self.spatial_shape:
                raise ValueError(f"ROI mask shape {roi_arr.shape} does not match image {self.spatial_shape}")
            if not roi_arr.any():
                raise ValueError("ROI mask selects no pixels")
            return self.data[:, roi_arr].mean(axis=1)
        x0, y0, w, h = (int(v) for v in roi_arr)
        region = self.data[:, max(0, y0):y0 + h, max(0, x0):x0 + w]
        if region.size == 0:
            raise ValueError(f"ROI rectangle {tuple(roi_arr)} lies outside the image")
        return region.reshape(self.channel_count, -1).mean(axis=1)


CUBE_CLASSES = {1: SpectrumCube0D, 2: SpectrumCube1D, 3: SpectrumCube2D}


def as_cube(data: Union[SpectrumCube, np.ndarray]) -> SpectrumCube:
    """Wrap an array shaped (channels,), (channels, positions) or (channels, height, width)."""
    if isinstance(data, SpectrumCube):
        return data
    arr = np.asarray(data)
    if not np.issubdtype(arr.dtype, np.number):
        raise TypeError(f"Unsupported cube data type: {arr.dtype}")
    if arr.ndim not in CUBE_CLASSES:
        raise TypeError(f"Unsupported cube rank: expected 1-3 dimensions, got shape {arr.shape}")
    cube = CUBE_CLASSES[arr.ndim](arr)
    logger.debug(f"Wrapped {cube!r}")
    return cube
