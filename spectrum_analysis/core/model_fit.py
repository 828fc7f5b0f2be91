"""Batched model fit: reuse one background shape per pixel, solve only its scale."""
import logging
from typing import Optional

import numpy as np

from .fits import Fit, _as_matrix

logger = logging.getLogger(__name__)


class ModelFit:
    """Two-step fit of a background window plus an edge window.

    ``create_model_nog`` evaluates the chosen model once per pixel over the
    background and edge windows. ``create_fit_nog`` then regresses that
    shape onto the observed background counts (one scale per pixel) and sums
    the scaled-background-subtracted edge counts.
    """

    def __init__(self):
        self.backgrounds_and_edges: Optional[np.ndarray] = None
        self._windows = None

    def create_model_nog(self, x, y, b_start: int, b_end: int, e_start: int, e_end: int, fit: Fit) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        result = fit.create_fit(x, _as_matrix(y), b_start, b_end)
        channels = np.concatenate([x[b_start:b_end], x[e_start:e_end]])
        self.backgrounds_and_edges = result.evaluate(channels)
        self._windows = (b_start, b_end, e_start, e_end)
        return self.backgrounds_and_edges

    def create_fit_nog(self, y, b_start: int, b_end: int, e_start: int, e_end: int) -> np.ndarray:
        """
        Per-pixel (scale, net edge signal).

        Args:
            y: Counts as (channels x pixels); may differ from the cube the model
               was built from (e.g. raw counts against a smoothed model)
            b_start, b_end: Background window
            e_start, e_end: Edge (integration) window

        Returns:
            np.ndarray: shape (2, pixels); row 0 the scale, row 1 the net edge sum
        """
        if self.backgrounds_and_edges is None:
            raise RuntimeError("create_model_nog must be called before create_fit_nog")
        if self._windows != (b_start, b_end, e_start, e_end):
            raise ValueError(f"Windows {(b_start, b_end, e_start, e_end)} differ from the model's {self._windows}")
        y = _as_matrix(y)
        sb = b_end - b_start
        model_b = self.backgrounds_and_edges[:sb]
        model_e = self.backgrounds_and_edges[sb:]
        observed_b = y[b_start:b_end]
        observed_e = y[e_start:e_end]

        norm = np.sum(model_b * model_b, axis=0)
        degenerate = norm == 0
        scale = np.zeros(y.shape[1])
        scale[~degenerate] = np.sum(model_b * observed_b, axis=0)[~degenerate] / norm[~degenerate]
        if degenerate.any():
            logger.warning(f"{int(degenerate.sum())} pixel(s) have a zero background model; no background removed")

        net = np.sum(observed_e - scale[None, :] * model_e, axis=0)
        return np.vstack([scale, net])
