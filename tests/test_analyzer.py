import numpy as np
import pandas as pd
import pytest

from spectrum_analysis import SpectrumAnalyzer
from spectrum_analysis.analyzer import AnalysisState
from spectrum_analysis.core.calibration import CalibrationError
from spectrum_analysis.core.fits import FitModel
from spectrum_analysis.core.request import Window

N_CHANNELS = 100
CONFIG = {
    'calibration': {'pixel_depth': 1.0, 'z_origin': 0.0, 'unit': 'eV'},
    'fit': {'model': 'constant', 'window': [0, 10]},
    'integration': {'window': [40, 60]},
    'pca': {'window': [20, 60], 'mean_centering': False, 'weighted': False},
}


def _cube(height=3, width=4, seed=0):
    rng = np.random.default_rng(seed)
    data = 50.0 + rng.uniform(0.0, 5.0, size=(N_CHANNELS, height, width))
    data[40:60] += 10.0
    return data


def _analyzer():
    return SpectrumAnalyzer(_cube(), config=CONFIG)


def test_request_follows_config():
    analyzer = _analyzer()
    req = analyzer.request
    assert req.model is FitModel.CONSTANT
    assert req.fit_window == Window(0, 10)
    assert req.integration_window == Window(40, 60)
    assert req.pca_window == Window(20, 60)
    assert req.calibration_window == Window(0, N_CHANNELS - 1)
    assert analyzer.state is AnalysisState.IDLE
    assert analyzer.calibration.unit == 'eV'


def test_default_config_derives_windows_from_cube():
    analyzer = SpectrumAnalyzer(np.ones((N_CHANNELS, 2, 2)))
    req = analyzer.request
    assert req.model is FitModel.POWER
    assert req.fit_window == Window(0, 5)
    assert req.integration_window == Window(0, 5)
    assert req.pca_window == req.integration_window


def test_operations_advance_state():
    analyzer = _analyzer()
    subtracted = analyzer.subtract()
    assert subtracted.data.shape == (N_CHANNELS, 3, 4)
    assert analyzer.state is AnalysisState.SUBTRACTED
    assert 'fit' in analyzer.results

    signal = analyzer.integrate()
    assert signal.shape == (3, 4)
    assert analyzer.state is AnalysisState.INTEGRATED
    assert np.all(signal > 0)

    scale, net = analyzer.model_integrate()
    assert scale.shape == net.shape == (3, 4)
    hcm = analyzer.hcm_integrate()
    assert np.all(np.isfinite(hcm))

    result = analyzer.pca()
    assert analyzer.state is AnalysisState.PCA_COMPUTED
    assert analyzer.pca_result is result

    rebuilt = analyzer.reconstruct(2)
    assert rebuilt.data.shape == (40, 3, 4)
    assert analyzer.state is AnalysisState.RECONSTRUCTED
    assert analyzer.results['reconstruction'] is rebuilt


def test_reconstruct_requires_pca():
    analyzer = _analyzer()
    with pytest.raises(RuntimeError):
        analyzer.reconstruct(1)
    analyzer.integrate()
    with pytest.raises(RuntimeError):
        analyzer.reconstruct(1)


def test_configure_discards_results():
    analyzer = _analyzer()
    analyzer.pca()
    analyzer.configure(model='linear', integration_window=(45, 55))
    assert analyzer.state is AnalysisState.FIT_CONFIGURED
    assert analyzer.results == {}
    assert analyzer.pca_result is None
    assert analyzer.request.model is FitModel.LINEAR
    assert analyzer.request.integration_window == Window(45, 55)
    with pytest.raises(RuntimeError):
        analyzer.reconstruct(1)


def test_invalid_configuration_keeps_previous_request():
    analyzer = _analyzer()
    analyzer.integrate()
    before = analyzer.request
    with pytest.raises(ValueError):
        analyzer.configure(fit_window=(0, N_CHANNELS + 1))
    with pytest.raises(ValueError):
        analyzer.configure(model='cubic')
    assert analyzer.request is before
    assert analyzer.state is AnalysisState.INTEGRATED
    assert 'integrated' in analyzer.results


def test_failed_recalibration_changes_nothing():
    analyzer = _analyzer()
    analyzer.integrate()
    calibration = analyzer.calibration
    x = analyzer.x.copy()
    with pytest.raises(CalibrationError):
        analyzer.recalibrate(5.0, 5.0)
    with pytest.raises(CalibrationError):
        analyzer.recalibrate("five", 10.0)
    assert analyzer.calibration is calibration
    assert np.array_equal(analyzer.x, x)
    assert analyzer.state is AnalysisState.INTEGRATED
    assert 'integrated' in analyzer.results


def test_recalibration_remaps_axis_and_invalidates():
    analyzer = _analyzer()
    analyzer.integrate()
    analyzer.recalibrate(100.0, 298.0)
    assert analyzer.x[0] == pytest.approx(100.0)
    assert analyzer.x[N_CHANNELS - 1] == pytest.approx(298.0)
    assert analyzer.state is AnalysisState.FIT_CONFIGURED
    assert analyzer.results == {}


def test_profiles_and_preview():
    analyzer = _analyzer()
    frame = analyzer.profile_frame()
    assert isinstance(frame, pd.DataFrame)
    assert list(frame.columns) == ['energy', 'intensity']

    preview = analyzer.preview((0, 0, 2, 2))
    assert list(preview.columns) == ['energy', 'intensity', 'background', 'subtracted']
    background = preview['background'].to_numpy()
    assert np.allclose(background, background[0])


def test_svd_filter_defaults_to_fit_window():
    analyzer = _analyzer()
    filtered = analyzer.svd_filter(1)
    assert filtered.data.shape == (N_CHANNELS, 3, 4)
    assert np.all(filtered.data[10:] == 0)
    assert np.any(filtered.data[:10] != 0)
