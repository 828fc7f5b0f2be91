import pytest

from config.config_loader import config_value, load_config
from spectrum_analysis.core.fits import FitModel
from spectrum_analysis.core.request import AnalysisRequest, Window


def test_default_config_loads():
    config = load_config()
    for section in ('calibration', 'fit', 'integration', 'pca', 'oversampling'):
        assert section in config, f"Missing config section: {section}"
    assert FitModel.parse(config['fit']['model']) is FitModel.POWER


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "absent.yaml"))


def test_config_file_override(tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("fit:\n  model: lcpl\n  window: [2, 12]\n  lcpl_percentiles: [0.1, 0.9]\n", encoding='utf-8')
    config = load_config(str(path))
    request = AnalysisRequest.from_config(config, 50)
    assert request.model is FitModel.LCPL
    assert request.fit_window == Window(2, 12)
    assert request.fit_options() == {'low': 0.1, 'high': 0.9}


def test_config_value_lookup():
    config = {'a': {'b': {'c': 3}, 'empty': None}}
    assert config_value(config, 'a.b.c') == 3
    assert config_value(config, 'a.empty', 'fallback') == 'fallback'
    assert config_value(config, 'a.missing.deeper', 7) == 7
    assert config_value(config, 'a.b.c.d', 0) == 0


def test_request_defaults_and_validation():
    request = AnalysisRequest.from_config({}, 200)
    assert request.fit_window == Window(0, 10)
    assert request.pca_window == request.integration_window
    assert request.calibration_window == Window(0, 199)
    request.validate(200)
    with pytest.raises(ValueError):
        request.replace(oversampling_fwhm=-1.0).validate(200)
    with pytest.raises(ValueError):
        request.replace(pca_window=(150, 120)).validate(200)
    assert AnalysisRequest.from_config({}, 5).fit_window == Window(0, 1)
