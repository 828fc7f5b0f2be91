import numpy as np
import pytest

from spectrum_analysis.advanced.pca import compute_pca, noise_weights, svd_filter
from spectrum_analysis.core.fits import ConstantFit
from spectrum_analysis.core.request import AnalysisRequest, Window
from spectrum_analysis.cube import as_cube

N_CHANNELS = 80
HEIGHT, WIDTH = 4, 5
PCA_WINDOW = (20, 60)


def _axis(n=N_CHANNELS):
    return np.arange(n, dtype=float)


def _random_cube(seed=0, level=0.0):
    rng = np.random.default_rng(seed)
    return as_cube(level + rng.uniform(1.0, 20.0, size=(N_CHANNELS, HEIGHT, WIDTH)))


def _request(**changes):
    base = AnalysisRequest(model='none', fit_window=(0, 10), pca_window=PCA_WINDOW)
    return base.replace(**changes)


def _projector(columns):
    q, _ = np.linalg.qr(columns)
    return q @ q.T


@pytest.mark.parametrize("weighted", [False, True])
@pytest.mark.parametrize("centered", [False, True])
def test_full_reconstruction_reproduces_window(weighted, centered):
    cube = _random_cube()
    result = compute_pca(cube, _axis(), _request(weighted_pca=weighted, mean_centering=centered))
    expected = cube.to_matrix(*PCA_WINDOW)
    assert result.component_count == min(expected.shape)
    rebuilt = result.reconstruct(result.component_count)
    assert rebuilt.shape == expected.shape
    assert np.allclose(rebuilt, expected, atol=1e-8 * np.abs(expected).max())


def test_reconstruction_is_background_removed():
    cube = _random_cube(seed=3, level=50.0)
    x = _axis()
    request = _request(model='constant')
    result = compute_pca(cube, x, request)

    background = ConstantFit().create_fit(x, cube.as_matrix(), 0, 10).evaluate(x[20:60])
    expected = cube.to_matrix(*PCA_WINDOW) - background
    rebuilt = result.filter(result.component_count)
    assert rebuilt.data.shape == (40, HEIGHT, WIDTH)
    assert np.allclose(rebuilt.as_matrix(), expected, atol=1e-8 * np.abs(expected).max())


def test_weighted_and_unweighted_agree_on_uniform_statistics():
    m, pixels = 40, HEIGHT * WIDTH
    u = np.sin(np.linspace(0.0, 2.0 * np.pi, m, endpoint=False))
    v = np.linspace(-1.0, 1.0, pixels)
    y = 10.0 + 3.0 * np.outer(u - u.mean(), v - v.mean())
    cube = as_cube(y.reshape(m, HEIGHT, WIDTH))
    request = AnalysisRequest(model='none', fit_window=(0, 0), pca_window=(0, m))

    plain = compute_pca(cube, _axis(m), request)
    weighted = compute_pca(cube, _axis(m), request.replace(weighted_pca=True))

    assert np.allclose(weighted.row_weights, 1.0 / m)
    assert np.allclose(_projector(plain.spectra[:, :2]), _projector(weighted.spectra[:, :2]), atol=1e-8)
    assert np.allclose(_projector(plain.maps[:2].T), _projector(weighted.maps[:2].T), atol=1e-8)
    ratio = weighted.singular_values[:2] / plain.singular_values[:2]
    assert np.allclose(ratio, ratio[0])


def test_scree_and_amplitudes():
    result = compute_pca(_random_cube(seed=4), _axis(), _request())
    scree = result.scree
    assert scree[0] == pytest.approx(np.log1p(result.scree_constant))
    assert np.all(np.diff(scree) <= 1e-12)
    assert np.allclose(result.amplitudes(), result.singular_values)

    table = result.scree_table()
    assert list(table.columns) == ['component', 'singular_value', 'scree']
    assert table['component'].tolist() == list(range(1, result.component_count + 1))

    frame = result.spectra_frame()
    assert frame.columns[0] == 'energy'
    assert frame.shape == (40, result.component_count + 1)


def test_all_zero_window_has_flat_scree():
    cube = as_cube(np.zeros((N_CHANNELS, HEIGHT, WIDTH)))
    result = compute_pca(cube, _axis(), _request(weighted_pca=True))
    assert result.sigma_max == 0
    assert np.all(result.scree == 0)


def test_component_accessors():
    result = compute_pca(_random_cube(seed=5), _axis(), _request())
    assert result.component_map(0).shape == (HEIGHT, WIDTH)
    x, spectrum = result.component_spectrum(1)
    assert np.array_equal(x, _axis()[20:60])
    assert spectrum.shape == (40,)
    with pytest.raises(IndexError):
        result.component_map(result.component_count)
    with pytest.raises(ValueError):
        result.reconstruct(0)
    with pytest.raises(ValueError):
        result.reconstruct(result.component_count + 1)


def test_empty_pca_window_is_rejected():
    with pytest.raises(ValueError):
        compute_pca(_random_cube(), _axis(), _request(pca_window=(30, 30)))


def test_noise_weights_are_normalised():
    y = np.array([[1.0, 4.0], [4.0, 16.0], [0.0, 0.0]])
    g, h = noise_weights(y)
    assert g.sum() == pytest.approx(1.0)
    assert h.sum() == pytest.approx(1.0)
    # Row means 2.5 and 10: the quieter row weighs twice as much
    assert g[0] / g[1] == pytest.approx(2.0)
    # The empty row borrows the smallest non-zero mean
    assert g[2] == pytest.approx(g[0])


def test_svd_filter_keeps_leading_components():
    spectrum = np.exp(-0.5 * ((np.arange(N_CHANNELS) - 40.0) / 6.0) ** 2)
    amplitudes = np.linspace(1.0, 3.0, HEIGHT * WIDTH)
    data = np.outer(spectrum, amplitudes).reshape(N_CHANNELS, HEIGHT, WIDTH)
    cube = as_cube(data)

    filtered = svd_filter(cube, Window(*PCA_WINDOW), 1)
    assert filtered.data.shape == data.shape
    assert np.all(filtered.data[:20] == 0)
    assert np.all(filtered.data[60:] == 0)
    assert np.allclose(filtered.data[20:60], data[20:60])

    with pytest.raises(ValueError):
        svd_filter(cube, Window(*PCA_WINDOW), 0)
