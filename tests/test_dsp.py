import numpy as np
import pytest
from scipy import sparse

from bifractalizer.dsp import (
    SolverError,
    closest_power_of_2,
    defractalize,
    defractalizer_matrix,
    factorize,
    fade_in,
    fade_out,
    fractalize,
    linspace,
    series_coefficients,
)

HOST_BLOCK_SIZES = [256, 300, 333, 500, 512, 600, 777, 1024]


def _setup(n, alpha=0.5, beta=2):
    powers, weights = series_coefficients(alpha, beta)
    terms = len(powers)
    x = linspace(0.0, 1.0, n, False)
    solver = factorize(defractalizer_matrix(powers, weights, n, terms))
    return x, powers, weights, terms, solver


def _noise(n, seed):
    rng = np.random.default_rng(seed)
    return rng.uniform(-1.0, 1.0, (2, n)).astype(np.float32)


@pytest.mark.parametrize("n", HOST_BLOCK_SIZES)
def test_fractalize_then_defractalize_restores_input(n):
    x, powers, weights, terms, solver = _setup(n)
    g = _noise(n, n)
    restored = defractalize(fractalize(x, g, powers, weights, terms), solver)
    np.testing.assert_allclose(restored, g, atol=1e-4)


@pytest.mark.parametrize("n", HOST_BLOCK_SIZES)
def test_defractalize_then_fractalize_restores_input(n):
    x, powers, weights, terms, solver = _setup(n)
    f = _noise(n, n + 1)
    restored = fractalize(x, defractalize(f, solver), powers, weights, terms)
    np.testing.assert_allclose(restored, f, atol=1e-4)


def test_linspace_without_endpoint():
    np.testing.assert_allclose(linspace(0.0, 1.0, 4), [0.0, 0.25, 0.5, 0.75])


def test_linspace_with_endpoint():
    result = linspace(0.0, 1.0, 5, True)
    np.testing.assert_allclose(result, [0.0, 0.25, 0.5, 0.75, 1.0])
    assert result.dtype == np.float32


def test_linspace_rejects_negative_count():
    with pytest.raises(ValueError):
        linspace(0.0, 1.0, -1)


def test_series_coefficients_default_beta():
    powers, weights = series_coefficients(0.5, 2)
    assert len(powers) == 20
    assert len(weights) == 20
    np.testing.assert_allclose(powers[:4], [1.0, 2.0, 4.0, 8.0])
    np.testing.assert_allclose(weights[:4], [1.0, 0.5, 0.25, 0.125])


def test_series_coefficients_large_beta():
    powers, weights = series_coefficients(0.9, 8)
    assert len(powers) == 7
    assert powers[-1] == 8.0**6
    assert weights[0] == 1.0


def test_series_coefficients_reject_beta_one():
    with pytest.raises(ValueError):
        series_coefficients(0.5, 1)


def test_fractalize_with_zero_alpha_is_identity():
    n = 300
    powers, weights = series_coefficients(0.0, 2)
    g = _noise(n, 7)
    result = fractalize(linspace(0.0, 1.0, n), g, powers, weights, len(powers))
    np.testing.assert_allclose(result, g)


def test_fractalize_constant_block_gives_weight_sum():
    n = 333
    powers, weights = series_coefficients(0.5, 2)
    result = fractalize(linspace(0.0, 1.0, n), np.ones(n), powers, weights, len(powers))
    np.testing.assert_allclose(result, np.full(n, weights.sum()), rtol=1e-6)


def test_fractalize_matches_matrix_product():
    n = 256
    powers, weights = series_coefficients(0.5, 2)
    g = _noise(n, 3)[0]
    matrix = defractalizer_matrix(powers, weights, n, len(powers))
    result = fractalize(linspace(0.0, 1.0, n), g, powers, weights, len(powers))
    np.testing.assert_allclose(result, matrix @ g.astype(np.float64), atol=1e-5)


def test_fractalize_single_channel_matches_first_channel():
    n = 500
    powers, weights = series_coefficients(0.5, 2)
    x = linspace(0.0, 1.0, n)
    g = _noise(n, 11)
    np.testing.assert_allclose(
        fractalize(x, g[0], powers, weights, 20), fractalize(x, g, powers, weights, 20)[0]
    )


def test_fractalize_rejects_grid_of_wrong_length():
    powers, weights = series_coefficients(0.5, 2)
    with pytest.raises(ValueError):
        fractalize(linspace(0.0, 1.0, 10), np.zeros(12), powers, weights, 20)


def test_fractalize_rejects_too_many_terms():
    powers, weights = series_coefficients(0.5, 8)
    with pytest.raises(ValueError):
        fractalize(linspace(0.0, 1.0, 8), np.zeros(8), powers, weights, 20)


def test_matrix_rows_sum_to_weight_total():
    n = 600
    powers, weights = series_coefficients(0.5, 2)
    matrix = defractalizer_matrix(powers, weights, n, len(powers))
    assert matrix.shape == (n, n)
    row_sums = np.asarray(matrix.sum(axis=1)).ravel()
    np.testing.assert_allclose(row_sums, np.full(n, weights.sum(dtype=np.float64)), rtol=1e-6)
    assert np.all(matrix.diagonal() >= 1.0)


def test_matrix_rejects_empty_size():
    powers, weights = series_coefficients(0.5, 2)
    with pytest.raises(ValueError):
        defractalizer_matrix(powers, weights, 0, 20)


def test_factorize_singular_matrix_raises():
    with pytest.raises(SolverError):
        factorize(sparse.csc_matrix((3, 3)))


def test_solver_error_is_runtime_error():
    with pytest.raises(RuntimeError):
        factorize(sparse.csc_matrix((2, 2)))


def test_factorize_rejects_non_square():
    with pytest.raises(ValueError):
        factorize(sparse.csc_matrix((2, 3)))


def test_defractalize_rejects_wrong_length():
    _, _, _, _, solver = _setup(256)
    with pytest.raises(ValueError):
        defractalize(np.zeros((2, 255)), solver)


def test_fade_in_endpoints_and_monotonic():
    ramp = fade_in(np.ones(8))
    assert ramp[0] == pytest.approx(0.0)
    assert ramp[-1] == pytest.approx(1.0)
    assert np.all(np.diff(ramp) >= 0)


def test_fade_out_is_reversed_fade_in():
    np.testing.assert_allclose(fade_out(np.ones(16))[::-1], fade_in(np.ones(16)), atol=1e-6)


def test_fades_sum_to_one():
    np.testing.assert_allclose(fade_in(np.ones(64)) + fade_out(np.ones(64)), np.ones(64), atol=1e-6)


def test_fades_apply_per_channel_without_modifying_input():
    block = np.ones((2, 8), dtype=np.float32)
    faded = fade_out(block)
    np.testing.assert_allclose(faded[1], fade_out(np.ones(8)))
    np.testing.assert_array_equal(block, np.ones((2, 8)))


@pytest.mark.parametrize(
    "value, expected",
    [(0, 0), (-5, 0), (1, 1), (3, 2), (5, 4), (6, 4), (7, 8), (1024, 1024), (1500, 1024), (1600, 2048)],
)
def test_closest_power_of_2(value, expected):
    assert closest_power_of_2(value) == expected