"""Fractal series synthesis of audio blocks and its inverse.

A block ``g`` of ``N`` samples is turned into

    f(x) = sum_{n < max_terms} alpha**n * g({beta**n * x})

on a grid of ``N`` points in ``[0, 1)``, where ``{.}`` is the fractional part.
The inverse ("defractalizing") solves the sparse linear system that this sum
describes.
"""

from __future__ import annotations

import math

import numpy as np
from scipy import sparse
from scipy.sparse import linalg as sparse_linalg

DEFAULT_MAX_TERMS = 20
_TERM_LIMIT = 1000001


class SolverError(RuntimeError):
    """Raised when the defractalizer system cannot be factorized or solved."""


def linspace(start, end, num, endpoint=False):
    """Return ``num`` evenly spaced single-precision values from ``start``."""
    if num < 0:
        raise ValueError(f"number of points must not be negative, got {num}")
    if num == 0:
        return np.empty(0, dtype=np.float32)
    denominator = num - 1 if endpoint else num
    if denominator == 0:
        return np.full(1, start, dtype=np.float32)
    step = (np.float32(end) - np.float32(start)) / np.float32(denominator)
    return np.float32(start) + np.arange(num, dtype=np.float32) * step


def series_coefficients(alpha, beta):
    """Return the powers ``beta**n`` and weights ``alpha**n`` of the series.

    The number of terms is the smallest count for which ``beta**n`` exceeds
    one million.
    """
    if beta <= 1:
        raise ValueError(f"beta must be greater than 1, got {beta}")
    max_terms = math.ceil(math.log(_TERM_LIMIT) / math.log(beta))
    factors = np.full(max_terms, np.float32(beta), dtype=np.float32)
    factors[0] = 1.0
    ratios = np.full(max_terms, np.float32(alpha), dtype=np.float32)
    ratios[0] = 1.0
    beta_pow_n = np.cumprod(factors, dtype=np.float32)
    weights = np.cumprod(ratios, dtype=np.float32)
    return beta_pow_n, weights


def _leading(values, max_terms, what):
    array = np.asarray(values, dtype=np.float32)
    if max_terms < 0:
        raise ValueError(f"number of terms must not be negative, got {max_terms}")
    if array.size < max_terms:
        raise ValueError(f"{what} holds {array.size} values, {max_terms} are needed")
    return array[:max_terms]


def _grid_positions(x, beta_pow_n, n, max_terms):
    """Sample index of ``{beta**k * x}`` for every grid point and term."""
    powers = _leading(beta_pow_n, max_terms, "beta_pow_n")
    arg = x[:, np.newaxis] * powers[np.newaxis, :]
    fraction = arg - np.floor(arg)
    return (fraction * np.float32(n) + np.float32(0.5)).astype(np.int64)


def fractalize(x_grid, g, beta_pow_n, weights, max_terms=DEFAULT_MAX_TERMS):
    """Evaluate the fractal series of ``g`` on ``x_grid``.

    ``g`` holds one block per channel along its last axis (or a single block).
    """
    samples = np.asarray(g, dtype=np.float32)
    n = samples.shape[-1]
    x = np.asarray(x_grid, dtype=np.float32)
    if x.shape != (n,):
        raise ValueError(f"grid of shape {x.shape} does not match {n} samples")
    w = _leading(weights, max_terms, "weights")
    positions = np.minimum(_grid_positions(x, beta_pow_n, n, max_terms), n - 1)
    return (samples[..., positions] * w).sum(axis=-1, dtype=np.float32)


def defractalizer_matrix(beta_pow_n, weights, n, max_terms=DEFAULT_MAX_TERMS):
    """Build the sparse ``n`` by ``n`` matrix that maps ``g`` to ``f``."""
    if n <= 0:
        raise ValueError(f"matrix size must be positive, got {n}")
    w = _leading(weights, max_terms, "weights")
    x = np.arange(n, dtype=np.float32) * np.float32(1.0 / n)
    columns = _grid_positions(x, beta_pow_n, n, max_terms) % n
    rows = np.repeat(np.arange(n), max_terms)
    data = np.tile(w.astype(np.float64), n)
    return sparse.csc_matrix((data, (rows, columns.ravel())), shape=(n, n))


def factorize(matrix):
    """Return an LU factorization of the defractalizer matrix."""
    csc = sparse.csc_matrix(matrix, dtype=np.float64)
    if csc.shape[0] != csc.shape[1]:
        raise ValueError(f"matrix must be square, got shape {csc.shape}")
    try:
        return sparse_linalg.splu(csc)
    except RuntimeError as exc:
        raise SolverError("Factorization failed") from exc


def defractalize(f, solver):
    """Recover ``g`` from the fractal series ``f`` with a factorized matrix."""
    values = np.asarray(f, dtype=np.float64)
    n = solver.shape[0]
    if values.ndim not in (1, 2) or values.shape[-1] != n:
        raise ValueError(f"input of shape {values.shape} does not match a system of size {n}")
    if values.ndim == 1:
        solution = solver.solve(values)
    else:
        solution = solver.solve(np.asfortranarray(values.T)).T
    if not np.all(np.isfinite(solution)):
        raise SolverError("Factorization failed")
    return solution.astype(np.float32)


def _cosine_ramp(n, rising):
    t = np.linspace(0.0, 1.0, n) if rising else np.linspace(1.0, 0.0, n)
    return (0.5 - 0.5 * np.cos(np.pi * t)).astype(np.float32)


def fade_out(buffer):
    """Return ``buffer`` multiplied by a cosine fade from 1 to 0."""
    samples = np.asarray(buffer, dtype=np.float32)
    return samples * _cosine_ramp(samples.shape[-1], rising=False)


def fade_in(buffer):
    """Return ``buffer`` multiplied by a cosine fade from 0 to 1."""
    samples = np.asarray(buffer, dtype=np.float32)
    return samples * _cosine_ramp(samples.shape[-1], rising=True)


def closest_power_of_2(x):
    """Return the power of two nearest to ``x``, the lower one on a tie."""
    x = int(x)
    if x <= 0:
        return 0
    lower = 1 << (x.bit_length() - 1)
    upper = lower << 1
    return lower if x - lower <= upper - x else upper