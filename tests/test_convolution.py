import numpy as np
import pytest
from numba import cuda

from gpucv.convolution import convolve, convolve_separable
from gpucv.kernels import SOBEL_DERIV, SOBEL_SMOOTH, SOBEL_X, gaussian_kernel, gaussian_kernel_1d

from helpers import reference_correlate


def _run(img, k, stream):
    src = cuda.to_device(np.ascontiguousarray(img, dtype=np.float32))
    dst = cuda.device_array(img.shape, np.float32)
    convolve(src, dst, cuda.to_device(k), stream)
    out = dst.copy_to_host(stream=stream)
    stream.synchronize()
    return out


def _run_separable(img, row, col, stream):
    src = cuda.to_device(np.ascontiguousarray(img, dtype=np.float32))
    dst = cuda.device_array(img.shape, np.float32)
    scratch = cuda.device_array(img.shape, np.float32)
    convolve_separable(src, dst, scratch, cuda.to_device(row), cuda.to_device(col), stream)
    out = dst.copy_to_host(stream=stream)
    stream.synchronize()
    return out


def test_matches_host_reference(stream):
    rng = np.random.default_rng(0)
    img = rng.uniform(0, 255, (13, 19)).astype(np.float32)
    k = rng.normal(size=(5, 5)).astype(np.float32)
    np.testing.assert_allclose(_run(img, k, stream), reference_correlate(img, k), rtol=1e-4, atol=1e-2)


def test_linearity(stream):
    rng = np.random.default_rng(1)
    i1 = rng.uniform(0, 255, (17, 21)).astype(np.float32)
    i2 = rng.uniform(0, 255, (17, 21)).astype(np.float32)
    a, b = 0.7, -1.3
    k = gaussian_kernel(5, 1.0)
    lhs = _run(a * i1 + b * i2, k, stream)
    rhs = a * _run(i1, k, stream) + b * _run(i2, k, stream)
    np.testing.assert_allclose(lhs, rhs, rtol=1e-4, atol=1e-2)


def test_clamp_to_edge_keeps_constant_image(stream):
    img = np.full((9, 11), 42.0, dtype=np.float32)
    out = _run(img, gaussian_kernel(7, 2.0), stream)
    np.testing.assert_allclose(out, 42.0, rtol=1e-5)


def test_sobel_of_vertical_step_at_border(stream):
    img = np.zeros((6, 6), dtype=np.float32)
    img[:, 3:] = 10.0
    out = _run(img, np.array(SOBEL_X), stream)
    # response only across the step; clamped borders see no gradient
    np.testing.assert_allclose(out[:, 2], 40.0)
    np.testing.assert_allclose(out[:, 3], 40.0)
    np.testing.assert_allclose(out[:, [0, 1, 4, 5]], 0.0)


def test_separable_matches_dense_gaussian(stream):
    rng = np.random.default_rng(2)
    img = rng.uniform(0, 255, (15, 18)).astype(np.float32)
    g = gaussian_kernel_1d(5, 1.3)
    dense = _run(img, np.outer(g, g).astype(np.float32), stream)
    sep = _run_separable(img, g, g, stream)
    np.testing.assert_allclose(sep, dense, rtol=1e-4, atol=1e-3)


def test_separable_matches_dense_sobel(stream):
    rng = np.random.default_rng(3)
    img = rng.uniform(0, 255, (12, 12)).astype(np.float32)
    dense = _run(img, np.array(SOBEL_X), stream)
    sep = _run_separable(img, np.array(SOBEL_DERIV), np.array(SOBEL_SMOOTH), stream)
    np.testing.assert_allclose(sep, dense, rtol=1e-4, atol=1e-3)


def test_even_kernel_rejected(stream):
    src = cuda.to_device(np.zeros((4, 4), np.float32))
    dst = cuda.device_array((4, 4), np.float32)
    with pytest.raises(ValueError):
        convolve(src, dst, cuda.to_device(np.ones((4, 4), np.float32)), stream)
    with pytest.raises(ValueError):
        convolve_separable(
            src, dst, cuda.device_array((4, 4), np.float32),
            cuda.to_device(np.ones(2, np.float32)), cuda.to_device(np.ones(3, np.float32)), stream,
        )


def test_shape_mismatch_rejected(stream):
    src = cuda.to_device(np.zeros((4, 4), np.float32))
    dst = cuda.device_array((4, 5), np.float32)
    with pytest.raises(ValueError):
        convolve(src, dst, cuda.to_device(np.ones((3, 3), np.float32)), stream)
