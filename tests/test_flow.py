import numpy as np
import pytest
from numba import cuda

from gpucv import FLOW_PRESETS, CornerMode, Correspondence, FlowMode, FlowResult
from gpucv.flow import collect_correspondence, match_features

from conftest import rgba
from helpers import local_maxima


def _match(map_1, map_2, threshold, tolerance, window, stream):
    n = map_1.size
    i1 = cuda.device_array(n, np.int32)
    i2 = cuda.device_array(n, np.int32)
    counter = cuda.device_array(1, np.int32)
    match_features(
        cuda.to_device(map_1.astype(np.float32)),
        cuda.to_device(map_2.astype(np.float32)),
        i1, i2, counter, threshold, tolerance, window, stream,
    )
    return collect_correspondence(i1, i2, counter, stream)


def test_identical_maps_give_identity(stream):
    rng = np.random.default_rng(5)
    m = rng.uniform(0, 1, (20, 20)).astype(np.float32)
    result = _match(m, m, 0.5, 0.1, 3, stream)
    np.testing.assert_array_equal(result.index_1, result.index_2)
    expected = local_maxima(m, 0.5)
    assert result.count == len(expected)
    np.testing.assert_array_equal(result.index_1, expected)


def test_shifted_peaks_are_tracked(stream):
    h, w = 24, 24
    m1 = np.zeros((h, w), np.float32)
    peaks = [(5, 6, 3.0), (12, 15, 5.0), (18, 4, 7.0)]
    for y, x, v in peaks:
        m1[y, x] = v
    m2 = np.zeros_like(m1)
    m2[1:, 2:] = m1[:-1, :-2]
    result = _match(m1, m2, 1.0, 0.05, 3, stream)
    assert result.count == len(peaks)
    for (y, x, _), i1, i2 in zip(sorted(peaks), result.index_1, result.index_2):
        assert i1 == y * w + x
        assert i2 == (y + 1) * w + (x + 2)
    np.testing.assert_array_equal(result.displacements(w), [[2, 1]] * 3)
    np.testing.assert_allclose(result.mean_motion(w), [2.0, 1.0])


def test_out_of_window_or_tolerance_rejected(stream):
    m1 = np.zeros((16, 16), np.float32)
    m1[8, 8] = 4.0
    far = np.zeros_like(m1)
    far[8, 14] = 4.0
    assert _match(m1, far, 1.0, 0.1, 3, stream).count == 0
    off = np.zeros_like(m1)
    off[8, 9] = 6.0
    assert _match(m1, off, 1.0, 0.1, 3, stream).count == 0
    assert _match(m1, off, 1.0, 0.6, 3, stream).count == 1


def test_greedy_matches_may_share_a_target(stream):
    m1 = np.zeros((12, 12), np.float32)
    m1[5, 3] = 2.0
    m1[5, 7] = 2.0
    m2 = np.zeros_like(m1)
    m2[5, 5] = 2.0
    result = _match(m1, m2, 1.0, 0.1, 2, stream)
    assert result.count == 2
    assert np.all(result.index_2 == 5 * 12 + 5)


def test_mismatched_shapes_rejected(stream):
    with pytest.raises(ValueError):
        _match(np.zeros((4, 4)), np.zeros((4, 5)), 0.0, 0.1, 1, stream)


def test_correspondence_is_read_only():
    c = Correspondence(np.array([1, 2], np.int32), np.array([1, 3], np.int32))
    assert len(c) == 2
    with pytest.raises(ValueError):
        c.index_1[0] = 7
    np.testing.assert_array_equal(c.mean_motion(10), [1.0, 0.0])
    assert np.all(Correspondence(np.array([4]), np.array([4])).mean_motion(10) == 0)
    with pytest.raises(ValueError):
        Correspondence(np.array([1, 2]), np.array([1]))


def test_presets():
    mode = FlowMode.preset("vehicles")
    assert (mode.tolerance, mode.window) == FLOW_PRESETS["vehicles"]
    with pytest.raises(ValueError):
        FlowMode.preset("boats")
    with pytest.raises(ValueError):
        FlowMode(window=-1)


def test_run_pair_recovers_translation(pipeline):
    a = np.full((32, 32), 25, np.uint8)
    a[10:18, 10:18] = 220
    b = np.full((32, 32), 25, np.uint8)
    b[11:19, 12:20] = 220
    result = pipeline.run_pair(rgba(a), rgba(b), FlowMode(tolerance=0.01, window=4))
    assert isinstance(result, FlowResult)
    d = result.correspondence.displacements(32)
    assert np.all(d == [2, 1], axis=1).sum() >= 2
    motion = result.mean_motion()
    assert motion.shape == (2,) and motion[0] > 0 and motion[1] > 0
    assert result.threshold > 0


def _square_frame(level, offset=0):
    img = np.full((24, 24), 30, np.uint8)
    img[7 + offset : 15 + offset, 7 + offset : 15 + offset] = level
    return rgba(img)


def test_default_threshold_comes_from_newer_frame(pipeline):
    weak, strong = _square_frame(60), _square_frame(230, 1)
    corners = CornerMode(annotate=False)
    t_weak = pipeline.run(weak, corners).threshold
    t_strong = pipeline.run(strong, corners).threshold
    assert t_strong > t_weak
    result = pipeline.run_pair(weak, strong, FlowMode(corners=corners))
    assert result.threshold == pytest.approx(t_strong, rel=1e-6)
    assert pipeline.run_pair(strong, weak, FlowMode(corners=corners)).threshold == pytest.approx(
        t_weak, rel=1e-6
    )


def test_stream_threshold_follows_current_frame(pipeline):
    frames = [_square_frame(60), _square_frame(230, 1), _square_frame(120, 2)]
    corners = CornerMode(annotate=False)
    expected = [pipeline.run(f, corners).threshold for f in frames[1:]]
    results = list(pipeline.stream(frames, FlowMode(corners=corners)))
    assert [r.threshold for r in results] == pytest.approx(expected, rel=1e-6)


def test_explicit_threshold_overrides_default(pipeline):
    result = pipeline.run_pair(_square_frame(60), _square_frame(230, 1), FlowMode(threshold=5.0))
    assert result.threshold == 5.0
