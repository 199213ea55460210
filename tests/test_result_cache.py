"""Tests for spicesession.result_cache."""

import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from spicesession.result_cache import AnalysisType, CachedAnalysisResult, ResultCache


def _ac_result(n=4):
    x = np.linspace(1, 4, n)
    return CachedAnalysisResult(
        AnalysisType.AC,
        x_data=x,
        x_label="Frequency (Hz)",
        signals={"v(out)": np.ones(n)},
        imaginary_signals={"v(out)": np.zeros(n)},
    )


def test_store_and_get():
    """store() followed by get() returns the same result."""
    cache = ResultCache()
    result = _ac_result()
    cache.store("c1", result)
    assert cache.get("c1") is result


def test_get_missing_returns_none():
    """get() on an unknown id returns None instead of raising."""
    assert ResultCache().get("nope") is None


def test_store_overwrites():
    """A second store replaces the first; there is no history."""
    cache = ResultCache()
    cache.store("c1", _ac_result())
    op = CachedAnalysisResult(AnalysisType.OPERATING_POINT, operating_point={"v(a)": 1.0})
    cache.store("c1", op)
    assert cache.get("c1") is op
    assert len(cache) == 1


def test_evict_is_noop_when_absent():
    """evict() on a missing id does not raise."""
    cache = ResultCache()
    cache.evict("ghost")
    cache.store("c1", _ac_result())
    cache.evict("c1")
    assert "c1" not in cache


def test_stats_counts_hits_and_misses():
    """stats() tracks size, hits and misses."""
    cache = ResultCache()
    cache.store("c1", _ac_result())
    cache.get("c1")
    cache.get("c2")
    assert cache.stats() == {"size": 1, "hits": 1, "misses": 1}


def test_clear():
    cache = ResultCache()
    cache.store("a", _ac_result())
    cache.store("b", _ac_result())
    cache.clear()
    assert len(cache) == 0


def test_has_lock_attribute():
    """ResultCache should guard its map with a threading.Lock."""
    assert isinstance(ResultCache()._lock, type(threading.Lock()))


def test_concurrent_store_and_get():
    """Concurrent writers and readers never see a partial result."""
    cache = ResultCache()

    def _work(i):
        cache.store(f"c{i % 5}", _ac_result(8))
        got = cache.get(f"c{i % 5}")
        return got is not None and len(got.signals["v(out)"]) == len(got.x_data)

    with ThreadPoolExecutor(max_workers=8) as pool:
        assert all(pool.map(_work, range(200)))
    assert len(cache) == 5


class TestCachedAnalysisResult:
    def test_arrays_are_read_only(self):
        """Stored arrays cannot be modified in place."""
        result = _ac_result()
        with pytest.raises(ValueError):
            result.signals["v(out)"][0] = 5.0
        with pytest.raises(ValueError):
            result.x_data[0] = 5.0

    def test_input_arrays_are_copied(self):
        """Mutating the caller's array does not change the cached one."""
        values = np.ones(3)
        result = CachedAnalysisResult(
            AnalysisType.TRANSIENT, x_data=[0, 1, 2], signals={"v(a)": values}
        )
        values[0] = 42.0
        assert result.signals["v(a)"][0] == 1.0

    def test_imaginary_key_must_have_real_signal(self):
        with pytest.raises(ValueError, match="no matching real signal"):
            CachedAnalysisResult(
                AnalysisType.AC,
                x_data=[1, 2],
                signals={"v(a)": [1, 1]},
                imaginary_signals={"v(b)": [0, 0]},
            )

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError, match="points"):
            CachedAnalysisResult(AnalysisType.DC_SWEEP, x_data=[1, 2, 3], signals={"v(a)": [1, 2]})

    def test_imaginary_length_mismatch_rejected(self):
        with pytest.raises(ValueError, match="Imaginary"):
            CachedAnalysisResult(
                AnalysisType.AC,
                x_data=[1, 2],
                signals={"v(a)": [1, 1]},
                imaginary_signals={"v(a)": [0]},
            )

    def test_analysis_type_from_string(self):
        result = CachedAnalysisResult("transient", x_data=[0.0])
        assert result.analysis_type is AnalysisType.TRANSIENT

    def test_signal_names_for_operating_point(self):
        """An operating-point result exposes its scalar names."""
        op = CachedAnalysisResult(
            AnalysisType.OPERATING_POINT, operating_point={"v(out)": 5.0, "i(v1)": -0.005}
        )
        assert op.signal_names == ["v(out)", "i(v1)"]

    def test_complex_signal(self):
        result = CachedAnalysisResult(
            AnalysisType.AC,
            x_data=[1, 2],
            signals={"v(a)": [1, 0], "v(b)": [2, 2]},
            imaginary_signals={"v(a)": [0, 1]},
        )
        np.testing.assert_allclose(result.complex_signal("v(a)"), [1 + 0j, 1j])
        np.testing.assert_allclose(result.complex_signal("v(b)"), [2 + 0j, 2 + 0j])

    def test_noise_type_is_declared(self):
        assert AnalysisType("noise") is AnalysisType.NOISE
