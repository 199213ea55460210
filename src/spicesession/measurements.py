"""Scalar figures of merit extracted from a cached analysis result."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from spicesession.errors import ToolError
from spicesession.result_cache import AnalysisType, CachedAnalysisResult
from spicesession.signals import (
    find_crossing,
    magnitude_db,
    phase_degrees,
    unwrap_phase,
    value_at,
)

DEFAULT_SETTLING_PERCENT = 2.0


@dataclass(frozen=True)
class Measurement:
    value: float
    unit: str
    description: str


@dataclass
class _Trace:
    """Signal data prepared once for every measurement."""

    x: np.ndarray
    real: np.ndarray
    imag: np.ndarray | None
    is_ac: bool

    @property
    def magnitude_db(self) -> np.ndarray:
        if self.is_ac:
            return magnitude_db(self.real, self.imag)
        return self.real

    def require_phase(self, signal: str, what: str) -> np.ndarray:
        if not self.is_ac:
            raise ToolError(f"{what} requires AC analysis results")
        if self.imag is None:
            raise ToolError(
                f"Signal '{signal}' does not have phase data (imaginary component) "
                f"in AC analysis"
            )
        return phase_degrees(self.real, self.imag)


def require_signal(result: CachedAnalysisResult, signal: str) -> None:
    """Raise ToolError naming *signal* if the result has no such trace."""
    if signal not in result.signals:
        available = ", ".join(result.signal_names) or "none"
        raise ToolError(
            f"Signal '{signal}' not found in cached results. "
            f"Available signals: {available}"
        )


def _prepare(result: CachedAnalysisResult, signal: str, reference: str | None) -> _Trace:
    require_signal(result, signal)
    is_ac = result.analysis_type == AnalysisType.AC
    real = result.signals[signal]
    imag = result.imaginary_signals.get(signal)
    if len(real) == 0:
        raise ToolError(f"Signal '{signal}' has no data points")

    if reference:
        require_signal(result, reference)
        if is_ac:
            with np.errstate(divide="ignore", invalid="ignore"):
                ratio = result.complex_signal(signal) / result.complex_signal(reference)
            real, imag = ratio.real, ratio.imag
        else:
            real = real - result.signals[reference]
    return _Trace(result.x_data, np.asarray(real), None if imag is None else np.asarray(imag), is_ac)


def _bandwidth_3db(t: _Trace, **_) -> Measurement:
    mag = t.magnitude_db
    target = float(np.max(mag)) - 3.0
    freq = find_crossing(t.x, mag, target, "falling")
    if freq is None:
        raise ToolError("Could not find -3dB point in the frequency response")
    return Measurement(freq, "Hz", "-3dB bandwidth frequency")


def _gain_at_freq(t: _Trace, frequency=None, **_) -> Measurement:
    if frequency is None:
        raise ToolError("'frequency' is required for 'gain_at_freq' measurement")
    gain = value_at(t.x, t.magnitude_db, frequency)
    if gain is None:
        raise ToolError(
            f"Target frequency {frequency} Hz is outside the analysis range "
            f"[{t.x[0]}, {t.x[-1]}] Hz"
        )
    return Measurement(gain, "dB", f"Gain at {frequency} Hz")


def _freq_at_gain(t: _Trace, threshold=None, **_) -> Measurement:
    if threshold is None:
        raise ToolError("'threshold' is required for 'freq_at_gain' measurement")
    freq = find_crossing(t.x, t.magnitude_db, threshold)
    if freq is None:
        raise ToolError(f"Could not find frequency at gain {threshold} dB")
    return Measurement(freq, "Hz", f"Frequency at {threshold} dB gain")


def _phase_at_freq(t: _Trace, signal="", frequency=None, **_) -> Measurement:
    if frequency is None:
        raise ToolError("'frequency' is required for 'phase_at_freq' measurement")
    phases = t.require_phase(signal, "phase_at_freq")
    value = value_at(t.x, phases, frequency)
    if value is None:
        raise ToolError(f"Could not find phase at frequency {frequency} Hz")
    return Measurement(value, "deg", f"Phase at {frequency} Hz")


def _peak_value(t: _Trace, **_) -> Measurement:
    return Measurement(float(np.max(t.real)), "V", "Peak value")


def _peak_frequency(t: _Trace, **_) -> Measurement:
    idx = int(np.argmax(t.magnitude_db))
    return Measurement(float(t.x[idx]), "Hz", "Frequency at peak magnitude")


def _levels(t: _Trace) -> tuple[float, float]:
    low, high = float(np.min(t.real)), float(np.max(t.real))
    span = high - low
    return low + 0.1 * span, low + 0.9 * span


def _rise_time(t: _Trace, **_) -> Measurement:
    lo, hi = _levels(t)
    t10 = find_crossing(t.x, t.real, lo, "rising")
    t90 = find_crossing(t.x, t.real, hi, "rising")
    if t10 is None or t90 is None:
        raise ToolError("Could not find 10% and 90% points for rise time calculation")
    return Measurement(t90 - t10, "s", "Rise time (10% to 90%)")


def _fall_time(t: _Trace, **_) -> Measurement:
    lo, hi = _levels(t)
    t90 = find_crossing(t.x, t.real, hi, "falling")
    t10 = find_crossing(t.x, t.real, lo, "falling")
    if t10 is None or t90 is None:
        raise ToolError("Could not find 90% and 10% points for fall time calculation")
    return Measurement(t10 - t90, "s", "Fall time (90% to 10%)")


def _overshoot(t: _Trace, **_) -> Measurement:
    final = float(t.real[-1])
    if final == 0:
        raise ToolError("Overshoot is undefined when the final value is 0")
    peak = float(np.max(t.real))
    return Measurement((peak - final) / abs(final) * 100.0, "%", "Overshoot percentage")


def _settling_time(t: _Trace, threshold=None, **_) -> Measurement:
    percent = DEFAULT_SETTLING_PERCENT if threshold is None else abs(threshold)
    final = float(t.real[-1])
    tolerance = abs(final) * percent / 100.0
    outside = np.nonzero(np.abs(t.real - final) > tolerance)[0]
    description = f"Settling time ({percent}% tolerance)"
    if len(outside) == 0:
        return Measurement(0.0, "s", description)
    last = int(outside[-1])
    if last + 1 >= len(t.x):
        raise ToolError("Signal does not settle within the simulated time")
    return Measurement(float(t.x[last + 1]), "s", description)


def _dc_gain(t: _Trace, **_) -> Measurement:
    return Measurement(float(t.magnitude_db[0]), "dB", "DC gain")


def _unity_gain_freq(t: _Trace, **_) -> Measurement:
    freq = find_crossing(t.x, t.magnitude_db, 0.0)
    if freq is None:
        raise ToolError("Could not find frequency at gain 0 dB")
    return Measurement(freq, "Hz", "Unity gain frequency")


def _loop_phase(t: _Trace, signal: str, what: str) -> np.ndarray:
    # margins need the continuous phase, atan2 alone never passes -180
    return np.degrees(unwrap_phase(np.radians(t.require_phase(signal, what))))


def _phase_margin(t: _Trace, signal="", **_) -> Measurement:
    phases = _loop_phase(t, signal, "phase_margin")
    unity = _unity_gain_freq(t).value
    phase_at_unity = value_at(t.x, phases, unity)
    return Measurement(180.0 + phase_at_unity, "deg", "Phase margin")


def _gain_margin(t: _Trace, signal="", **_) -> Measurement:
    phases = _loop_phase(t, signal, "gain_margin")
    freq = find_crossing(t.x, phases, -180.0)
    if freq is None:
        raise ToolError("Could not find -180 deg phase point for gain margin calculation")
    gain = value_at(t.x, t.magnitude_db, freq)
    return Measurement(-gain, "dB", "Gain margin")


MEASUREMENTS = {
    "bandwidth_3db": _bandwidth_3db,
    "gain_at_freq": _gain_at_freq,
    "freq_at_gain": _freq_at_gain,
    "phase_at_freq": _phase_at_freq,
    "peak_value": _peak_value,
    "peak_frequency": _peak_frequency,
    "rise_time": _rise_time,
    "fall_time": _fall_time,
    "overshoot": _overshoot,
    "settling_time": _settling_time,
    "dc_gain": _dc_gain,
    "unity_gain_freq": _unity_gain_freq,
    "phase_margin": _phase_margin,
    "gain_margin": _gain_margin,
}


def measure(
    result: CachedAnalysisResult,
    measurement: str,
    signal: str,
    reference: str | None = None,
    frequency: float | None = None,
    threshold: float | None = None,
) -> Measurement:
    """Compute *measurement* on *signal* of a cached result.

    AC traces are measured on their magnitude in dB. With *reference*, AC
    traces are measured on ``signal / reference`` and other traces on
    ``signal - reference``.

    Raises:
        ToolError: Unknown measurement, missing signal, or a response that
            does not contain the requested feature.
    """
    func = MEASUREMENTS.get(measurement.lower())
    if func is None:
        raise ToolError(
            f"Unknown measurement type: '{measurement}'. "
            f"Supported measurements: {', '.join(MEASUREMENTS)}"
        )
    if result.analysis_type == AnalysisType.OPERATING_POINT:
        raise ToolError(
            "Response measurements need a swept result; run a DC, AC or "
            "transient analysis first"
        )
    trace = _prepare(result, signal, reference)
    return func(trace, signal=signal, frequency=frequency, threshold=threshold)
