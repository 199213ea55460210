"""Pure numeric helpers for post-processing cached analysis data.

Nothing here touches the engine or the cache; every function takes plain
arrays and returns new ones.
"""

from __future__ import annotations

import numpy as np

# Frequency steps smaller than this are treated as zero width
MIN_STEP = 1e-10

# Stand-in for 20*log10(0)
ZERO_MAGNITUDE_DB = -1000.0


def phase(real, imag) -> np.ndarray:
    """Phase in radians, ``atan2(imag, real)``, wrapped to (-pi, pi]."""
    return np.arctan2(np.asarray(imag, dtype=float), np.asarray(real, dtype=float))


def unwrap_phase(phases) -> np.ndarray:
    """Remove 2*pi jumps so consecutive samples differ by at most pi."""
    return np.unwrap(np.asarray(phases, dtype=float))


def differentiate(y, x) -> np.ndarray:
    """Finite-difference derivative dy/dx on a possibly non-uniform grid.

    Interior points use the central difference ``(y[i+1]-y[i-1]) /
    (x[i+1]-x[i-1])``; the first point uses a forward difference and the
    last a backward difference. A step narrower than ``MIN_STEP`` gives 0.
    Needs at least two samples.
    """
    y = np.asarray(y, dtype=float)
    x = np.asarray(x, dtype=float)
    n = len(x)
    if n != len(y):
        raise ValueError(f"x has {n} points but y has {len(y)}")
    if n < 2:
        raise ValueError("At least 2 points are required to differentiate")

    dy = np.empty(n)
    dx = np.empty(n)
    dy[0], dx[0] = y[1] - y[0], x[1] - x[0]
    dy[-1], dx[-1] = y[-1] - y[-2], x[-1] - x[-2]
    if n > 2:
        dy[1:-1] = y[2:] - y[:-2]
        dx[1:-1] = x[2:] - x[:-2]

    out = np.zeros(n)
    ok = np.abs(dx) > MIN_STEP
    out[ok] = dy[ok] / dx[ok]
    return out


def group_delay(frequencies, real, imag) -> np.ndarray:
    """Group delay in seconds, ``-d(phase)/d(omega)`` with omega = 2*pi*f."""
    phi = unwrap_phase(phase(real, imag))
    return -differentiate(phi, frequencies) / (2.0 * np.pi)


def magnitude_db(real, imag=None) -> np.ndarray:
    """Magnitude in dB; zero magnitude maps to ``ZERO_MAGNITUDE_DB``."""
    real = np.asarray(real, dtype=float)
    mag = np.abs(real) if imag is None else np.hypot(real, np.asarray(imag, dtype=float))
    out = np.full(mag.shape, ZERO_MAGNITUDE_DB)
    nonzero = mag > 0
    out[nonzero] = 20.0 * np.log10(mag[nonzero])
    return out


def phase_degrees(real, imag) -> np.ndarray:
    return np.degrees(phase(real, imag))


def interpolate(x1: float, y1: float, x2: float, y2: float, x: float) -> float:
    """Linear interpolation through (x1, y1) and (x2, y2) evaluated at x."""
    if abs(x2 - x1) < MIN_STEP:
        return float(y1)
    return float(y1 + (y2 - y1) * (x - x1) / (x2 - x1))


def find_crossing(x, y, level: float, direction: str = "both") -> float | None:
    """First x where *y* crosses *level*, linearly interpolated.

    *direction* is ``"rising"``, ``"falling"`` or ``"both"``.
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    for i in range(1, len(y)):
        a, b = y[i - 1], y[i]
        rising = a < level <= b
        falling = a > level >= b
        if direction == "rising":
            hit = rising
        elif direction == "falling":
            hit = falling
        else:
            hit = rising or falling or (a == level)
        if hit:
            return interpolate(a, x[i - 1], b, x[i], level)
    return None


def value_at(x, y, target: float) -> float | None:
    """Interpolate *y* at *target*; ``None`` outside the x range."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) == 0 or target < x[0] or target > x[-1]:
        return None
    for i in range(1, len(x)):
        if x[i - 1] <= target <= x[i]:
            return interpolate(x[i - 1], y[i - 1], x[i], y[i], target)
    return float(y[0])
