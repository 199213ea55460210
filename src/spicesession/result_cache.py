"""In-memory store of the most recent analysis result per circuit."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class AnalysisType(str, Enum):
    """Kind of analysis that produced a cached result."""

    OPERATING_POINT = "operating_point"
    DC_SWEEP = "dc_sweep"
    AC = "ac"
    TRANSIENT = "transient"
    NOISE = "noise"  # never produced, the engine has no noise analysis
    PARAMETER_SWEEP = "parameter_sweep"
    TEMPERATURE_SWEEP = "temperature_sweep"


def _frozen(values) -> np.ndarray:
    arr = np.array(values, dtype=float)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class CachedAnalysisResult:
    """Output of one analysis run.

    ``imaginary_signals`` is only populated for AC results; its keys are a
    subset of ``signals`` and every array matches ``x_data`` in length.
    Arrays are copied and made read-only on construction.
    """

    analysis_type: AnalysisType
    x_data: np.ndarray = field(default_factory=lambda: _frozen([]))
    x_label: str = ""
    signals: dict[str, np.ndarray] = field(default_factory=dict)
    imaginary_signals: dict[str, np.ndarray] = field(default_factory=dict)
    operating_point: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "analysis_type", AnalysisType(self.analysis_type))
        x = _frozen(self.x_data)
        real = {name: _frozen(v) for name, v in self.signals.items()}
        imag = {name: _frozen(v) for name, v in self.imaginary_signals.items()}

        for name, values in real.items():
            if len(values) != len(x):
                raise ValueError(
                    f"Signal '{name}' has {len(values)} points but the x-axis "
                    f"has {len(x)}"
                )
        for name, values in imag.items():
            if name not in real:
                raise ValueError(
                    f"Imaginary data for '{name}' has no matching real signal"
                )
            if len(values) != len(x):
                raise ValueError(
                    f"Imaginary data for '{name}' has {len(values)} points but "
                    f"the x-axis has {len(x)}"
                )

        object.__setattr__(self, "x_data", x)
        object.__setattr__(self, "signals", real)
        object.__setattr__(self, "imaginary_signals", imag)
        object.__setattr__(
            self,
            "operating_point",
            {k: float(v) for k, v in self.operating_point.items()},
        )

    @property
    def signal_names(self) -> list[str]:
        """Names a caller can request: trace names, or scalar names for an OP."""
        if self.signals:
            return list(self.signals)
        return list(self.operating_point)

    def complex_signal(self, name: str) -> np.ndarray:
        """Return *name* as a complex array (imaginary part zero if absent)."""
        real = self.signals[name]
        imag = self.imaginary_signals.get(name)
        if imag is None:
            return real.astype(complex)
        return real + 1j * imag


class ResultCache:
    """Thread-safe cache holding one :class:`CachedAnalysisResult` per circuit.

    Storing overwrites unconditionally; there is no history. Results are
    immutable, so a reader holding one is unaffected by later stores.
    """

    def __init__(self) -> None:
        self._data: dict[str, CachedAnalysisResult] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def store(self, circuit_id: str, result: CachedAnalysisResult) -> None:
        """Store *result* under *circuit_id*, replacing any previous entry."""
        with self._lock:
            self._data[circuit_id] = result

    def get(self, circuit_id: str) -> CachedAnalysisResult | None:
        """Return the cached result, or ``None`` if absent."""
        with self._lock:
            result = self._data.get(circuit_id)
            if result is not None:
                self._hits += 1
            else:
                self._misses += 1
            return result

    def evict(self, circuit_id: str) -> None:
        """Remove the entry for *circuit_id* (no-op if absent)."""
        with self._lock:
            self._data.pop(circuit_id, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def stats(self) -> dict:
        """Return cache statistics for monitoring."""
        with self._lock:
            return {
                "size": len(self._data),
                "hits": self._hits,
                "misses": self._misses,
            }

    def __contains__(self, circuit_id: str) -> bool:
        with self._lock:
            return circuit_id in self._data

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
