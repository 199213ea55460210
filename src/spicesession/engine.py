"""Simulation engine interface and the ngspice-backed implementation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import numpy as np
from spicelib import RawRead

from spicesession.circuit_registry import Circuit
from spicesession.netlist import fmt, render_netlist, source_element
from spicesession.sanitize import sanitize_netlist
from spicesession.simulator import simulation

logger = logging.getLogger(__name__)

_DIFF_VOLTAGE_RE = re.compile(r"^v\(\s*([^,()\s]+)\s*,\s*([^,()\s]+)\s*\)$", re.IGNORECASE)


@dataclass
class EngineResult:
    """Swept output of one engine run. AC traces are complex."""

    x: np.ndarray
    traces: dict[str, np.ndarray] = field(default_factory=dict)


class Engine(Protocol):
    """What the dispatcher needs from a circuit simulator.

    Implementations may raise any exception; the dispatcher reports it to
    the caller with the message intact.
    """

    def operating_point(
        self, circuit: Circuit, temperature: float | None = None
    ) -> dict[str, float]: ...

    def dc_sweep(
        self,
        circuit: Circuit,
        source: str,
        start: float,
        stop: float,
        step: float,
        exports: list[str],
        temperature: float | None = None,
    ) -> EngineResult: ...

    def transient(
        self,
        circuit: Circuit,
        start: float,
        stop: float,
        step: float,
        exports: list[str],
        temperature: float | None = None,
    ) -> EngineResult: ...

    def ac(
        self,
        circuit: Circuit,
        start_freq: float,
        stop_freq: float,
        points: int,
        sweep: str,
        exports: list[str],
        temperature: float | None = None,
    ) -> EngineResult: ...


def canonical_name(name: str) -> str:
    """Normalize an ngspice vector name to ``v(node)`` / ``i(element)``."""
    lowered = name.strip().lower()
    if lowered.endswith("#branch"):
        return f"i({lowered[:-len('#branch')]})"
    if "(" in lowered:
        return lowered
    return f"v({lowered})"


class _Vectors:
    """Case-insensitive lookup of exported signals in a raw file."""

    def __init__(self, raw: RawRead, has_axis: bool = True) -> None:
        names = raw.get_trace_names()
        # an operating point has no sweep variable, every trace is data
        if has_axis:
            self.axis = np.asarray(raw.get_trace(names[0]).get_wave(0))
            names = names[1:]
        else:
            self.axis = np.zeros(1)
        self._data = {
            canonical_name(n): np.asarray(raw.get_trace(n).get_wave(0)) for n in names
        }

    def names(self) -> list[str]:
        return [n for n in self._data if not n.startswith("p(")]

    def get(self, export: str) -> np.ndarray:
        key = canonical_name(export)
        if key in self._data:
            return self._data[key]
        m = _DIFF_VOLTAGE_RE.match(export.strip())
        if m:
            return self._node(m.group(1)) - self._node(m.group(2))
        available = ", ".join(self.names())
        raise ValueError(
            f"Signal '{export}' not found in simulation output. Available: {available}"
        )

    def _node(self, node: str) -> np.ndarray:
        if node in ("0", "gnd"):
            return np.zeros_like(self.axis)
        return self.get(f"v({node})")

    def collect(self, exports: list[str]) -> dict[str, np.ndarray]:
        if not exports:
            return {name: self._data[name] for name in self.names()}
        return {export: self.get(export) for export in exports}


class NgspiceEngine:
    """Run analyses by rendering a netlist and reading the ngspice raw file."""

    def __init__(self, library=None) -> None:
        self._library = library

    def _run(
        self, circuit: Circuit, analysis: str, temperature: float | None, has_axis: bool = True
    ) -> _Vectors:
        netlist = render_netlist(
            circuit,
            analysis_lines=[analysis],
            temperature=temperature,
            library=self._library,
        )
        # includes in a rendered netlist come from the library catalog
        sanitize_netlist(netlist, allow_includes=True)
        logger.debug("Running %s on circuit '%s'", analysis, circuit.circuit_id)
        with simulation(netlist) as raw_path:
            return _Vectors(_read_raw(raw_path), has_axis)

    def operating_point(self, circuit, temperature=None):
        vectors = self._run(circuit, ".op", temperature, has_axis=False)
        return {name: float(np.real(vectors.get(name))[0]) for name in vectors.names()}

    def dc_sweep(self, circuit, source, start, stop, step, exports, temperature=None):
        analysis = f".dc {source_element(circuit, source)} {fmt(start)} {fmt(stop)} {fmt(step)}"
        vectors = self._run(circuit, analysis, temperature)
        traces = {k: np.real(v) for k, v in vectors.collect(exports).items()}
        return EngineResult(np.real(vectors.axis), traces)

    def transient(self, circuit, start, stop, step, exports, temperature=None):
        analysis = f".tran {fmt(step)} {fmt(stop)}"
        if start:
            analysis += f" {fmt(start)}"
        vectors = self._run(circuit, analysis, temperature)
        traces = {k: np.real(v) for k, v in vectors.collect(exports).items()}
        return EngineResult(np.real(vectors.axis), traces)

    def ac(self, circuit, start_freq, stop_freq, points, sweep, exports, temperature=None):
        analysis = f".ac {sweep} {int(points)} {fmt(start_freq)} {fmt(stop_freq)}"
        vectors = self._run(circuit, analysis, temperature)
        traces = {k: np.asarray(v, dtype=complex) for k, v in vectors.collect(exports).items()}
        return EngineResult(np.real(vectors.axis), traces)


def _read_raw(raw_path: Path) -> RawRead:
    return RawRead(str(raw_path), dialect="ngspice")
