"""Shared fixtures: a deterministic fake engine and a wired-up dispatcher."""

from __future__ import annotations

import numpy as np
import pytest

from spicesession.circuit_registry import CircuitRegistry
from spicesession.engine import EngineResult
from spicesession.library import LibraryCatalog
from spicesession.result_cache import ResultCache
from spicesession.tools import ToolDispatcher

RC_TIME_CONSTANT = 1e-3


class FakeEngine:
    """Analytic stand-in for ngspice.

    AC: ``v(out)`` is a first-order low-pass with RC = 1 ms, ``v(in)`` is 1.
    Operating point and DC: a divider ``v(out) = V1 * R2 / (R1 + R2)``.
    Transient: ``v(out)`` is an RC step response.
    Impedance runs see the port impedance returned by ``impedance(f)``.
    """

    def __init__(self, ac_frequencies=None, fail_with: Exception | None = None):
        self.ac_frequencies = ac_frequencies
        self.fail_with = fail_with
        self.impedance = lambda f: complex(1000.0, 0.0)
        self.calls: list[tuple[str, object, dict]] = []

    def _record(self, kind, circuit, **kwargs):
        self.calls.append((kind, circuit, kwargs))
        if self.fail_with is not None:
            raise self.fail_with

    @staticmethod
    def _divider(circuit):
        source = next(
            (c for c in circuit.components.values() if c.component_type == "voltage_source"),
            None,
        )
        v = source.value if source is not None and source.value else 0.0
        r1 = circuit.find_component("R1")
        r2 = circuit.find_component("R2")
        if r1 is None or r2 is None:
            return v, 1.0, 1.0
        return v, r2.value / (r1.value + r2.value), r1.value + r2.value

    @staticmethod
    def _select(traces: dict, exports: list[str]) -> dict:
        if not exports:
            return traces
        missing = [e for e in exports if e not in traces]
        if missing:
            raise ValueError(
                f"Signal '{missing[0]}' not found in simulation output. "
                f"Available: {', '.join(traces)}"
            )
        return {e: traces[e] for e in exports}

    def operating_point(self, circuit, temperature=None):
        self._record("op", circuit, temperature=temperature)
        v, ratio, total = self._divider(circuit)
        drift = 0.001 * temperature if temperature is not None else 0.0
        return {"v(in)": v, "v(out)": v * ratio + drift, "i(v1)": -v / total}

    def dc_sweep(self, circuit, source, start, stop, step, exports, temperature=None):
        self._record("dc", circuit, source=source, temperature=temperature)
        x = np.arange(start, stop + step / 2, step) if stop != start else np.array([start])
        _, ratio, _ = self._divider(circuit)
        traces = {"v(in)": x.copy(), "v(out)": x * ratio}
        return EngineResult(x, self._select(traces, exports))

    def transient(self, circuit, start, stop, step, exports, temperature=None):
        self._record("tran", circuit, temperature=temperature)
        t = np.arange(start, stop + step / 2, step)
        traces = {
            "v(in)": np.ones_like(t),
            "v(out)": 1.0 - np.exp(-t / RC_TIME_CONSTANT),
        }
        return EngineResult(t, self._select(traces, exports))

    def ac(self, circuit, start_freq, stop_freq, points, sweep, exports, temperature=None):
        self._record("ac", circuit, points=points, sweep=sweep, temperature=temperature)
        if self.ac_frequencies is not None:
            f = np.asarray(self.ac_frequencies, dtype=float)
        else:
            decades = np.log10(stop_freq / start_freq)
            f = np.geomspace(start_freq, stop_freq, max(2, int(np.ceil(decades * points)) + 1))

        if "V_IMPEDANCE_TEST" in circuit.components:
            z = np.array([self.impedance(fi) for fi in f], dtype=complex)
            current = np.zeros(len(f), dtype=complex)
            finite = np.isfinite(z)
            current[finite] = -1.0 / z[finite]
            traces = {e: (current if e.startswith("i(") else np.ones(len(f), dtype=complex)) for e in exports}
            return EngineResult(f, traces)

        h = 1.0 / (1.0 + 1j * 2 * np.pi * f * RC_TIME_CONSTANT)
        traces = {"v(in)": np.ones(len(f), dtype=complex), "v(out)": h}
        return EngineResult(f, self._select(traces, exports))


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def cache():
    return ResultCache()


@pytest.fixture
def registry(cache):
    return CircuitRegistry(cache)


@pytest.fixture
def library():
    return LibraryCatalog()


@pytest.fixture
def dispatcher(registry, cache, engine, library):
    return ToolDispatcher(registry, cache, engine, library)


def build_rc_lowpass(dispatcher, circuit_id="rc"):
    """V1 in->0 (AC 1), R1 in->out 1k, C1 out->0 1u."""
    dispatcher.execute("create_circuit", {"circuit_id": circuit_id})
    dispatcher.execute(
        "add_component",
        {
            "circuit_id": circuit_id,
            "name": "V1",
            "component_type": "voltage_source",
            "nodes": ["in", "0"],
            "value": 0,
            "parameters": {"ac": 1},
        },
    )
    dispatcher.execute(
        "add_component",
        {
            "circuit_id": circuit_id,
            "name": "R1",
            "component_type": "resistor",
            "nodes": ["in", "out"],
            "value": "1k",
        },
    )
    dispatcher.execute(
        "add_component",
        {
            "circuit_id": circuit_id,
            "name": "C1",
            "component_type": "capacitor",
            "nodes": ["out", "0"],
            "value": "1u",
        },
    )


def build_divider(dispatcher, circuit_id="div"):
    """V1 in->0 10 V, R1 in->out 1k, R2 out->0 1k."""
    dispatcher.execute("create_circuit", {"circuit_id": circuit_id})
    for name, ctype, nodes, value in (
        ("V1", "voltage_source", ["in", "0"], 10),
        ("R1", "resistor", ["in", "out"], 1000),
        ("R2", "resistor", ["out", "0"], 1000),
    ):
        dispatcher.execute(
            "add_component",
            {
                "circuit_id": circuit_id,
                "component_name": name,
                "component_type": ctype,
                "nodes": nodes,
                "value": value,
            },
        )
