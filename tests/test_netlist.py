"""Tests for spicesession.netlist rendering and validation."""

import pytest

from spicesession.circuit_registry import Circuit, ComponentDefinition, ModelDefinition
from spicesession.library import LibraryCatalog
from spicesession.netlist import (
    component_line,
    element_name,
    fmt,
    render_netlist,
    validate_circuit,
)


def _comp(name, ctype, nodes, value=None, model=None, **params):
    return ComponentDefinition(name, ctype, list(nodes), value=value, model=model, parameters=params)


@pytest.fixture
def rc():
    c = Circuit("rc", description="RC low-pass")
    for comp in (
        _comp("V1", "voltage_source", ["in", "0"], 0.0, ac=1.0),
        _comp("R1", "resistor", ["in", "out"], 1000.0),
        _comp("C1", "capacitor", ["out", "0"], 1e-6),
    ):
        c.components[comp.name] = comp
    return c


class TestComponentLines:
    def test_element_prefix_added(self):
        assert element_name(_comp("load", "resistor", ["a", "b"], 1.0)) == "Rload"
        assert element_name(_comp("R5", "resistor", ["a", "b"], 1.0)) == "R5"
        assert element_name(_comp("amp", "subcircuit", ["a"], model="OPA")) == "Xamp"

    def test_passive(self):
        assert component_line(_comp("C1", "capacitor", ["out", "0"], 1e-6)) == "C1 out 0 1e-06"

    def test_source_with_ac(self):
        line = component_line(_comp("V1", "voltage_source", ["in", "0"], 5.0, ac=1.0, acphase=90))
        assert line == "V1 in 0 DC 5 AC 1 90"

    def test_sine_source(self):
        line = component_line(_comp(
            "V2", "voltage_source", ["a", "0"], None, waveform="sine", amplitude=1.0, frequency=1e3,
        ))
        assert line == "V2 a 0 DC 0 SIN(0 1 1000 0 0)"

    def test_pulse_needs_every_field(self):
        line = component_line(_comp("V3", "voltage_source", ["a", "0"], 0.0, waveform="pulse", v1=0, v2=5))
        assert "PULSE" not in line

    def test_pwl(self):
        line = component_line(_comp(
            "I1", "current_source", ["a", "0"], None, waveform="pwl", points=[[0, 0], [1e-3, 2e-3]],
        ))
        assert line.endswith("PWL(0 0 0.001 0.002)")

    def test_three_terminal_mosfet_ties_bulk(self):
        line = component_line(_comp("M1", "mosfet_n", ["d", "g", "s"], model="NM"))
        assert line == "M1 d g s s NM"

    def test_ccvs(self):
        line = component_line(_comp("H1", "ccvs", ["a", "0"], 2.0, control_source="Vsense"))
        assert line == "H1 a 0 Vsense 2"

    def test_ccvs_control_resolved_in_circuit(self):
        c = Circuit("cc")
        c.components["sense"] = _comp("sense", "voltage_source", ["a", "b"], 0.0)
        h1 = _comp("H1", "ccvs", ["out", "0"], 2.0, control_source="sense")
        c.components["H1"] = h1
        assert component_line(h1, c) == "H1 out 0 Vsense 2"
        assert "H1 out 0 Vsense 2" in render_netlist(c)

    def test_fmt_precision(self):
        assert fmt(1 / 3) == "0.333333333333"


class TestRenderNetlist:
    def test_structure(self, rc):
        text = render_netlist(rc, analysis_lines=[".ac dec 10 1 1e+06"], temperature=27)
        lines = text.strip().splitlines()
        assert lines[0] == "* rc"
        assert "R1 in out 1000" in lines
        assert lines[-3:] == [".temp 27", ".ac dec 10 1 1e+06", ".end"]

    def test_comments(self, rc):
        text = render_netlist(rc, include_comments=True)
        assert "* Description: RC low-pass" in text
        assert "* Generated:" in text

    def test_model_cards(self, rc):
        rc.models["DX"] = ModelDefinition("DX", "diode", {"IS": 1e-14})
        rc.components["D1"] = _comp("D1", "diode", ["out", "0"], model="DX")
        assert ".MODEL DX D(IS=1e-14)" in render_netlist(rc)

    def test_library_model_pulled_in(self, rc, tmp_path):
        (tmp_path / "d.lib").write_text(".MODEL D1N4148 D(IS=2.52n N=1.752)\n")
        catalog = LibraryCatalog()
        catalog.index([tmp_path])
        rc.components["D1"] = _comp("D1", "diode", ["out", "0"], model="d1n4148")
        text = render_netlist(rc, library=catalog)
        assert text.count(".MODEL D1N4148 D(") == 1


class TestValidateCircuit:
    def test_valid(self, rc):
        assert validate_circuit(rc) == []

    def test_empty(self):
        assert validate_circuit(Circuit("e")) == ["Circuit has no components"]

    def test_no_ground(self):
        c = Circuit("f")
        c.components["R1"] = _comp("R1", "resistor", ["a", "b"], 1.0)
        assert any("ground" in p for p in validate_circuit(c))

    def test_undefined_model(self, rc):
        rc.components["D1"] = _comp("D1", "diode", ["out", "0"], model="NOPE")
        assert "D1: model 'NOPE' is not defined" in validate_circuit(rc)
