"""Tests for spicesession.sweeps."""

import numpy as np
import pytest

from conftest import FakeEngine
from spicesession.circuit_registry import Circuit, ComponentDefinition, ModelDefinition
from spicesession.errors import ToolError
from spicesession.sweeps import (
    analysis_settings,
    apply_parameter,
    normalize_analysis_type,
    run_parameter_sweep,
    run_point,
    run_temperature_sweep,
    sweep_values,
    validate_sweep,
)


@pytest.fixture
def divider():
    c = Circuit("div")
    for comp in (
        ComponentDefinition("V1", "voltage_source", ["in", "0"], 10.0),
        ComponentDefinition("R1", "resistor", ["in", "out"], 1000.0),
        ComponentDefinition("R2", "resistor", ["out", "0"], 1000.0),
        ComponentDefinition("D1", "diode", ["out", "0"], model="DX"),
    ):
        c.components[comp.name] = comp
    c.models["DX"] = ModelDefinition("DX", "diode", {"IS": 1e-14})
    return c


class TestValidation:
    @pytest.mark.parametrize(
        "raw, expected",
        [("op", "operating-point"), ("Operating_Point", "operating-point"), ("AC", "ac"), ("dc", "dc")],
    )
    def test_normalize(self, raw, expected):
        assert normalize_analysis_type(raw) == expected

    def test_unsupported(self):
        with pytest.raises(ToolError, match="Unsupported analysis type 'noise'"):
            normalize_analysis_type("noise")

    def test_start_after_stop(self):
        with pytest.raises(ToolError) as exc:
            validate_sweep("op", ["v(out)"], 10, 10000, 100)
        assert "start" in str(exc.value) and "stop" in str(exc.value)

    def test_one_point(self):
        with pytest.raises(ToolError, match="points"):
            validate_sweep("op", ["v(out)"], 1, 100, 10000)

    def test_too_many_points(self):
        with pytest.raises(ToolError, match="at most"):
            validate_sweep("op", ["v(out)"], 5000, 1, 2)

    def test_log_needs_positive(self):
        with pytest.raises(ToolError) as exc:
            validate_sweep("op", ["v(out)"], 10, -100, 1000, "log")
        message = str(exc.value)
        assert "log" in message and "positive" in message

    def test_no_outputs(self):
        with pytest.raises(ToolError, match="'outputs' must contain"):
            validate_sweep("op", [], 10, 1, 2)

    def test_bad_scale(self):
        with pytest.raises(ToolError, match="Invalid scale"):
            validate_sweep("op", ["v(out)"], 10, 1, 2, "octave")

    def test_type_checked_first(self):
        """An unsupported type wins over every other problem."""
        with pytest.raises(ToolError, match="Unsupported analysis type"):
            validate_sweep("bogus", [], 1, 5, 1)


def test_sweep_values():
    assert sweep_values(0, 1, 3) == pytest.approx([0, 0.5, 1])
    assert sweep_values(1, 100, 3, "log") == pytest.approx([1, 10, 100])
    assert sweep_values(1, 100, 3, "decade") == pytest.approx([1, 10, 100])


class TestApplyParameter:
    def test_value_on_clone(self, divider):
        variant = apply_parameter(divider, "r2", "value", 2000.0)
        assert variant.components["R2"].value == 2000.0
        assert divider.components["R2"].value == 1000.0

    def test_component_parameter(self, divider):
        divider.components["V1"].parameters["ac"] = 1.0
        variant = apply_parameter(divider, "V1", "AC", 2.0)
        assert variant.components["V1"].parameters["ac"] == 2.0

    def test_model_parameter(self, divider):
        variant = apply_parameter(divider, "D1", "is", 1e-12)
        assert variant.models["DX"].parameters["IS"] == 1e-12
        assert divider.models["DX"].parameters["IS"] == 1e-14

    def test_unknown_component(self, divider):
        with pytest.raises(ToolError, match="Component 'R9' not found"):
            apply_parameter(divider, "R9", "value", 1.0)

    def test_no_model_to_set(self, divider):
        with pytest.raises(ToolError, match="no parameter 'tc1'"):
            apply_parameter(divider, "R1", "tc1", 1.0)

    def test_parameter_name_checked(self, divider):
        with pytest.raises(ToolError, match="Invalid parameter"):
            apply_parameter(divider, "D1", "is=1)\n.control", 1.0)


class TestAnalysisSettings:
    def test_defaults(self, divider):
        assert analysis_settings(divider, "dc", None) == {
            "source": "V1", "start": 0.0, "stop": 0.0, "step": 0.1,
        }
        assert analysis_settings(divider, "operating-point", {"source": "x y"}) == {}

    def test_suffixed_numbers(self, divider):
        cfg = analysis_settings(divider, "ac", {"start_frequency": "1k", "sweep_type": "OCT"})
        assert cfg["start_frequency"] == 1000.0
        assert cfg["sweep_type"] == "oct"

    def test_source_with_directive_rejected(self, divider):
        with pytest.raises(ToolError, match="Invalid source"):
            analysis_settings(divider, "dc", {"source": "V1 0 1 1\n.control\nshell true\n.endc"})

    def test_unknown_source(self, divider):
        with pytest.raises(ToolError, match="Source 'V9' not found"):
            analysis_settings(divider, "dc", {"source": "V9"})

    def test_sweep_type_checked(self, divider):
        with pytest.raises(ToolError, match="Invalid sweep_type"):
            analysis_settings(divider, "ac", {"sweep_type": "dec 5 1 2\n.control"})

    def test_transient_value_checked(self, divider):
        with pytest.raises(ToolError, match="stop_time"):
            analysis_settings(divider, "transient", {"stop_time": "1m\n.endc"})


class TestRunPoint:
    def test_operating_point_case_insensitive(self, divider):
        point = run_point(FakeEngine(), divider, "operating-point", ["V(OUT)"])
        assert point == {"V(OUT)": pytest.approx(5.0)}

    def test_operating_point_missing_output(self, divider):
        with pytest.raises(ToolError, match="Output 'v\\(x\\)' not found in operating point"):
            run_point(FakeEngine(), divider, "operating-point", ["v(x)"])

    def test_dc_takes_last_sample(self, divider):
        point = run_point(
            FakeEngine(), divider, "dc", ["v(out)"],
            {"source": "V1", "start": 0, "stop": 4, "step": 1},
        )
        assert point["v(out)"] == pytest.approx(2.0)

    def test_ac_last_point_in_db(self, divider):
        engine = FakeEngine(ac_frequencies=[1.0, 1 / (2 * np.pi * 1e-3)])
        point = run_point(engine, divider, "ac", ["v(out)"])
        assert point["v(out)"] == pytest.approx(-3.0103, abs=1e-3)

    def test_transient_defaults(self, divider):
        engine = FakeEngine()
        point = run_point(engine, divider, "transient", ["v(out)"])
        # 1 ms default stop time is one time constant
        assert point["v(out)"] == pytest.approx(1 - np.exp(-1), rel=1e-3)


def test_parameter_sweep_runs_each_value(divider):
    engine = FakeEngine()
    outcome = run_parameter_sweep(
        engine, divider, "R2", "value", np.array([1000.0, 3000.0]), "operating-point", ["v(out)"]
    )
    assert outcome.outputs["v(out)"] == pytest.approx([5.0, 7.5])
    assert len(engine.calls) == 2


def test_temperature_sweep_passes_temperature(divider):
    engine = FakeEngine()
    outcome = run_temperature_sweep(
        engine, divider, np.array([-40.0, 85.0]), "operating-point", ["v(out)"]
    )
    assert [kw["temperature"] for _, _, kw in engine.calls] == [-40.0, 85.0]
    assert outcome.values == pytest.approx([-40.0, 85.0])


def test_bad_config_stops_before_any_run(divider):
    engine = FakeEngine()
    with pytest.raises(ToolError, match="Invalid source"):
        run_parameter_sweep(
            engine, divider, "R2", "value", np.array([1.0, 2.0]), "dc", ["v(out)"],
            {"source": "V1\n.control"},
        )
    with pytest.raises(ToolError, match="Invalid sweep_type"):
        run_temperature_sweep(
            engine, divider, np.array([0.0, 25.0]), "ac", ["v(out)"], {"sweep_type": "log"},
        )
    assert engine.calls == []
