"""Parameter and temperature sweeps built from repeated engine runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from spicesession.circuit_registry import Circuit
from spicesession.constants import AC_SWEEP_TYPES, SCALE_TYPES, SWEEP_ANALYSIS_TYPES
from spicesession.errors import ToolError
from spicesession.sanitize import parse_spice_value, validate_choice, validate_identifier
from spicesession.signals import magnitude_db

logger = logging.getLogger(__name__)

# Per-point analysis settings used when no analysis_config is given
DEFAULT_DC = {"source": "V1", "start": 0.0, "stop": 0.0, "step": 0.1}
DEFAULT_AC = {"start_frequency": 1e3, "stop_frequency": 1e6, "number_of_points": 100, "sweep_type": "dec"}
DEFAULT_TRANSIENT = {"start_time": 0.0, "stop_time": 1e-3, "time_step": 1e-6}

MAX_SWEEP_POINTS = 1000


@dataclass
class SweepOutcome:
    values: np.ndarray
    outputs: dict[str, np.ndarray] = field(default_factory=dict)
    analysis_type: str = ""


def normalize_analysis_type(analysis_type: str) -> str:
    """Lower-case, ``_`` to ``-``, and map ``op`` onto ``operating-point``."""
    normalized = analysis_type.strip().lower().replace("_", "-")
    if normalized not in SWEEP_ANALYSIS_TYPES:
        raise ToolError(
            f"Unsupported analysis type '{analysis_type}'. Supported types: "
            f"{', '.join(SWEEP_ANALYSIS_TYPES)}"
        )
    return "operating-point" if normalized == "op" else normalized


def validate_sweep(
    analysis_type: str,
    outputs: list[str],
    points: int,
    start: float,
    stop: float,
    scale: str = "linear",
) -> str:
    """Check sweep arguments in a fixed order; returns the analysis type.

    Raises:
        ToolError: On the first rejected argument.
    """
    normalized = normalize_analysis_type(analysis_type)
    if not outputs:
        raise ToolError("'outputs' must contain at least one signal")
    if points < 2:
        raise ToolError(f"points must be at least 2, got {points}")
    if points > MAX_SWEEP_POINTS:
        raise ToolError(f"points must be at most {MAX_SWEEP_POINTS}, got {points}")
    if start > stop:
        raise ToolError(f"start ({start}) must not be greater than stop ({stop})")
    scale = scale.lower()
    if scale not in SCALE_TYPES:
        raise ToolError(f"Invalid scale '{scale}': must be one of {', '.join(SCALE_TYPES)}")
    if scale in ("log", "decade") and (start <= 0 or stop <= 0):
        raise ToolError(
            f"Scale '{scale}' is logarithmic: start and stop must be positive"
        )
    return normalized


def sweep_values(start: float, stop: float, points: int, scale: str = "linear") -> np.ndarray:
    if scale.lower() in ("log", "decade"):
        return np.geomspace(start, stop, points)
    return np.linspace(start, stop, points)


def apply_parameter(circuit: Circuit, component: str, parameter: str, value: float) -> Circuit:
    """Clone *circuit* with one component value or parameter replaced.

    ``parameter="value"`` sets the component value. Any other name sets a
    component parameter when the component has it, else a parameter of the
    component's model card.
    """
    validate_identifier(parameter, "parameter")
    test = circuit.clone()
    comp = test.find_component(component)
    if comp is None:
        raise ToolError(f"Component '{component}' not found in circuit '{circuit.circuit_id}'")
    if parameter.lower() == "value":
        comp.value = value
        return test

    params = {k.lower(): k for k in comp.parameters}
    if parameter.lower() in params:
        comp.parameters[params[parameter.lower()]] = value
        return test

    model = None
    if comp.model:
        model = next(
            (m for name, m in test.models.items() if name.lower() == comp.model.lower()),
            None,
        )
    if model is None:
        raise ToolError(
            f"Component '{component}' has no parameter '{parameter}' and no "
            f"circuit model to set it on"
        )
    keys = {k.lower(): k for k in model.parameters}
    model.parameters[keys.get(parameter.lower(), parameter)] = value
    return test


def _config(defaults: dict, overrides: dict | None) -> dict:
    merged = dict(defaults)
    if overrides:
        merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


def analysis_settings(circuit: Circuit, analysis_type: str, config: dict | None) -> dict:
    """Per-point analysis settings: defaults overlaid with *config*, checked.

    The DC source must be a component of *circuit*; numbers accept SPICE
    suffixes.

    Raises:
        ToolError: On an unknown source, sweep type or a non-numeric value.
    """
    if analysis_type == "dc":
        cfg = _config(DEFAULT_DC, config)
        source = validate_identifier(str(cfg["source"]), "source")
        if circuit.find_component(source) is None:
            raise ToolError(f"Source '{source}' not found in circuit '{circuit.circuit_id}'")
        return {
            "source": source,
            **{k: parse_spice_value(cfg[k], k) for k in ("start", "stop", "step")},
        }
    if analysis_type == "ac":
        cfg = _config(DEFAULT_AC, config)
        return {
            "start_frequency": parse_spice_value(cfg["start_frequency"], "start_frequency"),
            "stop_frequency": parse_spice_value(cfg["stop_frequency"], "stop_frequency"),
            "number_of_points": int(parse_spice_value(cfg["number_of_points"], "number_of_points")),
            "sweep_type": validate_choice(str(cfg["sweep_type"]), AC_SWEEP_TYPES, "sweep_type"),
        }
    if analysis_type == "transient":
        cfg = _config(DEFAULT_TRANSIENT, config)
        return {k: parse_spice_value(cfg[k], k) for k in DEFAULT_TRANSIENT}
    return {}


def _scalar(trace, is_ac: bool) -> float:
    values = np.asarray(trace)
    if len(values) == 0:
        return float("nan")
    if is_ac:
        last = complex(values[-1])
        return float(magnitude_db([last.real], [last.imag])[0])
    return float(np.real(values[-1]))


def run_point(
    engine,
    circuit: Circuit,
    analysis_type: str,
    outputs: list[str],
    config: dict | None = None,
    temperature: float | None = None,
) -> dict[str, float]:
    """Run one analysis and reduce each output to a scalar.

    Operating point gives the scalar itself, DC and transient the last
    sample, AC the magnitude in dB at the last frequency.
    """
    if analysis_type == "operating-point":
        op = engine.operating_point(circuit, temperature=temperature)
        lowered = {k.lower(): v for k, v in op.items()}
        missing = [o for o in outputs if o.lower() not in lowered]
        if missing:
            raise ToolError(
                f"Output '{missing[0]}' not found in operating point. "
                f"Available: {', '.join(op)}"
            )
        return {o: float(lowered[o.lower()]) for o in outputs}

    cfg = analysis_settings(circuit, analysis_type, config)
    if analysis_type == "dc":
        result = engine.dc_sweep(
            circuit, cfg["source"], cfg["start"], cfg["stop"], cfg["step"],
            outputs, temperature=temperature,
        )
    elif analysis_type == "ac":
        result = engine.ac(
            circuit, cfg["start_frequency"], cfg["stop_frequency"],
            cfg["number_of_points"], cfg["sweep_type"], outputs,
            temperature=temperature,
        )
    else:
        result = engine.transient(
            circuit, cfg["start_time"], cfg["stop_time"], cfg["time_step"],
            outputs, temperature=temperature,
        )
    is_ac = analysis_type == "ac"
    return {o: _scalar(result.traces[o], is_ac) for o in outputs}


def run_parameter_sweep(
    engine,
    circuit: Circuit,
    component: str,
    parameter: str,
    values: np.ndarray,
    analysis_type: str,
    outputs: list[str],
    config: dict | None = None,
) -> SweepOutcome:
    validate_identifier(parameter, "parameter")
    analysis_settings(circuit, analysis_type, config)
    collected: dict[str, list[float]] = {o: [] for o in outputs}
    for value in values:
        variant = apply_parameter(circuit, component, parameter, float(value))
        point = run_point(engine, variant, analysis_type, outputs, config)
        for name, scalar in point.items():
            collected[name].append(scalar)
    logger.debug("Swept %s.%s over %d points", component, parameter, len(values))
    return SweepOutcome(
        np.asarray(values, dtype=float),
        {k: np.asarray(v) for k, v in collected.items()},
        analysis_type,
    )


def run_temperature_sweep(
    engine,
    circuit: Circuit,
    temperatures: np.ndarray,
    analysis_type: str,
    outputs: list[str],
    config: dict | None = None,
) -> SweepOutcome:
    analysis_settings(circuit, analysis_type, config)
    collected: dict[str, list[float]] = {o: [] for o in outputs}
    for temp in temperatures:
        point = run_point(engine, circuit, analysis_type, outputs, config, temperature=float(temp))
        for name, scalar in point.items():
            collected[name].append(scalar)
    return SweepOutcome(
        np.asarray(temperatures, dtype=float),
        {k: np.asarray(v) for k, v in collected.items()},
        analysis_type,
    )
