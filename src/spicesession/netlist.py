"""Render registry circuits into SPICE netlist text."""

from __future__ import annotations

import time

from spicesession.circuit_registry import Circuit, ComponentDefinition
from spicesession.constants import (
    COMPONENT_NODE_COUNTS,
    COMPONENT_PREFIXES,
    GROUND_NODES,
    MODEL_KEYWORDS,
    MODEL_TYPES,
    PASSIVE_TYPES,
    SOURCE_TYPES,
)


def fmt(value: float) -> str:
    """Format a number for a netlist without losing precision."""
    return f"{float(value):.12g}"


def element_name(comp: ComponentDefinition) -> str:
    """SPICE element name: the component name, prefixed with its letter if needed."""
    prefix = COMPONENT_PREFIXES[comp.component_type]
    if comp.name[:1].upper() == prefix:
        return comp.name
    return f"{prefix}{comp.name}"


def _param(params: dict, *names: str, default: float | None = None) -> float | None:
    lowered = {k.lower(): v for k, v in params.items()}
    for name in names:
        if name in lowered:
            return float(lowered[name])
    return default


def _waveform(params: dict) -> str:
    lowered = {k.lower(): v for k, v in params.items()}
    kind = str(lowered.get("waveform", "")).lower()
    if not kind and ("amplitude" in lowered and "frequency" in lowered):
        kind = "sine"

    if kind in ("sine", "sin"):
        amplitude = _param(params, "amplitude", "sine_amplitude")
        frequency = _param(params, "frequency", "sine_frequency")
        if amplitude is None or frequency is None:
            return ""
        offset = _param(params, "offset", default=0.0)
        delay = _param(params, "delay", default=0.0)
        damping = _param(params, "damping", default=0.0)
        return f"SIN({fmt(offset)} {fmt(amplitude)} {fmt(frequency)} {fmt(delay)} {fmt(damping)})"

    if kind == "pulse":
        keys = ("v1", "v2", "td", "tr", "tf", "pw", "per")
        values = [_param(params, k) for k in keys]
        if any(v is None for v in values):
            return ""
        return "PULSE(" + " ".join(fmt(v) for v in values) + ")"

    if kind == "pwl":
        points = lowered.get("points") or []
        pairs = []
        for point in points:
            if not isinstance(point, (list, tuple)) or len(point) != 2:
                return ""
            pairs.append(f"{fmt(point[0])} {fmt(point[1])}")
        return f"PWL({' '.join(pairs)})" if pairs else ""

    return ""


def _source_line(name: str, nodes: str, comp: ComponentDefinition) -> str:
    parts = [f"DC {fmt(comp.value or 0.0)}"]
    ac_mag = _param(comp.parameters, "ac", "acmag", default=0.0)
    if ac_mag:
        ac_phase = _param(comp.parameters, "acphase", default=0.0)
        parts.append(f"AC {fmt(ac_mag)} {fmt(ac_phase)}" if ac_phase else f"AC {fmt(ac_mag)}")
    wave = _waveform(comp.parameters)
    if wave:
        parts.append(wave)
    return f"{name} {nodes} {' '.join(parts)}"


def source_element(circuit: Circuit, source: str) -> str:
    """Element name of the source *source* refers to in *circuit*.

    Names that match no component are returned unchanged.
    """
    comp = circuit.find_component(source)
    return element_name(comp) if comp is not None else source


def component_line(comp: ComponentDefinition, circuit: Circuit | None = None) -> str:
    """One netlist line for *comp*.

    With *circuit*, a ccvs/cccs control source is written under its element
    name.
    """
    name = element_name(comp)
    nodes = " ".join(comp.nodes)
    ctype = comp.component_type

    if ctype in PASSIVE_TYPES:
        return f"{name} {nodes} {fmt(comp.value)}"
    if ctype in SOURCE_TYPES:
        return _source_line(name, nodes, comp)
    if ctype in MODEL_TYPES or ctype == "subcircuit":
        if ctype in ("mosfet_n", "mosfet_p") and len(comp.nodes) == 3:
            # bulk tied to source
            nodes = f"{nodes} {comp.nodes[2]}"
        return f"{name} {nodes} {comp.model}"
    if ctype in ("vcvs", "vccs"):
        gain = _param(comp.parameters, "gain", "transconductance", default=comp.value or 1.0)
        return f"{name} {nodes} {fmt(gain)}"
    if ctype in ("ccvs", "cccs"):
        control = str(comp.parameters.get("control_source", comp.model or ""))
        if circuit is not None:
            control = source_element(circuit, control)
        gain = _param(comp.parameters, "gain", "transresistance", default=comp.value or 1.0)
        return f"{name} {nodes} {control} {fmt(gain)}"
    raise ValueError(f"Unsupported component type '{ctype}'")


def _model_card(name: str, model_type: str, parameters: dict[str, float]) -> str:
    keyword = MODEL_KEYWORDS.get(model_type, model_type.upper())
    params = " ".join(f"{k}={fmt(v)}" for k, v in parameters.items())
    return f".MODEL {name} {keyword}({params})"


def render_netlist(
    circuit: Circuit,
    analysis_lines: list[str] | None = None,
    temperature: float | None = None,
    library=None,
    include_comments: bool = False,
) -> str:
    """Build a complete netlist for *circuit*.

    Models and subcircuits referenced by components but not defined on the
    circuit are pulled from *library* (a ``LibraryCatalog``) when given.
    """
    lines = [f"* {circuit.circuit_id}"]
    if include_comments:
        if circuit.description:
            lines.append(f"* Description: {circuit.description}")
        lines.append(f"* Generated: {time.strftime('%Y-%m-%d %H:%M:%S', time.gmtime())} UTC")

    defined = {name.lower() for name in circuit.models}
    for model in circuit.models.values():
        lines.append(_model_card(model.model_name, model.model_type, model.parameters))

    if library is not None:
        emitted: set[str] = set()
        for comp in circuit.components.values():
            ref = (comp.model or "").lower()
            if not ref or ref in defined or ref in emitted:
                continue
            if comp.component_type == "subcircuit":
                entry = library.find_subcircuit(comp.model)
                if entry is not None and entry.definition:
                    lines.append(entry.definition)
                    emitted.add(ref)
            elif comp.component_type in MODEL_TYPES:
                entry = library.find_model(comp.model)
                if entry is not None:
                    lines.append(_model_card(entry.model_name, entry.model_type, entry.parameters))
                    emitted.add(ref)

    for comp in circuit.components.values():
        lines.append(component_line(comp, circuit))

    if temperature is not None:
        lines.append(f".temp {fmt(temperature)}")
    lines.extend(analysis_lines or [])
    lines.append(".end")
    return "\n".join(lines) + "\n"


def validate_circuit(circuit: Circuit, library=None) -> list[str]:
    """Return a list of problems that would stop the circuit from simulating."""
    problems: list[str] = []
    if not circuit.components:
        problems.append("Circuit has no components")
        return problems

    if not any(node.lower() in GROUND_NODES for node in circuit.nodes):
        problems.append("Circuit has no ground node ('0')")

    defined = {name.lower() for name in circuit.models}
    for comp in circuit.components.values():
        prefix = COMPONENT_PREFIXES[comp.component_type]
        expected = COMPONENT_NODE_COUNTS.get(prefix)
        if comp.component_type in ("mosfet_n", "mosfet_p"):
            if len(comp.nodes) not in (3, 4):
                problems.append(f"{comp.name}: expected 3 or 4 nodes, got {len(comp.nodes)}")
        elif expected is not None and len(comp.nodes) != expected:
            problems.append(f"{comp.name}: expected {expected} nodes, got {len(comp.nodes)}")

        if comp.component_type in MODEL_TYPES or comp.component_type == "subcircuit":
            ref = comp.model or ""
            if not ref:
                problems.append(f"{comp.name}: no model specified")
            elif ref.lower() not in defined:
                found = None
                if library is not None:
                    if comp.component_type == "subcircuit":
                        found = library.find_subcircuit(ref)
                    else:
                        found = library.find_model(ref)
                if found is None:
                    problems.append(f"{comp.name}: model '{ref}' is not defined")
    return problems
