"""Tool dispatcher: argument schemas, validation and one handler per tool.

Every tool takes a loosely typed JSON object, validates it against an
explicit :class:`ArgSpec` schema in a single pass, and returns a
:class:`ToolResponse` made of text and image parts. All caller-visible
failures are raised as :class:`~spicesession.errors.ToolError`.
"""

from __future__ import annotations

import base64
import json
import logging
import math
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, NamedTuple

import numpy as np

from spicesession import __version__
from spicesession.circuit_registry import (
    Circuit,
    CircuitRegistry,
    ComponentDefinition,
    ModelDefinition,
)
from spicesession.constants import (
    AC_SWEEP_TYPES,
    COMPONENT_NODE_COUNTS,
    COMPONENT_PREFIXES,
    MODEL_KEYWORDS,
    MODEL_TYPES,
    PASSIVE_TYPES,
)
from spicesession.errors import ToolError, engine_error
from spicesession.impedance import compute_port_impedance, point_count
from spicesession.library import LibraryCatalog, normalize_model_type
from spicesession.measurements import measure, require_signal
from spicesession.netlist import component_line, element_name, render_netlist, validate_circuit
from spicesession.plotting import (
    MIME_TYPES,
    PLOT_TYPES,
    PlotOptions,
    PlotRequest,
    Series,
    render_impedance_plot,
    render_plot,
)
from spicesession.result_cache import AnalysisType, CachedAnalysisResult, ResultCache
from spicesession.sanitize import (
    parse_spice_value,
    safe_path,
    validate_choice,
    validate_format,
    validate_identifier,
    validate_node_name,
)
from spicesession.signals import group_delay, magnitude_db
from spicesession.simulator import ngspice_available
from spicesession.sweeps import (
    run_parameter_sweep,
    run_temperature_sweep,
    sweep_values,
    validate_sweep,
)

logger = logging.getLogger(__name__)

_MAX_DC_POINTS = 100_000
_MAX_AC_POINTS = 10_000
_MAX_TRANSIENT_POINTS = 1_000_000
_MAX_SEARCH_LIMIT = 100
_OUTPUT_FORMATS = ("image", "text", "file")


# --- response types ---


@dataclass
class ContentPart:
    """One part of a tool response.

    Text parts carry ``text`` (``mime_type`` is set only for raw SVG);
    image parts carry base64 ``data`` and a ``mime_type``.
    """

    type: str
    text: str | None = None
    data: str | None = None
    mime_type: str | None = None

    @classmethod
    def json(cls, payload: dict) -> ContentPart:
        return cls("text", text=json.dumps(payload, default=_json_default))

    @classmethod
    def image(cls, raw: bytes, mime_type: str) -> ContentPart:
        return cls("image", data=base64.b64encode(raw).decode("ascii"), mime_type=mime_type)


@dataclass
class ToolResponse:
    parts: list[ContentPart] = field(default_factory=list)

    @classmethod
    def of(cls, payload: dict) -> ToolResponse:
        return cls([ContentPart.json(payload)])

    @property
    def payload(self) -> dict:
        """The JSON summary part, decoded."""
        for part in self.parts:
            if part.type == "text" and part.mime_type is None:
                return json.loads(part.text)
        raise LookupError("response has no JSON part")

    @property
    def images(self) -> list[ContentPart]:
        return [p for p in self.parts if p.type == "image"]


def _json_default(value: Any):
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _finite(value: float) -> float | None:
    value = float(value)
    return value if math.isfinite(value) else None


# --- argument schemas ---


class ArgSpec(NamedTuple):
    """Declared argument of a tool.

    ``kind`` is one of ``str``, ``float``, ``int``, ``bool``, ``list``
    (of strings), ``dict`` or ``any``. ``float`` also accepts SPICE value
    strings such as ``"1k"``.
    """

    name: str
    kind: str
    required: bool = False
    default: Any = None
    aliases: tuple[str, ...] = ()


def _coerce(spec: ArgSpec, value: Any) -> Any:
    name = spec.name
    kind = spec.kind
    if kind == "str":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        if not isinstance(value, str):
            raise ToolError(f"'{name}' must be a string")
        return value
    if kind == "float":
        return parse_spice_value(value, what=f"'{name}'")
    if kind == "int":
        if isinstance(value, bool):
            raise ToolError(f"'{name}' must be an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
        raise ToolError(f"'{name}' must be an integer")
    if kind == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ToolError(f"'{name}' must be a boolean")
    if kind == "list":
        if isinstance(value, str):
            return [value]
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            raise ToolError(f"'{name}' must be a list of strings")
        return list(value)
    if kind == "dict":
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                raise ToolError(f"'{name}' must be an object") from None
        if not isinstance(value, dict):
            raise ToolError(f"'{name}' must be an object")
        return value
    return value


def validate_arguments(specs: tuple[ArgSpec, ...], arguments: dict) -> dict:
    """Coerce *arguments* against *specs*; unknown keys are ignored."""
    params: dict[str, Any] = {}
    for spec in specs:
        value = None
        for key in (spec.name, *spec.aliases):
            if arguments.get(key) is not None:
                value = arguments[key]
                break
        if value is None or (spec.kind == "str" and spec.required and value == ""):
            if spec.required:
                raise ToolError(f"'{spec.name}' is required")
            params[spec.name] = spec.default
            continue
        params[spec.name] = _coerce(spec, value)
    return params


_CIRCUIT = ArgSpec("circuit_id", "str")
_COMPONENT_NAME = ArgSpec("component_name", "str", required=True, aliases=("name",))

TOOL_SCHEMAS: dict[str, tuple[ArgSpec, ...]] = {
    "get_service_status": (),
    "create_circuit": (
        ArgSpec("circuit_id", "str", required=True),
        ArgSpec("description", "str", default=""),
        ArgSpec("make_active", "bool", default=True),
    ),
    "list_circuits": (),
    "set_active_circuit": (ArgSpec("circuit_id", "str", required=True),),
    "delete_circuit": (ArgSpec("circuit_id", "str", required=True),),
    "add_component": (
        _CIRCUIT,
        _COMPONENT_NAME,
        ArgSpec("component_type", "str", required=True),
        ArgSpec("nodes", "list", required=True),
        ArgSpec("value", "float"),
        ArgSpec("model", "str"),
        ArgSpec("parameters", "dict"),
    ),
    "modify_component": (
        _CIRCUIT,
        _COMPONENT_NAME,
        ArgSpec("value", "float"),
        ArgSpec("model", "str"),
        ArgSpec("parameters", "dict"),
    ),
    "get_component_info": (_CIRCUIT, _COMPONENT_NAME),
    "define_model": (
        _CIRCUIT,
        ArgSpec("model_name", "str", required=True),
        ArgSpec("model_type", "str", required=True),
        ArgSpec("parameters", "dict"),
    ),
    "validate_circuit": (_CIRCUIT,),
    "export_netlist": (_CIRCUIT,),
    "run_operating_point": (_CIRCUIT,),
    "run_dc_analysis": (
        _CIRCUIT,
        ArgSpec("source", "str", required=True),
        ArgSpec("start", "float", required=True),
        ArgSpec("stop", "float", required=True),
        ArgSpec("step", "float", required=True),
        ArgSpec("exports", "list"),
    ),
    "run_transient_analysis": (
        _CIRCUIT,
        ArgSpec("stop_time", "float", required=True),
        ArgSpec("time_step", "float", required=True),
        ArgSpec("start_time", "float", default=0.0),
        ArgSpec("signals", "list"),
    ),
    "run_ac_analysis": (
        _CIRCUIT,
        ArgSpec("start_frequency", "float", required=True),
        ArgSpec("stop_frequency", "float", required=True),
        ArgSpec("number_of_points", "int", default=10),
        ArgSpec("sweep_type", "str", default="dec"),
        ArgSpec("signals", "list"),
    ),
    "run_parameter_sweep": (
        _CIRCUIT,
        ArgSpec("component", "str", required=True),
        ArgSpec("parameter", "str", default="value"),
        ArgSpec("start", "float", required=True),
        ArgSpec("stop", "float", required=True),
        ArgSpec("points", "int", default=20),
        ArgSpec("scale", "str", default="linear"),
        ArgSpec("analysis_type", "str", required=True),
        ArgSpec("outputs", "list", required=True),
        ArgSpec("analysis_config", "dict"),
    ),
    "run_temperature_sweep": (
        _CIRCUIT,
        ArgSpec("start_temp", "float", default=-40.0),
        ArgSpec("stop_temp", "float", default=85.0),
        ArgSpec("points", "int", default=10),
        ArgSpec("analysis_type", "str", required=True),
        ArgSpec("outputs", "list", required=True),
        ArgSpec("analysis_config", "dict"),
    ),
    "plot_results": (
        _CIRCUIT,
        ArgSpec("signals", "list"),
        ArgSpec("invert_signals", "list"),
        ArgSpec("x_signal", "str"),
        ArgSpec("plot_type", "str", default="auto"),
        ArgSpec("image_format", "str", default="png"),
        ArgSpec("output_format", "list", default=["image"]),
        ArgSpec("file_path", "str"),
        ArgSpec("options", "dict"),
    ),
    "plot_impedance": (
        _CIRCUIT,
        ArgSpec("port_positive", "str", required=True),
        ArgSpec("port_negative", "str", default="0"),
        ArgSpec("start_freq", "float", default=20.0),
        ArgSpec("stop_freq", "float", default=20000.0),
        ArgSpec("points_per_decade", "int", default=20),
        ArgSpec("format", "str", default="png"),
    ),
    "calculate_group_delay": (
        _CIRCUIT,
        ArgSpec("signal", "str", required=True),
        ArgSpec("reference", "str"),
        ArgSpec("format", "str", default="png"),
    ),
    "measure_response": (
        _CIRCUIT,
        ArgSpec("measurement", "str", required=True),
        ArgSpec("signal", "str", required=True),
        ArgSpec("reference", "str"),
        ArgSpec("frequency", "float"),
        ArgSpec("threshold", "float"),
    ),
    "library_search": (
        ArgSpec("query", "str", default=""),
        ArgSpec("type", "str"),
        ArgSpec("limit", "int", default=20),
        ArgSpec("include_parameters", "bool", default=True),
        ArgSpec("count_only", "bool", default=False),
    ),
    "reindex_libraries": (ArgSpec("paths", "list"),),
}


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


def _trace_summary(values: np.ndarray) -> dict:
    values = np.asarray(values, dtype=float)
    if len(values) == 0:
        return {"points": 0}
    return {
        "min": float(np.min(values)),
        "max": float(np.max(values)),
        "final": float(values[-1]),
    }


def _plot_options(raw: dict | None) -> PlotOptions:
    raw = raw or {}
    opts = PlotOptions()
    for key in ("title", "x_label", "y_label"):
        if raw.get(key) is not None:
            setattr(opts, key, str(raw[key]))
    for key in ("x_scale", "y_scale"):
        if raw.get(key) is not None:
            setattr(opts, key, str(raw[key]).lower())
    for key in ("grid", "legend"):
        if raw.get(key) is not None:
            setattr(opts, key, _coerce(ArgSpec(key, "bool"), raw[key]))
    for key in ("width", "height"):
        if raw.get(key) is not None:
            setattr(opts, key, _coerce(ArgSpec(key, "int"), raw[key]))
    if raw.get("colors") is not None:
        opts.colors = _coerce(ArgSpec("colors", "list"), raw["colors"])
    opts.validate()
    return opts


class ToolDispatcher:
    """Route tool calls to their handlers.

    The dispatcher owns no state of its own: circuits live in *registry*,
    analysis output in *cache*, and simulations run through *engine*.
    """

    def __init__(
        self,
        registry: CircuitRegistry,
        cache: ResultCache,
        engine,
        library: LibraryCatalog | None = None,
        output_dir: str | Path | None = None,
    ) -> None:
        self._registry = registry
        self._cache = cache
        self._engine = engine
        self._library = library if library is not None else LibraryCatalog()
        # plot files are only ever written below this directory
        self._output_dir = Path(output_dir or tempfile.gettempdir())
        self._handlers = {name: getattr(self, f"_{name}") for name in TOOL_SCHEMAS}

    def tool_names(self) -> list[str]:
        return list(self._handlers)

    def execute(self, tool_name: str, arguments: dict | str | None = None) -> ToolResponse:
        """Validate *arguments* and run *tool_name*.

        Raises:
            ToolError: Unknown tool, invalid arguments, or a failed operation.
        """
        handler = self._handlers.get(tool_name)
        if handler is None:
            raise ToolError(f"Unknown tool: {tool_name}")
        if arguments is None:
            arguments = {}
        elif isinstance(arguments, str):
            try:
                arguments = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError as exc:
                raise ToolError(f"Arguments are not valid JSON: {exc.msg}") from None
        if not isinstance(arguments, dict):
            raise ToolError("Arguments must be a JSON object")

        params = validate_arguments(TOOL_SCHEMAS[tool_name], arguments)
        logger.debug("Tool call %s", tool_name)
        return handler(params)

    def _run_engine(self, tool: str, func, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ToolError:
            raise
        except Exception as e:
            raise engine_error(e, logger, tool) from e

    def _cached(self, circuit: Circuit) -> CachedAnalysisResult:
        result = self._cache.get(circuit.circuit_id)
        if result is None:
            raise ToolError(
                f"No analysis results cached for circuit '{circuit.circuit_id}'. "
                f"Run an analysis first."
            )
        return result

    # --- circuit session ---

    def _get_service_status(self, params: dict) -> ToolResponse:
        active = self._registry.get_active()
        return ToolResponse.of(
            {
                "status": "ok",
                "version": __version__,
                "engine": type(self._engine).__name__,
                "ngspice_available": ngspice_available(),
                "circuit_count": len(self._registry),
                "active_circuit": active.circuit_id if active else None,
                "cache": self._cache.stats(),
                "library": {
                    "configured": self._library.is_configured,
                    "model_count": self._library.model_count,
                    "subcircuit_count": self._library.subcircuit_count,
                    "indexed_paths": self._library.indexed_paths,
                },
                "tools": self.tool_names(),
            }
        )

    def _create_circuit(self, params: dict) -> ToolResponse:
        circuit_id = validate_identifier(params["circuit_id"], "circuit_id")
        circuit = self._registry.create(circuit_id, params["description"])
        if params["make_active"]:
            self._registry.set_active(circuit_id)
        return ToolResponse.of({"status": "ok", **circuit.summary()})

    def _list_circuits(self, params: dict) -> ToolResponse:
        circuits = self._registry.list()
        active = self._registry.get_active()
        return ToolResponse.of(
            {
                "status": "ok",
                "count": len(circuits),
                "active_circuit": active.circuit_id if active else None,
                "circuits": [c.summary() for c in circuits],
            }
        )

    def _set_active_circuit(self, params: dict) -> ToolResponse:
        circuit = self._registry.set_active(params["circuit_id"])
        return ToolResponse.of({"status": "ok", "active_circuit": circuit.circuit_id})

    def _delete_circuit(self, params: dict) -> ToolResponse:
        circuit_id = params["circuit_id"]
        self._registry.delete(circuit_id)
        active = self._registry.get_active()
        return ToolResponse.of(
            {
                "status": "ok",
                "deleted": circuit_id,
                "active_circuit": active.circuit_id if active else None,
            }
        )

    # --- components and models ---

    def _clean_parameters(self, raw: dict | None) -> dict:
        cleaned: dict[str, Any] = {}
        for key, value in (raw or {}).items():
            validate_identifier(key, "parameter name")
            lowered = key.lower()
            if lowered in ("waveform", "control_source"):
                cleaned[key] = validate_identifier(str(value), key)
            elif lowered == "points":
                if not isinstance(value, (list, tuple)):
                    raise ToolError("'points' must be a list of [time, value] pairs")
                pairs = []
                for point in value:
                    if not isinstance(point, (list, tuple)) or len(point) != 2:
                        raise ToolError("'points' must be a list of [time, value] pairs")
                    pairs.append([parse_spice_value(point[0], "time"), parse_spice_value(point[1], "value")])
                cleaned[key] = pairs
            else:
                cleaned[key] = parse_spice_value(value, f"parameter '{key}'")
        return cleaned

    def _add_component(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        name = validate_identifier(params["component_name"], "component_name")
        ctype = params["component_type"].lower()
        if ctype not in COMPONENT_PREFIXES:
            raise ToolError(
                f"Unknown component type '{params['component_type']}'. Supported types: "
                f"{', '.join(COMPONENT_PREFIXES)}"
            )
        nodes = [validate_node_name(n) for n in params["nodes"]]
        prefix = COMPONENT_PREFIXES[ctype]
        if ctype in ("mosfet_n", "mosfet_p"):
            if len(nodes) not in (3, 4):
                raise ToolError(f"{ctype} needs 3 or 4 nodes, got {len(nodes)}")
        elif ctype == "subcircuit":
            if not nodes:
                raise ToolError("subcircuit needs at least one node")
        elif len(nodes) != COMPONENT_NODE_COUNTS[prefix]:
            raise ToolError(
                f"{ctype} needs {COMPONENT_NODE_COUNTS[prefix]} nodes, got {len(nodes)}"
            )

        value = params["value"]
        model = params["model"]
        if ctype in PASSIVE_TYPES and value is None:
            raise ToolError(f"'value' is required for {ctype}")
        if ctype in MODEL_TYPES or ctype == "subcircuit":
            if not model:
                raise ToolError(f"'model' is required for {ctype}")
        if model:
            model = validate_identifier(model, "model")

        component = ComponentDefinition(
            name=name,
            component_type=ctype,
            nodes=nodes,
            value=value,
            model=model,
            parameters=self._clean_parameters(params["parameters"]),
        )
        if ctype in ("ccvs", "cccs") and not (
            component.parameters.get("control_source") or component.model
        ):
            raise ToolError(f"{ctype} needs a 'control_source' parameter")
        self._registry.add_component(circuit.circuit_id, component)
        return ToolResponse.of(
            {"status": "ok", "circuit_id": circuit.circuit_id, "component": component.to_dict()}
        )

    def _modify_component(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        if params["value"] is None and params["model"] is None and not params["parameters"]:
            raise ToolError("Nothing to modify: provide 'value', 'model' or 'parameters'")
        model = params["model"]
        if model is not None:
            model = validate_identifier(model, "model")
        component = self._registry.modify_component(
            circuit.circuit_id,
            params["component_name"],
            value=params["value"],
            model=model,
            parameters=self._clean_parameters(params["parameters"]),
        )
        return ToolResponse.of(
            {"status": "ok", "circuit_id": circuit.circuit_id, "component": component.to_dict()}
        )

    def _get_component_info(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        component = self._registry.get_component(circuit.circuit_id, params["component_name"])
        return ToolResponse.of(
            {
                "status": "ok",
                "circuit_id": circuit.circuit_id,
                "component": component.to_dict(),
                "element_name": element_name(component),
                "netlist_line": component_line(component, circuit),
            }
        )

    def _define_model(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        model_name = validate_identifier(params["model_name"], "model_name")
        model_type = normalize_model_type(params["model_type"])
        if model_type not in MODEL_KEYWORDS:
            raise ToolError(
                f"Unknown model type '{params['model_type']}'. Supported types: "
                f"{', '.join(MODEL_KEYWORDS)}"
            )
        parameters = {}
        for key, value in (params["parameters"] or {}).items():
            validate_identifier(key, "parameter name")
            parameters[key] = parse_spice_value(value, f"parameter '{key}'")
        model = ModelDefinition(model_name, model_type, parameters)
        self._registry.define_model(circuit.circuit_id, model)
        return ToolResponse.of(
            {
                "status": "ok",
                "circuit_id": circuit.circuit_id,
                "model_name": model_name,
                "model_type": model_type,
                "parameters": parameters,
            }
        )

    def _validate_circuit(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        problems = validate_circuit(circuit, self._library)
        return ToolResponse.of(
            {
                "status": "ok",
                "circuit_id": circuit.circuit_id,
                "valid": not problems,
                "problems": problems,
                "component_count": len(circuit.components),
                "node_count": len(circuit.nodes),
            }
        )

    def _export_netlist(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        netlist = render_netlist(circuit, library=self._library, include_comments=True)
        return ToolResponse.of(
            {"status": "ok", "circuit_id": circuit.circuit_id, "netlist": netlist}
        )

    # --- analyses; each stores its result in the cache ---

    def _run_operating_point(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        started = time.perf_counter()
        op = self._run_engine("run_operating_point", self._engine.operating_point, circuit)
        self._cache.store(
            circuit.circuit_id,
            CachedAnalysisResult(AnalysisType.OPERATING_POINT, operating_point=op),
        )
        return ToolResponse.of(
            {
                "status": "ok",
                "circuit_id": circuit.circuit_id,
                "analysis_type": AnalysisType.OPERATING_POINT.value,
                "node_voltages": {k: v for k, v in op.items() if k.lower().startswith("v(")},
                "branch_currents": {k: v for k, v in op.items() if k.lower().startswith("i(")},
                "analysis_time_ms": _elapsed_ms(started),
            }
        )

    def _store_swept(
        self, circuit: Circuit, analysis: AnalysisType, x, x_label: str, traces: dict
    ) -> CachedAnalysisResult:
        signals = {k: np.real(v) for k, v in traces.items()}
        imaginary = {}
        if analysis == AnalysisType.AC:
            imaginary = {k: np.imag(v) for k, v in traces.items()}
        result = CachedAnalysisResult(
            analysis, x_data=x, x_label=x_label, signals=signals, imaginary_signals=imaginary
        )
        self._cache.store(circuit.circuit_id, result)
        return result

    def _swept_response(
        self, circuit: Circuit, result: CachedAnalysisResult, started: float, **extra
    ) -> ToolResponse:
        x = result.x_data
        if result.analysis_type == AnalysisType.AC:
            summaries = {
                name: _trace_summary(
                    magnitude_db(result.signals[name], result.imaginary_signals.get(name))
                )
                for name in result.signals
            }
        else:
            summaries = {name: _trace_summary(v) for name, v in result.signals.items()}
        return ToolResponse.of(
            {
                "status": "ok",
                "circuit_id": circuit.circuit_id,
                "analysis_type": result.analysis_type.value,
                "points": len(x),
                "x_label": result.x_label,
                "x_range": [float(x[0]), float(x[-1])] if len(x) else [],
                "signals": list(result.signals),
                "summary": summaries,
                "analysis_time_ms": _elapsed_ms(started),
                **extra,
            }
        )

    def _run_dc_analysis(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        source = validate_identifier(params["source"], "source")
        start, stop, step = params["start"], params["stop"], params["step"]
        if step == 0:
            raise ToolError("'step' must not be zero")
        if (stop - start) / step < 0:
            raise ToolError("'step' must move from start towards stop")
        if abs((stop - start) / step) + 1 > _MAX_DC_POINTS:
            raise ToolError(f"DC sweep would exceed {_MAX_DC_POINTS} points")
        if circuit.find_component(source) is None:
            raise ToolError(f"Source '{source}' not found in circuit '{circuit.circuit_id}'")

        started = time.perf_counter()
        out = self._run_engine(
            "run_dc_analysis",
            self._engine.dc_sweep,
            circuit,
            source,
            start,
            stop,
            step,
            params["exports"] or [],
        )
        result = self._store_swept(
            circuit, AnalysisType.DC_SWEEP, out.x, f"{source} (V)", out.traces
        )
        return self._swept_response(circuit, result, started, source=source)

    def _run_transient_analysis(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        stop, step, start = params["stop_time"], params["time_step"], params["start_time"]
        if stop <= 0:
            raise ToolError("'stop_time' must be positive")
        if step <= 0:
            raise ToolError("'time_step' must be positive")
        if step > stop:
            raise ToolError("'time_step' must not exceed 'stop_time'")
        if start < 0 or start >= stop:
            raise ToolError("'start_time' must be non-negative and less than 'stop_time'")
        if (stop - start) / step > _MAX_TRANSIENT_POINTS:
            raise ToolError(f"Transient analysis would exceed {_MAX_TRANSIENT_POINTS} points")

        started = time.perf_counter()
        out = self._run_engine(
            "run_transient_analysis",
            self._engine.transient,
            circuit,
            start,
            stop,
            step,
            params["signals"] or [],
        )
        result = self._store_swept(circuit, AnalysisType.TRANSIENT, out.x, "Time (s)", out.traces)
        return self._swept_response(circuit, result, started)

    def _run_ac_analysis(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        fstart, fstop = params["start_frequency"], params["stop_frequency"]
        points = params["number_of_points"]
        sweep = validate_choice(params["sweep_type"], AC_SWEEP_TYPES, "sweep_type")
        if fstart <= 0:
            raise ToolError("'start_frequency' must be positive")
        if fstop <= fstart:
            raise ToolError("'stop_frequency' must be greater than 'start_frequency'")
        if not 1 <= points <= _MAX_AC_POINTS:
            raise ToolError(f"'number_of_points' must be between 1 and {_MAX_AC_POINTS}")

        started = time.perf_counter()
        out = self._run_engine(
            "run_ac_analysis",
            self._engine.ac,
            circuit,
            fstart,
            fstop,
            points,
            sweep,
            params["signals"] or [],
        )
        result = self._store_swept(circuit, AnalysisType.AC, out.x, "Frequency (Hz)", out.traces)
        return self._swept_response(circuit, result, started, sweep_type=sweep)

    def _sweep_response(self, circuit, analysis, outcome, x_label, started, **extra):
        result = CachedAnalysisResult(
            analysis, x_data=outcome.values, x_label=x_label, signals=outcome.outputs
        )
        self._cache.store(circuit.circuit_id, result)
        return ToolResponse.of(
            {
                "status": "ok",
                "circuit_id": circuit.circuit_id,
                "analysis_type": analysis.value,
                "per_point_analysis": outcome.analysis_type,
                "points": len(outcome.values),
                "x_label": x_label,
                "values": outcome.values,
                "outputs": outcome.outputs,
                "analysis_time_ms": _elapsed_ms(started),
                **extra,
            }
        )

    def _run_parameter_sweep(self, params: dict) -> ToolResponse:
        analysis = validate_sweep(
            params["analysis_type"],
            params["outputs"],
            params["points"],
            params["start"],
            params["stop"],
            params["scale"],
        )
        circuit = self._registry.resolve(params["circuit_id"])
        component, parameter = params["component"], params["parameter"]
        if circuit.find_component(component) is None:
            raise ToolError(
                f"Component '{component}' not found in circuit '{circuit.circuit_id}'"
            )
        values = sweep_values(params["start"], params["stop"], params["points"], params["scale"])

        started = time.perf_counter()
        outcome = self._run_engine(
            "run_parameter_sweep",
            run_parameter_sweep,
            self._engine,
            circuit,
            component,
            parameter,
            values,
            analysis,
            params["outputs"],
            params["analysis_config"],
        )
        return self._sweep_response(
            circuit,
            AnalysisType.PARAMETER_SWEEP,
            outcome,
            f"{component}.{parameter}",
            started,
            component=component,
            parameter=parameter,
            scale=params["scale"].lower(),
        )

    def _run_temperature_sweep(self, params: dict) -> ToolResponse:
        analysis = validate_sweep(
            params["analysis_type"],
            params["outputs"],
            params["points"],
            params["start_temp"],
            params["stop_temp"],
        )
        circuit = self._registry.resolve(params["circuit_id"])
        temperatures = sweep_values(params["start_temp"], params["stop_temp"], params["points"])

        started = time.perf_counter()
        outcome = self._run_engine(
            "run_temperature_sweep",
            run_temperature_sweep,
            self._engine,
            circuit,
            temperatures,
            analysis,
            params["outputs"],
            params["analysis_config"],
        )
        return self._sweep_response(
            circuit, AnalysisType.TEMPERATURE_SWEEP, outcome, "Temperature (C)", started
        )

    # --- plots and derived signals ---

    def _image_parts(
        self,
        raw: bytes,
        image_format: str,
        output_format: list[str],
        file_path: str | None = None,
    ) -> tuple[list[ContentPart], str | None]:
        parts: list[ContentPart] = []
        if image_format == "svg" and ("text" in output_format or "image" in output_format):
            parts.append(ContentPart("text", text=raw.decode("utf-8"), mime_type=MIME_TYPES["svg"]))
        if "image" in output_format:
            parts.append(ContentPart.image(raw, MIME_TYPES[image_format]))
        saved = None
        if "file" in output_format:
            name = file_path or f"spicesession_plot_{int(time.time())}.{image_format}"
            target = safe_path(self._output_dir, name)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(raw)
            except OSError as exc:
                raise ToolError(f"Could not save plot to '{target}': {exc}") from exc
            saved = str(target)
        return parts, saved

    def _plot_results(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        result = self._cached(circuit)
        image_format = validate_format(params["image_format"])
        output_format = [f.lower() for f in params["output_format"]] or ["image"]
        for fmt in output_format:
            validate_choice(fmt, _OUTPUT_FORMATS, "output_format")
        options = _plot_options(params["options"])
        plot_type = validate_choice(params["plot_type"], ("auto", *PLOT_TYPES), "plot_type")
        if plot_type == "auto":
            if result.analysis_type == AnalysisType.AC:
                plot_type = "bode"
            elif result.analysis_type == AnalysisType.OPERATING_POINT:
                plot_type = "bar"
            else:
                plot_type = "line"

        inverted = set(params["invert_signals"] or [])
        if result.analysis_type == AnalysisType.OPERATING_POINT:
            names = params["signals"] or list(result.operating_point)
            missing = [n for n in names if n not in result.operating_point]
            if missing:
                raise ToolError(
                    f"Signal '{missing[0]}' not found in cached results. "
                    f"Available signals: {', '.join(result.operating_point) or 'none'}"
                )
            series = [
                Series(n, np.array([-result.operating_point[n] if n in inverted else result.operating_point[n]]))
                for n in names
            ]
            x_data, x_label = np.zeros(1), ""
        else:
            names = params["signals"] or list(result.signals)
            series = []
            for name in names:
                require_signal(result, name)
                sign = -1.0 if name in inverted else 1.0
                imag = result.imaginary_signals.get(name)
                series.append(
                    Series(name, sign * result.signals[name], None if imag is None else sign * imag)
                )
            x_data, x_label = result.x_data, result.x_label
            if params["x_signal"]:
                require_signal(result, params["x_signal"])
                x_data, x_label = result.signals[params["x_signal"]], params["x_signal"]
        if not series:
            raise ToolError("No signals to plot")

        raw = render_plot(PlotRequest(plot_type, image_format, x_data, x_label, series, options))
        parts, saved = self._image_parts(raw, image_format, output_format, params["file_path"])
        summary = {
            "status": "ok",
            "circuit_id": circuit.circuit_id,
            "analysis_type": result.analysis_type.value,
            "plot_type": plot_type,
            "image_format": image_format,
            "signals": names,
            "points": len(x_data),
        }
        if saved:
            summary["file_path"] = saved
        parts.append(ContentPart.json(summary))
        return ToolResponse(parts)

    def _plot_impedance(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        positive = validate_node_name(params["port_positive"])
        negative = validate_node_name(params["port_negative"])
        image_format = validate_format(params["format"])
        start, stop, ppd = params["start_freq"], params["stop_freq"], params["points_per_decade"]

        started = time.perf_counter()
        imp = self._run_engine(
            "plot_impedance",
            compute_port_impedance,
            self._engine,
            circuit,
            positive,
            negative,
            start,
            stop,
            ppd,
        )
        raw = render_impedance_plot(
            imp.frequencies,
            imp.impedance,
            image_format,
            title=f"Impedance at ({positive}, {negative})",
        )
        parts, _ = self._image_parts(raw, image_format, ["image"])
        magnitude = imp.magnitude
        finite = np.isfinite(magnitude)
        summary = {
            "status": "ok",
            "circuit_id": circuit.circuit_id,
            "port_positive": positive,
            "port_negative": negative,
            "points": len(imp.frequencies),
            "requested_points": point_count(start, stop, ppd),
            "frequency_range_hz": [float(imp.frequencies[0]), float(imp.frequencies[-1])],
            "impedance_range_ohms": (
                [float(magnitude[finite].min()), float(magnitude[finite].max())]
                if finite.any()
                else [None, None]
            ),
            "magnitude_ohms": [_finite(m) for m in magnitude],
            "phase_degrees": [_finite(p) for p in imp.phase_degrees],
            "analysis_time_ms": _elapsed_ms(started),
        }
        parts.append(ContentPart.json(summary))
        return ToolResponse(parts)

    def _calculate_group_delay(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        image_format = validate_format(params["format"])
        result = self._cached(circuit)
        if result.analysis_type != AnalysisType.AC:
            raise ToolError(
                f"Group delay requires AC analysis results, but the cached result "
                f"is '{result.analysis_type.value}'. Run run_ac_analysis first."
            )
        signal, reference = params["signal"], params["reference"]
        require_signal(result, signal)
        if signal not in result.imaginary_signals:
            raise ToolError(f"Signal '{signal}' has no phase data (imaginary component)")
        if len(result.x_data) < 2:
            raise ToolError("Group delay needs at least 2 frequency points")

        started = time.perf_counter()
        response = result.complex_signal(signal)
        if reference:
            require_signal(result, reference)
            with np.errstate(divide="ignore", invalid="ignore"):
                response = response / result.complex_signal(reference)
        delay_ms = group_delay(result.x_data, response.real, response.imag) * 1000.0

        freqs = result.x_data
        title = f"Group Delay: {signal}" + (f" relative to {reference}" if reference else "")
        options = PlotOptions(
            title=title,
            x_label="Frequency (Hz)",
            y_label="Group Delay (ms)",
            x_scale="log" if np.all(freqs > 0) else "linear",
            legend=False,
        )
        raw = render_plot(
            PlotRequest("line", image_format, freqs, "Frequency (Hz)", [Series(signal, delay_ms)], options)
        )
        parts, _ = self._image_parts(raw, image_format, ["image"])
        # a zero reference leaves NaN points, reported as null
        finite = delay_ms[np.isfinite(delay_ms)]
        delay_range = [float(np.min(finite)), float(np.max(finite))] if len(finite) else None
        parts.append(
            ContentPart.json(
                {
                    "status": "ok",
                    "circuit_id": circuit.circuit_id,
                    "signal": signal,
                    "reference": reference,
                    "points": len(freqs),
                    "frequency_range_hz": [float(freqs[0]), float(freqs[-1])],
                    "group_delay_range_ms": delay_range,
                    "frequencies_hz": freqs,
                    "group_delay_ms": [_finite(d) for d in delay_ms],
                    "analysis_time_ms": _elapsed_ms(started),
                }
            )
        )
        return ToolResponse(parts)

    def _measure_response(self, params: dict) -> ToolResponse:
        circuit = self._registry.resolve(params["circuit_id"])
        result = self._cached(circuit)
        m = measure(
            result,
            params["measurement"],
            params["signal"],
            reference=params["reference"],
            frequency=params["frequency"],
            threshold=params["threshold"],
        )
        return ToolResponse.of(
            {
                "status": "ok",
                "circuit_id": circuit.circuit_id,
                "measurement": params["measurement"].lower(),
                "signal": params["signal"],
                "reference": params["reference"],
                "value": _finite(m.value),
                "unit": m.unit,
                "description": m.description,
            }
        )

    # --- library catalog ---

    def _unconfigured_library(self) -> ToolResponse:
        return ToolResponse.of(
            {
                "error": "Library service is not configured",
                "message": (
                    "Library search is not available. Start the server with "
                    "--library-path or set SPICESESSION_LIBRARY_PATHS to index "
                    ".lib files."
                ),
                "models": [],
                "subcircuits": [],
                "model_count": 0,
                "subcircuit_count": 0,
                "count": 0,
            }
        )

    def _library_search(self, params: dict) -> ToolResponse:
        if not self._library.is_configured:
            return self._unconfigured_library()
        limit = min(max(params["limit"], 1), _MAX_SEARCH_LIMIT)
        found = self._library.search(params["query"], params["type"], limit)
        if params["count_only"]:
            return ToolResponse.of(
                {
                    "query": params["query"],
                    "type": params["type"],
                    "model_count": found.total_models,
                    "subcircuit_count": found.total_subcircuits,
                    "count": found.total_models + found.total_subcircuits,
                }
            )
        include = params["include_parameters"]
        return ToolResponse.of(
            {
                "query": params["query"],
                "type": params["type"],
                "models": [m.to_dict(include) for m in found.models],
                "subcircuits": [s.to_dict(include) for s in found.subcircuits],
                "model_count": len(found.models),
                "subcircuit_count": len(found.subcircuits),
                "count": len(found.models) + len(found.subcircuits),
            }
        )

    def _reindex_libraries(self, params: dict) -> ToolResponse:
        paths = params["paths"]
        if paths:
            self._library.clear()
            summary = self._library.index(paths)
        elif self._library.is_configured:
            summary = self._library.reindex()
        else:
            return self._unconfigured_library()
        return ToolResponse.of(
            {"status": "ok", **summary, "indexed_paths": self._library.indexed_paths}
        )
