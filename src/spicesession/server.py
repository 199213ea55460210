"""MCP server exposing the spicesession tools over FastMCP."""

from __future__ import annotations

import logging
import os

from mcp.server.fastmcp import FastMCP
from mcp.types import ImageContent, TextContent, ToolAnnotations

from spicesession.circuit_registry import CircuitRegistry
from spicesession.engine import NgspiceEngine
from spicesession.library import LibraryCatalog
from spicesession.result_cache import ResultCache
from spicesession.simulator import ngspice_available
from spicesession.tools import ToolDispatcher, ToolResponse

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "spicesession",
    instructions=(
        "spicesession keeps circuits in a session. Create a circuit (it becomes "
        "the active one), add components, run an analysis, then plot or measure "
        "the cached results. circuit_id may be omitted to use the active circuit."
    ),
)


def library_paths_from_env() -> list[str]:
    """Directories listed in ``SPICESESSION_LIBRARY_PATHS`` (os.pathsep separated)."""
    raw = os.environ.get("SPICESESSION_LIBRARY_PATHS", "")
    return [p for p in raw.split(os.pathsep) if p.strip()]


_cache = ResultCache()
_registry = CircuitRegistry(_cache)
_library = LibraryCatalog()
if library_paths_from_env():
    _library.index(library_paths_from_env())
_engine = NgspiceEngine(_library)
_dispatcher = ToolDispatcher(
    _registry, _cache, _engine, _library, output_dir=os.environ.get("SPICESESSION_OUTPUT_DIR")
)

if not ngspice_available():
    logger.warning(
        "ngspice not found on PATH. Simulation tools will fail. "
        "Install with: sudo apt install ngspice"
    )


def _to_content(response: ToolResponse) -> list[TextContent | ImageContent]:
    content: list[TextContent | ImageContent] = []
    for part in response.parts:
        if part.type == "image":
            content.append(ImageContent(type="image", data=part.data, mimeType=part.mime_type))
        else:
            content.append(TextContent(type="text", text=part.text))
    return content


def _call(tool: str, **arguments) -> list[TextContent | ImageContent]:
    # ToolError propagates; FastMCP turns it into an isError result
    return _to_content(_dispatcher.execute(tool, arguments))


def _annotations(title: str, read_only: bool = False, destructive: bool = False,
                 idempotent: bool = False) -> ToolAnnotations:
    return ToolAnnotations(
        title=title,
        readOnlyHint=read_only,
        destructiveHint=destructive,
        idempotentHint=idempotent,
        openWorldHint=False,
    )


@mcp.tool(annotations=_annotations("Service Status", read_only=True, idempotent=True))
def get_service_status() -> list:
    """Report server version, engine availability, circuits, cache and library state."""
    return _call("get_service_status")


@mcp.tool(annotations=_annotations("Create Circuit"))
def create_circuit(circuit_id: str, description: str = "", make_active: bool = True) -> list:
    """Create an empty circuit. It becomes the active circuit unless make_active is false."""
    return _call(
        "create_circuit", circuit_id=circuit_id, description=description, make_active=make_active
    )


@mcp.tool(annotations=_annotations("List Circuits", read_only=True, idempotent=True))
def list_circuits() -> list:
    """List every circuit in the session and which one is active."""
    return _call("list_circuits")


@mcp.tool(annotations=_annotations("Set Active Circuit", idempotent=True))
def set_active_circuit(circuit_id: str) -> list:
    """Make a circuit the default target for tools called without circuit_id."""
    return _call("set_active_circuit", circuit_id=circuit_id)


@mcp.tool(annotations=_annotations("Delete Circuit", destructive=True, idempotent=True))
def delete_circuit(circuit_id: str) -> list:
    """Delete a circuit and its cached results."""
    return _call("delete_circuit", circuit_id=circuit_id)


@mcp.tool(annotations=_annotations("Add Component"))
def add_component(
    component_name: str,
    component_type: str,
    nodes: list[str],
    value: float | str | None = None,
    model: str | None = None,
    parameters: dict | None = None,
    circuit_id: str | None = None,
) -> list:
    """Add a component to a circuit.

    component_type is one of resistor, capacitor, inductor, voltage_source,
    current_source, diode, bjt_npn, bjt_pnp, mosfet_n, mosfet_p, jfet_n,
    jfet_p, vcvs, vccs, ccvs, cccs, subcircuit. Values accept SPICE
    suffixes ("1k", "100n"). Sources take parameters such as ac, acphase
    and a waveform (sine, pulse, pwl).
    """
    return _call(
        "add_component",
        circuit_id=circuit_id,
        component_name=component_name,
        component_type=component_type,
        nodes=nodes,
        value=value,
        model=model,
        parameters=parameters,
    )


@mcp.tool(annotations=_annotations("Modify Component", idempotent=True))
def modify_component(
    component_name: str,
    value: float | str | None = None,
    model: str | None = None,
    parameters: dict | None = None,
    circuit_id: str | None = None,
) -> list:
    """Change a component's value, model or parameters."""
    return _call(
        "modify_component",
        circuit_id=circuit_id,
        component_name=component_name,
        value=value,
        model=model,
        parameters=parameters,
    )


@mcp.tool(annotations=_annotations("Component Info", read_only=True, idempotent=True))
def get_component_info(component_name: str, circuit_id: str | None = None) -> list:
    """Show a component's definition and the netlist line it produces."""
    return _call("get_component_info", circuit_id=circuit_id, component_name=component_name)


@mcp.tool(annotations=_annotations("Define Model", idempotent=True))
def define_model(
    model_name: str,
    model_type: str,
    parameters: dict | None = None,
    circuit_id: str | None = None,
) -> list:
    """Add or replace a .MODEL card (diode, bjt_npn, NPN, NMOS, ...) on a circuit."""
    return _call(
        "define_model",
        circuit_id=circuit_id,
        model_name=model_name,
        model_type=model_type,
        parameters=parameters,
    )


@mcp.tool(annotations=_annotations("Validate Circuit", read_only=True, idempotent=True))
def validate_circuit(circuit_id: str | None = None) -> list:
    """Check a circuit for missing ground, wrong node counts and undefined models."""
    return _call("validate_circuit", circuit_id=circuit_id)


@mcp.tool(annotations=_annotations("Export Netlist", read_only=True, idempotent=True))
def export_netlist(circuit_id: str | None = None) -> list:
    """Return the SPICE netlist for a circuit."""
    return _call("export_netlist", circuit_id=circuit_id)


@mcp.tool(annotations=_annotations("Run Operating Point", idempotent=True))
def run_operating_point(circuit_id: str | None = None) -> list:
    """Compute DC node voltages and branch currents and cache them."""
    return _call("run_operating_point", circuit_id=circuit_id)


@mcp.tool(annotations=_annotations("Run DC Analysis", idempotent=True))
def run_dc_analysis(
    source: str,
    start: float | str,
    stop: float | str,
    step: float | str,
    exports: list[str] | None = None,
    circuit_id: str | None = None,
) -> list:
    """Sweep a source from start to stop and cache the exported signals."""
    return _call(
        "run_dc_analysis",
        circuit_id=circuit_id,
        source=source,
        start=start,
        stop=stop,
        step=step,
        exports=exports,
    )


@mcp.tool(annotations=_annotations("Run Transient Analysis", idempotent=True))
def run_transient_analysis(
    stop_time: float | str,
    time_step: float | str,
    start_time: float | str = 0.0,
    signals: list[str] | None = None,
    circuit_id: str | None = None,
) -> list:
    """Simulate in the time domain and cache the requested signals."""
    return _call(
        "run_transient_analysis",
        circuit_id=circuit_id,
        stop_time=stop_time,
        time_step=time_step,
        start_time=start_time,
        signals=signals,
    )


@mcp.tool(annotations=_annotations("Run AC Analysis", idempotent=True))
def run_ac_analysis(
    start_frequency: float | str,
    stop_frequency: float | str,
    number_of_points: int = 10,
    sweep_type: str = "dec",
    signals: list[str] | None = None,
    circuit_id: str | None = None,
) -> list:
    """Small-signal frequency sweep; real and imaginary parts are cached."""
    return _call(
        "run_ac_analysis",
        circuit_id=circuit_id,
        start_frequency=start_frequency,
        stop_frequency=stop_frequency,
        number_of_points=number_of_points,
        sweep_type=sweep_type,
        signals=signals,
    )


@mcp.tool(annotations=_annotations("Run Parameter Sweep", idempotent=True))
def run_parameter_sweep(
    component: str,
    start: float | str,
    stop: float | str,
    analysis_type: str,
    outputs: list[str],
    parameter: str = "value",
    points: int = 20,
    scale: str = "linear",
    analysis_config: dict | None = None,
    circuit_id: str | None = None,
) -> list:
    """Repeat an analysis while stepping one component value or parameter.

    Each output is reduced to one number per point: the operating-point
    value, the last DC or transient sample, or the AC magnitude in dB at
    the last frequency.
    """
    return _call(
        "run_parameter_sweep",
        circuit_id=circuit_id,
        component=component,
        parameter=parameter,
        start=start,
        stop=stop,
        points=points,
        scale=scale,
        analysis_type=analysis_type,
        outputs=outputs,
        analysis_config=analysis_config,
    )


@mcp.tool(annotations=_annotations("Run Temperature Sweep", idempotent=True))
def run_temperature_sweep(
    analysis_type: str,
    outputs: list[str],
    start_temp: float = -40.0,
    stop_temp: float = 85.0,
    points: int = 10,
    analysis_config: dict | None = None,
    circuit_id: str | None = None,
) -> list:
    """Repeat an analysis across temperatures (degrees C)."""
    return _call(
        "run_temperature_sweep",
        circuit_id=circuit_id,
        start_temp=start_temp,
        stop_temp=stop_temp,
        points=points,
        analysis_type=analysis_type,
        outputs=outputs,
        analysis_config=analysis_config,
    )


@mcp.tool(annotations=_annotations("Plot Results", read_only=True, idempotent=True))
def plot_results(
    signals: list[str] | None = None,
    invert_signals: list[str] | None = None,
    x_signal: str | None = None,
    plot_type: str = "auto",
    image_format: str = "png",
    output_format: list[str] | None = None,
    file_path: str | None = None,
    options: dict | None = None,
    circuit_id: str | None = None,
) -> list:
    """Plot cached results: line, bode (AC), bar (operating point) or scatter.

    With image_format "svg" the raw SVG is also returned as text.
    """
    return _call(
        "plot_results",
        circuit_id=circuit_id,
        signals=signals,
        invert_signals=invert_signals,
        x_signal=x_signal,
        plot_type=plot_type,
        image_format=image_format,
        output_format=output_format,
        file_path=file_path,
        options=options,
    )


@mcp.tool(annotations=_annotations("Plot Impedance", read_only=True, idempotent=True))
def plot_impedance(
    port_positive: str,
    port_negative: str = "0",
    start_freq: float = 20.0,
    stop_freq: float = 20000.0,
    points_per_decade: int = 20,
    format: str = "png",
    circuit_id: str | None = None,
) -> list:
    """Plot the impedance seen into a port. The port must not have a voltage source across it."""
    return _call(
        "plot_impedance",
        circuit_id=circuit_id,
        port_positive=port_positive,
        port_negative=port_negative,
        start_freq=start_freq,
        stop_freq=stop_freq,
        points_per_decade=points_per_decade,
        format=format,
    )


@mcp.tool(annotations=_annotations("Group Delay", read_only=True, idempotent=True))
def calculate_group_delay(
    signal: str,
    reference: str | None = None,
    format: str = "png",
    circuit_id: str | None = None,
) -> list:
    """Group delay of a cached AC signal, optionally relative to a reference signal."""
    return _call(
        "calculate_group_delay",
        circuit_id=circuit_id,
        signal=signal,
        reference=reference,
        format=format,
    )


@mcp.tool(annotations=_annotations("Measure Response", read_only=True, idempotent=True))
def measure_response(
    measurement: str,
    signal: str,
    reference: str | None = None,
    frequency: float | None = None,
    threshold: float | None = None,
    circuit_id: str | None = None,
) -> list:
    """Measure bandwidth, gain, phase margin, rise time and similar on cached results."""
    return _call(
        "measure_response",
        circuit_id=circuit_id,
        measurement=measurement,
        signal=signal,
        reference=reference,
        frequency=frequency,
        threshold=threshold,
    )


@mcp.tool(annotations=_annotations("Library Search", read_only=True, idempotent=True))
def library_search(
    query: str = "",
    type: str | None = None,
    limit: int = 20,
    include_parameters: bool = True,
    count_only: bool = False,
) -> list:
    """Search indexed .MODEL and .SUBCKT definitions by name."""
    return _call(
        "library_search",
        query=query,
        type=type,
        limit=limit,
        include_parameters=include_parameters,
        count_only=count_only,
    )


@mcp.tool(annotations=_annotations("Reindex Libraries", idempotent=True))
def reindex_libraries(paths: list[str] | None = None) -> list:
    """Rebuild the library index from the given directories or the configured ones."""
    return _call("reindex_libraries", paths=paths)


def configure_for_remote() -> None:
    """Disable DNS rebinding protection for tunnel/remote access."""
    from mcp.server.transport_security import TransportSecuritySettings

    mcp.settings.transport_security = TransportSecuritySettings(
        enable_dns_rebinding_protection=False
    )


def index_libraries(paths: list[str]) -> dict:
    """Add directories to the catalog used by the running server."""
    return _library.index(paths)


if __name__ == "__main__":
    mcp.run()
