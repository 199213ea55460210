"""Port impedance of a circuit, measured with an injected AC test source."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import numpy as np

from spicesession.circuit_registry import Circuit, ComponentDefinition
from spicesession.constants import GROUND_NODES
from spicesession.errors import ToolError

logger = logging.getLogger(__name__)

TEST_SOURCE = "V_IMPEDANCE_TEST"
PORT_SHUNT = "R_IMPEDANCE_SHUNT"

# Large enough to be invisible in any realistic impedance
SHUNT_RESISTANCE = 1e12


@dataclass
class ImpedanceResult:
    frequencies: np.ndarray
    impedance: np.ndarray

    @property
    def magnitude(self) -> np.ndarray:
        return np.abs(self.impedance)

    @property
    def phase_degrees(self) -> np.ndarray:
        return np.degrees(np.angle(self.impedance))


def point_count(start: float, stop: float, points_per_decade: int) -> int:
    """Number of log-spaced points covering [start, stop]."""
    return max(2, math.ceil(math.log10(stop / start) * points_per_decade) + 1)


def _is_ground(node: str) -> bool:
    return node.lower() in GROUND_NODES


def _node_key(node: str) -> str:
    return "0" if _is_ground(node) else node.lower()


def _port_voltage_name(positive: str, negative: str) -> str:
    if _is_ground(negative):
        return f"v({positive})"
    return f"v({positive},{negative})"


def prepare_test_circuit(circuit: Circuit, positive: str, negative: str) -> Circuit:
    """Clone *circuit* and attach the test source and port shunt.

    Raises:
        ToolError: If a voltage source already sits across the port.
    """
    port = {_node_key(positive), _node_key(negative)}
    if len(port) < 2:
        raise ToolError("port_positive and port_negative must be different nodes")
    for comp in circuit.components.values():
        if comp.component_type != "voltage_source":
            continue
        if {_node_key(n) for n in comp.nodes} == port:
            raise ToolError(
                f"Voltage source '{comp.name}' is connected across the port "
                f"({positive}, {negative}); its impedance would short the "
                f"measurement. Remove it or choose another port."
            )

    test = circuit.clone()
    if any(c.component_type == "subcircuit" for c in test.components.values()):
        # DC path for every capacitor node
        for comp in list(test.components.values()):
            if comp.component_type == "capacitor":
                name = f"R_CSHUNT_{comp.name}"
                test.components[name] = ComponentDefinition(
                    name, "resistor", list(comp.nodes), value=SHUNT_RESISTANCE
                )
    test.components[PORT_SHUNT] = ComponentDefinition(
        PORT_SHUNT, "resistor", [positive, negative], value=SHUNT_RESISTANCE
    )
    test.components[TEST_SOURCE] = ComponentDefinition(
        TEST_SOURCE, "voltage_source", [positive, negative], value=0.0, parameters={"ac": 1.0}
    )
    return test


def compute_port_impedance(
    engine,
    circuit: Circuit,
    port_positive: str,
    port_negative: str = "0",
    start_freq: float = 20.0,
    stop_freq: float = 20000.0,
    points_per_decade: int = 20,
) -> ImpedanceResult:
    """Complex impedance seen looking into a port, ``Z = V / I_in``.

    The registered circuit is never modified. Frequencies where the test
    source carries no current give an infinite magnitude.
    """
    if start_freq <= 0 or stop_freq <= 0:
        raise ToolError("start_freq and stop_freq must be positive")
    if start_freq >= stop_freq:
        raise ToolError("start_freq must be less than stop_freq")
    if points_per_decade < 1:
        raise ToolError("points_per_decade must be at least 1")

    test = prepare_test_circuit(circuit, port_positive, port_negative)
    points = point_count(start_freq, stop_freq, points_per_decade)
    voltage_name = _port_voltage_name(port_positive, port_negative)
    current_name = f"i({TEST_SOURCE.lower()})"
    logger.debug(
        "Impedance of %s at (%s, %s): %d points", circuit.circuit_id,
        port_positive, port_negative, points,
    )

    result = engine.ac(
        test,
        start_freq,
        stop_freq,
        points_per_decade,
        "dec",
        [voltage_name, current_name],
    )
    voltage = np.asarray(result.traces[voltage_name], dtype=complex)
    # Source current flows + to - internally, so current into the port is -I
    current = -np.asarray(result.traces[current_name], dtype=complex)

    z = np.full(len(voltage), complex(np.inf, 0))
    flowing = current != 0
    z[flowing] = voltage[flowing] / current[flowing]
    return ImpedanceResult(np.asarray(result.x, dtype=float), z)
