"""Circuit session registry with an active-circuit pointer."""

from __future__ import annotations

import copy
import logging
import threading
import time
from dataclasses import dataclass, field

from spicesession.errors import ToolError
from spicesession.result_cache import ResultCache

logger = logging.getLogger(__name__)

_MAX_CIRCUITS = 100


@dataclass
class ComponentDefinition:
    """A single circuit element as the caller described it."""

    name: str
    component_type: str
    nodes: list[str]
    value: float | None = None
    model: str | None = None
    parameters: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "component_type": self.component_type,
            "nodes": list(self.nodes),
            "value": self.value,
            "model": self.model,
            "parameters": dict(self.parameters),
        }


@dataclass
class ModelDefinition:
    """A ``.MODEL`` card attached to a circuit."""

    model_name: str
    model_type: str
    parameters: dict[str, float] = field(default_factory=dict)


@dataclass
class Circuit:
    """State for a single circuit session."""

    circuit_id: str
    description: str = ""
    components: dict[str, ComponentDefinition] = field(default_factory=dict)
    models: dict[str, ModelDefinition] = field(default_factory=dict)
    is_active: bool = False
    created_at: float = field(default_factory=time.time)
    modified_at: float = field(default_factory=time.time)

    @property
    def nodes(self) -> list[str]:
        """Distinct node names in first-seen order."""
        seen: dict[str, None] = {}
        for comp in self.components.values():
            for node in comp.nodes:
                seen.setdefault(node, None)
        return list(seen)

    def find_component(self, name: str) -> ComponentDefinition | None:
        """Look up a component by name, ignoring case."""
        if name in self.components:
            return self.components[name]
        lowered = name.lower()
        for comp_name, comp in self.components.items():
            if comp_name.lower() == lowered:
                return comp
        return None

    def clone(self, circuit_id: str | None = None) -> Circuit:
        """Deep copy used by sweeps and impedance runs; never registered."""
        dup = copy.deepcopy(self)
        dup.circuit_id = circuit_id or self.circuit_id
        dup.is_active = False
        return dup

    def summary(self) -> dict:
        return {
            "circuit_id": self.circuit_id,
            "description": self.description,
            "is_active": self.is_active,
            "component_count": len(self.components),
            "model_count": len(self.models),
            "nodes": self.nodes,
        }


class CircuitRegistry:
    """Keyed store of circuits plus the single active pointer.

    Deleting a circuit also evicts its entry from *cache*, so no result
    outlives the circuit it describes.
    """

    def __init__(self, cache: ResultCache) -> None:
        self._circuits: dict[str, Circuit] = {}
        self._active_id: str | None = None
        self._cache = cache
        self._lock = threading.Lock()

    def _not_found(self, circuit_id: str) -> ToolError:
        if self._circuits:
            available = ", ".join(self._circuits)
            return ToolError(
                f"Circuit '{circuit_id}' not found. Available circuits: {available}"
            )
        return ToolError(f"Circuit '{circuit_id}' not found. No circuits exist.")

    def create(self, circuit_id: str, description: str = "") -> Circuit:
        """Create and return a new, inactive circuit."""
        with self._lock:
            if circuit_id in self._circuits:
                raise ToolError(f"Circuit '{circuit_id}' already exists")
            if len(self._circuits) >= _MAX_CIRCUITS:
                logger.warning("Circuit limit reached, refusing '%s'", circuit_id)
                raise ToolError(
                    f"Circuit limit reached ({_MAX_CIRCUITS}); delete a circuit first"
                )
            circuit = Circuit(circuit_id=circuit_id, description=description)
            self._circuits[circuit_id] = circuit
        logger.debug("Created circuit '%s'", circuit_id)
        return circuit

    def get(self, circuit_id: str) -> Circuit:
        """Get a circuit by ID. Raises ToolError if not found."""
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is None:
                raise self._not_found(circuit_id)
            return circuit

    def list(self) -> list[Circuit]:
        """Return all circuits in creation order."""
        with self._lock:
            return list(self._circuits.values())

    def set_active(self, circuit_id: str) -> Circuit:
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is None:
                raise self._not_found(circuit_id)
            self._activate(circuit_id)
            return circuit

    def _activate(self, circuit_id: str | None) -> None:
        # Caller holds the lock
        if self._active_id is not None and self._active_id in self._circuits:
            self._circuits[self._active_id].is_active = False
        self._active_id = circuit_id
        if circuit_id is not None:
            self._circuits[circuit_id].is_active = True

    def get_active(self) -> Circuit | None:
        with self._lock:
            if self._active_id is None:
                return None
            return self._circuits.get(self._active_id)

    def resolve(self, circuit_id: str | None = None) -> Circuit:
        """Return the named circuit, or the active one when no id is given."""
        if circuit_id:
            return self.get(circuit_id)
        active = self.get_active()
        if active is None:
            raise ToolError("circuit_id is required (no active circuit)")
        return active

    def delete(self, circuit_id: str) -> Circuit | None:
        """Remove a circuit and its cached result.

        Returns the newly active circuit when the deleted one was active and
        another circuit remains, else ``None``.
        """
        with self._lock:
            circuit = self._circuits.pop(circuit_id, None)
            if circuit is None:
                raise self._not_found(circuit_id)
            promoted = None
            if self._active_id == circuit_id:
                self._active_id = None
                next_id = next(iter(self._circuits), None)
                if next_id is not None:
                    self._activate(next_id)
                    promoted = self._circuits[next_id]
            circuit.is_active = False
            self._cache.evict(circuit_id)
        logger.debug("Deleted circuit '%s'", circuit_id)
        return promoted

    def clear(self) -> None:
        """Remove all circuits and their cached results."""
        with self._lock:
            for circuit_id in self._circuits:
                self._cache.evict(circuit_id)
            self._circuits.clear()
            self._active_id = None

    # --- component and model edits; each invalidates the cached result ---

    def _touch(self, circuit: Circuit) -> None:
        circuit.modified_at = time.time()
        self._cache.evict(circuit.circuit_id)

    def add_component(self, circuit_id: str, component: ComponentDefinition) -> None:
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is None:
                raise self._not_found(circuit_id)
            if circuit.find_component(component.name) is not None:
                raise ToolError(
                    f"Component '{component.name}' already exists in circuit "
                    f"'{circuit_id}'"
                )
            circuit.components[component.name] = component
            self._touch(circuit)

    def get_component(self, circuit_id: str, name: str) -> ComponentDefinition:
        circuit = self.get(circuit_id)
        component = circuit.find_component(name)
        if component is None:
            raise ToolError(f"Component '{name}' not found in circuit '{circuit_id}'")
        return component

    def modify_component(
        self,
        circuit_id: str,
        name: str,
        value: float | None = None,
        model: str | None = None,
        parameters: dict | None = None,
    ) -> ComponentDefinition:
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is None:
                raise self._not_found(circuit_id)
            component = circuit.find_component(name)
            if component is None:
                raise ToolError(
                    f"Component '{name}' not found in circuit '{circuit_id}'"
                )
            if value is not None:
                component.value = value
            if model is not None:
                component.model = model
            if parameters:
                component.parameters.update(parameters)
            self._touch(circuit)
            return component

    def define_model(self, circuit_id: str, model: ModelDefinition) -> None:
        """Add or replace a model card on a circuit."""
        with self._lock:
            circuit = self._circuits.get(circuit_id)
            if circuit is None:
                raise self._not_found(circuit_id)
            circuit.models[model.model_name] = model
            self._touch(circuit)

    def __len__(self) -> int:
        with self._lock:
            return len(self._circuits)
