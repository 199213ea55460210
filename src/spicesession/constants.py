"""Shared constants used across spicesession modules."""

from __future__ import annotations

# Number of nodes per SPICE element letter
COMPONENT_NODE_COUNTS: dict[str, int] = {
    "R": 2,
    "C": 2,
    "L": 2,
    "V": 2,
    "I": 2,
    "D": 2,
    "Q": 3,
    "J": 3,
    "M": 4,
    "E": 4,
    "G": 4,
    "F": 2,
    "H": 2,
}

# Component type -> SPICE element letter
COMPONENT_PREFIXES: dict[str, str] = {
    "resistor": "R",
    "capacitor": "C",
    "inductor": "L",
    "voltage_source": "V",
    "current_source": "I",
    "diode": "D",
    "bjt_npn": "Q",
    "bjt_pnp": "Q",
    "mosfet_n": "M",
    "mosfet_p": "M",
    "jfet_n": "J",
    "jfet_p": "J",
    "vcvs": "E",
    "vccs": "G",
    "ccvs": "H",
    "cccs": "F",
    "subcircuit": "X",
}

PASSIVE_TYPES = frozenset({"resistor", "capacitor", "inductor"})
SOURCE_TYPES = frozenset({"voltage_source", "current_source"})
MODEL_TYPES = frozenset(
    {"diode", "bjt_npn", "bjt_pnp", "mosfet_n", "mosfet_p", "jfet_n", "jfet_p"}
)

# Raw .MODEL type token -> normalized device type
MODEL_TYPE_ALIASES: dict[str, str] = {
    "D": "diode",
    "NPN": "bjt_npn",
    "PNP": "bjt_pnp",
    "NMOS": "mosfet_n",
    "PMOS": "mosfet_p",
    "NJF": "jfet_n",
    "JFETN": "jfet_n",
    "PJF": "jfet_p",
    "JFETP": "jfet_p",
}

# Normalized device type -> .MODEL keyword written to netlists
MODEL_KEYWORDS: dict[str, str] = {
    "diode": "D",
    "bjt_npn": "NPN",
    "bjt_pnp": "PNP",
    "mosfet_n": "NMOS",
    "mosfet_p": "PMOS",
    "jfet_n": "NJF",
    "jfet_p": "PJF",
}

# SI suffixes, longest first so "meg" wins over "m"
SI_SUFFIXES: tuple[tuple[str, float], ...] = (
    ("meg", 1e6),
    ("t", 1e12),
    ("g", 1e9),
    ("k", 1e3),
    ("m", 1e-3),
    ("u", 1e-6),
    ("n", 1e-9),
    ("p", 1e-12),
    ("f", 1e-15),
    ("a", 1e-18),
)

GROUND_NODES = frozenset({"0", "gnd"})

# Analysis tokens accepted by the sweep tools (after "_" -> "-")
SWEEP_ANALYSIS_TYPES: tuple[str, ...] = ("operating-point", "op", "dc", "ac", "transient")

SCALE_TYPES: tuple[str, ...] = ("linear", "log", "decade")

AC_SWEEP_TYPES: tuple[str, ...] = ("dec", "oct", "lin")
