"""Tests for spicesession.sanitize: names and values bound for netlists."""

import pytest

from spicesession.errors import ToolError
from spicesession.sanitize import (
    MAX_IDENTIFIER_LENGTH,
    parse_spice_value,
    safe_path,
    sanitize_netlist,
    validate_choice,
    validate_format,
    validate_identifier,
    validate_node_name,
)


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["R1", "rc_filter", "amp-2", "v1.2", "_x"])
    def test_accepted(self, name):
        assert validate_identifier(name) == name

    @pytest.mark.parametrize(
        "name",
        [
            "R1\n.system rm",
            "R1 R2",
            "*comment",
            ".include",
            "a;b",
            "x`id`",
        ],
    )
    def test_injection_rejected(self, name):
        with pytest.raises(ToolError, match="Invalid circuit_id"):
            validate_identifier(name, "circuit_id")

    def test_empty(self):
        with pytest.raises(ToolError, match="must not be empty"):
            validate_identifier("   ", "model")

    def test_too_long(self):
        with pytest.raises(ToolError, match="too long"):
            validate_identifier("a" * (MAX_IDENTIFIER_LENGTH + 1))


class TestNodeNames:
    @pytest.mark.parametrize("node", ["0", "out", "n$1", "vcc+", "net#3"])
    def test_accepted(self, node):
        assert validate_node_name(node) == node

    @pytest.mark.parametrize("node", ["", "a b", "out\nR9", "x(1)"])
    def test_rejected(self, node):
        with pytest.raises(ToolError, match="Invalid node name"):
            validate_node_name(node)


class TestParseSpiceValue:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            (1000, 1000.0),
            (2.5, 2.5),
            ("1k", 1e3),
            ("4.7K", 4.7e3),
            ("1meg", 1e6),
            ("1MEG", 1e6),
            ("10m", 10e-3),
            ("100n", 100e-9),
            ("10uF", 10e-6),
            ("22p", 22e-12),
            ("1e-3", 1e-3),
            ("5V", 5.0),
            (".5", 0.5),
            ("-3.3", -3.3),
        ],
    )
    def test_values(self, raw, expected):
        assert parse_spice_value(raw) == pytest.approx(expected)

    def test_not_a_number(self):
        with pytest.raises(ToolError, match="Invalid resistance 'abc'"):
            parse_spice_value("abc", "resistance")

    def test_boolean_rejected(self):
        with pytest.raises(ToolError, match="got a boolean"):
            parse_spice_value(True)

    def test_wrong_type(self):
        with pytest.raises(ToolError, match="got list"):
            parse_spice_value([1])

    def test_infinite_rejected(self):
        with pytest.raises(ToolError, match="finite"):
            parse_spice_value(float("inf"))


class TestChoices:
    def test_format_lowercased(self):
        assert validate_format("SVG") == "svg"

    def test_format_rejected(self):
        with pytest.raises(ToolError, match="Invalid format 'jpeg'"):
            validate_format("jpeg")

    def test_choice(self):
        assert validate_choice("Dec", ("dec", "lin"), "sweep_type") == "dec"
        with pytest.raises(ToolError, match="Invalid sweep_type 'log'"):
            validate_choice("log", ("dec", "lin"), "sweep_type")


class TestSanitizeNetlist:
    def test_rendered_netlist_passes(self):
        netlist = "* rc\nR1 in out 1000\n.MODEL DX D(IS=1e-14)\n.temp 25\n.ac dec 10 1 1000\n.end\n"
        assert sanitize_netlist(netlist) == netlist

    @pytest.mark.parametrize(
        "line",
        [".control", ".shell rm -rf /", ".exec", ".system ls"],
    )
    def test_disallowed_directive(self, line):
        with pytest.raises(ToolError, match="Disallowed SPICE directive"):
            sanitize_netlist(f"* x\nR1 a 0 1\n{line}\n.end\n")

    def test_directive_split_by_continuation(self):
        with pytest.raises(ToolError, match="Disallowed"):
            sanitize_netlist("* x\n.control\n+ shell true\n.end\n")

    def test_includes_need_permission(self):
        netlist = "* x\n.include /lib/models.lib\n.end\n"
        with pytest.raises(ToolError, match="not allowed"):
            sanitize_netlist(netlist)
        assert sanitize_netlist(netlist, allow_includes=True) == netlist

    def test_backtick(self):
        with pytest.raises(ToolError, match="Backtick"):
            sanitize_netlist("* x\nR1 a 0 `cat /etc/passwd`\n.end\n")

    def test_size_limit(self):
        with pytest.raises(ToolError, match="too large"):
            sanitize_netlist("*" * 1_000_001)


class TestSafePath:
    def test_inside(self, tmp_path):
        assert safe_path(tmp_path, "plots/bode.png") == (tmp_path / "plots" / "bode.png").resolve()

    @pytest.mark.parametrize("user_input", ["../escape.png", "/etc/cron.d/job"])
    def test_outside_rejected(self, tmp_path, user_input):
        with pytest.raises(ToolError, match="outside the output directory"):
            safe_path(tmp_path, user_input)
