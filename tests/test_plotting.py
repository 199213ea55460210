"""Tests for spicesession.plotting."""

import numpy as np
import pytest

from spicesession.errors import ToolError
from spicesession.plotting import (
    PlotOptions,
    PlotRequest,
    Series,
    render_impedance_plot,
    render_plot,
)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _line_request(**kwargs):
    x = np.linspace(0, 1e-3, 50)
    defaults = dict(
        plot_type="line",
        image_format="png",
        x_data=x,
        x_label="Time (s)",
        series=[Series("v(out)", 1 - np.exp(-x / 1e-4))],
    )
    defaults.update(kwargs)
    return PlotRequest(**defaults)


def _bode_request(image_format="png"):
    f = np.geomspace(10, 1e5, 40)
    h = 1 / (1 + 1j * f / 1e3)
    return PlotRequest(
        plot_type="bode",
        image_format=image_format,
        x_data=f,
        x_label="Frequency (Hz)",
        series=[Series("v(out)", h.real, h.imag)],
    )


class TestRenderPlot:
    def test_line_png(self):
        data = render_plot(_line_request())
        assert data.startswith(PNG_SIGNATURE)

    def test_bode_png(self):
        assert render_plot(_bode_request()).startswith(PNG_SIGNATURE)

    def test_svg_keeps_text(self):
        """SVG text stays as text, so titles and labels can be found."""
        req = _line_request(
            image_format="svg",
            options=PlotOptions(title="Step response", y_label="Volts"),
        )
        svg = render_plot(req).decode("utf-8")
        assert svg.lstrip().startswith("<?xml")
        assert "<svg" in svg
        assert svg.rstrip().endswith("</svg>")
        assert "Step response" in svg
        assert "Volts" in svg
        assert "Time (s)" in svg

    def test_bar(self):
        req = PlotRequest(
            plot_type="bar",
            image_format="png",
            x_data=np.array([0.0]),
            x_label="",
            series=[Series("v(in)", np.array([10.0])), Series("v(out)", np.array([5.0]))],
        )
        assert render_plot(req).startswith(PNG_SIGNATURE)

    def test_scatter_with_colors(self):
        req = _line_request(plot_type="scatter", options=PlotOptions(colors=["#ff0000"]))
        assert render_plot(req).startswith(PNG_SIGNATURE)

    def test_invalid_plot_type(self):
        with pytest.raises(ToolError, match="Invalid plot type 'pie'"):
            render_plot(_line_request(plot_type="pie"))

    def test_invalid_format(self):
        with pytest.raises(ToolError, match="Invalid format 'gif'"):
            render_plot(_line_request(image_format="gif"))

    @pytest.mark.parametrize("width", [50, 5000])
    def test_dimension_limits(self, width):
        with pytest.raises(ToolError, match="width must be between"):
            render_plot(_line_request(options=PlotOptions(width=width)))

    def test_invalid_scale(self):
        with pytest.raises(ToolError, match="Invalid x_scale"):
            render_plot(_line_request(options=PlotOptions(x_scale="decade")))


class TestImpedancePlot:
    def test_png(self):
        f = np.geomspace(20, 20000, 61)
        z = 8.0 + 1j * 2 * np.pi * f * 1e-4
        assert render_impedance_plot(f, z).startswith(PNG_SIGNATURE)

    def test_svg_title_and_axis(self):
        f = np.geomspace(20, 20000, 61)
        z = np.full(len(f), 50 + 0j)
        svg = render_impedance_plot(f, z, image_format="svg", title="Speaker port").decode()
        assert "Speaker port" in svg
        assert "|Z| (ohm)" in svg

    def test_infinite_points_skipped(self):
        f = np.array([100.0, 1000.0, 10000.0])
        z = np.array([np.inf, 100 + 0j, 50 + 0j])
        assert render_impedance_plot(f, z).startswith(PNG_SIGNATURE)

    def test_invalid_format(self):
        with pytest.raises(ToolError, match="Invalid format"):
            render_impedance_plot([1.0, 2.0], [1 + 0j, 1 + 0j], image_format="bmp")
