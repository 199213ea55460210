"""Render analysis data to PNG or SVG with matplotlib."""

from __future__ import annotations

import io
from dataclasses import dataclass, field

import matplotlib

matplotlib.use("Agg")

import numpy as np  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

from spicesession.errors import ToolError  # noqa: E402
from spicesession.signals import magnitude_db, phase_degrees  # noqa: E402

PLOT_TYPES = ("line", "bode", "bar", "scatter")
SCALE_TYPES = ("linear", "log")
MIME_TYPES = {"png": "image/png", "svg": "image/svg+xml"}

_MIN_DIMENSION = 100
_MAX_DIMENSION = 4000
_DPI = 100


@dataclass
class Series:
    """One named trace. ``imaginary`` is set for complex (AC) data."""

    name: str
    values: np.ndarray
    imaginary: np.ndarray | None = None


@dataclass
class PlotOptions:
    title: str | None = None
    x_label: str | None = None
    y_label: str | None = None
    x_scale: str = "linear"
    y_scale: str = "linear"
    grid: bool = True
    legend: bool = True
    width: int = 800
    height: int = 600
    colors: list[str] = field(default_factory=list)

    def validate(self) -> None:
        for name in ("width", "height"):
            value = getattr(self, name)
            if not _MIN_DIMENSION <= value <= _MAX_DIMENSION:
                raise ToolError(
                    f"{name} must be between {_MIN_DIMENSION} and {_MAX_DIMENSION} "
                    f"pixels, got {value}"
                )
        for name in ("x_scale", "y_scale"):
            if getattr(self, name) not in SCALE_TYPES:
                raise ToolError(
                    f"Invalid {name} '{getattr(self, name)}': must be one of "
                    f"{', '.join(SCALE_TYPES)}"
                )


@dataclass
class PlotRequest:
    """What to draw; rendering decisions stay in :func:`render_plot`."""

    plot_type: str
    image_format: str
    x_data: np.ndarray
    x_label: str
    series: list[Series]
    options: PlotOptions = field(default_factory=PlotOptions)


def _color(options: PlotOptions, index: int) -> str | None:
    if index < len(options.colors):
        return options.colors[index]
    return None


def _finish_axes(ax, options: PlotOptions, show_legend: bool) -> None:
    if options.grid:
        ax.grid(True, which="both", alpha=0.3)
    if options.legend and show_legend:
        ax.legend(loc="best")


def _draw_line(fig: Figure, req: PlotRequest, scatter: bool = False) -> None:
    opts = req.options
    ax = fig.add_subplot(1, 1, 1)
    for i, s in enumerate(req.series):
        values = np.asarray(s.values, dtype=float)
        if scatter:
            ax.scatter(req.x_data, values, label=s.name, color=_color(opts, i), s=12)
        else:
            ax.plot(req.x_data, values, label=s.name, color=_color(opts, i))
    ax.set_xscale(opts.x_scale)
    ax.set_yscale(opts.y_scale)
    ax.set_xlabel(opts.x_label or req.x_label)
    if opts.y_label:
        ax.set_ylabel(opts.y_label)
    if opts.title:
        ax.set_title(opts.title)
    _finish_axes(ax, opts, bool(req.series))


def _draw_bode(fig: Figure, req: PlotRequest) -> None:
    opts = req.options
    ax_mag = fig.add_subplot(2, 1, 1)
    ax_phase = fig.add_subplot(2, 1, 2, sharex=ax_mag)
    for i, s in enumerate(req.series):
        imag = s.imaginary if s.imaginary is not None else np.zeros(len(s.values))
        color = _color(opts, i)
        ax_mag.plot(req.x_data, magnitude_db(s.values, imag), label=s.name, color=color)
        ax_phase.plot(req.x_data, phase_degrees(s.values, imag), label=s.name, color=color)
    ax_mag.set_xscale("log" if opts.x_scale == "log" or _positive(req.x_data) else "linear")
    ax_mag.set_ylabel(opts.y_label or "Magnitude (dB)")
    ax_phase.set_ylabel("Phase (deg)")
    ax_phase.set_xlabel(opts.x_label or req.x_label)
    if opts.title:
        ax_mag.set_title(opts.title)
    _finish_axes(ax_mag, opts, bool(req.series))
    _finish_axes(ax_phase, opts, False)


def _draw_bar(fig: Figure, req: PlotRequest) -> None:
    opts = req.options
    ax = fig.add_subplot(1, 1, 1)
    names = [s.name for s in req.series]
    values = [float(np.asarray(s.values, dtype=float)[0]) for s in req.series]
    colors = [_color(opts, i) or f"C{i % 10}" for i in range(len(names))]
    ax.bar(names, values, color=colors)
    ax.set_yscale(opts.y_scale)
    if opts.x_label or req.x_label:
        ax.set_xlabel(opts.x_label or req.x_label)
    if opts.y_label:
        ax.set_ylabel(opts.y_label)
    if opts.title:
        ax.set_title(opts.title)
    if len(names) > 4:
        ax.tick_params(axis="x", labelrotation=45)
    if opts.grid:
        ax.grid(True, axis="y", alpha=0.3)


def _positive(x) -> bool:
    x = np.asarray(x, dtype=float)
    return len(x) > 0 and bool(np.all(x > 0))


def render_plot(req: PlotRequest) -> bytes:
    """Render *req* and return the encoded image bytes.

    SVG output keeps text as ``<text>`` elements so titles and labels
    appear verbatim in the markup.
    """
    if req.plot_type not in PLOT_TYPES:
        raise ToolError(
            f"Invalid plot type '{req.plot_type}': must be one of {', '.join(PLOT_TYPES)}"
        )
    if req.image_format not in MIME_TYPES:
        raise ToolError(
            f"Invalid format '{req.image_format}': must be one of {', '.join(MIME_TYPES)}"
        )
    req.options.validate()

    fig = Figure(figsize=(req.options.width / _DPI, req.options.height / _DPI), dpi=_DPI)
    if req.plot_type == "bode":
        _draw_bode(fig, req)
    elif req.plot_type == "bar":
        _draw_bar(fig, req)
    else:
        _draw_line(fig, req, scatter=req.plot_type == "scatter")
    return _encode(fig, req.image_format)


def _encode(fig: Figure, image_format: str) -> bytes:
    fig.tight_layout()
    buf = io.BytesIO()
    if image_format == "svg":
        with matplotlib.rc_context({"svg.fonttype": "none"}):
            fig.savefig(buf, format="svg", metadata={"Date": None})
    else:
        fig.savefig(buf, format="png", dpi=_DPI)
    return buf.getvalue()


def render_impedance_plot(
    frequencies,
    impedance,
    image_format: str = "png",
    title: str | None = None,
    options: PlotOptions | None = None,
) -> bytes:
    """|Z| in ohms and phase in degrees against frequency, both on log x.

    Infinite magnitudes (no port current) are left out of the curve.
    """
    if image_format not in MIME_TYPES:
        raise ToolError(
            f"Invalid format '{image_format}': must be one of {', '.join(MIME_TYPES)}"
        )
    opts = options or PlotOptions()
    opts.validate()
    freqs = np.asarray(frequencies, dtype=float)
    z = np.asarray(impedance, dtype=complex)
    finite = np.isfinite(z)

    fig = Figure(figsize=(opts.width / _DPI, opts.height / _DPI), dpi=_DPI)
    ax_mag = fig.add_subplot(2, 1, 1)
    ax_phase = fig.add_subplot(2, 1, 2, sharex=ax_mag)
    ax_mag.plot(freqs[finite], np.abs(z[finite]), color=_color(opts, 0) or "C0")
    ax_phase.plot(freqs[finite], np.degrees(np.angle(z[finite])), color=_color(opts, 1) or "C1")
    ax_mag.set_xscale("log" if _positive(freqs) else "linear")
    if finite.any() and np.all(np.abs(z[finite]) > 0):
        ax_mag.set_yscale("log")
    ax_mag.set_ylabel("|Z| (ohm)")
    ax_phase.set_ylabel("Phase (deg)")
    ax_phase.set_xlabel("Frequency (Hz)")
    ax_mag.set_title(title or opts.title or "Impedance")
    _finish_axes(ax_mag, opts, False)
    _finish_axes(ax_phase, opts, False)
    return _encode(fig, image_format)
