"""Run ngspice in batch mode via spicelib or a direct subprocess fallback."""

from __future__ import annotations

import concurrent.futures
import logging
import shutil
import subprocess  # nosec B404 - used with list args, no shell=True
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

SIMULATION_TIMEOUT = 60
_MAX_CONCURRENT_SIMS = 4
_sim_semaphore = threading.Semaphore(_MAX_CONCURRENT_SIMS)


class SimulationError(RuntimeError):
    """ngspice is missing, timed out, or produced no output."""


def ngspice_available() -> bool:
    return shutil.which("ngspice") is not None


def _run_via_spicelib(netlist_file: Path, raw_file: Path) -> bool:
    """Attempt simulation using spicelib's NGspiceSimulator."""
    try:
        from spicelib.simulators.ngspice_simulator import NGspiceSimulator
    except ImportError:
        logger.debug("spicelib ngspice backend unavailable, using subprocess")
        return False
    try:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(NGspiceSimulator.run, str(netlist_file))
            future.result(timeout=SIMULATION_TIMEOUT)
    except concurrent.futures.TimeoutError:
        logger.debug("spicelib simulation timed out after %ss", SIMULATION_TIMEOUT)
        return False
    except (OSError, RuntimeError) as exc:
        logger.debug("spicelib simulation failed: %s", exc)
        return False
    return raw_file.exists() and raw_file.stat().st_size > 0


def _run_via_subprocess(netlist_file: Path, raw_file: Path) -> None:
    """Run ngspice directly; raises SimulationError with its diagnostics."""
    try:
        result = subprocess.run(  # nosec B603 B607 - list args, no shell, trusted binary
            ["ngspice", "-b", "-r", str(raw_file), str(netlist_file)],
            capture_output=True,
            text=True,
            timeout=SIMULATION_TIMEOUT,
        )
    except subprocess.TimeoutExpired as exc:
        raise SimulationError(
            f"ngspice timed out after {SIMULATION_TIMEOUT}s"
        ) from exc

    if result.returncode != 0 or not raw_file.exists() or raw_file.stat().st_size == 0:
        errors = [
            line.strip()
            for line in (result.stdout + "\n" + result.stderr).splitlines()
            if "error" in line.lower() or "fatal" in line.lower()
        ]
        detail = "; ".join(errors[:5]) or f"exit code {result.returncode}"
        raise SimulationError(f"Simulation failed: {detail}")


@contextmanager
def simulation(netlist: str) -> Iterator[Path]:
    """Simulate *netlist* and yield the path of the resulting ``.raw`` file.

    The file lives in a temporary directory removed when the block exits,
    so read everything needed inside the ``with``.

    Raises:
        SimulationError: If ngspice is not installed or the run fails.
    """
    if not ngspice_available():
        raise SimulationError(
            "ngspice is not installed or not on PATH. "
            "Install it with: sudo apt install ngspice"
        )

    with _sim_semaphore, tempfile.TemporaryDirectory(prefix="spicesession_") as tmpdir:
        workdir = Path(tmpdir)
        netlist_file = workdir / "circuit.net"
        raw_file = workdir / "circuit.raw"
        netlist_file.write_text(netlist)
        logger.debug("Running ngspice on %d-line netlist", netlist.count("\n"))

        if not _run_via_spicelib(netlist_file, raw_file):
            _run_via_subprocess(netlist_file, raw_file)
        yield raw_file
