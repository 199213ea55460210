"""SPICE library indexer: parse ``.MODEL`` and ``.SUBCKT`` definitions.

Library directories are scanned recursively for text library files. Each
file's entries are kept separately, so indexing the same file again
replaces its entries instead of duplicating them, while definitions with
the same name in different files are all kept.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path

from spicesession.constants import MODEL_TYPE_ALIASES
from spicesession.errors import ToolError
from spicesession.sanitize import parse_spice_value

logger = logging.getLogger(__name__)

LIBRARY_SUFFIXES = (".lib", ".mod", ".sub", ".cir")

_MODEL_RE = re.compile(
    r"^\.model\s+([^\s(]+)\s+([A-Za-z]\w*)\s*(?:\((.*)\)|(.*))$", re.IGNORECASE
)
_PARAM_RE = re.compile(
    r"(\w+)\s*=\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?[A-Za-z]*)"
)
_SUBCKT_RE = re.compile(r"^\.subckt\s+(\S+)(.*)$", re.IGNORECASE)
_ENDS_RE = re.compile(r"^\.ends\b", re.IGNORECASE)
_INLINE_COMMENT_RE = re.compile(r"\s*[;*].*$")
_METADATA_RE = re.compile(r"^\*+\s*([A-Za-z][\w ]*?)\s*:\s*(.+?)\s*$")

# Subcircuit metadata fields that a name query also matches
_SEARCHABLE_METADATA = ("PRODUCT_NAME", "PART_NUMBER", "MANUFACTURER")


def normalize_model_type(raw: str) -> str:
    """Map a raw ``.MODEL`` type token onto the stable device-type vocabulary."""
    return MODEL_TYPE_ALIASES.get(raw.upper(), raw.lower())


@dataclass(frozen=True)
class ModelEntry:
    model_name: str
    model_type: str
    parameters: dict[str, float] = field(default_factory=dict)
    source_path: str = ""

    def to_dict(self, include_parameters: bool = True) -> dict:
        return {
            "model_name": self.model_name,
            "model_type": self.model_type,
            "type": "model",
            "parameters": dict(self.parameters) if include_parameters else None,
            "parameter_count": len(self.parameters),
            "source_path": self.source_path,
        }


@dataclass(frozen=True)
class SubcircuitEntry:
    name: str
    nodes: tuple[str, ...] = ()
    metadata: dict[str, str] = field(default_factory=dict)
    definition: str = ""
    source_path: str = ""

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def to_dict(self, include_parameters: bool = True) -> dict:
        return {
            "name": self.name,
            "type": "subcircuit",
            "nodes": list(self.nodes),
            "node_count": self.node_count,
            "metadata": dict(self.metadata) if include_parameters else None,
            "source_path": self.source_path,
        }


@dataclass
class SearchResult:
    models: list[ModelEntry]
    subcircuits: list[SubcircuitEntry]
    total_models: int
    total_subcircuits: int


def _logical_lines(text: str) -> list[str]:
    """Strip lines and fold ``+`` continuations into the preceding statement."""
    lines: list[str] = []
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if line.startswith("*"):
            lines.append(line)
            continue
        line = _INLINE_COMMENT_RE.sub("", line)
        if line.startswith("+"):
            body = line[1:].strip()
            if lines and not lines[-1].startswith("*") and body:
                lines[-1] = f"{lines[-1]} {body}"
            continue
        if line:
            lines.append(line)
    return lines


def parse_parameters(text: str) -> dict[str, float]:
    """Parse ``KEY=value`` pairs, skipping values that are not numeric."""
    params: dict[str, float] = {}
    for m in _PARAM_RE.finditer(text):
        try:
            params[m.group(1)] = parse_spice_value(m.group(2))
        except ToolError:
            logger.debug("Skipping non-numeric parameter %s=%s", m.group(1), m.group(2))
    return params


def _parse_model_line(line: str, source_path: str) -> ModelEntry | None:
    m = _MODEL_RE.match(line)
    if not m:
        return None
    body = m.group(3) if m.group(3) is not None else m.group(4) or ""
    return ModelEntry(
        model_name=m.group(1),
        model_type=normalize_model_type(m.group(2)),
        parameters=parse_parameters(body),
        source_path=source_path,
    )


def _subckt_nodes(rest: str) -> tuple[str, ...]:
    nodes = []
    for token in rest.split():
        if "=" in token or token.lower().startswith("params:"):
            break
        nodes.append(token)
    return tuple(nodes)


def _parse_metadata(comments: list[str]) -> dict[str, str]:
    metadata: dict[str, str] = {}
    for comment in comments:
        m = _METADATA_RE.match(comment)
        if m:
            metadata[m.group(1).strip().upper().replace(" ", "_")] = m.group(2)
    return metadata


def parse_library(
    text: str, source_path: str = ""
) -> tuple[list[ModelEntry], list[SubcircuitEntry]]:
    """Parse library text into model and subcircuit entries.

    Models nested inside a subcircuit body are returned as models too.
    ``* KEY: VALUE`` comments directly above a ``.SUBCKT`` become its
    metadata. An unterminated subcircuit is still returned.
    """
    models: list[ModelEntry] = []
    subcircuits: list[SubcircuitEntry] = []
    comments: list[str] = []

    name: str | None = None
    nodes: tuple[str, ...] = ()
    metadata: dict[str, str] = {}
    body: list[str] = []
    depth = 0

    def finish() -> None:
        subcircuits.append(
            SubcircuitEntry(
                name=name,
                nodes=nodes,
                metadata=metadata,
                definition="\n".join(body),
                source_path=source_path,
            )
        )

    for line in _logical_lines(text):
        if line.startswith("*"):
            if name is None:
                comments.append(line)
            else:
                body.append(line)
            continue

        start = _SUBCKT_RE.match(line)
        if start:
            if name is None:
                name = start.group(1)
                nodes = _subckt_nodes(start.group(2))
                metadata = _parse_metadata(comments)
                body = [line]
                depth = 1
            else:
                body.append(line)
                depth += 1
            comments = []
            continue

        if name is not None:
            body.append(line)
            if _ENDS_RE.match(line):
                depth -= 1
                if depth == 0:
                    finish()
                    name = None
                    continue

        model = _parse_model_line(line, source_path)
        if model is not None:
            models.append(model)
        comments = []

    if name is not None:
        finish()

    return models, subcircuits


class LibraryCatalog:
    """Thread-safe, queryable index of parsed library files."""

    def __init__(self) -> None:
        self._files: dict[str, tuple[list[ModelEntry], list[SubcircuitEntry]]] = {}
        self._paths: list[Path] = []
        self._configured = False
        self._lock = threading.Lock()

    @property
    def is_configured(self) -> bool:
        """True once :meth:`index` has been given at least one path."""
        return self._configured

    @property
    def indexed_paths(self) -> list[str]:
        with self._lock:
            return [str(p) for p in self._paths]

    @property
    def model_count(self) -> int:
        with self._lock:
            return sum(len(m) for m, _ in self._files.values())

    @property
    def subcircuit_count(self) -> int:
        with self._lock:
            return sum(len(s) for _, s in self._files.values())

    def index(self, paths) -> dict:
        """Index every library file under each directory in *paths*.

        Missing directories and unreadable files are logged and skipped.
        Returns a summary with file, model and subcircuit counts.
        """
        files_indexed = 0
        skipped: list[str] = []
        for raw in paths:
            directory = Path(raw).expanduser()
            with self._lock:
                self._configured = True
                if directory not in self._paths:
                    self._paths.append(directory)
            if not directory.is_dir():
                logger.warning("Library path '%s' does not exist; skipping", directory)
                skipped.append(str(directory))
                continue
            for lib_file in sorted(directory.rglob("*")):
                if lib_file.suffix.lower() not in LIBRARY_SUFFIXES or not lib_file.is_file():
                    continue
                try:
                    text = lib_file.read_text(encoding="utf-8", errors="replace")
                    entries = parse_library(text, str(lib_file))
                except (OSError, ValueError) as exc:
                    logger.warning("Error parsing library file %s: %s", lib_file, exc)
                    skipped.append(str(lib_file))
                    continue
                with self._lock:
                    self._files[str(lib_file)] = entries
                files_indexed += 1

        summary = {
            "files_indexed": files_indexed,
            "model_count": self.model_count,
            "subcircuit_count": self.subcircuit_count,
            "skipped": skipped,
        }
        logger.info(
            "Indexed %d library files (%d models, %d subcircuits)",
            files_indexed,
            summary["model_count"],
            summary["subcircuit_count"],
        )
        return summary

    def clear(self) -> None:
        """Drop every indexed entry (configured paths are kept)."""
        with self._lock:
            self._files.clear()

    def reindex(self) -> dict:
        """Clear the catalog and index the known paths again."""
        paths = self.indexed_paths
        self.clear()
        return self.index(paths)

    def _all(self) -> tuple[list[ModelEntry], list[SubcircuitEntry]]:
        with self._lock:
            models = [m for ms, _ in self._files.values() for m in ms]
            subckts = [s for _, ss in self._files.values() for s in ss]
        return models, subckts

    def search(
        self,
        query: str = "",
        type_filter: str | None = None,
        limit: int | None = 20,
    ) -> SearchResult:
        """Case-insensitive substring search over entry names.

        A *type_filter* restricts results to models of that device type and
        excludes subcircuits. Each list is sorted by name and truncated to
        *limit* independently; totals are counted before truncation.
        """
        needle = (query or "").lower()
        models, subckts = self._all()

        matched_models = [m for m in models if needle in m.model_name.lower()]
        if type_filter:
            wanted = normalize_model_type(type_filter)
            matched_models = [m for m in matched_models if m.model_type == wanted]
            matched_subckts: list[SubcircuitEntry] = []
        else:
            matched_subckts = [s for s in subckts if _subckt_matches(s, needle)]

        matched_models.sort(key=lambda m: m.model_name.lower())
        matched_subckts.sort(key=lambda s: s.name.lower())
        total_models = len(matched_models)
        total_subckts = len(matched_subckts)
        if limit is not None:
            matched_models = matched_models[:limit]
            matched_subckts = matched_subckts[:limit]
        return SearchResult(matched_models, matched_subckts, total_models, total_subckts)

    def find_model(self, name: str) -> ModelEntry | None:
        """First indexed model named *name* (case-insensitive)."""
        lowered = name.lower()
        for model in self._all()[0]:
            if model.model_name.lower() == lowered:
                return model
        return None

    def find_subcircuit(self, name: str) -> SubcircuitEntry | None:
        """First indexed subcircuit named *name* (case-insensitive)."""
        lowered = name.lower()
        for subckt in self._all()[1]:
            if subckt.name.lower() == lowered:
                return subckt
        return None


def _subckt_matches(entry: SubcircuitEntry, needle: str) -> bool:
    if needle in entry.name.lower():
        return True
    return any(
        needle in entry.metadata.get(key, "").lower()
        for key in _SEARCHABLE_METADATA
        if entry.metadata.get(key)
    )
