"""spicesession: a stateful MCP session server for circuit simulation."""

__version__ = "0.1.0"

_LAZY_IMPORTS = {
    "CircuitRegistry": "spicesession.circuit_registry",
    "ResultCache": "spicesession.result_cache",
    "CachedAnalysisResult": "spicesession.result_cache",
    "AnalysisType": "spicesession.result_cache",
    "LibraryCatalog": "spicesession.library",
    "ToolDispatcher": "spicesession.tools",
    "ToolResponse": "spicesession.tools",
    "ToolError": "spicesession.errors",
    "NgspiceEngine": "spicesession.engine",
}


def __getattr__(name: str):
    if name in _LAZY_IMPORTS:
        import importlib

        module = importlib.import_module(_LAZY_IMPORTS[name])
        return getattr(module, name)
    raise AttributeError(f"module 'spicesession' has no attribute {name}")


__all__ = [*_LAZY_IMPORTS]
