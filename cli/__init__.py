"""Command line tools for running and querying the sensor feed aggregator."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    # ``cli.app`` must stay the module (tests patch attributes on it), so the
    # Typer instance is never re-exported here.
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)


__all__: list[str] = []
