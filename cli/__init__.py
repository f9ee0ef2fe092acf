"""Command line tools for the motor telemetry service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# ``cli.app`` must keep resolving to the module, not the Typer instance, so
# tests can patch names such as ``cli.app.ApiClient`` and ``cli.app.LiveFeed``.

__all__ = []
