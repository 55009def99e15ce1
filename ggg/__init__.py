"""Resolve, download, cache and install Godot project dependencies."""

__version__ = "0.1.0"

__all__ = [
    "archive",
    "cache",
    "cleanup",
    "fileset",
    "install",
    "lockfile",
    "models",
    "resolver",
    "state",
]