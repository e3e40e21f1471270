"""Render agent runtime helpers."""

from .config import load_bootstrap_facts, load_network_spec  # noqa: F401

__all__ = [
    "load_bootstrap_facts",
    "load_network_spec",
]
