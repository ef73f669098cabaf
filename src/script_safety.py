"""
ShapeForge safety gate for generated scripts.

A case-insensitive substring scan of the whole script against a fixed
denylist. Matches count everywhere, including comments and string literals.

This is a textual heuristic, not a sandbox: string concatenation,
getattr tricks or alternate spellings (``__builtins__``, ``importlib``)
evade it. It guards code the compiler generates, where only validated
identifiers, numeric literals and fixed keywords appear.
"""

from __future__ import annotations

from typing import Union

from design_schema import Script

DENYLIST: tuple[str, ...] = (
    # process / module access
    "import os",
    "import sys",
    "import subprocess",
    "__import__",
    # dynamic evaluation
    "exec(",
    "eval(",
    "execfile(",
    # arbitrary file access
    "open(",
    "file(",
    # process spawning
    "system(",
    "popen(",
)


def _text(script: Union[Script, str]) -> str:
    return script.code if isinstance(script, Script) else script


def find_unsafe_patterns(script: Union[Script, str]) -> list[str]:
    """Return every denylisted pattern present in the script, in denylist order."""
    code = _text(script).lower()
    return [pattern for pattern in DENYLIST if pattern in code]


def is_safe(script: Union[Script, str]) -> bool:
    code = _text(script).lower()
    return not any(pattern in code for pattern in DENYLIST)
