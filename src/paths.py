"""Centralized path resolution for ShapeForge.

All modules should import paths from here rather than computing them locally.
This module resolves paths relative to the project root (parent of src/).
"""

from __future__ import annotations

from pathlib import Path

# Project root: parent of the src/ directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

CONFIGS_DIR = PROJECT_ROOT / "configs"
OUTPUT_DIR = PROJECT_ROOT / "output"

# Key config files
ENGINE_CONFIG_PATH = CONFIGS_DIR / "engine.yaml"
