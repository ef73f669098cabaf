"""Engine configuration loader for ShapeForge.

Loads the modeling-engine connection settings from configs/engine.yaml,
applies SHAPEFORGE_ENGINE_* environment overrides, and builds the engine
and broker they describe.

Usage:
    from engine_config import load_engine_config, build_broker

    config = load_engine_config()
    broker = build_broker(config)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

import yaml

from execution_broker import DEFAULT_TIMEOUT_S, ExecutionBroker
from intent_interpreter import DEFAULT_AUTHOR
from modeling_engine import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ModelingEngine,
    SimulatedModelingEngine,
    SocketModelingEngine,
)
from paths import ENGINE_CONFIG_PATH

BACKENDS = ("socket", "simulated")


@dataclass(frozen=True)
class EngineConfig:
    """Resolved engine settings."""
    backend: str = "socket"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    timeout_s: float = DEFAULT_TIMEOUT_S
    connect_timeout_s: float = 5.0
    author: str = DEFAULT_AUTHOR

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown engine backend {self.backend!r}; expected one of {list(BACKENDS)}")
        if not (0 < self.port < 65536):
            raise ValueError(f"Engine port out of range: {self.port}")
        if self.timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {self.timeout_s}")


def load_engine_config(
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    """Load engine settings from YAML, then apply environment overrides.

    Args:
        config_path: Path to config file. Defaults to configs/engine.yaml.
        env: Environment mapping. Defaults to os.environ.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ValueError: If config is malformed.
    """
    path = Path(config_path) if config_path else ENGINE_CONFIG_PATH
    env = os.environ if env is None else env

    raw: dict = {}
    if path.exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Invalid engine config: expected a mapping in {path}")
    elif config_path:
        raise FileNotFoundError(f"Engine config not found: {path}")

    engine = raw.get("engine") or {}
    design = raw.get("design") or {}
    try:
        config = EngineConfig(
            backend=str(engine.get("backend", "socket")),
            host=str(engine.get("host", DEFAULT_HOST)),
            port=int(engine.get("port", DEFAULT_PORT)),
            timeout_s=float(engine.get("timeout_s", DEFAULT_TIMEOUT_S)),
            connect_timeout_s=float(engine.get("connect_timeout_s", 5.0)),
            author=str(design.get("author", DEFAULT_AUTHOR)),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid engine config in {path}: {e}") from e

    return apply_env_overrides(config, env)


def apply_env_overrides(config: EngineConfig, env: Mapping[str, str]) -> EngineConfig:
    overrides: dict = {}
    if env.get("SHAPEFORGE_ENGINE_BACKEND"):
        overrides["backend"] = env["SHAPEFORGE_ENGINE_BACKEND"]
    if env.get("SHAPEFORGE_ENGINE_HOST"):
        overrides["host"] = env["SHAPEFORGE_ENGINE_HOST"]
    try:
        if env.get("SHAPEFORGE_ENGINE_PORT"):
            overrides["port"] = int(env["SHAPEFORGE_ENGINE_PORT"])
        if env.get("SHAPEFORGE_ENGINE_TIMEOUT"):
            overrides["timeout_s"] = float(env["SHAPEFORGE_ENGINE_TIMEOUT"])
    except ValueError as e:
        raise ValueError(f"Invalid SHAPEFORGE_ENGINE_* override: {e}") from e
    return replace(config, **overrides) if overrides else config


def build_engine(config: EngineConfig) -> ModelingEngine:
    if config.backend == "simulated":
        return SimulatedModelingEngine()
    return SocketModelingEngine(
        host=config.host,
        port=config.port,
        connect_timeout_s=config.connect_timeout_s,
    )


def build_broker(config: EngineConfig, engine: ModelingEngine | None = None) -> ExecutionBroker:
    return ExecutionBroker(engine or build_engine(config), timeout_s=config.timeout_s)
