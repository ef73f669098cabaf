"""
ShapeForge modeling engine capability.

The execution broker talks to FreeCAD (or a stand-in) through the
ModelingEngine protocol:

  connect(host, port)           → bool
  execute(code, timeout_s)      → EngineReply
  render(object_ids, timeout_s) → str (opaque render reference)

Implementations:
  SocketModelingEngine     newline-delimited JSON over TCP to a FreeCAD-side
                             command server
  SimulatedModelingEngine  offline double: no FreeCAD, scripted outcomes

Engines raise EngineError for protocol-level problems, TimeoutError when a
call outlives its deadline and OSError for transport failures. They never
decide safety; the broker does that before calling them.
"""

from __future__ import annotations

import json
import logging
import math
import re
import socket
import time
from dataclasses import dataclass, field
from typing import Protocol

log = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 8080

_RECV_CHUNK = 4096
_DOC_OBJECT_RE = re.compile(r'doc\.addObject\("Part::Feature", "(\w+)"\)')


class EngineError(RuntimeError):
    """The engine answered, but not with something usable."""


@dataclass(frozen=True)
class EngineReply:
    """What the engine said about one script submission."""

    success: bool
    object_ids: tuple[str, ...] = ()
    error_message: str | None = None
    warnings: tuple[str, ...] = ()


class ModelingEngine(Protocol):
    """Protocol for pluggable modeling engines."""

    def connect(self, host: str, port: int) -> bool: ...

    def execute(self, code: str, timeout_s: float | None = None) -> EngineReply: ...

    def render(self, object_ids: list[str], timeout_s: float | None = None) -> str: ...

    @property
    def engine_name(self) -> str: ...


# ── Socket engine ─────────────────────────────────────────────────


class SocketModelingEngine:
    """FreeCAD command server client.

    Wire format, one JSON object per line in each direction:
      → {"type": "execute_script", "params": {"code": "..."}}
      ← {"status": "success", "result": {"object_ids": [...], "warnings": [...]}}
      ← {"status": "error", "error": "...", "warnings": [...]}

    The connection is opened lazily on first use and reused. Callers must
    not issue concurrent requests on one instance; the broker serializes.
    """

    def __init__(self, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, connect_timeout_s: float = 5.0):
        self._host = host
        self._port = port
        self._connect_timeout_s = connect_timeout_s
        self._sock: socket.socket | None = None
        self._buffer = b""

    @property
    def engine_name(self) -> str:
        return "freecad-socket"

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, host: str, port: int) -> bool:
        self.close()
        self._host, self._port = host, port
        try:
            self._open()
        except OSError as e:
            log.warning("Could not connect to modeling engine at %s:%s: %s", host, port, e)
            return False
        return True

    def close(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                log.debug("Ignoring error while closing engine socket", exc_info=True)
        self._sock = None
        self._buffer = b""

    def _open(self, deadline: float | None = None) -> None:
        timeout = self._connect_timeout_s
        if deadline is not None:
            timeout = min(timeout, _time_left(deadline))
        log.info("Connecting to modeling engine at %s:%s", self._host, self._port)
        self._sock = socket.create_connection((self._host, self._port), timeout=timeout)
        self._buffer = b""

    def _request(self, command: dict, timeout_s: float | None) -> dict:
        # One deadline for connect, send and every recv of the reply.
        deadline = None if timeout_s is None or math.isinf(timeout_s) else time.monotonic() + timeout_s
        if self._sock is None:
            self._open(deadline)
        sock = self._sock
        try:
            if deadline is not None:
                sock.settimeout(_time_left(deadline))
            else:
                sock.settimeout(None)
            sock.sendall((json.dumps(command) + "\n").encode("utf-8"))
            while b"\n" not in self._buffer:
                if deadline is not None:
                    sock.settimeout(_time_left(deadline))
                chunk = sock.recv(_RECV_CHUNK)
                if not chunk:
                    raise ConnectionError("Modeling engine closed the connection")
                self._buffer += chunk
        except OSError:
            # Includes socket timeouts; a half-read reply poisons the stream.
            self.close()
            raise

        line, self._buffer = self._buffer.split(b"\n", 1)
        try:
            reply = json.loads(line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise EngineError(f"Malformed reply from modeling engine: {e}") from e
        if not isinstance(reply, dict):
            raise EngineError(f"Malformed reply from modeling engine: {reply!r}")
        return reply

    def execute(self, code: str, timeout_s: float | None = None) -> EngineReply:
        reply = self._request({"type": "execute_script", "params": {"code": code}}, timeout_s)
        result = reply.get("result") or {}
        warnings = tuple(reply.get("warnings") or result.get("warnings") or ())
        if reply.get("status") == "success":
            return EngineReply(
                success=True,
                object_ids=tuple(result.get("object_ids") or ()),
                warnings=warnings,
            )
        return EngineReply(
            success=False,
            error_message=str(reply.get("error") or "Unknown engine error"),
            warnings=warnings,
        )

    def render(self, object_ids: list[str], timeout_s: float | None = None) -> str:
        reply = self._request({"type": "render", "params": {"object_ids": list(object_ids)}}, timeout_s)
        if reply.get("status") != "success":
            raise EngineError(str(reply.get("error") or "Render failed"))
        path = (reply.get("result") or {}).get("path")
        if not path:
            raise EngineError("Render reply did not include a path")
        return str(path)


def _time_left(deadline: float) -> float:
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TimeoutError("Modeling engine did not answer before the deadline")
    return remaining


# ── Simulated engine ──────────────────────────────────────────────


@dataclass
class SimulatedModelingEngine:
    """In-process stand-in for FreeCAD.

    Succeeds by default, reporting one object per ``doc.addObject`` in the
    script. Set ``fail_with`` to make every execution fail with that engine
    message, ``warnings`` to attach warnings to successes, and ``latency_s``
    to make calls slow enough to trip deadlines. ``calls`` records every
    request in order.
    """

    fail_with: str | None = None
    warnings: tuple[str, ...] = ()
    latency_s: float = 0.0
    render_prefix: str = "/renders"
    reachable: bool = True
    calls: list[tuple] = field(default_factory=list)

    @property
    def engine_name(self) -> str:
        return "simulated"

    def _wait(self, timeout_s: float | None) -> None:
        if not self.latency_s:
            return
        if timeout_s is not None and self.latency_s > timeout_s:
            time.sleep(timeout_s)
            raise TimeoutError(f"Simulated engine did not answer within {timeout_s}s")
        time.sleep(self.latency_s)

    def connect(self, host: str, port: int) -> bool:
        self.calls.append(("connect", host, port))
        return self.reachable

    def execute(self, code: str, timeout_s: float | None = None) -> EngineReply:
        self.calls.append(("execute", code))
        if not self.reachable:
            raise ConnectionRefusedError("Simulated engine is unreachable")
        self._wait(timeout_s)
        if self.fail_with is not None:
            return EngineReply(success=False, error_message=self.fail_with, warnings=self.warnings)
        return EngineReply(
            success=True,
            object_ids=tuple(_DOC_OBJECT_RE.findall(code)),
            warnings=self.warnings,
        )

    def render(self, object_ids: list[str], timeout_s: float | None = None) -> str:
        self.calls.append(("render", tuple(object_ids)))
        self._wait(timeout_s)
        return f"{self.render_prefix}/{'-'.join(object_ids) or 'empty'}.png"

    def executed_scripts(self) -> list[str]:
        return [c[1] for c in self.calls if c[0] == "execute"]
