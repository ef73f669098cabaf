"""
ShapeForge Execution Broker.

Adapter between the pipeline and a ModelingEngine. Responsibilities:
  - re-check script safety before anything is sent (the orchestrator checks
    too; an unsafe script must never reach the engine whoever calls us)
  - admit one submission at a time per engine connection
  - enforce a deadline on each execution
  - map engine replies and exceptions into ExecutionResult

No retries: a failed execution is reported, and the caller decides.
"""

from __future__ import annotations

import logging
import math
import threading
import time

from design_schema import ExecutionResult, Script
from modeling_engine import EngineError, ModelingEngine
from script_safety import find_unsafe_patterns

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0

UNSAFE_SCRIPT_MESSAGE = "Script contains potentially unsafe operations and cannot be executed."
UNSAFE_SCRIPT_WARNING = "Potentially unsafe code detected."
EXECUTION_FAILED_WARNING = "Execution failed. Check the modeling engine connection."
ENGINE_FAILED_WARNING = "The modeling engine reported an error."


def _unsafe_result() -> ExecutionResult:
    return ExecutionResult(
        success=False,
        error_message=UNSAFE_SCRIPT_MESSAGE,
        warnings=(UNSAFE_SCRIPT_WARNING,),
        error_kind="unsafe",
    )


def _failure(message: str, kind: str, warnings: tuple[str, ...] = ()) -> ExecutionResult:
    return ExecutionResult(
        success=False,
        error_message=message,
        warnings=warnings or (EXECUTION_FAILED_WARNING,),
        error_kind=kind,
    )


class ExecutionBroker:
    """Validated, serialized, deadline-bounded access to one modeling engine."""

    def __init__(self, engine: ModelingEngine, timeout_s: float = DEFAULT_TIMEOUT_S):
        self._engine = engine
        self._timeout_s = timeout_s
        self._lock = threading.Lock()

    @property
    def engine(self) -> ModelingEngine:
        return self._engine

    def connect(self, host: str, port: int) -> bool:
        if not self._lock.acquire(timeout=_lock_timeout(self._timeout_s)):
            log.warning("Engine connect skipped: engine busy for %ss", self._timeout_s)
            return False
        try:
            return bool(self._engine.connect(host, port))
        except Exception as e:
            log.warning("Engine connect to %s:%s failed: %s", host, port, e)
            return False
        finally:
            self._lock.release()

    def execute(self, script: Script, timeout_s: float | None = None) -> ExecutionResult:
        """Run a script on the engine. Never raises.

        The deadline covers both waiting for the connection to be free and
        the engine call itself.
        """
        unsafe = find_unsafe_patterns(script)
        if unsafe:
            log.warning("Refusing to dispatch script containing %s", unsafe)
            return _unsafe_result()

        budget = self._timeout_s if timeout_s is None else timeout_s
        deadline = time.monotonic() + budget

        if not self._lock.acquire(timeout=_lock_timeout(budget)):
            return _failure(
                f"Timed out after {budget:g}s waiting for the modeling engine to become free",
                "timeout",
            )
        try:
            return self._dispatch(script, deadline, budget)
        except TimeoutError:
            log.warning("Engine call exceeded %ss deadline", budget)
            return _failure(f"Modeling engine did not respond within {budget:g}s", "timeout")
        except EngineError as e:
            log.warning("Engine protocol error: %s", e)
            return _failure(str(e), "engine", (ENGINE_FAILED_WARNING,))
        except OSError as e:
            log.warning("Engine connection error: %s", e)
            return _failure(f"Could not reach the modeling engine: {e}", "connection")
        except Exception as e:
            log.exception("Unexpected error during script execution")
            return _failure(str(e) or type(e).__name__, "internal")
        finally:
            self._lock.release()

    def _dispatch(self, script: Script, deadline: float, budget: float) -> ExecutionResult:
        log.debug("Dispatching script to %s (%d chars)", self._engine.engine_name, len(script.code))
        reply = self._engine.execute(script.code, timeout_s=_remaining(deadline, budget))

        if not reply.success:
            return ExecutionResult(
                success=False,
                object_ids=reply.object_ids,
                error_message=reply.error_message or "Unknown engine error",
                warnings=reply.warnings or (ENGINE_FAILED_WARNING,),
                error_kind="engine",
            )

        warnings = list(reply.warnings)
        render_ref = None
        if reply.object_ids:
            try:
                render_ref = self._engine.render(
                    list(reply.object_ids), timeout_s=_remaining(deadline, budget)
                )
            except Exception as e:
                # A failed or slow render never undoes a successful execution.
                log.warning("Render failed: %s", e)
                warnings.append(f"Render unavailable: {e}")

        return ExecutionResult(
            success=True,
            object_ids=reply.object_ids,
            render_ref=render_ref,
            warnings=tuple(warnings),
        )

    def render(self, object_ids: list[str], timeout_s: float | None = None) -> str | None:
        """Render reference for objects, or None if the engine could not render."""
        budget = self._timeout_s if timeout_s is None else timeout_s
        if not self._lock.acquire(timeout=_lock_timeout(budget)):
            log.warning("Render skipped: engine busy for %ss", budget)
            return None
        try:
            return self._engine.render(list(object_ids), timeout_s=None if math.isinf(budget) else budget)
        except Exception as e:
            log.warning("Render of %s failed: %s", object_ids, e)
            return None
        finally:
            self._lock.release()


def _remaining(deadline: float, budget: float) -> float | None:
    if math.isinf(deadline):
        return None
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise TimeoutError(f"deadline of {budget:g}s exhausted")
    return remaining


def _lock_timeout(budget: float) -> float:
    return min(max(budget, 0), threading.TIMEOUT_MAX)
