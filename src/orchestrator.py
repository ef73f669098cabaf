"""
ShapeForge Orchestrator: natural language → FreeCAD model → user feedback.

Single source of truth for the pipeline. The CLI, the web service and the
MCP server all call this module.

Pipeline (strictly forward):
  INTERPRETING → COMPILING → VALIDATING → DISPATCHING → SYNTHESIZING → DONE

Any stage may finish early with a final UserFeedback:
  - INTERPRETING: the prompt needs clarification
  - VALIDATING:   the generated script fails the safety gate
Exceptions from any stage are caught here, once, and become feedback. The
caller always gets a PipelineResult with ``feedback`` set.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable

from design_compiler import compile_design
from design_schema import (
    DesignIntent,
    ExecutionResult,
    GenerationError,
    Script,
    StructuredDesign,
    UserFeedback,
)
from engine_config import build_broker, load_engine_config
from execution_broker import ExecutionBroker
from feedback_synthesizer import (
    generation_error_feedback,
    internal_error_feedback,
    log_user_feedback,
    synthesize,
    unsafe_script_feedback,
)
from intent_interpreter import IntentInterpreter
from script_safety import find_unsafe_patterns

log = logging.getLogger(__name__)

# ── States and failure classification ─────────────────────────────


class PipelineState(Enum):
    INTERPRETING = 1
    COMPILING = 2
    VALIDATING = 3
    DISPATCHING = 4
    SYNTHESIZING = 5
    DONE = 6


class FailureKind(Enum):
    """Why a pipeline run ended without a model."""
    CLARIFICATION_NEEDED = auto()  # Not an error: the prompt was incomplete
    UNSAFE_SCRIPT = auto()         # Generated code failed the denylist scan
    GENERATION = auto()            # Malformed primitive/operation data
    ENGINE = auto()                # Engine failure, timeout or unreachable engine
    INTERNAL = auto()              # Anything else
    NONE = auto()                  # No failure


def classify_execution(result: ExecutionResult) -> FailureKind:
    """Map an ExecutionResult onto the failure taxonomy."""
    if result.success:
        return FailureKind.NONE
    if result.error_kind == "unsafe":
        return FailureKind.UNSAFE_SCRIPT
    if result.error_kind == "internal":
        return FailureKind.INTERNAL
    return FailureKind.ENGINE


# ── Data Structures ────────────────────────────────────────────────


@dataclass
class StageResult:
    """Status of a single pipeline stage."""

    stage: str  # "interpreting", "compiling", "validating", "dispatching", "synthesizing"
    status: str  # "running", "success", "failed", "stopped"
    message: str = ""
    duration_ms: int | None = None


@dataclass
class PipelineResult:
    """Everything the pipeline produced, as far as it got."""

    feedback: UserFeedback | None = None
    structured_design: StructuredDesign | None = None
    script: Script | None = None
    execution_result: ExecutionResult | None = None
    state: PipelineState = PipelineState.INTERPRETING
    failure: FailureKind = FailureKind.NONE
    stages: list[StageResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failure == FailureKind.NONE and self.state == PipelineState.DONE

    def to_dict(self) -> dict[str, Any]:
        """The UI contract: {structuredDesign?, script?, executionResult?, feedback}."""
        d: dict[str, Any] = {}
        if self.structured_design is not None:
            d["structuredDesign"] = self.structured_design.to_dict()
        if self.script is not None:
            d["script"] = self.script.to_dict()
        if self.execution_result is not None:
            d["executionResult"] = self.execution_result.to_dict()
        d["feedback"] = self.feedback.to_dict() if self.feedback else None
        return d


# ── Orchestrator ───────────────────────────────────────────────────


class Orchestrator:
    """Sequences interpreter → compiler → safety gate → broker → synthesizer.

    Instances share nothing with each other. A broker may be shared between
    orchestrators; it serializes access to its engine connection.
    """

    def __init__(
        self,
        interpreter: IntentInterpreter | None = None,
        broker: ExecutionBroker | None = None,
        timeout_s: float | None = None,
    ):
        if interpreter is None or broker is None:
            config = load_engine_config()
            interpreter = interpreter or IntentInterpreter(author=config.author)
            broker = broker or build_broker(config)
        self._interpreter = interpreter
        self._broker = broker
        self._timeout_s = timeout_s

    @property
    def broker(self) -> ExecutionBroker:
        return self._broker

    def connect_engine(self, host: str, port: int) -> bool:
        return self._broker.connect(host, port)

    def process(
        self,
        intent: DesignIntent,
        *,
        on_stage_update: Callable[[StageResult], None] | None = None,
    ) -> PipelineResult:
        """Run the whole pipeline for one intent. Never raises."""
        return self._run(intent, None, on_stage_update)

    def process_design(
        self,
        design: StructuredDesign,
        *,
        on_stage_update: Callable[[StageResult], None] | None = None,
    ) -> PipelineResult:
        """Run a ready-made design from COMPILING onwards (no interpretation).

        Useful for designs with operations, which the interpreter never
        produces. Never raises.
        """
        return self._run(None, design, on_stage_update)

    def _run(
        self,
        intent: DesignIntent | None,
        design: StructuredDesign | None,
        on_stage_update: Callable[[StageResult], None] | None,
    ) -> PipelineResult:
        result = PipelineResult()
        t_stage = time.monotonic()

        def _stage(stage: PipelineState, status: str, message: str = "") -> None:
            nonlocal t_stage
            duration = None
            if status != "running":
                duration = int((time.monotonic() - t_stage) * 1000)
            else:
                t_stage = time.monotonic()
            sr = StageResult(stage=stage.name.lower(), status=status, message=message, duration_ms=duration)
            result.stages.append(sr)
            log.debug("[%s] %s %s", sr.stage, sr.status, sr.message)
            if on_stage_update:
                # A broken observer must not change the pipeline's outcome.
                try:
                    on_stage_update(sr)
                except Exception:
                    log.exception("Stage update callback failed for %s/%s", sr.stage, sr.status)

        def _enter(state: PipelineState) -> None:
            if state.value <= result.state.value and result.stages:
                raise RuntimeError(f"Pipeline cannot move from {result.state.name} to {state.name}")
            result.state = state
            _stage(state, "running")

        def _finish(feedback: UserFeedback, failure: FailureKind) -> PipelineResult:
            result.feedback = feedback
            result.failure = failure
            result.state = PipelineState.DONE
            log_user_feedback(feedback)
            return result

        try:
            # ── Interpreting ──
            if design is None:
                _enter(PipelineState.INTERPRETING)
                clarification = self._interpreter.clarify(intent)
                if clarification is not None:
                    _stage(PipelineState.INTERPRETING, "stopped", "Clarification needed")
                    return _finish(clarification, FailureKind.CLARIFICATION_NEEDED)

                parsed = self._interpreter.interpret(intent)
                if isinstance(parsed, UserFeedback):
                    _stage(PipelineState.INTERPRETING, "stopped", parsed.message)
                    kind = (
                        FailureKind.CLARIFICATION_NEEDED
                        if parsed.status == "clarification"
                        else FailureKind.INTERNAL
                    )
                    return _finish(parsed, kind)
                design = parsed
                _stage(PipelineState.INTERPRETING, "success", repr(design))
            result.structured_design = design

            # ── Compiling ──
            _enter(PipelineState.COMPILING)
            result.script = compile_design(design)
            _stage(PipelineState.COMPILING, "success", f"{len(result.script.code)} chars")

            # ── Validating ──
            _enter(PipelineState.VALIDATING)
            unsafe = find_unsafe_patterns(result.script)
            if unsafe:
                _stage(PipelineState.VALIDATING, "failed", f"Unsafe patterns: {unsafe}")
                return _finish(unsafe_script_feedback(unsafe), FailureKind.UNSAFE_SCRIPT)
            _stage(PipelineState.VALIDATING, "success", "Safe")

            # ── Dispatching ──
            _enter(PipelineState.DISPATCHING)
            execution = self._broker.execute(result.script, timeout_s=self._timeout_s)
            result.execution_result = execution
            _stage(
                PipelineState.DISPATCHING,
                "success" if execution.success else "failed",
                f"{len(execution.object_ids)} object(s)" if execution.success else (execution.error_message or ""),
            )

            # ── Synthesizing ──
            _enter(PipelineState.SYNTHESIZING)
            feedback = synthesize(execution)
            _stage(PipelineState.SYNTHESIZING, "success", feedback.status)
            return _finish(feedback, classify_execution(execution))

        except GenerationError as e:
            log.warning("Generation error in %s: %s", result.state.name, e)
            _stage(result.state, "failed", f"Generation error: {e}")
            return _finish(generation_error_feedback(e), FailureKind.GENERATION)
        except Exception as e:
            log.exception("Unhandled error in pipeline stage %s", result.state.name)
            _stage(result.state, "failed", f"Internal error: {e}")
            return _finish(internal_error_feedback(e), FailureKind.INTERNAL)


def setup_failure_result(error: BaseException) -> PipelineResult:
    """Result for a run that failed before any stage started (bad config, etc.)."""
    feedback = internal_error_feedback(error)
    log_user_feedback(feedback)
    return PipelineResult(
        feedback=feedback,
        failure=FailureKind.INTERNAL,
        state=PipelineState.DONE,
    )


def process_design_intent(
    intent: DesignIntent,
    orchestrator: Orchestrator | None = None,
) -> PipelineResult:
    """Pipeline entry point: one DesignIntent in, one PipelineResult out."""
    if orchestrator is None:
        try:
            orchestrator = Orchestrator()
        except Exception as e:
            log.exception("Could not set up the pipeline")
            return setup_failure_result(e)
    return orchestrator.process(intent)
