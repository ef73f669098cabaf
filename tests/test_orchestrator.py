"""
Tests for orchestrator.py — stage sequencing, short-circuits, failure containment.

Every pipeline here runs against SimulatedModelingEngine, so no FreeCAD is needed.
"""

import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

import orchestrator as orchestrator_module
from design_schema import (
    CubeParams,
    DesignIntent,
    DesignMetadata,
    ExecutionResult,
    Operation,
    PrimitiveShape,
    SphereParams,
    StructuredDesign,
)
from execution_broker import ExecutionBroker
from id_generator import SequentialIdGenerator
from intent_interpreter import IntentInterpreter
from modeling_engine import SimulatedModelingEngine
from orchestrator import (
    FailureKind,
    Orchestrator,
    PipelineState,
    classify_execution,
    process_design_intent,
)

_NOW = datetime(2026, 5, 4, 9, 30, tzinfo=timezone.utc)


def _orchestrator(engine=None, timeout_s=None):
    engine = engine or SimulatedModelingEngine()
    interpreter = IntentInterpreter(id_generator=SequentialIdGenerator(), clock=lambda: _NOW)
    return Orchestrator(interpreter=interpreter, broker=ExecutionBroker(engine), timeout_s=timeout_s), engine


def _intent(prompt):
    return DesignIntent(prompt=prompt, context_id="test")


class _ExplodingInterpreter(IntentInterpreter):
    def clarify(self, intent):
        raise RuntimeError("interpreter blew up")


class _BadDesignInterpreter(IntentInterpreter):
    """Returns a design whose operation targets an id that doesn't exist."""

    def interpret(self, intent):
        return StructuredDesign(
            primitives=(PrimitiveShape("a", "cube", CubeParams()),),
            operations=(Operation("union", ("a", "ghost")),),
            metadata=DesignMetadata(name="bad", description="", author="t", created_at="now"),
        )


class _UnsafeDesignInterpreter(IntentInterpreter):
    """Primitive ids flow into code; "__import__" is a valid identifier but denylisted."""

    def interpret(self, intent):
        return StructuredDesign(
            primitives=(PrimitiveShape("__import__", "sphere", SphereParams(3)),),
            operations=(),
            metadata=DesignMetadata(name="odd", description="", author="t", created_at="now"),
        )


class TestHappyPath(unittest.TestCase):

    def test_reference_cube(self):
        orch, engine = _orchestrator()
        result = orch.process(_intent("Create a cube with 10mm sides"))

        self.assertTrue(result.success)
        self.assertEqual(result.state, PipelineState.DONE)
        self.assertEqual(result.failure, FailureKind.NONE)

        cube = result.structured_design.primitives[0]
        self.assertEqual(cube.parameters, CubeParams(10, 10, 10, "mm"))
        self.assertIn("shape_1 = Part.makeBox(10, 10, 10)", result.script.code)
        self.assertEqual(result.execution_result.object_ids, ("shape_1",))
        self.assertEqual(result.feedback.status, "success")
        self.assertEqual(result.feedback.action_types, ["accept"])
        self.assertEqual(engine.executed_scripts(), [result.script.code])

    def test_stage_sequence(self):
        orch, _ = _orchestrator()
        updates = []
        result = orch.process(_intent("a sphere of 8cm"), on_stage_update=updates.append)
        running = [s.stage for s in updates if s.status == "running"]
        self.assertEqual(running, ["interpreting", "compiling", "validating", "dispatching", "synthesizing"])
        self.assertEqual(updates, result.stages)
        finished = [s for s in updates if s.status != "running"]
        self.assertTrue(all(s.duration_ms is not None for s in finished))

    def test_warnings_suggest_modify(self):
        orch, _ = _orchestrator(SimulatedModelingEngine(warnings=("small feature",)))
        result = orch.process(_intent("cylinder 12mm"))
        self.assertTrue(result.success)
        self.assertEqual(result.feedback.action_types, ["accept", "modify"])


class TestShortCircuits(unittest.TestCase):

    def test_clarification_stops_at_interpreting(self):
        orch, engine = _orchestrator()
        result = orch.process(_intent("make something"))
        self.assertFalse(result.success)
        self.assertEqual(result.failure, FailureKind.CLARIFICATION_NEEDED)
        self.assertEqual(result.feedback.status, "clarification")
        self.assertIsNone(result.structured_design)
        self.assertIsNone(result.script)
        self.assertIsNone(result.execution_result)
        self.assertEqual(engine.calls, [])
        self.assertEqual([s.stage for s in result.stages], ["interpreting", "interpreting"])

    def test_known_but_undetectable_shape(self):
        orch, engine = _orchestrator()
        result = orch.process(_intent("a cone 20mm tall"))
        self.assertEqual(result.failure, FailureKind.CLARIFICATION_NEEDED)
        self.assertEqual(result.feedback.status, "clarification")
        self.assertEqual(engine.calls, [])

    def test_unsafe_script_stops_at_validating(self):
        engine = SimulatedModelingEngine()
        orch = Orchestrator(interpreter=_UnsafeDesignInterpreter(), broker=ExecutionBroker(engine))
        result = orch.process(_intent("a 3mm sphere"))
        self.assertEqual(result.failure, FailureKind.UNSAFE_SCRIPT)
        self.assertEqual(result.feedback.action_types, ["modify"])
        self.assertIsNotNone(result.script)
        self.assertIsNone(result.execution_result)
        self.assertEqual(engine.calls, [])


class TestFailures(unittest.TestCase):

    def test_engine_failure(self):
        orch, _ = _orchestrator(SimulatedModelingEngine(fail_with="TopoDS_Shape is null"))
        result = orch.process(_intent("a box of 5mm"))
        self.assertFalse(result.success)
        self.assertEqual(result.failure, FailureKind.ENGINE)
        self.assertEqual(result.feedback.action_types, ["regenerate", "modify", "clarify"])
        self.assertIn("invalid shape", result.feedback.details)

    def test_timeout(self):
        orch, _ = _orchestrator(SimulatedModelingEngine(latency_s=0.5), timeout_s=0.05)
        result = orch.process(_intent("a box of 5mm"))
        self.assertEqual(result.failure, FailureKind.ENGINE)
        self.assertEqual(result.execution_result.error_kind, "timeout")

    def test_generation_error(self):
        orch = Orchestrator(interpreter=_BadDesignInterpreter(), broker=ExecutionBroker(SimulatedModelingEngine()))
        result = orch.process(_intent("a 10mm cube"))
        self.assertEqual(result.failure, FailureKind.GENERATION)
        self.assertEqual(result.feedback.action_types, ["regenerate"])
        self.assertIn("ghost", result.feedback.details)
        self.assertIsNone(result.script)

    def test_internal_error_contained(self):
        orch = Orchestrator(interpreter=_ExplodingInterpreter(), broker=ExecutionBroker(SimulatedModelingEngine()))
        with self.assertLogs("orchestrator", level="ERROR"):
            result = orch.process(_intent("a 10mm cube"))
        self.assertEqual(result.failure, FailureKind.INTERNAL)
        self.assertEqual(result.state, PipelineState.DONE)
        self.assertEqual(result.feedback.status, "error")
        self.assertEqual(result.feedback.action_types, ["regenerate"])
        self.assertEqual(result.stages[-1].status, "failed")

    def test_raising_stage_callback_contained(self):
        orch, _ = _orchestrator()

        def broken_hook(stage):
            raise ValueError("ui hook broke")

        with self.assertLogs("orchestrator", level="ERROR"):
            result = orch.process(_intent("a 10mm cube"), on_stage_update=broken_hook)
        self.assertTrue(result.success)
        self.assertEqual(result.state, PipelineState.DONE)
        self.assertEqual(result.feedback.status, "success")

    def test_callback_failing_during_error_handling_contained(self):
        orch = Orchestrator(interpreter=_ExplodingInterpreter(), broker=ExecutionBroker(SimulatedModelingEngine()))

        def broken_hook(stage):
            raise ValueError("ui hook broke")

        with self.assertLogs("orchestrator", level="ERROR"):
            result = orch.process(_intent("a 10mm cube"), on_stage_update=broken_hook)
        self.assertEqual(result.failure, FailureKind.INTERNAL)
        self.assertEqual(result.feedback.details, "interpreter blew up")


class TestProcessDesign(unittest.TestCase):

    def test_design_with_operations(self):
        orch, engine = _orchestrator()
        design = StructuredDesign(
            primitives=(
                PrimitiveShape("plate", "cube", CubeParams(40, 40, 5)),
                PrimitiveShape("hole", "sphere", SphereParams(4)),
            ),
            operations=(Operation("difference", ("plate", "hole"), result_id="drilled"),),
            metadata=DesignMetadata(name="Plate", description="", author="t", created_at="now"),
        )
        updates = []
        result = orch.process_design(design, on_stage_update=updates.append)
        self.assertTrue(result.success)
        self.assertIs(result.structured_design, design)
        self.assertEqual(result.execution_result.object_ids, ("plate", "hole", "drilled"))
        self.assertNotIn("interpreting", [s.stage for s in updates])


class TestResultAndEntryPoint(unittest.TestCase):

    def test_to_dict_success(self):
        orch, _ = _orchestrator()
        d = orch.process(_intent("Create a cube with 10mm sides")).to_dict()
        self.assertEqual(set(d), {"structuredDesign", "script", "executionResult", "feedback"})
        self.assertEqual(d["structuredDesign"]["primitives"][0]["id"], "shape_1")
        self.assertEqual(d["executionResult"]["renderUrl"], "/renders/shape_1.png")

    def test_to_dict_clarification(self):
        orch, _ = _orchestrator()
        d = orch.process(_intent("hmm")).to_dict()
        self.assertEqual(set(d), {"feedback"})

    def test_connect_engine(self):
        orch, engine = _orchestrator()
        self.assertTrue(orch.connect_engine("localhost", 8080))
        self.assertEqual(engine.calls, [("connect", "localhost", 8080)])

    def test_entry_point_with_orchestrator(self):
        orch, _ = _orchestrator()
        self.assertTrue(process_design_intent(_intent("sphere 6mm"), orchestrator=orch).success)

    def test_entry_point_setup_failure(self):
        with mock.patch.object(orchestrator_module, "load_engine_config", side_effect=ValueError("bad config")):
            with self.assertLogs("orchestrator", level="ERROR"):
                result = process_design_intent(_intent("sphere 6mm"))
        self.assertEqual(result.failure, FailureKind.INTERNAL)
        self.assertEqual(result.feedback.details, "bad config")

    def test_classify_execution(self):
        self.assertEqual(classify_execution(ExecutionResult(success=True)), FailureKind.NONE)
        self.assertEqual(classify_execution(ExecutionResult(success=False, error_kind="unsafe")), FailureKind.UNSAFE_SCRIPT)
        self.assertEqual(classify_execution(ExecutionResult(success=False, error_kind="timeout")), FailureKind.ENGINE)
        self.assertEqual(classify_execution(ExecutionResult(success=False, error_kind="internal")), FailureKind.INTERNAL)


if __name__ == "__main__":
    unittest.main()
