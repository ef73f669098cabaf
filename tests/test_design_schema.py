"""Tests for design_schema.py — record validation and dict layout."""

import sys
import unittest
from pathlib import Path

# Ensure src/ is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from design_schema import (
    BooleanParams,
    ChamferParams,
    ConeParams,
    CubeParams,
    DesignConstraint,
    DesignIntent,
    DesignMetadata,
    ExecutionResult,
    FilletParams,
    GenerationError,
    Operation,
    Position,
    PrimitiveShape,
    Rotation,
    SphereParams,
    StructuredDesign,
    SuggestedAction,
    UserFeedback,
    check_identifier,
)


def _meta(**overrides):
    data = dict(name="Test", description="test design", author="tester", created_at="2026-01-01T00:00:00")
    data.update(overrides)
    return DesignMetadata(**data)


def _cube(shape_id="a", size=10):
    return PrimitiveShape(id=shape_id, type="cube", parameters=CubeParams(size, size, size))


class TestShapeParams(unittest.TestCase):
    """Dimension records reject nonsense at construction."""

    def test_defaults(self):
        p = CubeParams()
        self.assertEqual((p.length, p.width, p.height, p.unit), (10, 10, 10, "mm"))

    def test_positional_dimensions_then_unit(self):
        p = CubeParams(1, 2, 3, "cm")
        self.assertEqual(p.to_dict(), {"length": 1, "width": 2, "height": 3, "unit": "cm"})

    def test_zero_dimension_rejected(self):
        with self.assertRaises(GenerationError):
            SphereParams(radius=0)

    def test_negative_dimension_rejected(self):
        with self.assertRaises(GenerationError):
            CubeParams(length=-1)

    def test_non_finite_rejected(self):
        with self.assertRaises(GenerationError):
            SphereParams(radius=float("inf"))
        with self.assertRaises(GenerationError):
            SphereParams(radius=float("nan"))

    def test_bool_is_not_a_number(self):
        with self.assertRaises(GenerationError):
            SphereParams(radius=True)

    def test_string_dimension_rejected(self):
        with self.assertRaises(GenerationError):
            SphereParams(radius="5")

    def test_unknown_unit_rejected(self):
        with self.assertRaises(GenerationError):
            CubeParams(unit="furlong")

    def test_cone_tip_radius_may_be_zero(self):
        self.assertEqual(ConeParams(radius1=5, height=10, radius2=0).radius2, 0)

    def test_cone_base_radius_may_not_be_zero(self):
        with self.assertRaises(GenerationError):
            ConeParams(radius1=0, height=10)

    def test_generation_error_is_value_error(self):
        self.assertTrue(issubclass(GenerationError, ValueError))


class TestIdentifiers(unittest.TestCase):

    def test_plain_identifier_ok(self):
        check_identifier("shape_1a2b3c")

    def test_injection_rejected(self):
        for bad in ("a; import os", "1abc", "a-b", "", "class", 'a")'):
            with self.subTest(bad=bad):
                with self.assertRaises(GenerationError):
                    check_identifier(bad)

    def test_primitive_id_checked(self):
        with self.assertRaises(GenerationError):
            PrimitiveShape(id="x y", type="cube", parameters=CubeParams())

    def test_script_names_rejected(self):
        for name in ("doc", "App", "Part", "Base"):
            with self.subTest(name=name):
                with self.assertRaises(GenerationError):
                    _cube(name)

    def test_object_variable_suffix_rejected(self):
        with self.assertRaises(GenerationError):
            _cube("box_obj")
        with self.assertRaises(GenerationError):
            Operation("union", ("a", "b"), result_id="joined_obj")

    def test_similar_names_allowed(self):
        for name in ("docs", "part", "base", "obj", "object_1"):
            with self.subTest(name=name):
                check_identifier(name)


class TestPrimitiveShape(unittest.TestCase):

    def test_type_and_record_must_match(self):
        with self.assertRaises(GenerationError):
            PrimitiveShape(id="a", type="sphere", parameters=CubeParams())

    def test_unknown_type_rejected(self):
        with self.assertRaises(GenerationError):
            PrimitiveShape(id="a", type="pyramid", parameters=CubeParams())

    def test_to_dict_omits_missing_placement(self):
        d = _cube().to_dict()
        self.assertNotIn("position", d)
        self.assertNotIn("rotation", d)

    def test_from_dict_with_placement(self):
        shape = PrimitiveShape.from_dict({
            "id": "s",
            "type": "sphere",
            "parameters": {"radius": 4, "unit": "cm"},
            "position": {"x": 1, "y": 2},
            "rotation": {"z": 90},
        })
        self.assertEqual(shape.parameters, SphereParams(radius=4, unit="cm"))
        self.assertEqual(shape.position, Position(1, 2, 0))
        self.assertEqual(shape.rotation, Rotation(0, 0, 90))

    def test_from_dict_unknown_parameter(self):
        with self.assertRaises(GenerationError):
            PrimitiveShape.from_dict({"id": "s", "type": "sphere", "parameters": {"diameter": 4}})


class TestOperation(unittest.TestCase):

    def test_boolean_needs_two_targets(self):
        with self.assertRaises(GenerationError):
            Operation(type="union", target_ids=("a",))

    def test_fillet_needs_one_target(self):
        with self.assertRaises(GenerationError):
            Operation(type="fillet", target_ids=())

    def test_default_parameters_by_type(self):
        self.assertEqual(Operation("union", ("a", "b")).parameters, BooleanParams())
        self.assertEqual(Operation("fillet", ("a",)).parameters, FilletParams(1.0))
        self.assertEqual(Operation("chamfer", ("a",)).parameters, ChamferParams(1.0))

    def test_wrong_parameter_record_rejected(self):
        with self.assertRaises(GenerationError):
            Operation("fillet", ("a",), parameters=ChamferParams(2))

    def test_default_result_id(self):
        op = Operation("difference", ["a", "b", "c"])
        self.assertEqual(op.result_id, "result_difference_a_b_c")
        self.assertEqual(op.target_ids, ("a", "b", "c"))
        self.assertEqual(op.primary, "a")
        self.assertEqual(op.secondary, ("b", "c"))

    def test_round_trip_layout(self):
        op = Operation.from_dict({"type": "fillet", "targetIds": ["a"], "parameters": {"radius": 2}})
        self.assertEqual(op.to_dict(), {
            "type": "fillet",
            "targetIds": ["a"],
            "resultId": "result_fillet_a",
            "parameters": {"radius": 2},
        })

    def test_boolean_to_dict_has_no_parameters(self):
        self.assertNotIn("parameters", Operation("union", ("a", "b")).to_dict())


class TestStructuredDesign(unittest.TestCase):

    def test_duplicate_ids_rejected(self):
        with self.assertRaises(GenerationError):
            StructuredDesign(primitives=(_cube("a"), _cube("a")), operations=(), metadata=_meta())

    def test_result_id_reusing_primitive_id_rejected(self):
        with self.assertRaises(GenerationError):
            StructuredDesign(
                primitives=(_cube("a"), _cube("b")),
                operations=(Operation("union", ("a", "b"), result_id="a"),),
                metadata=_meta(),
            )

    def test_repeated_default_result_id_rejected(self):
        union = Operation("union", ("a", "b"))
        with self.assertRaises(GenerationError):
            StructuredDesign(primitives=(_cube("a"), _cube("b")), operations=(union, union), metadata=_meta())

    def test_repeated_result_id_rejected(self):
        with self.assertRaises(GenerationError):
            StructuredDesign(
                primitives=(_cube("a"), _cube("b")),
                operations=(
                    Operation("union", ("a", "b"), result_id="u"),
                    Operation("fillet", ("u",), FilletParams(1), result_id="u"),
                ),
                metadata=_meta(),
            )

    def test_distinct_result_ids_accepted(self):
        design = StructuredDesign(
            primitives=(_cube("a"), _cube("b")),
            operations=(
                Operation("union", ("a", "b"), result_id="u"),
                Operation("fillet", ("u",), FilletParams(1)),
            ),
            metadata=_meta(),
        )
        self.assertEqual([o.result_id for o in design.operations], ["u", "result_fillet_u"])

    def test_metadata_unit_system(self):
        with self.assertRaises(GenerationError):
            _meta(units="m")

    def test_to_dict_camel_case(self):
        design = StructuredDesign(primitives=[_cube()], operations=[], metadata=_meta())
        d = design.to_dict()
        self.assertEqual(d["metadata"]["createdAt"], "2026-01-01T00:00:00")
        self.assertEqual(d["primitives"][0]["parameters"]["length"], 10)
        self.assertEqual(d["operations"], [])

    def test_from_dict(self):
        design = StructuredDesign.from_dict({
            "primitives": [
                {"id": "a", "type": "cube", "parameters": {"length": 20, "width": 20, "height": 20}},
                {"id": "b", "type": "cylinder", "parameters": {"radius": 5, "height": 30}},
            ],
            "operations": [{"type": "difference", "targetIds": ["a", "b"]}],
            "metadata": {"name": "Plate", "units": "mm"},
        })
        self.assertEqual(design.primitive_ids(), ["a", "b"])
        self.assertEqual(design.operations[0].result_id, "result_difference_a_b")
        self.assertIn("2 primitives", repr(design))


class TestIntentAndFeedback(unittest.TestCase):

    def test_intent_from_dict(self):
        intent = DesignIntent.from_dict({
            "prompt": "a cube",
            "contextId": "ctx",
            "constraints": [{"type": "material", "parameter": "material", "value": "PLA"}],
        })
        self.assertEqual(intent.context_id, "ctx")
        self.assertEqual(intent.constraints[0], DesignConstraint("material", "material", "PLA"))

    def test_unknown_constraint_kind(self):
        with self.assertRaises(GenerationError):
            DesignConstraint("color", "color", "red")

    def test_execution_result_layout(self):
        d = ExecutionResult(success=True, object_ids=["a"], render_ref="/r/a.png").to_dict()
        self.assertEqual(d, {"success": True, "objectIds": ["a"], "renderUrl": "/r/a.png", "warnings": []})

    def test_execution_result_error_kind_checked(self):
        with self.assertRaises(GenerationError):
            ExecutionResult(success=False, error_kind="meteor")

    def test_feedback_status_checked(self):
        with self.assertRaises(GenerationError):
            UserFeedback(status="maybe", message="?")

    def test_action_type_checked(self):
        with self.assertRaises(GenerationError):
            SuggestedAction(type="delete", description="nope")

    def test_feedback_action_types(self):
        fb = UserFeedback(
            status="error",
            message="m",
            suggested_actions=[SuggestedAction("regenerate", "r"), SuggestedAction("modify", "m")],
        )
        self.assertEqual(fb.action_types, ["regenerate", "modify"])
        self.assertNotIn("details", fb.to_dict())


if __name__ == "__main__":
    unittest.main()
