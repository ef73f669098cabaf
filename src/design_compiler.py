"""
ShapeForge Design Compiler: StructuredDesign → FreeCAD Python script.

Pure function of its input. Layout of every generated script:

  imports
  document creation
  primitives   (creation, translate, rotate X → Y → Z, document object)
  operations   (boolean or edge step, document object)
  recompute
  commented save hint

Only validated identifiers, numeric literals and fixed keywords are written
into code positions; free text from the prompt only reaches the output
through the sanitized save-hint comment.
"""

from __future__ import annotations

import re
from typing import Union

from design_schema import (
    BOOLEAN_OPERATIONS,
    ConeParams,
    CubeParams,
    CylinderParams,
    GenerationError,
    Operation,
    PrimitiveShape,
    Script,
    SphereParams,
    StructuredDesign,
    TorusParams,
)

SCRIPT_IMPORTS: tuple[str, ...] = (
    "import FreeCAD as App",
    "import Part",
    "from FreeCAD import Base",
)

_ORIGIN = "Base.Vector(0,0,0)"
# Emission order is X, then Y, then Z. Rotations do not commute.
_ROTATION_AXES = (
    ("x", "Base.Vector(1,0,0)"),
    ("y", "Base.Vector(0,1,0)"),
    ("z", "Base.Vector(0,0,1)"),
)

_BOOLEAN_METHODS = {
    "union": "fuse",
    "difference": "cut",
    "intersection": "common",
}

_CREATE_RE = re.compile(r"^\w+ = Part\.make(Box|Sphere|Cylinder|Cone|Torus)\(", re.MULTILINE)
_OPERATION_RE = re.compile(r"^\w+ = \w+\.(fuse|cut|common|makeFillet|makeChamfer)\(", re.MULTILINE)
_UNSAFE_NAME_RE = re.compile(r"[^a-zA-Z0-9]")


def _num(value: Union[int, float]) -> str:
    """Numeric literal: integral values print without a trailing .0."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return repr(value)


def _vector(x, y, z) -> str:
    return f"Base.Vector({_num(x)}, {_num(y)}, {_num(z)})"


# ── Primitives ────────────────────────────────────────────────────


def _creation_call(primitive: PrimitiveShape) -> str:
    p = primitive.parameters
    if isinstance(p, CubeParams):
        return f"Part.makeBox({_num(p.length)}, {_num(p.width)}, {_num(p.height)})"
    if isinstance(p, SphereParams):
        return f"Part.makeSphere({_num(p.radius)})"
    if isinstance(p, CylinderParams):
        return f"Part.makeCylinder({_num(p.radius)}, {_num(p.height)})"
    if isinstance(p, ConeParams):
        return f"Part.makeCone({_num(p.radius1)}, {_num(p.radius2)}, {_num(p.height)})"
    if isinstance(p, TorusParams):
        return f"Part.makeTorus({_num(p.radius1)}, {_num(p.radius2)})"
    raise GenerationError(f"No creation call for primitive type {primitive.type!r}")


def primitive_lines(primitive: PrimitiveShape) -> list[str]:
    name = primitive.id
    lines = [f"# Create {primitive.type}", f"{name} = {_creation_call(primitive)}"]

    if primitive.position is not None:
        pos = primitive.position
        lines.append(f"{name}.translate({_vector(pos.x, pos.y, pos.z)})")

    if primitive.rotation is not None:
        for axis, axis_vector in _ROTATION_AXES:
            angle = getattr(primitive.rotation, axis)
            lines.append(f"{name}.rotate({_ORIGIN}, {axis_vector}, {_num(angle)})")

    lines.append(f'{name}_obj = doc.addObject("Part::Feature", "{name}")')
    lines.append(f"{name}_obj.Shape = {name}")
    return lines


# ── Operations ────────────────────────────────────────────────────


def operation_lines(operation: Operation, known: set[str]) -> list[str]:
    for tid in operation.target_ids:
        if tid not in known:
            raise GenerationError(
                f"{operation.type} references unknown id {tid!r}; "
                f"known ids: {sorted(known)}"
            )

    result = operation.result_id
    primary = operation.primary

    if operation.type in BOOLEAN_OPERATIONS:
        method = _BOOLEAN_METHODS[operation.type]
        grouped = ", ".join(operation.secondary)
        call = f"{primary}.{method}([{grouped}])"
    elif operation.type == "fillet":
        call = f"{primary}.makeFillet({_num(operation.parameters.radius)}, {primary}.Edges)"
    elif operation.type == "chamfer":
        call = f"{primary}.makeChamfer({_num(operation.parameters.distance)}, {primary}.Edges)"
    else:
        raise GenerationError(f"No emitter for operation type {operation.type!r}")

    return [
        f"# {operation.type.capitalize()} {', '.join(operation.target_ids)}",
        f"{result} = {call}",
        f'{result}_obj = doc.addObject("Part::Feature", "{result}")',
        f"{result}_obj.Shape = {result}",
    ]


# ── Script ────────────────────────────────────────────────────────


def sanitize_name(name: str) -> str:
    return _UNSAFE_NAME_RE.sub("_", name)


def compile_design(design: StructuredDesign) -> Script:
    """Generate the FreeCAD script for a design.

    Raises:
        GenerationError: if an operation targets an id that is neither a
            primitive nor the result of an earlier operation.
    """
    lines: list[str] = [
        *SCRIPT_IMPORTS,
        "",
        "# Create a new document",
        "doc = App.newDocument()",
        "",
    ]

    known: set[str] = set()
    for primitive in design.primitives:
        lines.extend(primitive_lines(primitive))
        lines.append("")
        known.add(primitive.id)

    if design.operations:
        lines.append("# Apply operations")
        for operation in design.operations:
            lines.extend(operation_lines(operation, known))
            lines.append("")
            known.add(operation.result_id)

    lines.append("# Recompute the document")
    lines.append("doc.recompute()")
    lines.append("")
    lines.append("# Save the document (optional)")
    lines.append(f'# doc.saveAs("{sanitize_name(design.metadata.name)}.FCStd")')

    return Script(code="\n".join(lines), imports=SCRIPT_IMPORTS, safe_to_execute=True)


def count_statements(code: str) -> dict[str, int]:
    """Count primitive-creation and operation statements in generated code."""
    return {
        "primitives": len(_CREATE_RE.findall(code)),
        "operations": len(_OPERATION_RE.findall(code)),
    }
