"""
ShapeForge design schema.

Typed, immutable dataclass layer shared by every pipeline stage:

  DesignIntent → StructuredDesign → Script → ExecutionResult → UserFeedback

Parameter bags are closed per-type records validated at construction, so a
malformed primitive or operation fails here with a GenerationError instead
of surfacing as a broken script later. Every entity serializes to the
camelCase dict layout consumed by the UI layer via ``to_dict()``; input
entities can be rebuilt from that layout via ``from_dict()``.
"""

from __future__ import annotations

import keyword
import math
import re
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Union

# ============================================================
# Vocabularies
# ============================================================

CONSTRAINT_KINDS = ("dimension", "material", "tolerance", "relationship")
PRIMITIVE_TYPES = ("cube", "sphere", "cylinder", "cone", "torus")
OPERATION_TYPES = ("union", "difference", "intersection", "fillet", "chamfer")
BOOLEAN_OPERATIONS = ("union", "difference", "intersection")
EDGE_OPERATIONS = ("fillet", "chamfer")
LENGTH_UNITS = ("mm", "cm", "m", "in")
UNIT_SYSTEMS = ("mm", "cm", "in")
FEEDBACK_STATUSES = ("success", "error", "warning", "info", "clarification")
ACTION_TYPES = ("clarify", "modify", "regenerate", "accept")
ERROR_KINDS = ("unsafe", "engine", "timeout", "connection", "internal")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
# Names the generated script binds itself, plus the suffix of its document-object variables.
RESERVED_IDENTIFIERS = ("doc", "App", "Part", "Base")
RESERVED_SUFFIX = "_obj"


class GenerationError(ValueError):
    """Malformed or out-of-range primitive/operation data."""


# ============================================================
# Validation helpers
# ============================================================


def _check_choice(value: str, allowed: tuple[str, ...], what: str) -> None:
    if value not in allowed:
        raise GenerationError(f"Unknown {what} {value!r}; expected one of {list(allowed)}")


def _check_number(value: Any, what: str, *, positive: bool = False, allow_zero: bool = False) -> None:
    # bool is an int subclass; True must not pass as 1
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise GenerationError(f"{what} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise GenerationError(f"{what} must be finite, got {value!r}")
    if positive and (value < 0 or (value == 0 and not allow_zero)):
        bound = ">= 0" if allow_zero else "> 0"
        raise GenerationError(f"{what} must be {bound}, got {value!r}")


def check_identifier(name: str, what: str = "id") -> None:
    """Ids are emitted as Python variable names, so they must be plain identifiers."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name) or keyword.iskeyword(name):
        raise GenerationError(f"Invalid {what} {name!r}: must be a Python identifier")
    if name in RESERVED_IDENTIFIERS:
        raise GenerationError(f"Invalid {what} {name!r}: reserved by the generated script")
    if name.endswith(RESERVED_SUFFIX):
        raise GenerationError(f"Invalid {what} {name!r}: ids may not end in {RESERVED_SUFFIX!r}")


def _drop_none(d: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


# ============================================================
# Intent
# ============================================================


@dataclass(frozen=True)
class DesignConstraint:
    """A constraint attached to an intent: dimension, material, tolerance or relationship."""

    kind: str
    parameter: str
    value: Union[int, float, str]
    unit: str | None = None

    def __post_init__(self) -> None:
        _check_choice(self.kind, CONSTRAINT_KINDS, "constraint kind")

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "type": self.kind,
            "parameter": self.parameter,
            "value": self.value,
            "unit": self.unit,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DesignConstraint:
        return cls(
            kind=data.get("type", data.get("kind", "")),
            parameter=data["parameter"],
            value=data["value"],
            unit=data.get("unit"),
        )


@dataclass(frozen=True)
class DesignIntent:
    """Natural-language request from the user. Never modified by the pipeline."""

    prompt: str
    context_id: str = ""
    constraints: tuple[DesignConstraint, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"prompt": self.prompt, "contextId": self.context_id}
        if self.constraints:
            d["constraints"] = [c.to_dict() for c in self.constraints]
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DesignIntent:
        return cls(
            prompt=data["prompt"],
            context_id=data.get("contextId", data.get("context_id", "")),
            constraints=tuple(
                DesignConstraint.from_dict(c) for c in data.get("constraints") or ()
            ),
        )


# ============================================================
# Placement
# ============================================================


@dataclass(frozen=True)
class Vector3:
    x: float = 0
    y: float = 0
    z: float = 0

    def __post_init__(self) -> None:
        for f in fields(self):
            _check_number(getattr(self, f.name), f"{type(self).__name__}.{f.name}")

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        return cls(x=data.get("x", 0), y=data.get("y", 0), z=data.get("z", 0))


class Position(Vector3):
    """Translation applied before rotation."""


class Rotation(Vector3):
    """Euler angles in degrees about the global origin, applied X then Y then Z."""


# ============================================================
# Primitive parameter records
# ============================================================


class _ShapeParams:
    """Shared validation: dimensions are finite and positive, unit is known."""

    ZERO_ALLOWED: ClassVar[tuple[str, ...]] = ()

    def __post_init__(self) -> None:
        _check_choice(self.unit, LENGTH_UNITS, "unit")
        for f in fields(self):
            if f.name == "unit":
                continue
            _check_number(
                getattr(self, f.name),
                f"{type(self).__name__}.{f.name}",
                positive=True,
                allow_zero=f.name in self.ZERO_ALLOWED,
            )

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class CubeParams(_ShapeParams):
    length: float = 10
    width: float = 10
    height: float = 10
    unit: str = "mm"


@dataclass(frozen=True)
class SphereParams(_ShapeParams):
    radius: float = 5
    unit: str = "mm"


@dataclass(frozen=True)
class CylinderParams(_ShapeParams):
    radius: float = 5
    height: float = 10
    unit: str = "mm"


@dataclass(frozen=True)
class ConeParams(_ShapeParams):
    radius1: float = 5
    height: float = 10
    radius2: float = 0
    unit: str = "mm"

    ZERO_ALLOWED: ClassVar[tuple[str, ...]] = ("radius2",)


@dataclass(frozen=True)
class TorusParams(_ShapeParams):
    radius1: float = 10
    radius2: float = 2
    unit: str = "mm"


PrimitiveParams = Union[CubeParams, SphereParams, CylinderParams, ConeParams, TorusParams]

PARAMS_BY_TYPE: dict[str, type] = {
    "cube": CubeParams,
    "sphere": SphereParams,
    "cylinder": CylinderParams,
    "cone": ConeParams,
    "torus": TorusParams,
}


def _build_record(record_cls: type, data: dict[str, Any], owner: str):
    try:
        return record_cls(**data)
    except TypeError as e:
        raise GenerationError(f"Bad parameters for {owner}: {e}") from e


@dataclass(frozen=True)
class PrimitiveShape:
    """A single named solid."""

    id: str
    type: str
    parameters: PrimitiveParams
    position: Position | None = None
    rotation: Rotation | None = None

    def __post_init__(self) -> None:
        check_identifier(self.id, "primitive id")
        _check_choice(self.type, PRIMITIVE_TYPES, "primitive type")
        expected = PARAMS_BY_TYPE[self.type]
        if type(self.parameters) is not expected:
            raise GenerationError(
                f"Primitive {self.id!r} of type {self.type!r} needs {expected.__name__}, "
                f"got {type(self.parameters).__name__}"
            )

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "id": self.id,
            "type": self.type,
            "parameters": self.parameters.to_dict(),
            "position": self.position.to_dict() if self.position else None,
            "rotation": self.rotation.to_dict() if self.rotation else None,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PrimitiveShape:
        ptype = data["type"]
        _check_choice(ptype, PRIMITIVE_TYPES, "primitive type")
        params = _build_record(PARAMS_BY_TYPE[ptype], dict(data.get("parameters") or {}), ptype)
        return cls(
            id=data["id"],
            type=ptype,
            parameters=params,
            position=Position.from_dict(data["position"]) if data.get("position") else None,
            rotation=Rotation.from_dict(data["rotation"]) if data.get("rotation") else None,
        )


# ============================================================
# Operation parameter records
# ============================================================


@dataclass(frozen=True)
class BooleanParams:
    """Union, difference and intersection take no parameters."""

    def to_dict(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class FilletParams:
    radius: float = 1.0

    def __post_init__(self) -> None:
        _check_number(self.radius, "FilletParams.radius", positive=True)

    def to_dict(self) -> dict[str, Any]:
        return {"radius": self.radius}


@dataclass(frozen=True)
class ChamferParams:
    distance: float = 1.0

    def __post_init__(self) -> None:
        _check_number(self.distance, "ChamferParams.distance", positive=True)

    def to_dict(self) -> dict[str, Any]:
        return {"distance": self.distance}


OperationParams = Union[BooleanParams, FilletParams, ChamferParams]

OPERATION_PARAMS_BY_TYPE: dict[str, type] = {
    "union": BooleanParams,
    "difference": BooleanParams,
    "intersection": BooleanParams,
    "fillet": FilletParams,
    "chamfer": ChamferParams,
}


@dataclass(frozen=True)
class Operation:
    """A boolean or edge step over primitives or earlier operation results.

    Boolean operations combine target_ids[0] with the remaining targets;
    fillet and chamfer only look at target_ids[0].
    """

    type: str
    target_ids: tuple[str, ...]
    parameters: OperationParams | None = None
    result_id: str | None = None

    def __post_init__(self) -> None:
        _check_choice(self.type, OPERATION_TYPES, "operation type")
        object.__setattr__(self, "target_ids", tuple(self.target_ids))
        if not self.target_ids:
            raise GenerationError(f"{self.type} operation needs at least one target id")
        if self.type in BOOLEAN_OPERATIONS and len(self.target_ids) < 2:
            raise GenerationError(f"{self.type} operation needs at least two target ids")
        for tid in self.target_ids:
            check_identifier(tid, "target id")

        expected = OPERATION_PARAMS_BY_TYPE[self.type]
        if self.parameters is None:
            object.__setattr__(self, "parameters", expected())
        elif type(self.parameters) is not expected:
            raise GenerationError(
                f"{self.type} operation needs {expected.__name__}, "
                f"got {type(self.parameters).__name__}"
            )

        if self.result_id is None:
            object.__setattr__(
                self, "result_id", f"result_{self.type}_{'_'.join(self.target_ids)}"
            )
        check_identifier(self.result_id, "result id")

    @property
    def primary(self) -> str:
        return self.target_ids[0]

    @property
    def secondary(self) -> tuple[str, ...]:
        return self.target_ids[1:]

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type,
            "targetIds": list(self.target_ids),
            "resultId": self.result_id,
        }
        params = self.parameters.to_dict()
        if params:
            d["parameters"] = params
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Operation:
        otype = data["type"]
        _check_choice(otype, OPERATION_TYPES, "operation type")
        raw = data.get("parameters")
        params = (
            _build_record(OPERATION_PARAMS_BY_TYPE[otype], dict(raw), otype)
            if raw else None
        )
        return cls(
            type=otype,
            target_ids=tuple(data.get("targetIds", data.get("target_ids", ()))),
            parameters=params,
            result_id=data.get("resultId", data.get("result_id")),
        )


# ============================================================
# Structured design
# ============================================================


@dataclass(frozen=True)
class DesignMetadata:
    name: str
    description: str
    author: str
    created_at: str
    units: str = "mm"

    def __post_init__(self) -> None:
        _check_choice(self.units, UNIT_SYSTEMS, "unit system")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "author": self.author,
            "createdAt": self.created_at,
            "units": self.units,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DesignMetadata:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            author=data.get("author", ""),
            created_at=data.get("createdAt", data.get("created_at", "")),
            units=data.get("units", "mm"),
        )


@dataclass(frozen=True)
class StructuredDesign:
    """Complete, unambiguous design produced by the interpreter."""

    primitives: tuple[PrimitiveShape, ...]
    operations: tuple[Operation, ...]
    metadata: DesignMetadata

    def __post_init__(self) -> None:
        object.__setattr__(self, "primitives", tuple(self.primitives))
        object.__setattr__(self, "operations", tuple(self.operations))
        seen: set[str] = set()
        for p in self.primitives:
            if p.id in seen:
                raise GenerationError(f"Duplicate primitive id {p.id!r}")
            seen.add(p.id)
        for o in self.operations:
            if o.result_id in seen:
                raise GenerationError(f"Result id {o.result_id!r} of {o.type} is already in use")
            seen.add(o.result_id)

    def primitive_ids(self) -> list[str]:
        return [p.id for p in self.primitives]

    def to_dict(self) -> dict[str, Any]:
        return {
            "primitives": [p.to_dict() for p in self.primitives],
            "operations": [o.to_dict() for o in self.operations],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StructuredDesign:
        return cls(
            primitives=tuple(PrimitiveShape.from_dict(p) for p in data.get("primitives", ())),
            operations=tuple(Operation.from_dict(o) for o in data.get("operations", ())),
            metadata=DesignMetadata.from_dict(data["metadata"]),
        )

    def __repr__(self) -> str:
        return (
            f'StructuredDesign("{self.metadata.name}", {len(self.primitives)} primitives, '
            f"{len(self.operations)} operations)"
        )


# ============================================================
# Script, result, feedback
# ============================================================


@dataclass(frozen=True)
class Script:
    """Generated FreeCAD script.

    safe_to_execute is advisory and always True at generation time; the
    authoritative decision is script_safety.is_safe().
    """

    code: str
    imports: tuple[str, ...]
    safe_to_execute: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "imports": list(self.imports),
            "safeToExecute": self.safe_to_execute,
        }


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    object_ids: tuple[str, ...] = ()
    render_ref: str | None = None
    error_message: str | None = None
    warnings: tuple[str, ...] = ()
    error_kind: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "object_ids", tuple(self.object_ids))
        object.__setattr__(self, "warnings", tuple(self.warnings))
        if self.error_kind is not None:
            _check_choice(self.error_kind, ERROR_KINDS, "error kind")

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "success": self.success,
            "objectIds": list(self.object_ids),
            "renderUrl": self.render_ref,
            "errorMessage": self.error_message,
            "warnings": list(self.warnings),
            "errorKind": self.error_kind,
        })


@dataclass(frozen=True)
class SuggestedAction:
    type: str
    description: str
    parameters: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        _check_choice(self.type, ACTION_TYPES, "suggested action type")

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "type": self.type,
            "description": self.description,
            "parameters": dict(self.parameters) if self.parameters else None,
        })


@dataclass(frozen=True)
class UserFeedback:
    """Terminal artifact of the pipeline."""

    status: str
    message: str
    details: str | None = None
    suggested_actions: tuple[SuggestedAction, ...] = ()

    def __post_init__(self) -> None:
        _check_choice(self.status, FEEDBACK_STATUSES, "feedback status")
        object.__setattr__(self, "suggested_actions", tuple(self.suggested_actions))

    @property
    def action_types(self) -> list[str]:
        return [a.type for a in self.suggested_actions]

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "status": self.status,
            "message": self.message,
            "details": self.details,
            "suggestedActions": [a.to_dict() for a in self.suggested_actions],
        })
