"""
ShapeForge Intent Interpreter: natural-language prompt → StructuredDesign.

Deterministic pattern matching, not language understanding:
  - the first number in the prompt (optionally followed by a unit) is the size
  - the first matching keyword group decides the primitive
  - anything else needs clarification

Known gap: cone and torus count as shape keywords for the clarification
pre-check but no detection rule produces them, so those prompts end in a
clarification request.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Union

from design_schema import (
    UNIT_SYSTEMS,
    CubeParams,
    CylinderParams,
    DesignIntent,
    DesignMetadata,
    PrimitiveShape,
    SphereParams,
    StructuredDesign,
    UserFeedback,
)
from feedback_synthesizer import (
    clarification_feedback,
    interpretation_error_feedback,
    unknown_shape_feedback,
)
from id_generator import IdGenerator, RandomIdGenerator

log = logging.getLogger(__name__)

DEFAULT_SIZE = 10
DEFAULT_UNIT = "mm"
DEFAULT_AUTHOR = "ShapeForge User"
MIN_PROMPT_LENGTH = 5

SHAPE_QUESTION = "What shape would you like to create?"
DIMENSION_QUESTION = "What dimensions should the shape have?"

# Longest alternatives first so "mm" wins over "m" and "inch" over "in".
_DIMENSION_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(mm|cm|m|inch|in)?")
_DIGIT_RE = re.compile(r"\d")

_UNIT_ALIASES = {"inch": "in"}

# Every keyword the pre-check accepts as "a shape was named".
SHAPE_KEYWORDS = ("cube", "box", "sphere", "cylinder", "cone", "torus")

# Ordered detection groups: first hit wins.
_SHAPE_GROUPS: list[tuple[str, tuple[str, ...]]] = [
    ("cube", ("cube", "box")),
    ("sphere", ("sphere",)),
    ("cylinder", ("cylinder",)),
]


# ── Pre-check ─────────────────────────────────────────────────────


def _has_shape_keyword(prompt_lower: str) -> bool:
    return any(kw in prompt_lower for kw in SHAPE_KEYWORDS)


def _has_digit(prompt_lower: str) -> bool:
    return _DIGIT_RE.search(prompt_lower) is not None


def needs_clarification(intent: DesignIntent) -> bool:
    """True when the prompt is too short, names no shape, or has no number."""
    prompt = intent.prompt.lower()
    if len(prompt) < MIN_PROMPT_LENGTH:
        return True
    if not _has_shape_keyword(prompt):
        return True
    return not _has_digit(prompt)


def generate_clarification_questions(intent: DesignIntent) -> list[str]:
    """One question per missing piece; shape and dimensions are checked independently."""
    prompt = intent.prompt.lower()
    questions: list[str] = []
    if not _has_shape_keyword(prompt):
        questions.append(SHAPE_QUESTION)
    if not _has_digit(prompt):
        questions.append(DIMENSION_QUESTION)
    return questions


# ── Extraction ────────────────────────────────────────────────────


def extract_dimension(prompt_lower: str) -> tuple[Union[int, float], str]:
    """Return (size, unit) for the first number in the prompt, or the defaults."""
    match = _DIMENSION_RE.search(prompt_lower)
    if match is None:
        return DEFAULT_SIZE, DEFAULT_UNIT
    raw = match.group(1)
    size: Union[int, float] = float(raw) if "." in raw else int(raw)
    unit = match.group(2) or DEFAULT_UNIT
    return size, _UNIT_ALIASES.get(unit, unit)


def detect_shape(prompt_lower: str) -> str | None:
    for shape, keywords in _SHAPE_GROUPS:
        if any(kw in prompt_lower for kw in keywords):
            return shape
    return None


def _half(size: Union[int, float]) -> Union[int, float]:
    half = size / 2
    return int(half) if half == int(half) else half


def build_primitive(shape: str, shape_id: str, size: Union[int, float], unit: str) -> PrimitiveShape:
    if shape == "cube":
        params = CubeParams(length=size, width=size, height=size, unit=unit)
    elif shape == "sphere":
        params = SphereParams(radius=_half(size), unit=unit)
    elif shape == "cylinder":
        params = CylinderParams(radius=_half(size), height=size, unit=unit)
    else:
        raise ValueError(f"No detection rule for shape {shape!r}")
    return PrimitiveShape(id=shape_id, type=shape, parameters=params)


# ── Interpreter ───────────────────────────────────────────────────


class IntentInterpreter:
    """Turns a DesignIntent into a StructuredDesign or a feedback object.

    id_generator and clock are injectable so tests can pin ids and
    timestamps; by default ids are random-but-unique and time is UTC now.
    """

    def __init__(
        self,
        id_generator: IdGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
        author: str = DEFAULT_AUTHOR,
    ):
        self._ids = id_generator or RandomIdGenerator()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._author = author

    def interpret(self, intent: DesignIntent) -> Union[StructuredDesign, UserFeedback]:
        try:
            prompt = intent.prompt.lower()
            size, unit = extract_dimension(prompt)

            shape = detect_shape(prompt)
            if shape is None:
                log.debug("No detectable shape in prompt %r", intent.prompt)
                return unknown_shape_feedback()

            primitive = build_primitive(shape, self._ids.next_id(), size, unit)
            metadata = DesignMetadata(
                name=f'Design from "{intent.prompt}"',
                description=intent.prompt,
                author=self._author,
                created_at=self._clock().isoformat(),
                units=unit if unit in UNIT_SYSTEMS else DEFAULT_UNIT,
            )
            return StructuredDesign(primitives=(primitive,), operations=(), metadata=metadata)
        except Exception as e:
            log.exception("Error interpreting design intent")
            return interpretation_error_feedback(e)

    def clarify(self, intent: DesignIntent) -> UserFeedback | None:
        """Clarification feedback for the intent, or None when it is specific enough."""
        if not needs_clarification(intent):
            return None
        return clarification_feedback(generate_clarification_questions(intent))


def interpret_intent(intent: DesignIntent) -> Union[StructuredDesign, UserFeedback]:
    """Convenience wrapper using a default IntentInterpreter."""
    return IntentInterpreter().interpret(intent)
