"""
ShapeForge Feedback Synthesizer: ExecutionResult → UserFeedback.

Also owns every other piece of user-facing wording the pipeline produces
(clarification requests, unsafe-script refusal, internal failures) so the
phrasing lives in one place.
"""

from __future__ import annotations

import json
import logging

from design_schema import ExecutionResult, SuggestedAction, UserFeedback

log = logging.getLogger(__name__)

# Known engine error fragments → user-facing wording. Replacements must not
# contain their own trigger, or formatting would stop being idempotent.
_ERROR_REWRITES: tuple[tuple[str, str], ...] = (
    (
        "TopoDS_Shape is null",
        "The design resulted in an invalid shape. Try simplifying your geometry.",
    ),
    (
        "out of bounds",
        "One or more parameters are out of the allowed range. Check your dimensions.",
    ),
)


def format_error_message(error_message: str | None) -> str:
    """Rewrite known engine errors for display; pass anything else through."""
    if error_message is None:
        return ""
    text = error_message if isinstance(error_message, str) else str(error_message)
    for fragment, friendly in _ERROR_REWRITES:
        if fragment in text:
            return friendly
    return text


# ── Execution feedback ────────────────────────────────────────────


def synthesize(result: ExecutionResult) -> UserFeedback:
    if result.success:
        if result.warnings:
            return UserFeedback(
                status="success",
                message="Model created successfully.",
                details=f"Model created with {len(result.warnings)} warning(s).",
                suggested_actions=(
                    SuggestedAction("accept", "Use this model"),
                    SuggestedAction(
                        "modify",
                        "Modify design to address warnings",
                        {"warnings": list(result.warnings)},
                    ),
                ),
            )
        return UserFeedback(
            status="success",
            message="Model created successfully.",
            details="The model was created without any warnings.",
            suggested_actions=(SuggestedAction("accept", "Use this model"),),
        )

    details = format_error_message(result.error_message) or "An unknown error occurred during execution."
    return UserFeedback(
        status="error",
        message="Failed to create model.",
        details=details,
        suggested_actions=(
            SuggestedAction("regenerate", "Try again with simplified geometry"),
            SuggestedAction("modify", "Modify design parameters"),
            SuggestedAction("clarify", "Provide more details about the design"),
        ),
    )


# ── Pipeline feedback ─────────────────────────────────────────────


def clarification_feedback(questions: list[str]) -> UserFeedback:
    return UserFeedback(
        status="clarification",
        message="Your design intent needs more details.",
        details="Please provide additional information to create your model.",
        suggested_actions=tuple(SuggestedAction("clarify", q) for q in questions),
    )


def unknown_shape_feedback() -> UserFeedback:
    return UserFeedback(
        status="clarification",
        message="Could not determine what shape to create.",
        details='Please specify a shape type such as "cube", "sphere", or "cylinder".',
        suggested_actions=(SuggestedAction("clarify", "Specify a primitive shape"),),
    )


def interpretation_error_feedback(error: BaseException) -> UserFeedback:
    return UserFeedback(
        status="error",
        message="Failed to parse design intent.",
        details=str(error) or type(error).__name__,
        suggested_actions=(SuggestedAction("regenerate", "Try again with a simpler description"),),
    )


def unsafe_script_feedback(patterns: list[str] | None = None) -> UserFeedback:
    details = "The system detected potentially dangerous operations in the generated code."
    if patterns:
        details += f" Matched: {', '.join(patterns)}."
    return UserFeedback(
        status="error",
        message="Generated code contains unsafe operations.",
        details=details,
        suggested_actions=(
            SuggestedAction("modify", "Modify your design intent to avoid unsafe operations."),
        ),
    )


def generation_error_feedback(error: BaseException) -> UserFeedback:
    return UserFeedback(
        status="error",
        message="The design could not be turned into a script.",
        details=str(error),
        suggested_actions=(SuggestedAction("regenerate", "Try again with a simpler design"),),
    )


def internal_error_feedback(error: BaseException) -> UserFeedback:
    return UserFeedback(
        status="error",
        message="An unexpected error occurred while processing your design.",
        details=str(error) or type(error).__name__,
        suggested_actions=(SuggestedAction("regenerate", "Try again with a simpler design"),),
    )


def log_user_feedback(feedback: UserFeedback) -> None:
    log.info("User feedback: %s", json.dumps(feedback.to_dict(), indent=2))
