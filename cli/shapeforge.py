#!/usr/bin/env python3
"""
ShapeForge CLI: Natural language → FreeCAD model.

Usage:
    python shapeforge.py "Create a cube with 10mm sides"
    python shapeforge.py --design-file design.json
    echo "A sphere 20mm wide" | python shapeforge.py -

Options:
    --script-only        Print the generated FreeCAD script, don't dispatch it
    --save-script        Also write the script to output/<name>.py
    --simulate           Use the in-process simulated engine instead of FreeCAD
    --host HOST          Modeling engine host (default from configs/engine.yaml)
    --port PORT          Modeling engine port (default from configs/engine.yaml)
    --timeout SECONDS    Execution deadline (default from configs/engine.yaml)
    --config PATH        Alternate engine config file
    --json               Print the full pipeline result as JSON
    --verbose / -v       Show script, warnings, and stage timing
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path

# Ensure src/ is importable
_SCRIPT_DIR = Path(__file__).resolve().parent
_SRC_DIR = _SCRIPT_DIR.parent / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

STAGE_ORDER = {
    "interpreting": 1,
    "compiling": 2,
    "validating": 3,
    "dispatching": 4,
    "synthesizing": 5,
}


def _print_stage(stage_result):
    """Print a stage update to the terminal."""
    idx = STAGE_ORDER.get(stage_result.stage, 0)

    if stage_result.status == "running":
        print(f"  [{idx}/5] {stage_result.stage.capitalize()}...", end=" ", flush=True)
    elif stage_result.status == "success":
        duration = ""
        if stage_result.duration_ms:
            duration = f" ({stage_result.duration_ms}ms)"
        print(f"done{duration}", flush=True)
    elif stage_result.status == "stopped":
        print("stopped", flush=True)
    elif stage_result.status == "failed":
        print("FAILED", flush=True)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shapeforge",
        description="ShapeForge: Natural language → FreeCAD model",
        epilog="Start the FreeCAD command server before dispatching, or pass --simulate.",
    )
    parser.add_argument(
        "prompt",
        nargs="?",
        default=None,
        help='Natural language description, or "-" to read from stdin',
    )
    parser.add_argument(
        "--design-file",
        type=str,
        default=None,
        help="Skip interpretation, run this StructuredDesign JSON file directly",
    )
    parser.add_argument(
        "--script-only",
        action="store_true",
        help="Print the generated script only, don't dispatch it",
    )
    parser.add_argument(
        "--save-script",
        action="store_true",
        help="Write the generated script to the output directory",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Output directory for --save-script (default: ./output)",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Use the simulated engine (no FreeCAD needed)",
    )
    parser.add_argument("--host", type=str, default=None, help="Modeling engine host")
    parser.add_argument("--port", type=int, default=None, help="Modeling engine port")
    parser.add_argument("--timeout", type=float, default=None, help="Execution deadline in seconds")
    parser.add_argument("--config", type=str, default=None, help="Engine config YAML")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the pipeline result as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show script text, warnings, and timing",
    )
    return parser


def _read_prompt(args, parser) -> str:
    if args.prompt is None:
        parser.print_help()
        sys.exit(1)
    if args.prompt == "-":
        prompt = sys.stdin.read().strip()
        if not prompt:
            print("Error: no input on stdin", file=sys.stderr)
            sys.exit(1)
        return prompt
    return args.prompt


def _build_orchestrator(args):
    from engine_config import build_broker, load_engine_config
    from intent_interpreter import IntentInterpreter
    from orchestrator import Orchestrator

    try:
        config = load_engine_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    overrides = {}
    if args.simulate:
        overrides["backend"] = "simulated"
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.timeout:
        overrides["timeout_s"] = args.timeout
    try:
        config = replace(config, **overrides) if overrides else config
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    return Orchestrator(
        interpreter=IntentInterpreter(author=config.author),
        broker=build_broker(config),
    )


def _load_design(path_str: str):
    from design_schema import GenerationError, StructuredDesign

    path = Path(path_str)
    if not path.exists():
        print(f"Error: design file not found: {path_str}", file=sys.stderr)
        sys.exit(1)
    try:
        return StructuredDesign.from_dict(json.loads(path.read_text()))
    except (json.JSONDecodeError, KeyError, TypeError, GenerationError) as e:
        print(f"Error: invalid design file {path_str}: {e}", file=sys.stderr)
        sys.exit(1)


def _save_script(result, output_dir: str | None) -> Path | None:
    from design_compiler import sanitize_name
    from paths import OUTPUT_DIR

    if result.script is None or result.structured_design is None:
        return None
    out = Path(output_dir) if output_dir else OUTPUT_DIR
    out.mkdir(parents=True, exist_ok=True)
    path = out / f"{sanitize_name(result.structured_design.metadata.name)}.py"
    path.write_text(result.script.code + "\n")
    return path


def _script_only(args, parser) -> None:
    from design_compiler import compile_design
    from design_schema import DesignIntent, GenerationError, UserFeedback
    from intent_interpreter import IntentInterpreter
    from script_safety import find_unsafe_patterns

    if args.design_file:
        design = _load_design(args.design_file)
    else:
        interpreter = IntentInterpreter()
        intent = DesignIntent(prompt=_read_prompt(args, parser), context_id="cli")
        feedback = interpreter.clarify(intent)
        design = feedback or interpreter.interpret(intent)
        if isinstance(design, UserFeedback):
            print(f"{design.message}", file=sys.stderr)
            for action in design.suggested_actions:
                print(f"  - {action.description}", file=sys.stderr)
            sys.exit(2)

    try:
        script = compile_design(design)
    except GenerationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(script.code)
    unsafe = find_unsafe_patterns(script)
    if unsafe:
        print(f"\nWarning: script fails the safety gate ({', '.join(unsafe)})", file=sys.stderr)
        sys.exit(1)


def main():
    parser = _build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.script_only:
        _script_only(args, parser)
        return

    from design_schema import DesignIntent

    orch = _build_orchestrator(args)
    on_stage = None if args.json else _print_stage

    if not args.json:
        print(f"\nShapeForge: Building model ({orch.broker.engine.engine_name})...\n", flush=True)
    t0 = time.monotonic()

    if args.design_file:
        result = orch.process_design(_load_design(args.design_file), on_stage_update=on_stage)
    else:
        intent = DesignIntent(prompt=_read_prompt(args, parser), context_id="cli")
        result = orch.process(intent, on_stage_update=on_stage)

    elapsed = time.monotonic() - t0

    if args.save_script:
        saved = _save_script(result, args.output_dir)
        if saved and not args.json:
            print(f"\n  Script saved: {saved}")

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.success else 1)

    feedback = result.feedback
    print()
    mark = "✓" if result.success else "✗"
    stream = sys.stdout if result.success else sys.stderr
    print(f"  {mark} {feedback.message}", file=stream)
    if feedback.details:
        print(f"    {feedback.details}", file=stream)
    for action in feedback.suggested_actions:
        print(f"    [{action.type}] {action.description}", file=stream)
    if result.execution_result and result.execution_result.render_ref:
        print(f"  ✓ Render: {result.execution_result.render_ref}")
    print(f"  Total time: {elapsed:.1f}s")

    if args.verbose:
        print()
        if result.script:
            print("  --- Generated script ---")
            for line in result.script.code.split("\n"):
                print(f"  {line}")
            print("  --- End script ---")
        if result.execution_result and result.execution_result.warnings:
            print(f"\n  Warnings ({len(result.execution_result.warnings)}):")
            for w in result.execution_result.warnings:
                print(f"    - {w}")
        print("\n  Stages:")
        for s in result.stages:
            duration = f" ({s.duration_ms}ms)" if s.duration_ms else ""
            print(f"    {s.stage:12s} {s.status:8s}{duration}  {s.message}")

    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
