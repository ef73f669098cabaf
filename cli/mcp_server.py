#!/usr/bin/env python3
"""
ShapeForge MCP Server: structured tool access to the design pipeline.

Exposes prompt → model, design → script and script safety checks as MCP
tools, so an assistant can drive FreeCAD modeling through structured calls.

Install:
    pip install mcp

Run standalone (for testing):
    python cli/mcp_server.py

Configure in an MCP client (project .mcp.json):
    {
      "mcpServers": {
        "shapeforge": {
          "command": "python",
          "args": ["cli/mcp_server.py"],
          "env": {"SHAPEFORGE_ENGINE_BACKEND": "socket"}
        }
      }
    }
"""

from __future__ import annotations

import json
import sys
from dataclasses import replace
from pathlib import Path

# Ensure src/ is importable
_SRC_DIR = Path(__file__).resolve().parent.parent / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from mcp.server.fastmcp import FastMCP  # noqa: E402

from design_compiler import compile_design, count_statements  # noqa: E402
from design_schema import DesignIntent, GenerationError, StructuredDesign  # noqa: E402
from engine_config import build_broker, load_engine_config  # noqa: E402
from intent_interpreter import IntentInterpreter  # noqa: E402
from orchestrator import Orchestrator, setup_failure_result  # noqa: E402
from script_safety import find_unsafe_patterns  # noqa: E402

_MCP_INSTRUCTIONS = (
    "ShapeForge turns natural-language part descriptions into FreeCAD models. "
    "Use shape_design for the full pipeline, shape_compile to preview the script "
    "for a structured design, and shape_check_script to run the safety gate."
)

mcp = FastMCP("ShapeForge", instructions=_MCP_INSTRUCTIONS)


def _orchestrator(simulate: bool) -> Orchestrator:
    config = load_engine_config()
    if simulate:
        config = replace(config, backend="simulated")
    return Orchestrator(
        interpreter=IntentInterpreter(author=config.author),
        broker=build_broker(config),
    )


# ── Pipeline Tools ───────────────────────────────────────────────────

@mcp.tool()
def shape_design(prompt: str, context_id: str = "", simulate: bool = False) -> str:
    """Create a FreeCAD model from a natural-language description.

    Runs interpret → compile → safety gate → execute → feedback and returns
    the pipeline result as JSON: structuredDesign, script, executionResult
    (each only as far as the pipeline got) and feedback.

    Args:
        prompt: Design description (e.g. "Create a cube with 10mm sides")
        context_id: Caller-chosen conversation or session id
        simulate: Use the simulated engine instead of a running FreeCAD
    """
    intent = DesignIntent(prompt=prompt, context_id=context_id)
    try:
        orch = _orchestrator(simulate)
    except (FileNotFoundError, ValueError) as e:
        return json.dumps(setup_failure_result(e).to_dict(), indent=2)
    return json.dumps(orch.process(intent).to_dict(), indent=2)


@mcp.tool()
def shape_compile(design_json: str) -> str:
    """Compile a StructuredDesign (JSON) to a FreeCAD script without running it.

    Useful for designs with boolean, fillet or chamfer operations, which the
    prompt interpreter never produces.

    Args:
        design_json: {"primitives": [...], "operations": [...], "metadata": {...}}
    """
    try:
        design = StructuredDesign.from_dict(json.loads(design_json))
        script = compile_design(design)
    except (json.JSONDecodeError, GenerationError, KeyError, TypeError) as e:
        return json.dumps({"error": f"Invalid design: {e}"})

    unsafe = find_unsafe_patterns(script)
    return json.dumps(
        {
            "script": script.to_dict(),
            "counts": count_statements(script.code),
            "safe": not unsafe,
            "unsafePatterns": unsafe,
        },
        indent=2,
    )


@mcp.tool()
def shape_check_script(code: str) -> str:
    """Run the safety gate on arbitrary FreeCAD script text.

    Args:
        code: Python source to scan
    """
    unsafe = find_unsafe_patterns(code)
    return json.dumps({"safe": not unsafe, "unsafePatterns": unsafe})


if __name__ == "__main__":
    mcp.run()
