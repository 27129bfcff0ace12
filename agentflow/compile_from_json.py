"""
compile_from_json.py — CLI for the agentflow workflow compiler
==============================================================
Compiles a saved workflow JSON document into a Python module for a
multi-agent framework.

Usage
-----
    agentflow-compile <workflow.json> [options]
    python -m agentflow.compile_from_json <workflow.json> [options]

Options
-------
    --module    <name>    Module name; also the output file stem
                          (default: the workflow name, sanitised)
    --target    <name>    Built-in profile (agentflow, adk) or a profile .json
                          file (default: agentflow)
    --out       <dir>     Output directory (default: current directory)
    --print               Print the generated source to stdout instead of writing a file
    --max-nodes <n>       Refuse workflows with more than n nodes
    -v, --verbose         Debug logging

Exit status is 0 when the module was generated (warnings allowed) and 1 on
a missing file, a malformed document, an unknown target or any error
diagnostic.

Examples
--------
    # Compile to ./support_bot.py:
    agentflow-compile workflows/support_bot.json

    # Google ADK output into a package directory:
    agentflow-compile workflows/support_bot.json --target adk --out agents/ --module agent

    # Print the generated source without writing a file:
    agentflow-compile workflows/support_bot.json --print
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from agentflow.compiler import compile_graph
from agentflow.compiler.deserialiser import json_to_graph
from agentflow.compiler.templates import PROFILES, load_profile, sanitize_identifier
from agentflow.errors import ProfileError, SchemaError

logger = logging.getLogger("agentflow.cli")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="agentflow-compile",
        description="Compile an agentflow workflow JSON document to Python.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    p.add_argument(
        "workflow_json",
        metavar="workflow.json",
        help="Path to the workflow JSON file to compile.",
    )
    p.add_argument(
        "--module",
        metavar="NAME",
        default=None,
        help="Module name; defaults to the workflow name.",
    )
    p.add_argument(
        "--target",
        metavar="NAME|PROFILE.json",
        default="agentflow",
        help=f"Target profile: {', '.join(sorted(PROFILES))} or a profile JSON file (default: agentflow).",
    )
    p.add_argument(
        "--out",
        metavar="DIR",
        default=".",
        help="Output directory for the compiled .py file (default: current directory).",
    )
    p.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print generated source to stdout instead of writing a file.",
    )
    p.add_argument(
        "--max-nodes",
        type=int,
        default=None,
        metavar="N",
        help="Refuse workflows with more than N nodes.",
    )
    p.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return p


def _module_filename(module_name: str) -> str:
    """Turn 'Support Bot' → 'support_bot.py'."""
    return f"{sanitize_identifier(module_name, 'workflow')}.py"


def main(argv=None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    json_path = Path(args.workflow_json)
    if not json_path.exists():
        print(f"[error] File not found: {json_path}", file=sys.stderr)
        return 1

    # ── Load + check the document ────────────────────────────────────────────
    try:
        graph, workflow_name = json_to_graph(json_path)
    except SchemaError as exc:
        print(f"[error] Schema validation failed: {exc}", file=sys.stderr)
        return 1

    try:
        profile = load_profile(args.target)
    except ProfileError as exc:
        print(f"[error] {exc}", file=sys.stderr)
        return 1

    module_name = args.module or sanitize_identifier(workflow_name, "workflow")
    logger.info("workflow : %s", workflow_name)
    logger.info("target   : %s", profile.name)
    logger.info("nodes    : %d", len(graph))
    logger.info("edges    : %d", len(graph.edges))

    # ── Compile ──────────────────────────────────────────────────────────────
    result = compile_graph(graph, module_name=module_name, profile=profile, max_nodes=args.max_nodes)

    for diagnostic in result.diagnostics:
        print(f"  {diagnostic}", file=sys.stderr)

    if not result.ok:
        print(
            f"[error] Compilation failed with {len(result.diagnostics)} diagnostic(s)",
            file=sys.stderr,
        )
        return 1

    # ── Output ───────────────────────────────────────────────────────────────
    if args.print_only:
        sys.stdout.write(result.source)
        return 0

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / _module_filename(module_name)
    out_path.write_text(result.source, encoding="utf-8")

    logger.info("wrote    : %s", out_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
