#!/usr/bin/env python3
"""Knowledge universe CLI - lay out, inspect and check graph artifacts on disk."""

import argparse
import asyncio
import json
import sys

from .analysis import summarize_graph
from .config import ForceConfig, parse_overrides
from .layout import LayoutEngine
from .loader import load_graph_directory
from .logging_config import setup_logging
from .subtree import select_subtree
from .validation import validate_graph, validation_summary
from .views import filter_layout, graph_bounds


def _json_out(data, code=0):
    print(json.dumps(data))
    sys.exit(code)


def _error(message):
    _json_out({"status": "error", "error": message}, code=1)


def _load(directory):
    try:
        return load_graph_directory(directory)
    except (FileNotFoundError, ValueError) as e:
        _error(str(e))


def _parse_list_arg(value):
    """Parse a comma-separated or JSON list argument, or return None."""
    if value is None:
        return None
    try:
        parsed = json.loads(value)
        return [str(v) for v in parsed] if isinstance(parsed, list) else [str(parsed)]
    except (json.JSONDecodeError, TypeError):
        return [v.strip() for v in value.split(",") if v.strip()]


# ── Layout ───────────────────────────────────────────────────────────────────

def cmd_layout(args):
    graph = _load(args.directory)
    try:
        config = ForceConfig().merged(parse_overrides(args.set or []))
    except ValueError as e:
        _error(str(e))

    engine = LayoutEngine(config=config, seed=args.seed, max_ticks=args.max_ticks)
    try:
        layout = asyncio.run(engine.run(graph))
    finally:
        engine.dispose()

    layout = filter_layout(
        layout,
        entity_types=_parse_list_arg(args.entity_types),
        level=args.level,
        min_weight=args.min_weight,
    )
    result = layout.to_json_dict()
    result["bounds"] = graph_bounds(layout.nodes).to_dict()
    result["config"] = config.model_dump()

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump(result, f, indent=2)
        _json_out({
            "status": "ok",
            "output": args.output,
            "nodes": len(layout.nodes),
            "links": len(layout.links),
        })
    _json_out(result)


# ── Hierarchy ────────────────────────────────────────────────────────────────

def cmd_subtree(args):
    graph = _load(args.directory)
    selected = graph.get_community(args.community)
    if selected is None:
        _error(f"Community not found: {args.community}")
    communities = select_subtree(selected, graph.communities)
    _json_out({
        "selected": selected.human_readable_id,
        "communities": [
            {"id": c.human_readable_id, "level": c.level, "title": c.title, "parent": c.parent}
            for c in communities
        ],
    })


# ── Analysis ─────────────────────────────────────────────────────────────────

def cmd_validate(args):
    graph = _load(args.directory)
    issues = validate_graph(graph)
    _json_out({
        "issues": [i.to_dict() for i in issues],
        "summary": validation_summary(issues),
    })


def cmd_summary(args):
    graph = _load(args.directory)
    _json_out(summarize_graph(graph, top_n=args.top).to_dict())


def main(argv=None):
    parser = argparse.ArgumentParser(prog="kg-universe", description=__doc__)
    parser.add_argument("--log-level", default="WARNING", type=str.upper,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("layout")
    p.add_argument("directory")
    p.add_argument("--set", action="append", metavar="NAME=VALUE",
                   help="Override a force parameter, e.g. --set spread_3d=200")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--max-ticks", type=int, default=500)
    p.add_argument("--entity-types", default=None)
    p.add_argument("--level", type=int, default=None)
    p.add_argument("--min-weight", type=float, default=0)
    p.add_argument("--output", "-o", default=None)

    p = sub.add_parser("subtree")
    p.add_argument("directory")
    p.add_argument("community", help="Human-readable community id")

    p = sub.add_parser("validate")
    p.add_argument("directory")

    p = sub.add_parser("summary")
    p.add_argument("directory")
    p.add_argument("--top", type=int, default=5)

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    cmd_map = {
        "layout": cmd_layout,
        "subtree": cmd_subtree,
        "validate": cmd_validate,
        "summary": cmd_summary,
    }
    cmd_map[args.command](args)


if __name__ == "__main__":
    main()
