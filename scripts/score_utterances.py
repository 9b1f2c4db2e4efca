#!/usr/bin/env python3
"""Show how caller utterances would be routed.

One utterance per line, from a file or stdin. Blank lines and lines starting
with "#" are skipped.

Usage:
    python scripts/score_utterances.py utterances.txt        # table
    python scripts/score_utterances.py --json utterances.txt # JSON lines
    echo "I'd like to book for Friday" | python scripts/score_utterances.py
    python scripts/score_utterances.py --tools-only calls.txt
"""

import argparse
import json
import sys

from frontdesk.intent import TOOL_CALL_THRESHOLD, route_utterance


def score_lines(lines: list[str]) -> list[dict]:
    """Route every non-empty, non-comment line and return one dict per utterance."""
    results = []
    for line in lines:
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        decision = route_utterance(text)
        results.append({"text": text, **decision.to_dict()})
    return results


def format_table(results: list[dict]) -> str:
    """Render scored utterances as a fixed-width table with a summary line."""
    lines = [f"{'score':>5}  {'route':<5}  {'intent':<13} utterance", "-" * 60]
    for result in results:
        route = "TOOLS" if result["needs_tools"] else "chat"
        text = result["text"] if len(result["text"]) <= 60 else result["text"][:57] + "..."
        lines.append(f"{result['score']:>5}  {route:<5}  {result['intent']:<13} {text}")

    tool_count = sum(1 for r in results if r["needs_tools"])
    lines.append("")
    lines.append(
        f"{len(results)} utterances, {tool_count} routed to tools (threshold {TOOL_CALL_THRESHOLD})"
    )
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Score utterances for tool routing")
    parser.add_argument("file", nargs="?", default=None, help="Input file (default: stdin)")
    parser.add_argument("--json", action="store_true", help="Output one JSON object per line")
    parser.add_argument("--tools-only", action="store_true", help="Only show utterances routed to tools")
    args = parser.parse_args()

    if args.file:
        try:
            with open(args.file, encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            print(f"Error: cannot read {args.file}: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        lines = sys.stdin.readlines()

    results = score_lines(lines)
    if args.tools_only:
        results = [r for r in results if r["needs_tools"]]

    if args.json:
        for result in results:
            print(json.dumps(result))
    else:
        print(format_table(results))


if __name__ == "__main__":
    main()
