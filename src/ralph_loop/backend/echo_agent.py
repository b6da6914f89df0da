"""Local deterministic stand-in for a coding agent, used by integration tests.

Reads the prompt from stdin, appends one JSON line per invocation to the
``--record`` file and prints the completion sentinel once it has been invoked
``--complete-after`` times.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path

from ralph_loop.completion import COMPLETION_SENTINEL


def main(argv: list[str] | None = None) -> int:
    """Run one stub agent turn."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--record", required=True)
    parser.add_argument("--complete-after", type=int, default=0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep-seconds", type=float, default=0.0)
    args, agent_args = parser.parse_known_args(argv)

    prompt = sys.stdin.read()
    record_path = Path(args.record)
    previous = record_path.read_text("utf-8").splitlines() if record_path.exists() else []
    call_number = len(previous) + 1
    entry = {
        "call": call_number,
        "agent_args": agent_args,
        "cwd": os.getcwd(),
        "prompt": prompt,
        "iteration": os.getenv("RALPH_ITERATION", ""),
    }
    with record_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(entry) + "\n")

    print(f"echo agent call {call_number}: {len(prompt)} prompt chars")
    print("working on the next story", file=sys.stderr)
    if args.sleep_seconds:
        time.sleep(args.sleep_seconds)
    if args.complete_after and call_number >= args.complete_after:
        print(COMPLETION_SENTINEL)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
