"""Local demo harness for CLI backend integration tests.

Prints the conventional phase, file-change and usage lines a real harness would
emit, and can be told to fail, hang, or ignore SIGTERM.
"""

from __future__ import annotations

import argparse
import signal
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run deterministic demo output for one prompt."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--stderr", default="")
    parser.add_argument("--sleep-seconds", type=float, default=0.0)
    parser.add_argument("--ignore-sigterm", action="store_true")
    parser.add_argument("--write-file", default=None)
    parser.add_argument("--tokens", nargs=2, type=int, default=None)
    parser.add_argument(
        "--fail-times",
        type=int,
        default=0,
        help="Fail this many runs before succeeding; counted in --state-file.",
    )
    parser.add_argument("--state-file", default=None)
    parser.add_argument("prompt", nargs="?", default="")
    args = parser.parse_args(argv)

    if args.version:
        print("echo-agent 1.0")
        return 0

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    print("Reading task description", flush=True)
    print("Planning implementation", flush=True)
    if args.write_file:
        Path(args.write_file).write_text(args.prompt, "utf-8")
        print(f"Created '{args.write_file}'", flush=True)
    if args.sleep_seconds > 0:
        time.sleep(args.sleep_seconds)
    print("Testing changes", flush=True)
    if args.tokens is not None:
        print(f"Usage: {args.tokens[0]} input tokens, {args.tokens[1]} output tokens", flush=True)

    if args.fail_times > 0 and args.state_file:
        state = Path(args.state_file)
        runs = int(state.read_text("utf-8")) if state.exists() else 0
        state.write_text(str(runs + 1), "utf-8")
        if runs < args.fail_times:
            print(f"run {runs + 1} failed", file=sys.stderr)
            return 1

    if args.stderr:
        print(args.stderr, file=sys.stderr)
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
