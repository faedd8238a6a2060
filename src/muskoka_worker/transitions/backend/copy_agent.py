"""Local stand-in for the transition CLI, for smoke runs and integration tests.

Copies ``--pre`` to ``--post`` (an identity transition) and reports the block
list on stdout. Flags let tests script the exit code, a missing post-state, a
slow run and stderr output.
"""

from __future__ import annotations

import argparse
import shutil
import sys
import time
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run the identity transition."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--pre", required=True)
    parser.add_argument("--post", required=True)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--skip-post", action="store_true")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--stderr", default="")
    parser.add_argument("blocks", nargs="*")
    args = parser.parse_args(argv)

    if args.sleep > 0:
        time.sleep(args.sleep)

    for block in args.blocks:
        if not Path(block).is_file():
            sys.stderr.write(f"missing block input: {block}\n")
            return 2

    if not args.skip_post:
        shutil.copyfile(args.pre, args.post)

    sys.stdout.write(f"applied {len(args.blocks)} blocks\n")
    for block in args.blocks:
        sys.stdout.write(f"block {Path(block).name}\n")
    if args.stderr:
        sys.stderr.write(args.stderr + "\n")
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
