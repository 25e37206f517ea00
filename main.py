"""Branchwork — dev launcher. Starts the play API in watch mode, or validates documents."""

import argparse
import asyncio
import json
import logging
import os
import signal
import subprocess
import sys
from pathlib import Path

from branchwork.config import build_validator, load_settings
from branchwork.models import Adventure

ROOT = Path(__file__).parent


async def validate_files(paths: list[Path], full: bool) -> int:
    """Validate documents and print a report per file. Returns the exit code."""
    settings = load_settings(ROOT / ".env")
    validator = build_validator(settings)
    failed = 0
    for path in paths:
        adventure = Adventure.model_validate(json.loads(path.read_text()))
        report = await validator.validate(adventure, scope="full" if full else "runtime")
        print(f"{path}: {report.severity} "
              f"({len(report.errors)} errors, {len(report.warnings)} warnings)")
        for issue in report.errors:
            print(f"  error    {issue.code}: {issue.message}")
        for issue in report.warnings:
            print(f"  warning  {issue.code}: {issue.message}")
        if not report.is_valid:
            failed += 1
    return 1 if failed else 0


def main():
    parser = argparse.ArgumentParser(description="Branchwork dev launcher")
    parser.add_argument("--adventures-dir", type=Path, default=None,
                        help="Adventure document directory (default: ./adventures)")
    parser.add_argument("--validate", type=Path, nargs="+", metavar="FILE",
                        help="Validate adventure documents and exit")
    parser.add_argument("--full", action="store_true",
                        help="With --validate: also report authoring problems")
    args = parser.parse_args()

    settings = load_settings(ROOT / ".env")
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.validate:
        sys.exit(asyncio.run(validate_files(args.validate, args.full)))

    # Build env for the server process so it picks up the same library dir
    env = os.environ.copy()
    if args.adventures_dir:
        env["BRANCHWORK_ADVENTURES_DIR"] = str(args.adventures_dir.resolve())

    procs: list[subprocess.Popen] = []

    def shutdown(*_):
        print("\nShutting down...")
        for p in procs:
            p.terminate()
        for p in procs:
            p.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting play API on http://localhost:{settings.port} ...")
    procs.append(subprocess.Popen(
        ["uv", "run", "uvicorn", "branchwork.app:app", "--reload",
         "--host", settings.host, "--port", str(settings.port)],
        cwd=ROOT, env=env,
    ))

    for p in procs:
        p.wait()


if __name__ == "__main__":
    main()
