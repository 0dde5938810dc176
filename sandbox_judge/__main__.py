"""Run the engine from the command line and print the result as JSON."""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from sandbox_judge.config import get_settings
from sandbox_judge.core.exceptions import JudgeException
from sandbox_judge.core.log_config import configure_logging
from sandbox_judge.services.judge_engine import JudgeEngine


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sandbox-judge", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run a source file once with optional stdin")
    run.add_argument("source", type=Path)
    run.add_argument("-l", "--language", required=True)
    stdin = run.add_mutually_exclusive_group()
    stdin.add_argument("--stdin", default=None, help="Literal stdin payload")
    stdin.add_argument("--stdin-file", type=Path, default=None)
    run.add_argument("--expected", default=None, help="Expected output to compare against")
    run.add_argument("--timeout-ms", type=int, default=None)

    judge = sub.add_parser("judge", help="Judge a source file against a JSON list of test cases")
    judge.add_argument("source", type=Path)
    judge.add_argument("-l", "--language", required=True)
    judge.add_argument("--tests", type=Path, required=True)
    judge.add_argument("--timeout-ms", type=int, default=None)
    judge.add_argument("--compare-mode", choices=["strict", "relaxed"], default=None)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings)
    engine = JudgeEngine(settings)

    try:
        code = args.source.read_text(encoding="utf-8")
        if args.command == "run":
            stdin = args.stdin
            if args.stdin_file is not None:
                stdin = args.stdin_file.read_text(encoding="utf-8")
            result = engine.run_once(code, args.language, stdin or "", args.expected, args.timeout_ms)
            print(result.model_dump_json(indent=2))
            return 0 if result.exit_code == 0 else 1

        test_cases = json.loads(args.tests.read_text(encoding="utf-8"))
        options = {"timeout_ms": args.timeout_ms, "compare_mode": args.compare_mode}
        verdict = engine.execute(code, args.language, test_cases, options)
        print(verdict.model_dump_json(indent=2))
        return 0 if verdict.passed else 1
    except JudgeException as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 2
    except (OSError, ValueError) as e:
        print(json.dumps({"success": False, "error": str(e)}), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
