from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.exceptions import PeachError, SolveError
from .core.session import Session, SolverConfig
from .core.tensor import Tensor
from .log import configure_logging


def _load_equations(path: Path) -> List[str]:
    try:
        source = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise SystemExit(f"Equation file not found: {path}") from exc
    lines = []
    for line in source.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("//"):
            continue
        lines.append(line)
    return lines


def _tensor_payload(tensor: Optional[Tensor]) -> Dict[str, Any]:
    if tensor is None:
        return {"indices": [], "components": {}}
    return {
        "indices": list(tensor.indices),
        "components": {
            ",".join(str(i) for i in idx): str(value) for idx, value in tensor.items()
        },
    }


def _solve(path: Path, dimension: int, out: Optional[Path], timeout: Optional[float]) -> int:
    lines = _load_equations(path)
    config = SolverConfig(dimension=dimension, solve_timeout=timeout)
    status = 0
    with Session(config) as session:
        try:
            equations = [session.equation(line) for line in lines]
        except PeachError as exc:
            raise SystemExit(f"error: {exc}") from exc

        for coefficient in session.registry:
            session.complete_general(coefficient)

        for equation in equations:
            try:
                if not equation.wait(config.solve_timeout):
                    print(f"timeout: {equation!r}", file=sys.stderr)
                    status = 1
            except SolveError as exc:
                print(f"error: {exc}", file=sys.stderr)
                status = 1

        payload = {
            coefficient.name: _tensor_payload(coefficient.tensor)
            for coefficient in session.registry
        }

    if out is None:
        for name, data in payload.items():
            print(f"# {name}")
            for label, value in data["components"].items():
                print(f"[{label}] {value}")
    else:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return status


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Solve the perturbative covariant gravitational closure equations"
    )
    subparsers = parser.add_subparsers(dest="cmd")

    solve_parser = subparsers.add_parser("solve", help="Solve a file of coefficient equations")
    solve_parser.add_argument("equations", type=Path, help="File with one equation per line")
    solve_parser.add_argument(
        "--dimension",
        type=int,
        default=3,
        help="Range of every index (default: 3)",
    )
    solve_parser.add_argument(
        "--out",
        type=Path,
        default=None,
        help="Optional JSON output path. If omitted, prints the coefficients",
    )
    solve_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for each equation",
    )
    solve_parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: PEACH_LOG_LEVEL or WARNING)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "solve":
        if args.log_level:
            try:
                configure_logging(args.log_level)
            except ValueError as exc:
                parser.error(str(exc))
        status = _solve(args.equations, args.dimension, args.out, args.timeout)
        if status:
            raise SystemExit(status)
        return

    parser.print_help()


if __name__ == "__main__":  # pragma: no cover
    main(sys.argv[1:])
