#!/usr/bin/env python3
"""
Equation solving benchmark.

Builds a chain of coefficient equations that share coefficients pairwise,
completes every coefficient with its most general tensor and times how long
the worker pool needs to solve the whole system. Useful to compare worker
counts and index ranges.
"""

from __future__ import annotations

import argparse
import math
import sys
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from peach import Session, SolverConfig


@dataclass
class BenchmarkResult:
    workers: Optional[int]
    dimension: int
    equations: int
    min_s: float
    mean_s: float
    iterations: int
    equations_per_s: Optional[float]


def build_equations(count: int) -> List[str]:
    """Symmetric coefficients ``S<k>`` tied to their neighbours by ``T<k>``."""
    equations = []
    for k in range(count):
        equations.append(f"#<S{k}:1:0:1:0:{{a b}}> - #<S{k}:1:0:1:0:{{b a}}>")
        equations.append(
            f"Subtract(#<T{k}:2:0:0:0:{{a b}}>, Add(#<S{k}:1:0:1:0:{{a b}}>, "
            f"#<S{k + 1}:1:0:1:0:{{b a}}>))"
        )
    return equations


def solve_once(equations: List[str], *, dimension: int, workers: Optional[int]) -> float:
    start = time.perf_counter()
    with Session(SolverConfig(dimension=dimension, max_workers=workers)) as session:
        for code in equations:
            session.equation(code)
        for coefficient in session.registry:
            session.complete_general(coefficient)
        if not session.wait_all(timeout=600):
            raise RuntimeError("timed out waiting for the equations")
    return time.perf_counter() - start


def run(
    equations: List[str],
    *,
    dimension: int,
    workers: Optional[int],
    iterations: int,
    warmup: int,
) -> BenchmarkResult:
    timings = []
    for step in range(iterations + warmup):
        elapsed = solve_once(equations, dimension=dimension, workers=workers)
        if step >= warmup:
            timings.append(elapsed)
    min_s = min(timings)
    mean_s = sum(timings) / len(timings)
    return BenchmarkResult(
        workers=workers,
        dimension=dimension,
        equations=len(equations),
        min_s=min_s,
        mean_s=mean_s,
        iterations=iterations,
        equations_per_s=len(equations) / min_s if min_s > 0 else None,
    )


def format_results(results: Iterable[BenchmarkResult]) -> str:
    header = f"{'workers':<8} {'dim':>4} {'eqs':>6} {'min (ms)':>12} {'mean (ms)':>12} {'iters':>8} {'eqs/s':>10}"
    rows = [header]
    for result in results:
        workers = "default" if result.workers is None else str(result.workers)
        rate = result.equations_per_s or math.nan
        rows.append(
            f"{workers:<8} {result.dimension:4d} {result.equations:6d} {result.min_s * 1e3:12.3f} "
            f"{result.mean_s * 1e3:12.3f} {result.iterations:8d} {rate:10.2f}"
        )
    return "\n".join(rows)


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Benchmark peach equation solving.")
    parser.add_argument(
        "--chain", type=int, default=8, help="Number of linked coefficient pairs (default: 8)."
    )
    parser.add_argument(
        "--dimension", type=int, default=3, help="Range of every index (default: 3)."
    )
    parser.add_argument(
        "--workers",
        type=int,
        nargs="*",
        default=[1, 4],
        help="Worker counts to compare (default: 1 4).",
    )
    parser.add_argument(
        "--iterations", type=int, default=5, help="Timed iterations per setting (default: 5)."
    )
    parser.add_argument(
        "--warmup", type=int, default=1, help="Warmup iterations to discard (default: 1)."
    )
    return parser.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    equations = build_equations(args.chain)
    results = []
    for workers in args.workers or [None]:
        try:
            results.append(
                run(
                    equations,
                    dimension=args.dimension,
                    workers=workers,
                    iterations=args.iterations,
                    warmup=args.warmup,
                )
            )
        except RuntimeError as exc:
            print(f"[skip] workers={workers}: {exc}", file=sys.stderr)

    if not results:
        print("No configuration finished.", file=sys.stderr)
        return 1

    print(format_results(results))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
