import random
import threading
import time

import pytest

from peach import EquationState, Session, SolverConfig

TRIALS = 1000


def _complete_later(session, coefficient, prefix, delay):
    def run():
        time.sleep(delay)
        session.complete_general(coefficient, prefix=prefix)

    thread = threading.Thread(target=run)
    thread.start()
    return thread


@pytest.mark.parametrize("seed", [7])
def test_two_equations_sharing_a_coefficient(seed):
    rng = random.Random(seed)
    for _ in range(TRIALS):
        with Session(SolverConfig(dimension=2, max_workers=2)) as session:
            first = session.equation("#<s:0:0:0:0:{}> - 2")
            second = session.equation("2 * #<s:0:0:0:0:{}> - 4")
            (coefficient,) = first.coefficients
            assert second.coefficients == [coefficient]

            thread = _complete_later(session, coefficient, "s", rng.random() * 1e-4)
            assert first.wait(timeout=10)
            assert second.wait(timeout=10)
            thread.join()

            assert first.is_solved and second.is_solved
            assert coefficient.tensor.value() == 2
            assert not coefficient.locked()


def test_shared_coefficients_in_opposite_order():
    for _ in range(50):
        with Session(SolverConfig(dimension=2, max_workers=4)) as session:
            first = session.equation("#<p:0:0:0:0:{}> - #<q:0:0:0:0:{}>")
            second = session.equation("#<q:0:0:0:0:{}> + #<p:0:0:0:0:{}> - 2")
            p, q = first.coefficients
            assert [c.key.id for c in second.coefficients] == ["q", "p"]

            threads = [
                _complete_later(session, p, "P", random.random() * 1e-4),
                _complete_later(session, q, "Q", random.random() * 1e-4),
            ]
            assert session.wait_all(timeout=10)
            for thread in threads:
                thread.join()

            assert p.tensor.value() == 1
            assert q.tensor.value() == 1


def test_observers_run_once_per_equation():
    seen = []
    lock = threading.Lock()

    def record(equation):
        with lock:
            seen.append(equation)

    with Session(SolverConfig(dimension=2, max_workers=4)) as session:
        equations = [session.equation(f"#<s:0:0:0:0:{{}}> - {k}") for k in range(1, 4)]
        for equation in equations:
            equation.register_observer(record)
        session.complete_general(session.coefficient(0, 0, 0, 0, "s"), prefix="s")
        for equation in equations:
            equation.join(timeout=10)

    assert sorted(map(id, seen)) == sorted(map(id, equations))
    states = [equation.state for equation in equations]
    # the first solve fixes s, the other two become inconsistent
    assert states.count(EquationState.SOLVED) == 1
    assert states.count(EquationState.FAILED) == 2
    solved = next(e for e in equations if e.is_solved)
    assert solved.coefficients[0].tensor.value() == int(solved.source.rsplit("-", 1)[1])
