import os

from peach import Session, SolverConfig

os.chdir(os.path.dirname(os.path.abspath(__file__)))
EQUATIONS = r"""
// A two-index coefficient without an antisymmetric part
#<A:1:0:1:0:{a b}> - #<A:1:0:1:0:{b a}>

// A second coefficient cancels A
Add(#<A:1:0:1:0:{a b}>, #<D:2:0:0:0:{a b}>)
""".strip()

with open("01_symmetric_coefficient.peach", "w", encoding="utf-8") as handle:
    handle.write(EQUATIONS)

with open("01_symmetric_coefficient.peach", "r", encoding="utf-8") as handle:
    lines = [line for line in handle.read().splitlines() if line.strip()]

with Session(SolverConfig(dimension=3)) as session:
    equations = [session.equation(line) for line in lines]
    for coefficient in session.registry:
        session.complete_general(coefficient)
    session.wait_all(timeout=30)
    for coefficient in session.registry:
        print(f"# {coefficient.name}")
        print(coefficient.tensor)
