import io
import struct

import sympy
from hypothesis import given
from hypothesis import strategies as st

from peach import Substitution

x, y = sympy.symbols("x y")

_NAMES = st.sampled_from(["x", "y", "z", "A_0_1", "Coefficient_mu_2_0_0_0_1_1"])
_INTS = st.integers(min_value=-50, max_value=50)


def test_round_trip():
    original = Substitution([(x, 2 * y + sympy.Rational(1, 3)), (y, sympy.Integer(5))])
    restored = Substitution.from_bytes(original.to_bytes())
    assert restored == original


def test_empty_round_trip():
    data = Substitution().to_bytes()
    assert data == struct.pack("<Q", 0)
    restored = Substitution.from_bytes(data)
    assert restored is not None
    assert len(restored) == 0


def test_count_header_comes_first():
    data = Substitution([(x, y), (y, 1)]).to_bytes()
    assert struct.unpack("<Q", data[:8])[0] == 2


def test_stream_round_trip_leaves_trailing_data():
    buffer = io.BytesIO()
    Substitution([(x, y)]).serialize(buffer)
    buffer.write(b"tail")
    buffer.seek(0)
    assert Substitution.deserialize(buffer) == Substitution([(x, y)])
    assert buffer.read() == b"tail"


def test_truncated_streams_return_none():
    data = Substitution([(x, 2 * y), (y, 3)]).to_bytes()
    assert Substitution.from_bytes(b"") is None
    assert Substitution.from_bytes(data[:4]) is None
    for cut in (8, 12, len(data) // 2, len(data) - 1):
        assert Substitution.from_bytes(data[:cut]) is None


def test_unreadable_scalar_returns_none():
    payload = b"Symbol("
    data = struct.pack("<Q", 1) + struct.pack("<Q", len(payload)) + payload
    assert Substitution.from_bytes(data) is None


@given(st.lists(st.tuples(_NAMES, _NAMES, _INTS, _INTS), max_size=6))
def test_round_trip_property(rows):
    original = Substitution(
        (sympy.Symbol(lhs), coeff * sympy.Symbol(rhs) + const)
        for lhs, rhs, coeff, const in rows
    )
    restored = Substitution.from_bytes(original.to_bytes())
    assert restored == original
    assert len(restored) == len(rows)
