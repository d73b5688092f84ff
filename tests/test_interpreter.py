import pytest
import sympy

from peach import EvaluationError, Interpreter, ParseError, ShapeError, Substitution, Tensor

x, y = sympy.symbols("x y")


def _eval(source, **namespace):
    return Interpreter(namespace).evaluate(source)


def test_scalar_arithmetic_follows_precedence():
    assert _eval("1 + 2 * 3") == 7
    assert _eval("(1 + 2) * 3") == 9
    assert _eval("-x + +y", x=x, y=y) == y - x
    assert _eval("x / 2", x=x) == x / 2


def test_decimals_are_exact_rationals():
    assert _eval("0.25") == sympy.Rational(1, 4)
    assert _eval(".5 + 2.") == sympy.Rational(5, 2)


def test_assignments_and_separators():
    interpreter = Interpreter({"x": x})
    result = interpreter.evaluate("a = x + 1: b = a * 2; b - x")
    assert sympy.expand(result) == x + 2
    assert interpreter.variables["a"] == x + 1


def test_namespace_is_copied():
    namespace = {"x": x}
    Interpreter(namespace).evaluate("y = 2:")
    assert namespace == {"x": x}


def test_comments_are_ignored():
    assert _eval("1 + 1 // + 5\n") == 2


def test_rename_and_add_align_labels():
    tensor = Tensor(("a", "b"), [[1, 2], [3, 4]])
    result = _eval("Add(T, RenameIndices(T, {a b}, {b a}))", T=tensor)
    assert result.indices == ("a", "b")
    assert result.components_list() == [2, 5, 5, 8]


def test_symmetrize_builtins():
    tensor = Tensor(("a", "b"), [[1, 2], [3, 4]])
    symmetric = _eval("Symmetrize(T, {a b})", T=tensor)
    assert symmetric.equals(tensor.symmetrize(("a", "b")))
    antisymmetric = _eval("AntiSymmetrize(T, {a b})", T=tensor)
    assert (symmetric + antisymmetric).equals(tensor)


def test_homogeneous_system_solves_components():
    tensor = Tensor(("a",), [x - 1, y])
    result = _eval("HomogeneousSystem(T)", T=tensor)
    assert isinstance(result, Substitution)
    assert result.pairs == [(x, 1), (y, 0)]


def test_substitute_and_merge():
    first = Substitution([(x, 3)])
    second = Substitution([(y, x + 1)])
    merged = _eval("MergeSubstitutions(s, t)", s=first, t=second)
    assert merged.apply(y) == 4
    assert _eval("Substitute(x * y, s)", x=x, y=y, s=first) == 3 * y


def test_syntax_error_reports_line():
    with pytest.raises(ParseError) as excinfo:
        _eval("1 + 2:\n3 + * 4")
    assert excinfo.value.line == 2
    assert excinfo.value.line_text == "3 + * 4"


def test_unknown_names_and_functions():
    with pytest.raises(EvaluationError, match="Unknown name 'q'"):
        _eval("q + 1")
    with pytest.raises(EvaluationError, match="Unknown function 'Frobnicate'"):
        _eval("Frobnicate(1)")


def test_type_errors_become_evaluation_errors():
    with pytest.raises(EvaluationError):
        _eval("s + 1", s=Substitution([(x, 1)]))
    with pytest.raises(EvaluationError):
        _eval("Symmetrize(1)")
    with pytest.raises(EvaluationError, match="Division by zero"):
        _eval("1 / 0")


def test_shape_errors_pass_through():
    tensor = Tensor(("a", "b"), [[1, 2], [3, 4]])
    with pytest.raises(ShapeError):
        _eval("Add(T, RenameIndices(T, {a b}, {a c}))", T=tensor)
