import pytest

from peach import ParseError, parse_equation


def test_tag_is_rewritten_into_rename_call():
    parsed = parse_equation("#<A:1:0:2:0:{a b c}> + 1")
    assert parsed.body == "RenameIndices(Coefficient_A_2_0_1_0, {a b c}, {a b c}) + 1"
    assert parsed.expression == f"subst = HomogeneousSystem({parsed.body}):"
    (tag,) = parsed.tags
    assert tag.key.shape == (2, 0, 1, 0)
    assert tag.indices == "{a b c}"
    assert tag.offset == 0
    assert not parsed.is_empty


def test_every_occurrence_is_rewritten():
    parsed = parse_equation("#<A:1:0:1:0:{a b}> - #<A:1:0:1:0:{b a}>")
    assert len(parsed.tags) == 2
    assert parsed.body.count("RenameIndices(Coefficient_A_1_0_1_0, {a b}, ") == 2
    assert parsed.body.endswith("{b a})")


def test_index_token_is_forwarded_verbatim():
    parsed = parse_equation("Symmetrize(#<lambda:2:0:2:0:{a b c d}>, {b d})")
    assert parsed.body == (
        "Symmetrize(RenameIndices(Coefficient_lambda_2_0_2_0, {a b c d}, {a b c d}), {b d})"
    )


def test_comment_discards_rest_of_input():
    parsed = parse_equation("#<A:0:0:0:0:{}> - 1 // and #<B:0:0:0:0:{}>")
    assert [tag.key.id for tag in parsed.tags] == ["A"]
    assert "//" not in parsed.body


def test_blank_body_is_empty():
    assert parse_equation("   ").is_empty
    assert parse_equation("\t\n// #<A:0:0:0:0:{}>").is_empty
    assert parse_equation("").is_empty


@pytest.mark.parametrize(
    "code",
    [
        "#<A:x:0:1:0:{a b}>",
        "#<A:1:0:1:-1:{a b}>",
        "#<A:1:0:1.5:0:{a b}>",
        "#<A:²:0:1:0:{a b}>",
        "#<A:1:0:٣:0:{a b}>",
        "#<A:1:0:{a}>",
        "#<A>",
    ],
)
def test_malformed_tags_raise(code):
    with pytest.raises(ParseError):
        parse_equation(code)


def test_unterminated_tag_reports_location():
    with pytest.raises(ParseError) as info:
        parse_equation("1 +\n  #<A:1:0:1:0:{a b}")
    assert info.value.line == 2
    assert info.value.column == 3
    assert "Unterminated" in str(info.value)


def test_comment_inside_tag_leaves_it_unterminated():
    with pytest.raises(ParseError):
        parse_equation("#<A:1:0:1:0:{a b} // >")


def test_bad_field_points_at_field():
    with pytest.raises(ParseError) as info:
        parse_equation("#<A:1:q:1:0:{a b}>")
    assert info.value.column == 7
