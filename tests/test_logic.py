import pytest

from canvas_player.logic import (
    And,
    ExpressionSyntaxError,
    Not,
    Or,
    SetOp,
    Var,
    evaluate,
    get_missing_variables,
    has_directives,
    parse_expression,
    parse_label,
    update_state,
    upgrade_label,
)


def test_parse_label_extracts_set_ops() -> None:
    parsed = parse_label("{set:hasKey=true} Go")
    assert parsed.display_text == "Go"
    assert parsed.set_ops == (SetOp("hasKey", True),)
    assert parsed.expression is None
    assert parsed.dependencies == ()


def test_parse_label_extracts_condition_dependencies() -> None:
    parsed = parse_label("{if:hasKey & !locked} Open door")
    assert parsed.display_text == "Open door"
    assert parsed.expression == And(Var("hasKey"), Not(Var("locked")))
    assert parsed.dependencies == ("hasKey", "locked")


def test_multiple_if_tags_are_anded() -> None:
    parsed = parse_label("{if:a}{if:!b} Go")
    assert evaluate(parsed.expression, {"a": True, "b": False})
    assert not evaluate(parsed.expression, {"a": True, "b": True})
    assert not evaluate(parsed.expression, {"a": False, "b": False})


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        ("a | b & c", Or(Var("a"), And(Var("b"), Var("c")))),
        ("(a | b) & c", And(Or(Var("a"), Var("b")), Var("c"))),
        ("!!a", Not(Not(Var("a")))),
        ("a=false", Var("a", False)),
        ("a && b || c", Or(And(Var("a"), Var("b")), Var("c"))),
    ],
)
def test_parse_expression_precedence(source: str, expected) -> None:
    assert parse_expression(source) == expected


@pytest.mark.parametrize("source", ["", "a &", "(a | b", "a = maybe", "a $ b", "& a"])
def test_parse_expression_rejects_malformed_input(source: str) -> None:
    with pytest.raises(ExpressionSyntaxError):
        parse_expression(source)


def test_unknown_variables_read_as_false() -> None:
    assert not evaluate("missing", {})
    assert evaluate("missing=false", {})
    assert evaluate("!missing", {})


def test_evaluate_is_pure() -> None:
    state = {"a": True, "b": False}
    snapshot = dict(state)
    expression = parse_expression("a & !b | c")
    results = {evaluate(expression, state) for _ in range(5)}
    assert results == {True}
    assert state == snapshot


def test_evaluate_treats_unparseable_text_as_false() -> None:
    assert evaluate("a &", {"a": True}) is False
    assert evaluate(None, {}) is True


@pytest.mark.parametrize(
    "raw",
    [
        "{if:a &} Go",
        "{set:x=maybe} Go",
        "{if:} Go",
    ],
)
def test_malformed_tags_stay_as_text(raw: str) -> None:
    parsed = parse_label(raw)
    assert parsed.display_text == raw
    assert parsed.set_ops == ()
    assert parsed.expression is None


def test_parse_label_is_idempotent_on_display_text() -> None:
    raw = "{set:k=true} {{if:a}if:b} Go {if:a &}"
    first = parse_label(raw)
    second = parse_label(first.display_text)
    assert second.set_ops == ()
    assert second.expression is None
    assert second.display_text == first.display_text


def test_missing_variables_and_update_state() -> None:
    parsed = parse_label("{set:done=true}{if:a | b} Next")
    state = {"a": True}
    assert get_missing_variables(parsed, state) == ["b"]
    update_state(parsed, state)
    assert state == {"a": True, "done": True}


def test_has_directives() -> None:
    assert has_directives("{if:a} Go")
    assert has_directives("{set:a=true}")
    assert not has_directives("Go")
    assert not has_directives(None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("{if:a=true}{if:!b} Go", "{if:a & !b} Go"),
        ("{set:k=true}{if:a} Go", "{set:k=true} {if:a} Go"),
        ("{if:a | b} Go", "{if:a | b} Go"),
        ("Plain", "Plain"),
    ],
)
def test_upgrade_label(raw: str, expected: str) -> None:
    assert upgrade_label(raw) == expected


def test_repeated_set_on_one_variable_keeps_the_last_value() -> None:
    parsed = parse_label("{set:a=true}{set:a=false} Go")
    assert parsed.set_ops == (SetOp("a", True), SetOp("a", False))
    state = {"a": True}
    update_state(parsed, state)
    assert state == {"a": False}
