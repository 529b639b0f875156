import pytest

from dagci.errors import InvalidExpression, UnresolvedReference
from dagci.expressions import EvaluationContext, embedded, interpolate, parse


NEEDS = {
    "test": {"result": "success", "exit_code": 0},
    "integration-test": {"result": "failure", "exit_code": 2},
    "docs": {"result": "skipped", "exit_code": None},
}


def ctx(**overrides):
    values = {"needs": NEEDS, "matrix": {"python-version": "3.11", "os": "linux"}, "env": {"CI": "true"}}
    values.update(overrides.pop("values", {}))
    return EvaluationContext(values=values, **overrides)


def ev(text, context=None):
    return parse(text).evaluate(context or ctx())


def test_literals():
    assert ev("'it''s'") == "it's"
    assert ev("42") == 42
    assert ev("1.5") == 1.5
    assert ev("true") is True
    assert ev("null") is None


def test_member_access_with_hyphenated_names():
    assert ev("needs.integration-test.result") == "failure"
    assert ev("matrix.python-version") == "3.11"


def test_index_access():
    assert ev("needs['integration-test'].exit_code") == 2


def test_star_projection_and_contains():
    assert sorted(ev("needs.*.result")) == ["failure", "skipped", "success"]
    assert ev("contains(needs.*.result, 'failure')") is True
    assert ev("contains(needs.*.result, 'cancelled')") is False


def test_string_equality_ignores_case():
    assert ev("needs.test.result == 'SUCCESS'") is True
    assert ev("matrix.os != 'Linux'") is False


def test_mixed_type_comparison_coerces_to_number():
    assert ev("'3' == 3") is True
    assert ev("needs.integration-test.exit_code > 1") is True
    assert ev("'abc' < 2") is False


def test_boolean_operators_and_precedence():
    assert ev("true || false && false") is True
    assert ev("!(true && false)") is True
    assert ev("!needs.test.result") is False
    # && / || return an operand, like the original expression language
    assert ev("env.CI && 'yes'") == "yes"


def test_status_functions_read_the_context():
    assert ev("always()") is True
    assert ev("success()", ctx(success=False)) is False
    assert ev("failure()", ctx(success=False, failure=True)) is True
    assert ev("cancelled()", ctx(cancelled=True)) is True


def test_string_functions():
    assert ev("startsWith(matrix.python-version, '3.')") is True
    assert ev("endsWith('release-1.0', '1.0')") is True
    assert ev("format('{0}-{1} {{x}}', matrix.os, 3)") == "linux-3 {x}"
    assert ev("join(matrix.*, '/')") == "3.11/linux"


def test_unknown_name_is_unresolved():
    with pytest.raises(UnresolvedReference) as exc:
        ev("secrets.TOKEN")
    assert exc.value.reference == "secrets"


def test_unknown_member_is_unresolved():
    with pytest.raises(UnresolvedReference) as exc:
        ev("needs.deploy.result")
    assert exc.value.reference == "needs.deploy"


@pytest.mark.parametrize(
    "text",
    ["", "needs.", "a ==", "(true", "frobnicate()", "contains('a')", "a $ b", "success(1)"],
)
def test_invalid_expressions(text):
    with pytest.raises(InvalidExpression):
        parse(text)


def test_delimiters_are_optional():
    assert parse("${{ always() }}").source == "always()"


def test_status_function_detection():
    assert parse("always()").status_functions == {"always"}
    assert parse("failure() || cancelled()").status_functions == {"failure", "cancelled"}
    assert parse("needs.a.result == 'success'").status_functions == frozenset()


def test_references_list_plain_paths():
    expr = parse("success() && (needs.test.result == 'success' || contains(needs.*.result, matrix.os))")

    assert expr.references == ("needs.test.result", "needs", "matrix.os")


def test_resolve_checks_paths_that_evaluation_would_skip():
    expr = parse("false && needs.deploy.result == 'success'")

    assert expr.test(ctx()) is False
    with pytest.raises(UnresolvedReference) as exc:
        expr.resolve(ctx())
    assert exc.value.reference == "needs.deploy"
    parse("needs.test.result == 'x' && env.CI").resolve(ctx())


def test_embedded_parses_every_fragment():
    assert [e.source for e in embedded("run ${{ matrix.os }} on ${{ env.CI }}")] == ["matrix.os", "env.CI"]
    assert embedded("plain text") == []
    with pytest.raises(InvalidExpression):
        embedded("ok ${{ matrix.os }} broken ${{ contains( }}")


def test_interpolate():
    text = "python${{ matrix.python-version }} on ${{ matrix.os }}: ${{ needs.docs.result }}${{ null }}"
    assert interpolate(text, ctx()) == "python3.11 on linux: skipped"
    assert interpolate("no expressions", ctx()) == "no expressions"
    assert interpolate("${{ true }}/${{ 2.0 }}", ctx()) == "true/2"
