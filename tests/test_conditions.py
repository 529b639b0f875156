import pytest

from dagci.conditions import (
    ALWAYS,
    DEFAULT,
    Always,
    AnySucceeded,
    Custom,
    Default,
    DependencyResult,
    DependencyView,
    condition_from,
    template_result,
)
from dagci.errors import UnresolvedReference
from dagci.model import JobStatus

S, F, K, C = JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.SKIPPED, JobStatus.CANCELLED


def view(**templates):
    """view(a=[S], test=[S, F]) -> matrix-style instance ids for multi-status templates."""
    results, index = {}, {}
    for name, statuses in templates.items():
        ids = [name] if len(statuses) == 1 else [f"{name}[i={n}]" for n in range(len(statuses))]
        index[name] = ids
        for i, status in zip(ids, statuses):
            code = None if status in (K, C) else (0 if status is S else 1)
            results[i] = DependencyResult(status, code)
    return DependencyView(results, index, matrix={"py": "3.11"}, env={"CI": "1"})


def test_template_result_folding():
    assert template_result([S, S]) is S
    assert template_result([S, F, C]) is F
    assert template_result([S, C]) is C
    assert template_result([K, K]) is K
    assert template_result([S, K]) is S


def test_view_aggregates():
    v = view(a=[S], b=[F], c=[K])

    assert v.any_failed and v.any_succeeded and v.any_skipped
    assert not v.all_succeeded
    assert not v.any_cancelled
    assert v["b"] == DependencyResult(F, 1)
    assert v.result("a") is S
    assert "c" in v and "deploy" not in v


def test_view_folds_matrix_instances():
    v = view(test=[S, F, S])

    assert v["test"].status is F
    assert v["test"].exit_code == 1
    assert v["test[i=0]"].status is S


def test_view_rejects_undeclared_dependencies():
    with pytest.raises(UnresolvedReference):
        view(a=[S])["deploy"]


def test_default_requires_every_dependency_to_succeed():
    assert Default().evaluate(view(a=[S], b=[S]))
    assert not Default().evaluate(view(a=[S], b=[F]))
    assert not Default().evaluate(view(a=[S], b=[K]))
    assert not Default().evaluate(view(a=[C]))
    assert Default().evaluate(view())


def test_always_runs_whatever_happened():
    assert Always().evaluate(view(a=[F], b=[C], c=[K]))


def test_any_succeeded():
    assert AnySucceeded().evaluate(view(a=[F], b=[S]))
    assert not AnySucceeded().evaluate(view(a=[F], b=[K]))
    assert AnySucceeded().evaluate(view())


def test_custom_predicate_sees_the_view():
    cond = Custom(lambda v: v["a"].status is F and v.matrix["py"] == "3.11")

    assert cond.evaluate(view(a=[F]))
    assert not cond.evaluate(view(a=[S]))


def test_expression_without_status_function_implies_success():
    cond = condition_from("needs.a.result == 'failure'")

    # a failed, so the implicit success() gate is false
    assert not cond.evaluate(view(a=[F]))
    assert condition_from("failure() && needs.a.result == 'failure'").evaluate(view(a=[F]))


def test_expression_can_read_matrix_and_env():
    assert condition_from("matrix.py == '3.11' && env.CI == 1").evaluate(view(a=[S]))


def test_expression_with_unknown_reference_raises():
    cond = condition_from("always() && needs.deploy.result == 'success'")

    with pytest.raises(UnresolvedReference):
        cond.evaluate(view(a=[S]))


@pytest.mark.parametrize(
    "value, expected",
    [
        (None, DEFAULT),
        ("success()", DEFAULT),
        ("always()", ALWAYS),
        ("${{ always() }}", ALWAYS),
        (ALWAYS, ALWAYS),
    ],
)
def test_condition_from_known_policies(value, expected):
    assert condition_from(value) == expected


def test_condition_from_callable_and_expression():
    def only_on_failure(v):
        return v.any_failed

    assert isinstance(condition_from(only_on_failure), Custom)
    assert str(condition_from(only_on_failure)) == "only_on_failure"
    assert str(condition_from("${{ failure() }}")) == "failure()"


def test_condition_from_rejects_other_types():
    with pytest.raises(TypeError):
        condition_from(42)
