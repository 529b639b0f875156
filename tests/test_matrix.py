import pytest

from dagci import job, matrix, sh
from dagci.errors import DuplicateAxis, InvalidMatrix
from dagci.expansion import expand, instance_id


def _job(**kwargs):
    return job("test", sh("noop", "true"), **kwargs)


def test_single_axis_expands_to_one_instance_per_value():
    instances = expand(_job(matrix={"v": [1, 2, 3]}))

    assert [i.id for i in instances] == ["test[v=1]", "test[v=2]", "test[v=3]"]
    assert [dict(i.bindings) for i in instances] == [{"v": 1}, {"v": 2}, {"v": 3}]
    assert [i.index for i in instances] == [0, 1, 2]


def test_two_axes_follow_declared_axis_order():
    tmpl = _job(matrix=[matrix("a1", ["v1", "v2"]), matrix("a2", ["w1", "w2", "w3"])])

    points = [(i.bindings["a1"], i.bindings["a2"]) for i in expand(tmpl)]

    assert points == [
        ("v1", "w1"), ("v1", "w2"), ("v1", "w3"),
        ("v2", "w1"), ("v2", "w2"), ("v2", "w3"),
    ]


def test_expansion_is_deterministic():
    tmpl = _job(matrix={"os": ["linux", "mac"], "py": ["3.10", "3.11"]})

    first = [i.id for i in expand(tmpl)]
    second = [i.id for i in expand(tmpl)]

    assert first == second
    assert len(set(first)) == 4


def test_no_axes_gives_the_template_itself():
    (only,) = expand(_job())

    assert only.id == "test"
    assert dict(only.bindings) == {}


def test_empty_axis_is_rejected():
    with pytest.raises(InvalidMatrix) as exc:
        expand(_job(matrix={"python": []}))
    assert "python" in str(exc.value)


def test_repeated_axis_name_is_rejected():
    tmpl = _job(matrix=[matrix("py", ["3.10"]), matrix("py", ["3.11"])])

    with pytest.raises(DuplicateAxis) as exc:
        expand(tmpl)
    assert exc.value.axis == "py"


def test_exclude_drops_matching_points():
    tmpl = _job(
        matrix={"os": ["linux", "windows"], "py": ["3.10", "3.11"]},
        exclude=[{"os": "windows", "py": "3.10"}],
    )

    ids = [i.id for i in expand(tmpl)]

    assert ids == ["test[os=linux,py=3.10]", "test[os=linux,py=3.11]", "test[os=windows,py=3.11]"]


def test_exclude_everything_is_an_invalid_matrix():
    tmpl = _job(matrix={"py": ["3.10"]}, exclude=[{"py": "3.10"}])

    with pytest.raises(InvalidMatrix):
        expand(tmpl)


def test_exclude_on_unknown_axis_is_rejected():
    with pytest.raises(InvalidMatrix):
        expand(_job(matrix={"py": ["3.10"]}, exclude=[{"os": "linux"}]))


def test_bindings_are_frozen():
    (inst,) = expand(_job(matrix={"py": ["3.11"]}))

    with pytest.raises(TypeError):
        inst.bindings["py"] = "3.12"


def test_instance_id_format():
    assert instance_id("build", {}) == "build"
    assert instance_id("test", {"os": "linux", "py": "3.11"}) == "test[os=linux,py=3.11]"
