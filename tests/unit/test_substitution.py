import re

import pytest

from sequence_errors import ResponseReferenceError
from sequence_models import ExecutionContext, ResponseRecord
from substitution import (
    DynamicGuid,
    InputRef,
    LiteralText,
    PlaceholderResolver,
    ResponseRef,
    VarRef,
    parse_placeholders,
    substitute,
    substitute_string,
)

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


@pytest.fixture
def context() -> ExecutionContext:
    return ExecutionContext(
        variables={"user": "alice", "n": 3, "flag": True},
        user_input={"code": "123"},
        responses=[
            ResponseRecord(id="login", status=200, body={"token": "abc", "data": {"items": [{"id": 9}]}}),
            ResponseRecord(id="bare", status=204, body=None),
            ResponseRecord(id="echo", status=201, body={"path": "/x"}),
        ],
    )


def test_parse_placeholders_tags_segments():
    segments = parse_placeholders("a {{ .vars.x }} b {{.input.y}}{{ .responses.n.f[0] }} {{ $guid }} {{ other }}")
    assert segments == [
        LiteralText("a "),
        VarRef("{{ .vars.x }}", "x"),
        LiteralText(" b "),
        InputRef("{{.input.y}}", "y"),
        ResponseRef("{{ .responses.n.f[0] }}", "n", ".f[0]"),
        LiteralText(" "),
        DynamicGuid("{{ $guid }}"),
        LiteralText(" "),
        LiteralText("{{ other }}"),
    ]


def test_parse_placeholders_response_without_path_means_whole_body():
    assert parse_placeholders("{{ .responses.login }}") == [ResponseRef("{{ .responses.login }}", "login", ".")]


def test_variables_and_input(context):
    assert substitute_string("{{.vars.user}}-{{ .vars.n }}-{{ .vars.flag }}", context) == "alice-3-true"
    assert substitute_string("code={{ .input.code }}", context) == "code=123"


def test_unresolved_vars_and_input_are_left_as_written(context):
    text = "{{ .vars.missing }} and {{ .input.nothing }}"
    assert substitute_string(text, context) == text


def test_response_reference(context):
    assert substitute_string("Bearer {{ .responses.login.token }}", context) == "Bearer abc"
    assert substitute_string("{{ .responses.login.data.items[0].id }}", context) == "9"


def test_response_container_is_rendered_as_json(context):
    assert substitute_string("{{ .responses.login.data }}", context) == '{"items":[{"id":9}]}'


def test_response_status_falls_back_to_recorded_status(context):
    assert substitute_string("/echo/{{ .responses.bare.status }}", context) == "/echo/204"
    assert substitute_string("/echo/{{ .responses.echo.status }}", context) == "/echo/201"


def test_unknown_response_node_raises(context):
    with pytest.raises(ResponseReferenceError, match="Could not find response for node: nope"):
        substitute_string("{{ .responses.nope.id }}", context)


def test_response_without_body_raises(context):
    with pytest.raises(ResponseReferenceError, match="Node bare has no response body"):
        substitute_string("{{ .responses.bare.id }}", context)


def test_missing_response_field_raises(context):
    with pytest.raises(ResponseReferenceError, match=r"Could not extract value from \.responses\.login\.nothing"):
        substitute_string("{{ .responses.login.nothing }}", context)


def test_response_references_can_be_left_unresolved(context):
    text = "{{ .responses.nope.id }} {{ .vars.user }}"
    assert substitute_string(text, context, resolve_responses=False) == "{{ .responses.nope.id }} alice"


def test_guid_is_fresh_per_occurrence(context):
    first, second = substitute_string("{{ $guid }} {{ $guid }}", context).split(" ")
    assert UUID_RE.match(first)
    assert UUID_RE.match(second)
    assert first != second


def test_timestamp_is_shared_within_one_call(context):
    result, records = substitute({"a": "{{ $timestamp }}", "b": ["{{$timestamp}}"]}, context)
    assert result["a"] == result["b"][0]
    assert result["a"].isdigit()
    assert [r.type for r in records] == ["dynamic-timestamp", "dynamic-timestamp"]


def test_resolver_uses_given_timestamp(context):
    resolver = PlaceholderResolver(context, timestamp=1700000000)
    assert resolver.substitute_string("t={{ $timestamp }}") == "t=1700000000"


def test_substitute_walks_structure_and_keeps_keys(context):
    data = {
        "{{ .vars.user }}": "{{ .vars.user }}",
        "nested": [{"n": "{{ .vars.n }}"}, 5, True, None],
        "number": 1.5,
    }
    result, _ = substitute(data, context)
    assert result == {
        "{{ .vars.user }}": "alice",
        "nested": [{"n": "3"}, 5, True, None],
        "number": 1.5,
    }
    assert data["nested"][0]["n"] == "{{ .vars.n }}"


def test_records_follow_phase_order(context):
    _, records = substitute("{{ .responses.login.token }} {{ .vars.user }} {{ .input.code }} {{ $guid }}", context)
    assert [r.type for r in records] == ["dynamic-guid", "variable", "input", "response"]
    assert records[1].original == "{{ .vars.user }}"
    assert records[1].value == "alice"
    assert records[3].value == "abc"


def test_resolved_value_is_not_substituted_again():
    ctx = ExecutionContext(variables={"a": "{{ .vars.b }}", "b": "oops"})
    assert substitute_string("{{ .vars.a }}", ctx) == "{{ .vars.b }}"


def test_nested_braces_resolve_innermost_placeholder(context):
    assert substitute_string("{{ {{ .vars.user }} }}", context) == "{{ alice }}"
