import copy

import pytest

from config_validator import format_issues, load_sequence_config, validate_config
from sequence_errors import ConfigError
from sequence_models import Comparator, SequenceConfig

VALID = {
    "variables": {"user": "alice", "retries": 3},
    "defaults": {
        "baseUrl": "https://api.example.com",
        "timeout": 10,
        "headers": {"Content-Type": "application/json"},
        "validations": [{"httpStatusCode": 200}],
    },
    "nodes": [
        {"id": "login", "name": "Login", "method": "POST", "url": "/login", "body": {"user": "{{ .vars.user }}"}},
        {
            "id": "me",
            "method": "GET",
            "url": "/me",
            "headers": {"Authorization": "Bearer {{ .responses.login.token }}", "X-Request-Id": "{{ $guid }}"},
            "conditions": [{"node": "login", "statusCode": 200}, {"variable": "user", "exists": True}],
            "validations": [{"jsonpath": ".id", "exists": True}],
            "launchBrowser": ".profileUrl",
        },
    ],
}


def config_with(mutate):
    config = copy.deepcopy(VALID)
    mutate(config)
    return config


def messages(config):
    return [issue.message for issue in validate_config(config)]


def test_valid_config_has_no_issues():
    assert validate_config(VALID) == []


def test_load_returns_parsed_config():
    config = load_sequence_config(VALID)
    assert isinstance(config, SequenceConfig)
    assert [node.id for node in config.nodes] == ["login", "me"]


@pytest.mark.parametrize(
    "config,expected",
    [
        ([], "Config must be a valid object"),
        ({}, 'Config must have a "nodes" array'),
        ({"nodes": []}, "Config must have at least one node"),
    ],
)
def test_document_shape(config, expected):
    assert messages(config) == [expected]


def test_duplicate_ids():
    config = config_with(lambda c: c["nodes"][1].update(id="login"))
    issues = validate_config(config)
    duplicate = [i for i in issues if i.type == "duplicate"]
    assert duplicate[0].message == 'Duplicate node ID: "login"'
    assert duplicate[0].node_index == 1
    assert duplicate[0].category == "value"


def test_method_and_url_checks():
    def mutate(c):
        c["nodes"][0]["method"] = "FETCH"
        del c["nodes"][1]["url"]
    found = messages(config_with(mutate))
    assert 'Invalid HTTP method: "FETCH"' in found
    assert 'Node must have a "url" field' in found


def test_relative_url_requires_base_url():
    config = config_with(lambda c: c["defaults"].pop("baseUrl"))
    issues = [i for i in validate_config(config) if i.field.endswith(".url")]
    assert [i.message for i in issues] == ["Relative URL requires baseUrl in defaults"] * 2
    assert issues[0].suggestion == "Either add baseUrl to defaults or use an absolute URL"


def test_placeholder_only_url_is_accepted():
    config = config_with(lambda c: c["nodes"][0].update(url="{{ .vars.user }}/login"))
    assert validate_config(config) == []


def test_invalid_url_format():
    config = config_with(lambda c: c["nodes"][0].update(url="not a url"))
    assert 'Invalid URL format: "not a url"' in messages(config)


def test_timeout_and_headers_types():
    def mutate(c):
        c["nodes"][0]["timeout"] = -1
        c["nodes"][1]["headers"] = ["x"]
    found = messages(config_with(mutate))
    assert "timeout must be a positive number (seconds)" in found
    assert "headers must be an object" in found


def test_json_body_must_be_object_or_array():
    config = config_with(lambda c: c["nodes"][0].update(body="raw"))
    assert any(m.startswith("Body must be an object or array") for m in messages(config))


def test_condition_checks():
    def mutate(c):
        c["nodes"][1]["conditions"] = [
            {"equals": "x"},
            {"node": "login", "variable": "user", "equals": "x"},
            {"node": "ghost", "field": ".id", "exists": True},
            {"node": "login", "equals": "x"},
            {"node": "login", "field": "id", "equals": "x"},
            {"variable": "user"},
            {"variable": "user", "equals": "a", "notEquals": "b"},
        ]
    found = messages(config_with(mutate))
    assert 'Condition must specify a source: "node", "variable", or "input"' in found
    assert "Condition must have only one source (node, variable, or input)" in found
    assert 'Condition references non-existent node: "ghost"' in found
    assert 'Node condition must have "field" (jsonpath) or "statusCode"' in found
    assert 'Condition "field" must be a valid jsonpath starting with "."' in found
    assert "Condition must have a comparison operator" in found
    assert "Condition must have exactly one comparison operator, got equals, notEquals" in found


def test_validation_rule_checks():
    def mutate(c):
        c["nodes"][1]["validations"] = [{"exists": True}, {"httpStatusCode": "200"}, {"jsonpath": "id"}]
    found = messages(config_with(mutate))
    assert 'Validation must have "httpStatusCode" or "jsonpath"' in found
    assert "httpStatusCode must be a number" in found
    assert 'jsonpath must start with "." (e.g., ".id" or ".data.userId")' in found


def test_launch_browser_must_be_a_path():
    config = config_with(lambda c: c["nodes"][1].update(launchBrowser="profileUrl"))
    assert 'launchBrowser must be a valid jsonpath (e.g., ".url" or ".data.authUrl")' in messages(config)


def test_placeholder_checks():
    def mutate(c):
        c["nodes"][1]["headers"] = {
            "A": "{{ .vars.user }",
            "B": "{{ $uuid }}",
            "C": "{{ .responses.ghost.token }}",
            "D": "{{ something }}",
        }
    found = messages(config_with(mutate))
    assert 'Malformed placeholder: Found 1 opening "{{" but 0 closing "}}"' in found
    assert 'Unknown dynamic placeholder: "{{ $uuid }}"' in found
    assert 'Response placeholder references non-existent node: "ghost"' in found
    assert 'Invalid placeholder syntax: "{{ something }}"' in found


def test_variables_must_be_primitives():
    config = config_with(lambda c: c["variables"].update(obj={"a": 1}))
    assert 'Variable "obj" must be a string, number, boolean or null' in messages(config)


def test_nodes_without_ids_are_allowed():
    config = {"nodes": [{"method": "GET", "url": "https://example.com/ping"}]}
    assert validate_config(config) == []
    assert load_sequence_config(config).nodes[0].id is None


def test_load_raises_config_error_with_issues():
    config = config_with(lambda c: c["nodes"][0].update(method="FETCH"))
    with pytest.raises(ConfigError) as exc_info:
        load_sequence_config(config)
    assert exc_info.value.issues[0].node_id == "login"
    assert exc_info.value.issues[0].suggestion.startswith("Valid methods: GET, POST")


def test_format_issues():
    config = config_with(lambda c: c["nodes"][0].update(method="FETCH"))
    report = format_issues(validate_config(config))
    assert report.startswith("Config Validation Failed (1 error)")
    assert 'Node: "login" (nodes[0])' in report
    assert "  Field: nodes[0].method" in report
    assert '  Issue: Invalid HTTP method: "FETCH"' in report
    assert format_issues([]) == "Config validation passed"


def test_null_operands_pass_validation_and_load():
    def add_null_operands(config):
        config["nodes"][1]["conditions"].append({"variable": "user", "notEquals": None})
        config["nodes"][1]["validations"].append({"jsonpath": ".deletedAt", "equals": None})

    config = config_with(add_null_operands)
    assert validate_config(config) == []
    loaded = load_sequence_config(config)
    assert loaded.nodes[1].conditions[2].expected is None
    assert loaded.nodes[1].validations[1].explicit_checks() == [(Comparator.EQUALS, None)]
