# config_validator.py
"""
Validation of sequence config documents before execution.

Issues fall into two categories:

- structure: shape problems an editor form would normally prevent
  (missing fields, wrong types, malformed placeholder syntax, unknown methods).
- value: problems that can appear while editing a valid document
  (duplicate ids, references to nodes that no longer exist, unbalanced braces).

`validate_config` collects every issue it can find instead of stopping at the first one.
`load_sequence_config` runs it and then parses the document into a `SequenceConfig`.
"""

import re
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError

from sequence_errors import ConfigError
from sequence_logging import logger
from sequence_models import ALLOWED_METHODS, CONDITION_COMPARATORS, SequenceConfig

__all__ = ["ConfigIssue", "validate_config", "format_issues", "load_sequence_config"]

_OPERATOR_NAMES = [c.value for c in CONDITION_COMPARATORS]
_PLACEHOLDER = re.compile(r'\{\{\s*([^}]+?)\s*\}\}')
_RESPONSE_REF = re.compile(r'^\.responses\.([a-zA-Z0-9_-]+)((?:\.[a-zA-Z0-9_\[\]-]+)*)$')
_NAMED_REF = re.compile(r'^\.(vars|input)\.(\w+)$')
_DYNAMIC = ('$guid', '$timestamp')


class ConfigIssue(BaseModel):
    field: str
    message: str
    type: str
    category: str = 'structure'
    node_index: Optional[int] = None
    node_id: Optional[str] = None
    suggestion: Optional[str] = None


def _is_absolute_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


class _Collector:
    """Accumulates issues for one node (or for the document when node_index is None)."""

    def __init__(self, issues: List[ConfigIssue], node_index: Optional[int] = None, node_id: Optional[str] = None):
        self.issues = issues
        self.node_index = node_index
        self.node_id = node_id

    def add(self, field: str, message: str, type_: str, category: str = 'structure', suggestion: Optional[str] = None):
        self.issues.append(ConfigIssue(
            field=field, message=message, type=type_, category=category,
            node_index=self.node_index, node_id=self.node_id, suggestion=suggestion,
        ))


# ---------------------------
# Document-level checks
# ---------------------------
def _check_variables(variables: Any, out: _Collector):
    if not isinstance(variables, dict):
        out.add('variables', 'variables must be an object', 'structure')
        return
    for name, value in variables.items():
        if isinstance(value, (dict, list)):
            out.add(f'variables.{name}', f'Variable "{name}" must be a string, number, boolean or null', 'type')


def _check_defaults(defaults: Any, out: _Collector):
    if not isinstance(defaults, dict):
        out.add('defaults', 'defaults must be an object', 'structure')
        return
    base_url = defaults.get('baseUrl')
    if base_url is not None:
        if not isinstance(base_url, str):
            out.add('defaults.baseUrl', 'baseUrl must be a string', 'type')
        elif not _is_absolute_url(base_url):
            out.add('defaults.baseUrl', f'Invalid baseUrl: "{base_url}"', 'format',
                    suggestion='Use an absolute URL such as https://api.example.com')
    timeout = defaults.get('timeout')
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        out.add('defaults.timeout', 'timeout must be a positive number (seconds)', 'type')
    if 'headers' in defaults and not isinstance(defaults['headers'], dict):
        out.add('defaults.headers', 'headers must be an object', 'type')
    if 'validations' in defaults:
        if not isinstance(defaults['validations'], list):
            out.add('defaults.validations', 'validations must be an array', 'type')
        else:
            for v_index, rule in enumerate(defaults['validations']):
                _check_validation_rule(rule, f'defaults.validations[{v_index}]', out)


# ---------------------------
# Node-level checks
# ---------------------------
def _check_condition(condition: Any, field: str, node_ids: Set[str], out: _Collector):
    if not isinstance(condition, dict):
        out.add(field, 'Each condition must be an object', 'type')
        return

    sources = [key for key in ('node', 'variable', 'input') if key in condition]
    if not sources:
        out.add(field, 'Condition must specify a source: "node", "variable", or "input"', 'structure',
                suggestion='Use {"node": "stepId", "field": ".path", "equals": "value"} or {"variable": "varName", "equals": "value"}')
        return
    if len(sources) > 1:
        out.add(field, 'Condition must have only one source (node, variable, or input)', 'structure')
        return

    source = sources[0]
    if not isinstance(condition[source], str):
        out.add(field, f'Condition "{source}" must be a string', 'type')
        return

    operators = [op for op in _OPERATOR_NAMES if op in condition]
    status_key = next((k for k in ('statusCode', 'httpStatusCode') if k in condition), None)

    if source == 'node':
        if condition['node'] not in node_ids:
            out.add(field, f'Condition references non-existent node: "{condition["node"]}"', 'reference', 'value',
                    suggestion=f'Valid node IDs: {", ".join(sorted(node_ids))}')
        if status_key is not None:
            if isinstance(condition[status_key], bool) or not isinstance(condition[status_key], int):
                out.add(field, f'Condition "{status_key}" must be a number', 'type')
            if operators:
                out.add(field, f'Condition cannot combine "{status_key}" with {", ".join(operators)}', 'structure')
            return
        if not condition.get('field'):
            out.add(field, 'Node condition must have "field" (jsonpath) or "statusCode"', 'structure',
                    suggestion='Use {"node": "stepId", "field": ".path", "equals": "value"} or {"node": "stepId", "statusCode": 200}')
        elif not isinstance(condition['field'], str):
            out.add(field, 'Condition "field" must be a string (jsonpath)', 'type')
        elif not condition['field'].startswith('.'):
            out.add(field, 'Condition "field" must be a valid jsonpath starting with "."', 'format',
                    suggestion='Example: ".id" or ".data.userId"')

    if not operators:
        out.add(field, 'Condition must have a comparison operator', 'structure',
                suggestion=f'Valid operators: {", ".join(_OPERATOR_NAMES)}')
    elif len(operators) > 1:
        out.add(field, f'Condition must have exactly one comparison operator, got {", ".join(operators)}', 'structure',
                suggestion='Split the check into several conditions; all conditions must pass')


def _check_validation_rule(rule: Any, field: str, out: _Collector):
    if not isinstance(rule, dict):
        out.add(field, 'Each validation must be an object', 'type')
        return
    if 'httpStatusCode' not in rule and 'jsonpath' not in rule:
        out.add(field, 'Validation must have "httpStatusCode" or "jsonpath"', 'structure',
                suggestion='Use {"httpStatusCode": 200} or {"jsonpath": ".field", "exists": true}')
        return
    if 'httpStatusCode' in rule:
        status = rule['httpStatusCode']
        if isinstance(status, bool) or not isinstance(status, int):
            out.add(field, 'httpStatusCode must be a number', 'type')
    if 'jsonpath' in rule:
        path = rule['jsonpath']
        if not isinstance(path, str):
            out.add(field, 'jsonpath must be a string', 'type')
        elif not path.startswith('.'):
            out.add(field, 'jsonpath must start with "." (e.g., ".id" or ".data.userId")', 'format')


def _check_braces(value: Any, field: str, out: _Collector):
    if isinstance(value, str):
        opening, closing = value.count('{{'), value.count('}}')
        if opening != closing:
            snippet = value if len(value) <= 60 else value[:60] + '...'
            out.add(field, f'Malformed placeholder: Found {opening} opening "{{{{" but {closing} closing "}}}}"',
                    'format', 'value', suggestion=f'Check: "{snippet}" - all placeholders need both {{{{ and }}}}')
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _check_braces(item, f'{field}[{index}]', out)
    elif isinstance(value, dict):
        for key, item in value.items():
            _check_braces(item, f'{field}.{key}', out)


def _iter_strings(value: Any):
    if isinstance(value, str):
        yield value
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)


def _check_placeholders(node: Dict[str, Any], prefix: str, node_ids: Set[str], out: _Collector):
    _check_braces(node, prefix, out)
    for text in _iter_strings(node):
        for match in _PLACEHOLDER.finditer(text):
            token = match.group(1).strip()
            if token in _DYNAMIC:
                continue
            if token.startswith('$'):
                out.add(prefix, f'Unknown dynamic placeholder: "{{{{ {token} }}}}"', 'format',
                        suggestion='Valid dynamic placeholders: {{ $guid }}, {{ $timestamp }}')
            elif token.startswith('.responses.'):
                ref = _RESPONSE_REF.match(token)
                if not ref:
                    out.add(prefix, f'Invalid response placeholder: "{{{{ {token} }}}}"', 'format',
                            suggestion='Use {{ .responses.nodeId.field }} syntax')
                elif ref.group(1) not in node_ids:
                    out.add(prefix, f'Response placeholder references non-existent node: "{ref.group(1)}"',
                            'reference', 'value', suggestion=f'Valid node IDs: {", ".join(sorted(node_ids))}')
            elif token.startswith('.vars.') or token.startswith('.input.'):
                if not _NAMED_REF.match(token):
                    kind = 'variable' if token.startswith('.vars.') else 'input'
                    out.add(prefix, f'Invalid {kind} placeholder: "{{{{ {token} }}}}"', 'format',
                            suggestion=f'Use {{{{ .{token.split(".")[1]}.name }}}} syntax')
            else:
                out.add(prefix, f'Invalid placeholder syntax: "{{{{ {token} }}}}"', 'format',
                        suggestion='Valid formats: {{ .responses.nodeId.field }}, {{ .vars.name }}, '
                                   '{{ .input.name }}, {{ $guid }}, {{ $timestamp }}')


def _check_node(node: Any, index: int, node_ids: Set[str], defaults: Dict[str, Any], issues: List[ConfigIssue]):
    prefix = f'nodes[{index}]'
    if not isinstance(node, dict):
        _Collector(issues, index).add(prefix, 'Each node must be an object', 'structure')
        return
    node_id = node.get('id') if isinstance(node.get('id'), str) else None
    out = _Collector(issues, index, node_id)

    if 'id' in node and not isinstance(node['id'], str):
        out.add(f'{prefix}.id', 'Node "id" must be a string', 'structure')

    method = node.get('method')
    if not method:
        out.add(f'{prefix}.method', 'Node must have a "method" field', 'structure')
    elif not isinstance(method, str) or method.upper() not in ALLOWED_METHODS:
        out.add(f'{prefix}.method', f'Invalid HTTP method: "{method}"', 'value',
                suggestion=f'Valid methods: {", ".join(ALLOWED_METHODS)}')

    url = node.get('url')
    if not url:
        out.add(f'{prefix}.url', 'Node must have a "url" field', 'structure')
    elif not isinstance(url, str):
        out.add(f'{prefix}.url', 'url must be a string', 'type')
    else:
        bare_url = _PLACEHOLDER.sub('PLACEHOLDER', url)
        if bare_url.startswith('/'):
            if not defaults.get('baseUrl'):
                out.add(f'{prefix}.url', 'Relative URL requires baseUrl in defaults', 'reference',
                        suggestion='Either add baseUrl to defaults or use an absolute URL')
        elif not _is_absolute_url(bare_url) and not bare_url.startswith('PLACEHOLDER'):
            out.add(f'{prefix}.url', f'Invalid URL format: "{url}"', 'format',
                    suggestion='URL must be absolute (https://...) or relative (/path)')

    timeout = node.get('timeout')
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        out.add(f'{prefix}.timeout', 'timeout must be a positive number (seconds)', 'type')

    headers = node.get('headers')
    if headers is not None and not isinstance(headers, dict):
        out.add(f'{prefix}.headers', 'headers must be an object', 'type')

    if node.get('body') is not None:
        effective = {**(defaults.get('headers') or {}), **(headers if isinstance(headers, dict) else {})}
        content_type = next((str(v) for k, v in effective.items() if k.lower() == 'content-type'), '')
        if 'application/json' in content_type.lower() and not isinstance(node['body'], (dict, list)):
            out.add(f'{prefix}.body',
                    f'Body must be an object or array when Content-Type is "application/json" (got {type(node["body"]).__name__})',
                    'value', 'value', suggestion='Use an object like {"key": "value"} or an array [1, 2, 3] for JSON requests')

    prompts = node.get('userPrompts')
    if prompts is not None:
        if not isinstance(prompts, dict):
            out.add(f'{prefix}.userPrompts', 'userPrompts must be an object', 'type')
        else:
            for key, text in prompts.items():
                if not isinstance(text, str):
                    out.add(f'{prefix}.userPrompts.{key}', f'Prompt "{key}" must be a string', 'type')

    conditions = node.get('conditions')
    if conditions is not None:
        if not isinstance(conditions, list):
            out.add(f'{prefix}.conditions', 'conditions must be an array', 'type')
        else:
            for c_index, condition in enumerate(conditions):
                _check_condition(condition, f'{prefix}.conditions[{c_index}]', node_ids, out)

    validations = node.get('validations')
    if validations is not None:
        if not isinstance(validations, list):
            out.add(f'{prefix}.validations', 'validations must be an array', 'type')
        else:
            for v_index, rule in enumerate(validations):
                _check_validation_rule(rule, f'{prefix}.validations[{v_index}]', out)

    launch = node.get('launchBrowser')
    if launch is not None:
        if not isinstance(launch, str):
            out.add(f'{prefix}.launchBrowser', 'launchBrowser must be a string (jsonpath)', 'type')
        elif not launch.startswith('.'):
            out.add(f'{prefix}.launchBrowser', 'launchBrowser must be a valid jsonpath (e.g., ".url" or ".data.authUrl")',
                    'format', suggestion='Jsonpath must start with a dot (.)')

    _check_placeholders(node, prefix, node_ids, out)


# ---------------------------
# Public API
# ---------------------------
def validate_config(config: Any) -> List[ConfigIssue]:
    """Returns every issue found in a raw (already JSON-decoded) config document."""
    issues: List[ConfigIssue] = []
    root = _Collector(issues)

    if not isinstance(config, dict):
        root.add('root', 'Config must be a valid object', 'structure')
        return issues
    nodes = config.get('nodes')
    if not isinstance(nodes, list):
        root.add('nodes', 'Config must have a "nodes" array', 'structure')
        return issues
    if not nodes:
        root.add('nodes', 'Config must have at least one node', 'structure')
        return issues

    if 'variables' in config:
        _check_variables(config['variables'], root)
    defaults = config.get('defaults') or {}
    if 'defaults' in config:
        _check_defaults(config['defaults'], root)
    if not isinstance(defaults, dict):
        defaults = {}

    node_ids: Set[str] = set()
    for index, node in enumerate(nodes):
        node_id = node.get('id') if isinstance(node, dict) else None
        if not isinstance(node_id, str):
            continue
        if node_id in node_ids:
            _Collector(issues, index, node_id).add(
                f'nodes[{index}].id', f'Duplicate node ID: "{node_id}"', 'duplicate', 'value',
                suggestion='Each node must have a unique ID',
            )
        node_ids.add(node_id)

    for index, node in enumerate(nodes):
        _check_node(node, index, node_ids, defaults, issues)

    return issues


def format_issues(issues: List[ConfigIssue]) -> str:
    """Renders issues as a human-readable report, grouped by category."""
    if not issues:
        return "Config validation passed"

    plural = 's' if len(issues) > 1 else ''
    lines = [f"Config Validation Failed ({len(issues)} error{plural})", ""]
    number = 0
    for category in ('structure', 'value'):
        group = [issue for issue in issues if issue.category == category]
        if not group:
            continue
        lines.append(f"[{category.upper()}]")
        for issue in group:
            number += 1
            lines.append(f"Error {number}:")
            if issue.node_index is not None:
                lines.append(f'  Node: "{issue.node_id or "Node " + str(issue.node_index)}" (nodes[{issue.node_index}])')
            lines.append(f"  Field: {issue.field}")
            lines.append(f"  Issue: {issue.message}")
            if issue.suggestion:
                lines.append(f"  Fix: {issue.suggestion}")
            lines.append("")
    return "\n".join(lines)


def _issues_from_pydantic(error: ValidationError) -> List[ConfigIssue]:
    issues = []
    for detail in error.errors():
        loc = detail.get('loc', ())
        field = ''.join(f'[{part}]' if isinstance(part, int) else f'.{part}' for part in loc).lstrip('.') or 'root'
        node_index = loc[1] if len(loc) > 1 and loc[0] == 'nodes' and isinstance(loc[1], int) else None
        issues.append(ConfigIssue(field=field, message=detail.get('msg', str(error)), type='structure', node_index=node_index))
    return issues


def load_sequence_config(data: Any) -> SequenceConfig:
    """Validates a raw config document and parses it. Raises ConfigError listing every issue."""
    issues = validate_config(data)
    if issues:
        logger.error(format_issues(issues))
        raise ConfigError(f"Config validation failed with {len(issues)} issue(s)", issues)
    try:
        return SequenceConfig.model_validate(data)
    except ValidationError as ve:
        issues = _issues_from_pydantic(ve)
        logger.error(format_issues(issues))
        raise ConfigError(f"Config validation failed with {len(issues)} issue(s)", issues) from ve
