# substitution.py

import re
import time
import uuid
from typing import Any, List, NamedTuple, Optional, Tuple, Union

from sequence_errors import ResponseReferenceError
from sequence_logging import logger
from sequence_models import ExecutionContext, SubstitutionRecord
from value_extractor import extract, to_loose_string

__all__ = [
    "LiteralText", "DynamicGuid", "DynamicTimestamp", "VarRef", "InputRef", "ResponseRef",
    "parse_placeholders", "PlaceholderResolver", "substitute", "substitute_string",
]

# An opening '{{' that is not followed by another '{{' before the closing '}}'
_PLACEHOLDER = re.compile(r'\{\{((?:(?!\{\{).)*?)\}\}', re.DOTALL)
_VAR_REF = re.compile(r'^\.vars\.(\w+)$')
_INPUT_REF = re.compile(r'^\.input\.(\w+)$')
_RESPONSE_REF = re.compile(r'^\.responses\.([a-zA-Z0-9_-]+)((?:\.[a-zA-Z0-9_\[\]-]+)*)$')


# ---------------------------
# Segments
# ---------------------------
class LiteralText(NamedTuple):
    text: str


class DynamicGuid(NamedTuple):
    text: str


class DynamicTimestamp(NamedTuple):
    text: str


class VarRef(NamedTuple):
    text: str
    name: str


class InputRef(NamedTuple):
    text: str
    name: str


class ResponseRef(NamedTuple):
    text: str
    node_id: str
    path: str


Segment = Union[LiteralText, DynamicGuid, DynamicTimestamp, VarRef, InputRef, ResponseRef]

# Resolution phases, in order. Records are emitted in this order.
_PHASES = (DynamicGuid, DynamicTimestamp, VarRef, InputRef, ResponseRef)


def _classify(text: str, inner: str) -> Segment:
    token = inner.strip()
    if token == '$guid':
        return DynamicGuid(text)
    if token == '$timestamp':
        return DynamicTimestamp(text)
    match = _VAR_REF.match(token)
    if match:
        return VarRef(text, match.group(1))
    match = _INPUT_REF.match(token)
    if match:
        return InputRef(text, match.group(1))
    match = _RESPONSE_REF.match(token)
    if match:
        return ResponseRef(text, match.group(1), match.group(2) or '.')
    # Anything else is not a placeholder we understand and stays as written
    return LiteralText(text)


def parse_placeholders(text: str) -> List[Segment]:
    """Splits a string into literal text and tagged placeholder segments."""
    segments: List[Segment] = []
    last_end = 0
    for match in _PLACEHOLDER.finditer(text):
        start, end = match.span()
        if start > last_end:
            segments.append(LiteralText(text[last_end:start]))
        segments.append(_classify(match.group(0), match.group(1)))
        last_end = end
    if last_end < len(text):
        segments.append(LiteralText(text[last_end:]))
    return segments


# ---------------------------
# Resolution
# ---------------------------
class PlaceholderResolver:
    """
    Resolves placeholders against one ExecutionContext.

    One resolver corresponds to one substitution call: every `{{ $timestamp }}` it
    rewrites shares the same value, while each `{{ $guid }}` gets a fresh UUID.
    Unresolved `.vars`/`.input` names are left as written. A `.responses` reference
    that cannot be resolved raises ResponseReferenceError. With resolve_responses=False
    response references are left untouched instead.
    """

    def __init__(self, context: ExecutionContext, *, resolve_responses: bool = True, timestamp: Optional[int] = None):
        self.context = context
        self.resolve_responses = resolve_responses
        self.timestamp = int(time.time()) if timestamp is None else timestamp
        self.records: List[SubstitutionRecord] = []

    def substitute(self, data: Any) -> Any:
        """Returns a structural copy of data with every string rewritten. Dict keys are kept as-is."""
        if isinstance(data, str):
            return self.substitute_string(data)
        elif isinstance(data, dict):
            return {key: self.substitute(val) for key, val in data.items()}
        elif isinstance(data, list):
            return [self.substitute(item) for item in data]
        return data

    def substitute_string(self, text: str) -> str:
        segments = parse_placeholders(text)
        if all(isinstance(seg, LiteralText) for seg in segments):
            return text

        resolved = [seg.text for seg in segments]
        for phase in _PHASES:
            for index, seg in enumerate(segments):
                if type(seg) is phase:
                    resolved[index] = self._resolve(seg)

        new_string = "".join(resolved)
        if self.context.debug and new_string != text:
            logger.debug(f"Substituted: '{text[:100]}' -> '{new_string[:100]}'")
        return new_string

    def _record(self, original: str, value: Any, kind: str):
        self.records.append(SubstitutionRecord(original=original, value=value, type=kind))

    def _resolve(self, seg: Segment) -> str:
        if isinstance(seg, DynamicGuid):
            value = str(uuid.uuid4())
            self._record(seg.text, value, 'dynamic-guid')
            return value

        if isinstance(seg, DynamicTimestamp):
            self._record(seg.text, self.timestamp, 'dynamic-timestamp')
            return str(self.timestamp)

        if isinstance(seg, VarRef):
            if seg.name not in self.context.variables:
                logger.debug(f"Variable '{seg.name}' is not defined, leaving {seg.text} as-is")
                return seg.text
            value = self.context.variables[seg.name]
            self._record(seg.text, value, 'variable')
            return to_loose_string(value)

        if isinstance(seg, InputRef):
            if seg.name not in self.context.user_input:
                logger.debug(f"User input '{seg.name}' was not provided, leaving {seg.text} as-is")
                return seg.text
            value = self.context.user_input[seg.name]
            self._record(seg.text, value, 'input')
            return to_loose_string(value)

        if isinstance(seg, ResponseRef):
            if not self.resolve_responses:
                return seg.text
            value = self._lookup_response(seg)
            self._record(seg.text, value, 'response')
            return to_loose_string(value)

        return seg.text

    def _lookup_response(self, seg: ResponseRef) -> Any:
        record = self.context.find_response(seg.node_id)
        if record is None:
            raise ResponseReferenceError(f"Could not find response for node: {seg.node_id}")

        has_body = record.body is not None and record.body != ""
        # '.status' falls back to the recorded HTTP status when the body has no such field
        if not has_body:
            if seg.path == '.status':
                return record.status
            raise ResponseReferenceError(f"Node {seg.node_id} has no response body")

        value = extract(record.body, seg.path)
        if value is None and seg.path == '.status':
            value = record.status
        if value is None:
            path = '' if seg.path == '.' else seg.path
            raise ResponseReferenceError(f"Could not extract value from .responses.{seg.node_id}{path}")
        return value


def substitute(data: Any, context: ExecutionContext, *, resolve_responses: bool = True) -> Tuple[Any, List[SubstitutionRecord]]:
    """Substitutes every string inside data. Returns the rewritten copy and the substitution records."""
    resolver = PlaceholderResolver(context, resolve_responses=resolve_responses)
    result = resolver.substitute(data)
    return result, resolver.records


def substitute_string(text: str, context: ExecutionContext, *, resolve_responses: bool = True) -> str:
    return PlaceholderResolver(context, resolve_responses=resolve_responses).substitute_string(text)
