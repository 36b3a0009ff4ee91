# sequence_models.py

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

__all__ = [
    "Comparator", "CONDITION_COMPARATORS", "VALIDATION_COMPARATORS", "NUMERIC_COMPARATORS",
    "NodeCondition", "VariableCondition", "InputCondition", "Condition",
    "StatusValidation", "JsonpathValidation", "ValidationRule",
    "Node", "Defaults", "SequenceConfig",
    "ResponseRecord", "ExecutionContext", "SubstitutionRecord",
    "HttpRequest", "HttpResponse", "RunOptions", "RunResult",
    "ALLOWED_METHODS",
]

ALLOWED_METHODS = ['GET', 'POST', 'PUT', 'DELETE', 'PATCH', 'HEAD', 'OPTIONS']

Primitive = Union[bool, int, float, str, None]


# ---------------------------
# Comparators
# ---------------------------
class Comparator(str, Enum):
    STATUS_CODE = "statusCode"
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    EXISTS = "exists"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"


# Evaluation order used by conditions (first present comparator decides)
CONDITION_COMPARATORS = (
    Comparator.EQUALS,
    Comparator.NOT_EQUALS,
    Comparator.EXISTS,
    Comparator.GREATER_THAN,
    Comparator.LESS_THAN,
    Comparator.GREATER_THAN_OR_EQUAL,
    Comparator.LESS_THAN_OR_EQUAL,
)

# Evaluation order used by jsonpath validations (every present comparator is checked)
VALIDATION_COMPARATORS = (
    Comparator.EXISTS,
    Comparator.EQUALS,
    Comparator.NOT_EQUALS,
    Comparator.GREATER_THAN,
    Comparator.LESS_THAN,
    Comparator.GREATER_THAN_OR_EQUAL,
    Comparator.LESS_THAN_OR_EQUAL,
)

NUMERIC_COMPARATORS = (
    Comparator.GREATER_THAN,
    Comparator.LESS_THAN,
    Comparator.GREATER_THAN_OR_EQUAL,
    Comparator.LESS_THAN_OR_EQUAL,
)

_STATUS_KEYS = ('statusCode', 'httpStatusCode')
_SOURCE_KEYS = ('node', 'variable', 'input')


# ---------------------------
# Condition Models
# ---------------------------
class BaseCondition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    comparator: Comparator = Field(..., description="The single comparator applied to the resolved value")
    expected: Any = Field(None, description="Operand of the comparator (may contain placeholders)")


class NodeCondition(BaseCondition):
    source: Literal['node'] = 'node'
    node: str = Field(..., description="Id of a previously executed node")
    field: Optional[str] = Field(None, description="Path into the node's response body, e.g. '.data.id'")


class VariableCondition(BaseCondition):
    source: Literal['variable'] = 'variable'
    variable: str = Field(..., description="Name of a global variable")


class InputCondition(BaseCondition):
    source: Literal['input'] = 'input'
    input: str = Field(..., description="Name of a user input collected for the current node")


Condition = Annotated[
    Union[NodeCondition, VariableCondition, InputCondition],
    Field(discriminator='source')
]


def normalize_condition(raw: Any) -> Any:
    """
    Converts the document form of a condition ({"node": "login", "field": ".ok", "equals": true})
    into the tagged form the models expect ({"source": "node", ..., "comparator": "equals", "expected": true}).
    Raises ValueError unless exactly one source and exactly one comparator are present.
    """
    if not isinstance(raw, dict) or 'comparator' in raw:
        return raw

    data = dict(raw)
    present_sources = [key for key in _SOURCE_KEYS if data.get(key) is not None]
    source = data.get('source')
    if source is None:
        if len(present_sources) != 1:
            raise ValueError(
                f"condition must reference exactly one source (node, variable or input), got {present_sources or 'none'}"
            )
        source = present_sources[0]
    elif source not in _SOURCE_KEYS:
        raise ValueError(f"unknown condition source '{source}'")
    elif data.get(source) is None:
        raise ValueError(f"condition with source '{source}' requires a '{source}' key")

    # A comparator is present when its key is, so an explicit null is a real operand.
    found = [(c, data[c.value]) for c in CONDITION_COMPARATORS if c.value in data]
    if source == 'node':
        for key in _STATUS_KEYS:
            if key in data:
                found.append((Comparator.STATUS_CODE, data[key]))
                break
    if len(found) != 1:
        names = [c.value for c, _ in found]
        raise ValueError(f"condition must have exactly one comparator, got {names or 'none'}")

    comparator, expected = found[0]
    data['source'] = source
    data['comparator'] = comparator.value
    data['expected'] = expected
    return data


# ---------------------------
# Validation Rule Models
# ---------------------------
class StatusValidation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal['httpStatusCode'] = 'httpStatusCode'
    httpStatusCode: int = Field(..., description="Expected HTTP status code")


class JsonpathValidation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal['jsonpath'] = 'jsonpath'
    jsonpath: str = Field(..., description="Path into the response body, must start with '.'")
    exists: Optional[bool] = None
    equals: Any = None
    notEquals: Any = None
    greaterThan: Any = None
    lessThan: Any = None
    greaterThanOrEqual: Any = None
    lessThanOrEqual: Any = None

    @field_validator('jsonpath')
    def validate_jsonpath(cls, v):
        if not v.startswith('.'):
            raise ValueError(f"jsonpath must start with '.', got '{v}'")
        return v

    def explicit_checks(self) -> List[tuple]:
        """Comparators given in the rule, null operands included, in evaluation order."""
        return [(c, getattr(self, c.value)) for c in VALIDATION_COMPARATORS if c.value in self.model_fields_set]

    def checks(self) -> List[tuple]:
        """Explicit comparators, or an implicit existence check when the rule has none."""
        return self.explicit_checks() or [(Comparator.EXISTS, True)]


ValidationRule = Annotated[
    Union[StatusValidation, JsonpathValidation],
    Field(discriminator='type')
]


def normalize_validation(raw: Any) -> Any:
    if not isinstance(raw, dict) or 'type' in raw:
        return raw
    data = dict(raw)
    if data.get('httpStatusCode') is not None:
        data['type'] = 'httpStatusCode'
    elif data.get('jsonpath') is not None:
        data['type'] = 'jsonpath'
    else:
        raise ValueError("validation rule must have either 'httpStatusCode' or 'jsonpath'")
    return data


def _normalize_validations(value: Any) -> Any:
    if isinstance(value, list):
        return [normalize_validation(item) for item in value]
    return value


# ---------------------------
# Config Document Models
# ---------------------------
class Node(BaseModel):
    """One HTTP request definition of a sequence."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = Field(None, description="Unique identifier, used by response references and node conditions")
    name: Optional[str] = Field(None, description="Human-readable name")
    method: str = Field(..., description="HTTP method (GET, POST, PUT, etc.)")
    url: str = Field(..., description="Absolute URL, or a path starting with '/' joined to defaults.baseUrl. Can contain placeholders.")
    headers: Dict[str, str] = Field(default_factory=dict, description="Request headers. Values can contain placeholders.")
    body: Any = Field(None, description="Request body (any JSON value). String fields can contain placeholders.")
    timeout: Optional[float] = Field(None, gt=0, description="Request timeout in seconds")
    skipDefaultHeaders: bool = Field(False, description="Accepted for editor compatibility; default headers are always merged")
    skipDefaultValidations: bool = Field(False, description="Use only this node's validations instead of appending them to the defaults")
    conditions: List[Condition] = Field(default_factory=list, description="All must pass for the node to execute")
    validations: Optional[List[ValidationRule]] = Field(None, description="Rules checked against the response")
    userPrompts: Dict[str, str] = Field(default_factory=dict, description="Input name -> prompt text, collected before the request")
    launchBrowser: Optional[str] = Field(None, description="Path into the response body holding a URL to open")

    @model_validator(mode='before')
    @classmethod
    def normalize_tagged_lists(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if isinstance(data.get('conditions'), list):
                data['conditions'] = [normalize_condition(c) for c in data['conditions']]
            data['validations'] = _normalize_validations(data.get('validations'))
        return data

    @field_validator('method')
    def validate_method(cls, v):
        method_upper = v.upper()
        if method_upper not in ALLOWED_METHODS:
            raise ValueError(f"method must be one of {ALLOWED_METHODS}, got '{v}'")
        return method_upper

    @field_validator('launchBrowser')
    def validate_launch_browser(cls, v):
        if v is not None and not v.startswith('.'):
            raise ValueError(f"launchBrowser must be a path starting with '.', got '{v}'")
        return v


class Defaults(BaseModel):
    model_config = ConfigDict(extra="ignore")

    baseUrl: Optional[str] = Field(None, description="Prefix for node URLs that start with '/'")
    timeout: Optional[float] = Field(None, gt=0, description="Fallback request timeout in seconds")
    headers: Dict[str, str] = Field(default_factory=dict, description="Headers merged under every node's headers")
    validations: List[ValidationRule] = Field(default_factory=list, description="Rules prepended to every node's validations")

    @model_validator(mode='before')
    @classmethod
    def normalize_rules(cls, data: Any) -> Any:
        if isinstance(data, dict) and 'validations' in data:
            data = dict(data)
            data['validations'] = _normalize_validations(data['validations'])
        return data


class SequenceConfig(BaseModel):
    """The parsed config document."""
    model_config = ConfigDict(extra="ignore")

    enableDebug: bool = Field(False, description="Turn on debug logging for the run")
    variables: Dict[str, Primitive] = Field(default_factory=dict, description="Global variables, referenced as {{ .vars.NAME }}")
    defaults: Defaults = Field(default_factory=Defaults)
    nodes: List[Node] = Field(..., min_length=1, description="The ordered list of requests")

    @model_validator(mode='after')
    def check_unique_ids(self) -> 'SequenceConfig':
        seen = set()
        for index, node in enumerate(self.nodes):
            if node.id is None:
                continue
            if node.id in seen:
                raise ValueError(f"duplicate node id '{node.id}' at node {index + 1}")
            seen.add(node.id)
        return self


# ---------------------------
# Runtime Models
# ---------------------------
class ResponseRecord(BaseModel):
    """Stored per executed or skipped node; skipped nodes store status 0 and an empty body."""
    id: Optional[str] = None
    status: int = 0
    body: Any = None


class ExecutionContext(BaseModel):
    variables: Dict[str, Any] = Field(default_factory=dict)
    responses: List[ResponseRecord] = Field(default_factory=list)
    user_input: Dict[str, Any] = Field(default_factory=dict)
    debug: bool = False

    def find_response(self, node_id: str) -> Optional[ResponseRecord]:
        for record in self.responses:
            if record.id == node_id:
                return record
        return None


class SubstitutionRecord(BaseModel):
    original: str
    value: Any
    type: Literal['dynamic-guid', 'dynamic-timestamp', 'variable', 'input', 'response']


class HttpRequest(BaseModel):
    method: str
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timeout: float = 30.0


class HttpResponse(BaseModel):
    status: int
    status_text: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None
    duration: float = 0.0


class RunOptions(BaseModel):
    """Run-time switches that are not part of the config document."""
    start_step: int = Field(default=0, ge=0, description="0-based index of the first node to execute")
    debug: bool = Field(default=False, description="Enable debug logging")
    default_timeout: float = Field(default=30.0, gt=0, description="Timeout used when neither the node nor the defaults set one")
    launch_browser: bool = Field(default=True, description="Open launchBrowser URLs after a node completes")


class RunResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    steps_executed: int = Field(0, alias="stepsExecuted")
    steps_skipped: int = Field(0, alias="stepsSkipped")
    steps_failed: int = Field(0, alias="stepsFailed")
    execution_log: List[Dict[str, Any]] = Field(default_factory=list, alias="executionLog")

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)
