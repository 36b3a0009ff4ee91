# sequence_runner.py

import asyncio
import inspect
import time
import uuid
import webbrowser
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from condition_evaluator import evaluate_conditions
from http_transport import AiohttpTransport, HttpTransport
from input_collectors import ConsoleInputCollector, InputCollector, PresetInputCollector
from response_validator import validate_response
from sequence_errors import ResponseValidationError, SequenceError, TransportError
from sequence_logging import logger
from sequence_models import (
    Defaults,
    ExecutionContext,
    HttpRequest,
    HttpResponse,
    Node,
    ResponseRecord,
    RunOptions,
    RunResult,
    SequenceConfig,
    SubstitutionRecord,
)
from substitution import substitute
from value_extractor import extract

__all__ = ["merge_with_defaults", "NodeOutcome", "SequenceRunner", "START_STEP_REASON"]

START_STEP_REASON = "--start-step: execution begins at step {step}"

EventHook = Callable[[str, Dict[str, Any]], Any]


# ---------------------------
# Default Merging
# ---------------------------
def merge_with_defaults(node: Node, defaults: Optional[Defaults]) -> Node:
    """
    Applies sequence-wide defaults to a node, field by field:

    - url: baseUrl is prepended only to URLs starting with '/'.
    - timeout: the node's own value wins, the default is a fallback.
    - headers: always merged, node headers override defaults on key collision.
    - validations: with skipDefaultValidations the node's own list (possibly empty)
      is used as-is; otherwise default rules come first, followed by the node's.
    """
    if defaults is None:
        return node

    url = node.url
    if defaults.baseUrl and url.startswith('/'):
        url = defaults.baseUrl + url

    if node.skipDefaultValidations:
        validations = list(node.validations or [])
    else:
        validations = list(defaults.validations) + list(node.validations or [])

    return node.model_copy(update={
        'url': url,
        'timeout': node.timeout if node.timeout is not None else defaults.timeout,
        'headers': {**defaults.headers, **node.headers},
        'validations': validations,
    })


class NodeOutcome(BaseModel):
    """What happened to one node: its log entry plus the data later nodes may depend on."""
    status: Literal['skipped', 'completed', 'failed', 'input_required']
    entry: Dict[str, Any] = Field(default_factory=dict)
    response: Optional[ResponseRecord] = None
    prompts: Dict[str, str] = Field(default_factory=dict)
    substitutions: List[SubstitutionRecord] = Field(default_factory=list)


def _format_duration(seconds: float) -> str:
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    return f"{seconds:.2f}s"


# ---------------------------
# Sequence Runner Class
# ---------------------------
class SequenceRunner:
    """
    Runs the nodes of a sequence strictly one after another.

    Each node is merged with the defaults, gated by its conditions, optionally fed
    user input, substituted, sent through the transport and validated. A skipped node
    still gets a placeholder response (status 0, empty body) so that later references
    by id keep working. The first failing node ends the run; nothing after it executes.
    """

    def __init__(
        self,
        config: SequenceConfig,
        options: Optional[RunOptions] = None,
        *,
        transport: Optional[HttpTransport] = None,
        input_collector: Optional[InputCollector] = None,
        on_event: Optional[EventHook] = None,
        browser_opener: Optional[Callable[[str], Any]] = None,
        execution_id: Optional[str] = None,
    ):
        self.config = config
        self.options = options or RunOptions()
        self.debug = self.options.debug or config.enableDebug
        self._owns_transport = transport is None
        self.transport = transport or AiohttpTransport()
        self.input_collector = input_collector or ConsoleInputCollector()
        self.on_event = on_event
        self.browser_opener = browser_opener or webbrowser.open
        self.execution_id = execution_id or uuid.uuid4().hex

        logger.info(f"Sequence loaded: {len(config.nodes)} node(s), {len(config.variables)} global variable(s)")

    async def _emit(self, event: str, payload: Dict[str, Any]):
        if self.on_event is None:
            return
        try:
            result = self.on_event(event, payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Event hook failed for '{event}': {e}", exc_info=self.debug)

    async def _open_browser(self, url: str):
        logger.info(f"  Opening browser: {url}")
        try:
            result = await asyncio.to_thread(self.browser_opener, url)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"Could not open browser for {url}: {e}")

    def _context(self, responses: List[ResponseRecord], user_input: Optional[Dict[str, Any]] = None) -> ExecutionContext:
        return ExecutionContext(
            variables=dict(self.config.variables),
            responses=list(responses),
            user_input=user_input or {},
            debug=self.debug,
        )

    def _skip(self, base_entry: Dict[str, Any], node: Node, reason: str) -> NodeOutcome:
        logger.info(f"Step {base_entry['step']}: {base_entry['method']} {base_entry['url']} SKIPPED ({reason})")
        entry = dict(base_entry, status='skipped', skip_reason=reason)
        return NodeOutcome(status='skipped', entry=entry, response=ResponseRecord(id=node.id, status=0, body={}))

    async def _execute_node(
        self,
        index: int,
        node: Node,
        responses: List[ResponseRecord],
        collector: InputCollector,
        *,
        honor_start_step: bool = True,
    ) -> NodeOutcome:
        step_num = index + 1
        merged = merge_with_defaults(node, self.config.defaults)
        base_entry = {'step': step_num, 'id': node.id, 'name': node.name, 'method': merged.method, 'url': merged.url}

        # --- Start offset ---
        if honor_start_step and index < self.options.start_step:
            return self._skip(base_entry, node, START_STEP_REASON.format(step=self.options.start_step + 1))

        # --- Conditions ---
        context = self._context(responses)
        gate = evaluate_conditions(merged.conditions, context)
        if not gate.should_execute:
            return self._skip(base_entry, node, gate.skip_reason)

        await self._emit('step_start', dict(base_entry, executionId=self.execution_id))

        request: Optional[HttpRequest] = None
        response: Optional[HttpResponse] = None
        records: List[SubstitutionRecord] = []
        started = time.monotonic()
        try:
            # --- User input ---
            if merged.userPrompts:
                logger.info(f"Step {step_num} requires user input: {', '.join(merged.userPrompts)}")
                await self._emit('input_required', {
                    'executionId': self.execution_id,
                    'stepIndex': index,
                    'step': step_num,
                    'name': node.name,
                    'prompts': merged.userPrompts,
                })
                context.user_input = await collector.collect(
                    merged.userPrompts, execution_id=self.execution_id, step_index=index
                )

            # --- Substitution ---
            started = time.monotonic()
            substituted, records = substitute(
                {'url': merged.url, 'headers': merged.headers, 'body': merged.body}, context
            )
            request = HttpRequest(
                method=merged.method,
                url=substituted['url'],
                headers=substituted['headers'],
                body=substituted['body'],
                timeout=merged.timeout or self.options.default_timeout,
            )
            if self.debug:
                for record in records:
                    logger.debug(f"Step {step_num}: {record.original} -> {record.value!r} ({record.type})")

            # --- Request ---
            response = await self.transport.send(request)
            duration = time.monotonic() - started

            # --- Validation ---
            if merged.skipDefaultValidations and not merged.validations:
                validation_results: List[Dict[str, Any]] = []
            else:
                validation_results = validate_response(response, merged.validations, self.debug)

        except ResponseValidationError as e:
            return self._fail(base_entry, node, e, request, response, records, validations=e.results)
        except TransportError as e:
            return self._fail(base_entry, node, e, request, None, records, duration=e.duration)
        except SequenceError as e:
            return self._fail(base_entry, node, e, request, response, records)
        except Exception as e:
            logger.error(f"Step {step_num}: unexpected error: {e}", exc_info=self.debug)
            return self._fail(base_entry, node, e, request, response, records)

        logger.info(
            f"Step {step_num}: {request.method} {request.url} completed: "
            f"Status {response.status} {response.status_text} ({_format_duration(duration)})"
        )
        entry = dict(
            base_entry,
            url=request.url,
            request=self._request_detail(request, records),
            response=self._response_detail(response),
            validations=validation_results,
            duration=round(duration, 3),
            status='completed',
        )
        outcome = NodeOutcome(
            status='completed',
            entry=entry,
            response=ResponseRecord(id=node.id, status=response.status, body=response.body),
            substitutions=records,
        )

        if merged.launchBrowser and self.options.launch_browser:
            browser_url = extract(response.body, merged.launchBrowser)
            if isinstance(browser_url, str) and browser_url:
                await self._open_browser(browser_url)

        return outcome

    @staticmethod
    def _request_detail(request: HttpRequest, records: List[SubstitutionRecord]) -> Dict[str, Any]:
        return {
            'url': request.url,
            'headers': request.headers,
            'body': request.body,
            'substitutions': [r.model_dump() for r in records],
        }

    @staticmethod
    def _response_detail(response: HttpResponse) -> Dict[str, Any]:
        return {
            'status': response.status,
            'statusText': response.status_text,
            'headers': response.headers,
            'body': response.body,
        }

    def _fail(
        self,
        base_entry: Dict[str, Any],
        node: Node,
        error: Exception,
        request: Optional[HttpRequest],
        response: Optional[HttpResponse],
        records: List[SubstitutionRecord],
        *,
        validations: Optional[List[Dict[str, Any]]] = None,
        duration: Optional[float] = None,
    ) -> NodeOutcome:
        message = str(error)
        url = request.url if request is not None else base_entry['url']
        logger.info(f"Step {base_entry['step']}: {base_entry['method']} {url} FAILED: {message}")

        entry = dict(base_entry, error=message, status='failed')
        if request is not None:
            entry['url'] = request.url
            entry['request'] = self._request_detail(request, records)
        if response is not None:
            entry['response'] = self._response_detail(response)
            duration = response.duration if duration is None else duration
        if validations is not None:
            entry['validations'] = validations
        if duration is not None:
            entry['duration'] = round(duration, 3)

        # A response that failed validation is still kept so later references see real values
        record = ResponseRecord(id=node.id, status=response.status, body=response.body) if response is not None else None
        return NodeOutcome(status='failed', entry=entry, response=record, substitutions=records)

    # ---------------------------
    # Public entry points
    # ---------------------------
    async def run(self) -> RunResult:
        """Executes the whole sequence and returns the run result with its execution log."""
        nodes = self.config.nodes
        responses: List[ResponseRecord] = []
        execution_log: List[Dict[str, Any]] = []
        executed = skipped = failed = 0

        logger.info(f"Starting HTTP sequence with {len(nodes)} nodes...")
        await self._emit('start', {'totalSteps': len(nodes), 'executionId': self.execution_id})

        try:
            if self._owns_transport:
                await self.transport.__aenter__()
            for index, node in enumerate(nodes):
                outcome = await self._execute_node(index, node, responses, self.input_collector)
                execution_log.append(outcome.entry)
                if outcome.response is not None:
                    responses.append(outcome.response)
                await self._emit('step', dict(outcome.entry, executionId=self.execution_id))

                if outcome.status == 'skipped':
                    skipped += 1
                elif outcome.status == 'completed':
                    executed += 1
                else:
                    failed = 1
                    logger.error(f"Execution stopped due to error in step {index + 1}")
                    break
        finally:
            if self._owns_transport:
                await self.transport.close()

        result = RunResult(
            success=failed == 0,
            steps_executed=executed,
            steps_skipped=skipped,
            steps_failed=failed,
            execution_log=execution_log,
        )
        if result.success:
            logger.info(f"Sequence completed successfully! Summary: {executed} executed, {skipped} skipped")
        else:
            logger.error(f"Summary: {executed} executed, {skipped} skipped, 1 failed")

        summary = result.to_dict()
        summary.pop('executionLog')
        await self._emit('end', dict(summary, executionId=self.execution_id))
        return result

    async def execute_node(
        self,
        index: int,
        responses: Optional[List[ResponseRecord]] = None,
        user_input: Optional[Dict[str, Any]] = None,
    ) -> NodeOutcome:
        """
        Runs a single node against caller-supplied prior responses.
        When the node needs user input and none was given, nothing is sent and an
        'input_required' outcome carrying the prompts is returned instead.
        """
        if index < 0 or index >= len(self.config.nodes):
            raise IndexError(f"Step index {index} is out of range (sequence has {len(self.config.nodes)} nodes)")
        node = self.config.nodes[index]

        if node.userPrompts and user_input is None:
            merged = merge_with_defaults(node, self.config.defaults)
            entry = {'step': index + 1, 'id': node.id, 'name': node.name, 'method': merged.method, 'url': merged.url}
            return NodeOutcome(status='input_required', entry=entry, prompts=node.userPrompts)

        collector = PresetInputCollector(user_input or {})
        try:
            if self._owns_transport:
                await self.transport.__aenter__()
            return await self._execute_node(index, node, list(responses or []), collector, honor_start_step=False)
        finally:
            if self._owns_transport:
                await self.transport.close()
