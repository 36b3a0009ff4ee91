import asyncio
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import psutil
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from config_validator import format_issues, load_sequence_config, validate_config
from execution_log import save_execution_log
from input_collectors import InputCollector, PresetInputCollector, SignalInputCollector
from sequence_errors import ConfigError
from sequence_logging import configure_logging
from sequence_models import ResponseRecord, RunOptions, RunResult, SequenceConfig
from sequence_runner import SequenceRunner

# ------------------------------------------------------
# Logging in UTC
# ------------------------------------------------------
logging.Formatter.converter = time.gmtime

logging.basicConfig(
    level=getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format='%(asctime)sZ - %(levelname)s - %(name)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("sequence_server")
configure_logging(logging.getLogger().isEnabledFor(logging.DEBUG))

app = FastAPI()

# ------------------------------------------------------
# Global Runtime State
# ------------------------------------------------------
run_stats = {
    'started': 0,
    'succeeded': 0,
    'failed': 0,
    'active': 0,
}

# Shared by every streamed run; waits are keyed by (executionId, stepIndex)
input_signals = SignalInputCollector()

LOG_DIR = os.environ.get("LOG_DIR", "logs")


# ------------------------------------------------------
# Request Models
# ------------------------------------------------------
class ExecuteOptions(BaseModel):
    startStep: int = Field(default=0, ge=0, description="0-based index of the first node to execute")
    enableDebug: bool = False
    userInput: Optional[Dict[str, Any]] = None


class ExecuteRequest(BaseModel):
    config: Dict[str, Any]
    options: ExecuteOptions = Field(default_factory=ExecuteOptions)


class ProvideInputRequest(BaseModel):
    executionId: str
    stepIndex: int
    userInput: Dict[str, Any] = Field(default_factory=dict)


class ExecuteStepRequest(BaseModel):
    config: Dict[str, Any]
    stepIndex: int = Field(ge=0)
    responses: List[ResponseRecord] = Field(default_factory=list)
    userInput: Optional[Dict[str, Any]] = None
    enableDebug: bool = False


class SaveLogRequest(BaseModel):
    executionLog: List[Dict[str, Any]]
    configFile: Optional[str] = None
    success: Optional[bool] = None
    stepsSkipped: int = 0
    startStep: int = 0


# ---------------------------------------------------------------------
# HELPERS
# ---------------------------------------------------------------------
def _parse_body(model, data: dict):
    try:
        return model.model_validate(data)
    except ValidationError as ve:
        logger.error(f"Request validation failed: {ve}")
        raise HTTPException(status_code=400, detail=ve.errors(include_url=False, include_context=False))


def _load_config(raw: Dict[str, Any]) -> SequenceConfig:
    try:
        return load_sequence_config(raw)
    except ConfigError as e:
        raise HTTPException(status_code=400, detail={
            "message": str(e),
            "errors": [issue.model_dump() for issue in e.issues],
        })


def _build_runner(config: SequenceConfig, options: ExecuteOptions, collector: InputCollector, **kwargs) -> SequenceRunner:
    run_options = RunOptions(start_step=options.startStep, debug=options.enableDebug, launch_browser=False)
    return SequenceRunner(config, run_options, input_collector=collector, **kwargs)


def _record_result(result: RunResult):
    if result.success:
        run_stats['succeeded'] += 1
    else:
        run_stats['failed'] += 1


def _sse_frame(event: str, payload: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"


# ---------------------------------------------------------------------
# FASTAPI ENDPOINTS
# ---------------------------------------------------------------------
@app.get('/api/health')
async def health_check():
    """Basic health check endpoint."""
    return JSONResponse({
        "status": "healthy",
        "active_runs": run_stats['active'],
    })


@app.get('/api/metrics')
async def api_metrics():
    """Process resource usage plus run counters."""
    process = psutil.Process()
    memory = process.memory_info()
    system_mem = psutil.virtual_memory()

    return JSONResponse({
        "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        "process": {
            "cpu_percent": round(process.cpu_percent(interval=None), 1),
            "memory_rss_mb": round(memory.rss / (1024 * 1024), 2),
            "threads": process.num_threads(),
        },
        "system": {
            "cpu_percent": round(psutil.cpu_percent(interval=None), 1),
            "memory_percent": round(system_mem.percent, 1),
            "memory_available_mb": round(system_mem.available / (1024 * 1024), 2),
        },
        "runs": dict(run_stats),
    })


@app.post('/api/validate')
async def validate(data: dict):
    """Validates a config document without running it. Accepts the config itself or {"config": {...}}."""
    config = data.get("config", data) if isinstance(data, dict) else data
    issues = validate_config(config)
    return JSONResponse({
        "valid": not issues,
        "errors": [issue.model_dump() for issue in issues],
        "formatted": format_issues(issues),
    })


@app.post('/api/execute')
async def execute(data: dict):
    """
    Runs a sequence to completion and returns the run result.
    Prompts are answered from options.userInput; a prompt without an answer fails its node.
    """
    request = _parse_body(ExecuteRequest, data)
    config = _load_config(request.config)
    runner = _build_runner(config, request.options, PresetInputCollector(request.options.userInput))

    run_stats['started'] += 1
    run_stats['active'] += 1
    try:
        result = await runner.run()
    finally:
        run_stats['active'] -= 1
    _record_result(result)

    logger.info(f"Execution {runner.execution_id} finished: success={result.success}")
    return JSONResponse(dict(result.to_dict(), executionId=runner.execution_id))


@app.post('/api/execute-stream')
async def execute_stream(data: dict):
    """
    Runs a sequence and streams its events as Server-Sent Events.
    An `input_required` event suspends the run until /api/provide-input answers it.
    """
    request = _parse_body(ExecuteRequest, data)
    config = _load_config(request.config)
    execution_id = uuid.uuid4().hex
    queue: asyncio.Queue = asyncio.Queue()

    async def on_event(name: str, payload: Dict[str, Any]):
        await queue.put((name, payload))

    runner = _build_runner(config, request.options, input_signals, on_event=on_event, execution_id=execution_id)
    input_signals.open(execution_id)

    async def run_and_finish():
        run_stats['started'] += 1
        run_stats['active'] += 1
        try:
            result = await runner.run()
            _record_result(result)
        except Exception as e:
            logger.error(f"Execution {execution_id} crashed: {e}", exc_info=True)
            run_stats['failed'] += 1
            await queue.put(('error', {'executionId': execution_id, 'message': str(e)}))
        finally:
            run_stats['active'] -= 1
            await queue.put(None)

    async def event_stream():
        task = asyncio.create_task(run_and_finish())
        try:
            while True:
                item = await queue.get()
                if item is None:
                    break
                yield _sse_frame(*item)
        finally:
            input_signals.close(execution_id)
            if not task.done():
                logger.info(f"Client disconnected; cancelling execution {execution_id}")
                task.cancel()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Execution-Id": execution_id},
    )


@app.post('/api/provide-input')
async def provide_input(data: dict):
    """Delivers user input to a streamed run that is waiting on it."""
    request = _parse_body(ProvideInputRequest, data)
    if not input_signals.provide(request.executionId, request.stepIndex, request.userInput):
        raise HTTPException(status_code=404, detail=f"No active execution '{request.executionId}'")
    return JSONResponse({"message": "Input received", "executionId": request.executionId, "stepIndex": request.stepIndex})


@app.post('/api/execute-step')
async def execute_step(data: dict):
    """Runs one node against caller-supplied prior responses (step-by-step mode)."""
    request = _parse_body(ExecuteStepRequest, data)
    config = _load_config(request.config)
    if request.stepIndex >= len(config.nodes):
        raise HTTPException(
            status_code=400,
            detail=f"stepIndex {request.stepIndex} is out of range (sequence has {len(config.nodes)} nodes)",
        )

    options = ExecuteOptions(enableDebug=request.enableDebug)
    runner = _build_runner(config, options, PresetInputCollector(request.userInput))
    outcome = await runner.execute_node(request.stepIndex, request.responses, request.userInput)

    if outcome.status == 'input_required':
        return JSONResponse({
            "inputRequired": True,
            "stepIndex": request.stepIndex,
            "prompts": outcome.prompts,
            "entry": outcome.entry,
        })
    return JSONResponse(json.loads(json.dumps({
        "inputRequired": False,
        "stepIndex": request.stepIndex,
        "status": outcome.status,
        "entry": outcome.entry,
        "response": outcome.response.model_dump() if outcome.response is not None else None,
        "substitutions": [record.model_dump() for record in outcome.substitutions],
    }, default=str)))


@app.post('/api/save-log')
async def save_log(data: dict):
    """Persists an execution log sent by a client."""
    request = _parse_body(SaveLogRequest, data)
    if request.success is None:
        result = request.executionLog
    else:
        result = RunResult(
            success=request.success,
            steps_skipped=request.stepsSkipped,
            execution_log=request.executionLog,
        )
    try:
        path = save_execution_log(result, request.configFile, LOG_DIR, start_step=request.startStep)
    except OSError as e:
        logger.error(f"Could not save execution log: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Could not save execution log: {e}")
    return JSONResponse({"message": "Execution log saved", "path": str(path)})


# ---------------------------------------------------------------------
# MAIN ENTRY POINT (for dev usage)
# ---------------------------------------------------------------------
def main():
    import uvicorn

    logger.info("Starting sequence_server API server...")
    uvicorn.run(
        "sequence_server:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080")),
        log_level=os.environ.get("LOG_LEVEL", "info").lower(),
        reload=os.environ.get("DEV_RELOAD", "false").lower() == "true"
    )


if __name__ == '__main__':
    main()
