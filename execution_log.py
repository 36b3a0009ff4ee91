# execution_log.py

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sequence_logging import logger
from sequence_models import RunResult

__all__ = ["build_log_document", "save_execution_log", "log_file_name"]


def log_file_name(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"execution_log_{now.strftime('%Y%m%d_%H%M%S')}.json"


def build_log_document(
    execution_log: List[Dict[str, Any]],
    config_file: Optional[str],
    success: Optional[bool] = None,
    start_step: int = 0,
    steps_skipped: int = 0,
) -> Dict[str, Any]:
    """
    Wraps log entries with run metadata.

    `execution_status` is 'unknown' when the outcome was not reported. `skip_steps` is the
    start offset when one was used, otherwise the number of skipped steps.
    """
    if success is True:
        status = 'success'
    elif success is False:
        status = 'failure'
    else:
        status = 'unknown'

    metadata: Dict[str, Any] = {
        'config_file': config_file,
        'execution_status': status,
        'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        'skip_steps': start_step or steps_skipped,
        'executed_steps': sum(1 for entry in execution_log if entry.get('status') == 'completed'),
        'failed_step': None,
    }
    if status == 'failure':
        failed = next((entry for entry in execution_log if entry.get('status') == 'failed'), None)
        if failed is not None:
            metadata['failed_step'] = {'step': failed.get('step'), 'id': failed.get('id')}

    return {'metadata': metadata, 'steps': execution_log}


def save_execution_log(
    result: Union[RunResult, List[Dict[str, Any]]],
    config_file: Optional[str],
    log_dir: Union[str, Path] = "logs",
    start_step: int = 0,
    output_path: Optional[Union[str, Path]] = None,
) -> Path:
    """
    Writes the log document as pretty-printed JSON and returns its path.
    `result` is either a RunResult or a bare list of log entries (status then unknown).
    """
    if isinstance(result, RunResult):
        document = build_log_document(
            result.execution_log, config_file, result.success, start_step, result.steps_skipped
        )
    else:
        document = build_log_document(list(result), config_file, None, start_step)

    path = Path(output_path) if output_path else Path(log_dir) / log_file_name()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False, default=str)
    logger.info(f"Execution log saved to: {path}")
    return path
