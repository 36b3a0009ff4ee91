import json
import re

from execution_log import build_log_document, log_file_name, save_execution_log
from sequence_models import RunResult

LOG = [
    {"step": 1, "id": "a", "status": "skipped", "skip_reason": "--start-step: execution begins at step 2"},
    {"step": 2, "id": "b", "status": "completed"},
    {"step": 3, "id": "c", "status": "failed", "error": "boom"},
]


def test_log_file_name_format():
    assert re.match(r"^execution_log_\d{8}_\d{6}\.json$", log_file_name())


def test_build_document_for_failed_run():
    document = build_log_document(LOG, "config.json", success=False, start_step=1)
    metadata = document["metadata"]
    assert metadata["config_file"] == "config.json"
    assert metadata["execution_status"] == "failure"
    assert metadata["skip_steps"] == 1
    assert metadata["executed_steps"] == 1
    assert metadata["failed_step"] == {"step": 3, "id": "c"}
    assert metadata["timestamp"].endswith("Z")
    assert document["steps"] is LOG


def test_build_document_without_status():
    metadata = build_log_document(LOG[:2], None, steps_skipped=1)["metadata"]
    assert metadata["execution_status"] == "unknown"
    assert metadata["skip_steps"] == 1
    assert metadata["failed_step"] is None


def test_save_execution_log_from_run_result(tmp_path):
    result = RunResult(success=True, steps_executed=1, execution_log=LOG[1:2])
    path = save_execution_log(result, "flows/demo.json", tmp_path / "logs")

    assert path.parent == tmp_path / "logs"
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["metadata"]["execution_status"] == "success"
    assert saved["steps"] == LOG[1:2]


def test_save_execution_log_to_explicit_path(tmp_path):
    target = tmp_path / "out" / "run.json"
    path = save_execution_log(LOG, "c.json", output_path=target)
    assert path == target
    assert json.loads(target.read_text(encoding="utf-8"))["metadata"]["execution_status"] == "unknown"
