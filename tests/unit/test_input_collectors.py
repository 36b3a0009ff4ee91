import asyncio

import pytest

from input_collectors import ConsoleInputCollector, PresetInputCollector, SignalInputCollector
from sequence_errors import InputUnavailableError

PROMPTS = {"code": "Enter code:", "name": "Your name:"}


@pytest.mark.asyncio
async def test_console_collector_asks_every_prompt_in_order():
    asked = []

    def fake_input(prompt):
        asked.append(prompt)
        return f"answer{len(asked)}"

    answers = await ConsoleInputCollector(fake_input).collect(PROMPTS)
    assert asked == ["Enter code: ", "Your name: "]
    assert answers == {"code": "answer1", "name": "answer2"}


@pytest.mark.asyncio
async def test_preset_collector_stringifies_answers():
    answers = await PresetInputCollector({"code": 42, "name": None, "extra": "x"}).collect(PROMPTS)
    assert answers == {"code": "42", "name": ""}


@pytest.mark.asyncio
async def test_preset_collector_reports_missing_answers():
    with pytest.raises(InputUnavailableError, match="No user input provided for: name"):
        await PresetInputCollector({"code": "1"}).collect(PROMPTS)


@pytest.mark.asyncio
async def test_signal_collector_waits_for_provided_answers():
    collector = SignalInputCollector()
    collector.open("run-1")

    task = asyncio.create_task(collector.collect(PROMPTS, execution_id="run-1", step_index=2))
    await asyncio.sleep(0)
    assert not task.done()

    assert collector.provide("run-1", 2, {"code": "9", "name": "bob"}) is True
    assert await asyncio.wait_for(task, timeout=1) == {"code": "9", "name": "bob"}


@pytest.mark.asyncio
async def test_signal_collector_keeps_early_answers():
    collector = SignalInputCollector()
    collector.open("run-1")
    assert collector.provide("run-1", 0, {"code": "1"}) is True

    answers = await asyncio.wait_for(collector.collect({"code": "Code:"}, execution_id="run-1", step_index=0), timeout=1)
    assert answers == {"code": "1"}


@pytest.mark.asyncio
async def test_signal_collector_rejects_unknown_execution():
    collector = SignalInputCollector()
    assert collector.provide("nope", 0, {"code": "1"}) is False
    assert not collector.is_active("nope")


@pytest.mark.asyncio
async def test_signal_collector_close_cancels_pending_wait():
    collector = SignalInputCollector()
    collector.open("run-1")
    task = asyncio.create_task(collector.collect(PROMPTS, execution_id="run-1", step_index=0))
    await asyncio.sleep(0)

    collector.close("run-1")
    with pytest.raises(asyncio.CancelledError):
        await task
    assert collector.provide("run-1", 0, {}) is False


@pytest.mark.asyncio
async def test_signal_collector_requires_keys():
    with pytest.raises(InputUnavailableError):
        await SignalInputCollector().collect(PROMPTS)
