# input_collectors.py
"""
User-input strategies for nodes that declare `userPrompts`.

The runner only knows `InputCollector.collect(prompts, execution_id=..., step_index=...)`,
which returns one answer per prompt key. The host application picks the strategy:
a blocking console read for the CLI, a wait on an external signal for the server,
or a fixed set of answers supplied up front.
"""

from __future__ import annotations
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Set, Tuple

from sequence_errors import InputUnavailableError
from sequence_logging import logger

__all__ = ["InputCollector", "ConsoleInputCollector", "SignalInputCollector", "PresetInputCollector"]


def _answers_for(prompts: Dict[str, str], answers: Dict[str, Any]) -> Dict[str, str]:
    return {key: "" if answers.get(key) is None else str(answers[key]) for key in prompts}


class InputCollector(ABC):

    @abstractmethod
    async def collect(
        self,
        prompts: Dict[str, str],
        *,
        execution_id: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> Dict[str, str]: ...


class ConsoleInputCollector(InputCollector):
    """Asks each prompt on the console, one after another."""

    def __init__(self, input_func: Callable[[str], str] = input):
        self.input_func = input_func

    async def collect(self, prompts, *, execution_id=None, step_index=None):
        answers: Dict[str, str] = {}
        for key, prompt in prompts.items():
            answers[key] = await asyncio.to_thread(self.input_func, f"{prompt} ")
        return answers


class PresetInputCollector(InputCollector):
    """Answers prompts from a mapping given up front. A prompt without an answer is an error."""

    def __init__(self, answers: Optional[Dict[str, Any]] = None):
        self.answers = answers or {}

    async def collect(self, prompts, *, execution_id=None, step_index=None):
        missing = [key for key in prompts if key not in self.answers]
        if missing:
            raise InputUnavailableError(f"No user input provided for: {', '.join(missing)}")
        return _answers_for(prompts, self.answers)


class SignalInputCollector(InputCollector):
    """
    Waits until `provide()` delivers the answers for a (execution_id, step_index) pair.

    One instance can serve many concurrent runs. A run must be registered with `open()`
    before answers for it are accepted, and released with `close()` when it ends, which
    cancels any wait still pending for it. Answers that arrive before the run starts
    waiting are kept until it asks for them.
    """

    def __init__(self):
        self._waiters: Dict[Tuple[str, int], asyncio.Future] = {}
        self._early: Dict[Tuple[str, int], Dict[str, Any]] = {}
        self._active: Set[str] = set()

    def open(self, execution_id: str):
        self._active.add(execution_id)

    def close(self, execution_id: str):
        self._active.discard(execution_id)
        for key in [k for k in self._waiters if k[0] == execution_id]:
            waiter = self._waiters.pop(key)
            if not waiter.done():
                waiter.cancel()
        for key in [k for k in self._early if k[0] == execution_id]:
            del self._early[key]

    def is_active(self, execution_id: str) -> bool:
        return execution_id in self._active

    def provide(self, execution_id: str, step_index: int, answers: Dict[str, Any]) -> bool:
        """Delivers answers. Returns False when the execution is unknown or already finished."""
        if execution_id not in self._active:
            logger.warning(f"Input received for unknown execution '{execution_id}' (step index {step_index})")
            return False
        key = (execution_id, step_index)
        waiter = self._waiters.get(key)
        if waiter is not None and not waiter.done():
            waiter.set_result(answers or {})
        else:
            self._early[key] = answers or {}
        return True

    async def collect(self, prompts, *, execution_id=None, step_index=None):
        if execution_id is None or step_index is None:
            raise InputUnavailableError("Signal-based input collection requires an execution id and step index")
        key = (execution_id, step_index)
        if key in self._early:
            return _answers_for(prompts, self._early.pop(key))

        waiter = asyncio.get_running_loop().create_future()
        self._waiters[key] = waiter
        logger.debug(f"Execution {execution_id}: waiting for input for step index {step_index}")
        try:
            answers = await waiter
        finally:
            self._waiters.pop(key, None)
        return _answers_for(prompts, answers)
