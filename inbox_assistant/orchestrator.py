"""
Run orchestration: drives one assistant run on one thread to a settled state.

The run is advanced by a single transition function, advance(run) -> run:

  queued / in_progress / cancelling -> wait, then re-fetch the run
  requires_action                   -> execute the requested tool calls and
                                       submit their outputs (or cancel the run
                                       when a tool-call loop is detected)
  anything else                     -> returned unchanged (settled)

run() repeats advance() until the run settles and turns the final run into a
RunResult.
"""

import logging
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple

from .assistant_client import AssistantAPIError
from .models import (
    ACTIVE_STATUSES,
    ResultEnvelope,
    Run,
    RunResult,
    RunStatus,
    ToolCall,
    ToolOutput,
)
from .prompts import LOOP_CANCELLED_MESSAGE, LOOP_DETECTED_MESSAGE

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_CALL_ATTEMPTS = 3
DEFAULT_POLL_INTERVAL = 1.0


class ToolCallHistory:
    """
    Attempt counter per (function name, raw argument string).

    Belongs to a single orchestrator; never shared or persisted.
    """

    def __init__(self):
        self._counts: Counter = Counter()

    def record(self, name: str, raw_arguments: str) -> int:
        key = (name, raw_arguments)
        self._counts[key] += 1
        return self._counts[key]

    def count(self, name: str, raw_arguments: str) -> int:
        return self._counts[(name, raw_arguments)]

    def __len__(self) -> int:
        return len(self._counts)


class RunOrchestrator:
    def __init__(
        self,
        client,
        threads,
        dispatcher,
        assistant_id: str,
        max_tool_call_attempts: int = DEFAULT_MAX_TOOL_CALL_ATTEMPTS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = 8,
    ):
        if not assistant_id:
            raise ValueError("assistant_id is required")

        self.client = client
        self.threads = threads
        self.dispatcher = dispatcher
        self.assistant_id = assistant_id
        self.max_tool_call_attempts = max_tool_call_attempts
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.max_workers = max_workers
        self.history = ToolCallHistory()
        self.loop_detected = False

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def is_settled(self, run: Run) -> bool:
        if run.status in ACTIVE_STATUSES:
            return False
        if run.status == RunStatus.REQUIRES_ACTION:
            return not self._function_calls(run)
        return True

    def advance(self, run: Run) -> Run:
        """Perform one transition of the run and return the updated run."""
        if run.status in ACTIVE_STATUSES:
            self.sleep(self.poll_interval)
            updated = self.client.retrieve_run(run.thread_id, run.id)
            if updated.status != run.status:
                logger.info("Run %s: %s -> %s", run.id, run.status.value, updated.status.value)
            return updated

        if run.status == RunStatus.REQUIRES_ACTION and self._function_calls(run):
            return self._handle_tool_calls(run)

        return run

    def run(self) -> RunResult:
        """Start a run for the assistant on the bound thread and drive it to completion."""
        thread_id = self.threads.initialize()
        logger.info("Running assistant %s on thread %s", self.assistant_id, thread_id)

        run = self.client.create_run(thread_id, self.assistant_id)
        while not self.is_settled(run):
            run = self.advance(run)

        return self._interpret(run)

    # ------------------------------------------------------------------
    # Tool calls
    # ------------------------------------------------------------------

    @staticmethod
    def _function_calls(run: Run) -> List[ToolCall]:
        return [
            call
            for call in run.pending_tool_calls()
            if call.type == "function" and call.function is not None
        ]

    def _execute(self, call: ToolCall) -> str:
        name = call.function.name
        logger.info("Executing tool: %s", name)
        try:
            envelope = self.dispatcher.dispatch(name, call.function.arguments)
        except Exception as e:
            logger.exception("Error executing tool %s", name)
            envelope = ResultEnvelope.server_error(str(e))
        return envelope.to_output()

    def _handle_tool_calls(self, run: Run) -> Run:
        calls = self._function_calls(run)
        logger.info("Processing %d tool calls", len(calls))

        outputs: Dict[str, str] = {}
        to_execute: List[ToolCall] = []
        loop_detected = False

        for call in calls:
            name, raw_args = call.function.name, call.function.arguments
            attempts = self.history.record(name, raw_args)
            if attempts > self.max_tool_call_attempts:
                logger.warning(
                    "Loop detected: tool %s with args %s has been called %d times",
                    name,
                    raw_args,
                    attempts,
                )
                loop_detected = True
                outputs[call.id] = ResultEnvelope.server_error(
                    f"Maximum retry attempts ({self.max_tool_call_attempts}) exceeded "
                    "for this operation. The operation has been canceled to prevent "
                    "an infinite loop."
                ).to_output()
            else:
                to_execute.append(call)

        outputs.update(self._execute_batch(to_execute))

        if loop_detected:
            self.loop_detected = True
            return self._cancel_for_loop(run)

        tool_outputs = [ToolOutput(tool_call_id=call.id, output=outputs[call.id]) for call in calls]
        logger.info("Submitting %d tool outputs", len(tool_outputs))
        return self.client.submit_tool_outputs(run.thread_id, run.id, tool_outputs)

    def _execute_batch(self, calls: List[ToolCall]) -> Dict[str, str]:
        """Run all calls concurrently and wait for every one of them."""
        if not calls:
            return {}
        if len(calls) == 1:
            return {calls[0].id: self._execute(calls[0])}

        workers = min(self.max_workers, len(calls))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="tool-call") as pool:
            results: List[Tuple[str, str]] = list(
                zip((c.id for c in calls), pool.map(self._execute, calls))
            )
        return dict(results)

    def _cancel_for_loop(self, run: Run) -> Run:
        try:
            self.threads.add_message(LOOP_DETECTED_MESSAGE, role="assistant")
        except AssistantAPIError as e:
            logger.error("Could not add loop explanation to thread %s: %s", run.thread_id, e)

        try:
            self.client.cancel_run(run.thread_id, run.id)
            logger.info("Canceled run %s due to detected loop", run.id)
        except AssistantAPIError as e:
            logger.error("Error canceling run %s: %s", run.id, e)

        return run.model_copy(
            update={"status": RunStatus.CANCELLED, "required_action": None}
        )

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def _latest_message_or_none(self):
        try:
            return self.threads.get_latest_message()
        except AssistantAPIError as e:
            logger.error("Could not fetch latest message: %s", e)
            return None

    def _fail_unhandled_action(self, run: Run) -> RunResult:
        """A required action with no function calls cannot progress; cancel it and fail."""
        kinds = sorted({call.type for call in run.pending_tool_calls()}) or ["none"]
        error = f"Run requires an action this assistant cannot perform (tool call types: {', '.join(kinds)})"
        logger.error("Run %s: %s", run.id, error)

        try:
            self.client.cancel_run(run.thread_id, run.id)
        except AssistantAPIError as e:
            logger.error("Error canceling run %s: %s", run.id, e)

        return RunResult(
            status=RunStatus.FAILED.value,
            thread_id=self.threads.thread_id,
            error=error,
        )

    def _interpret(self, run: Run) -> RunResult:
        thread_id = self.threads.thread_id

        if run.status == RunStatus.COMPLETED:
            result = RunResult(status=RunStatus.COMPLETED.value, thread_id=thread_id)
            return result.merge_message(self.threads.get_latest_message())

        if run.status == RunStatus.CANCELLED:
            logger.info("Run %s was cancelled", run.id)
            result = RunResult(
                status=RunStatus.CANCELLED.value,
                thread_id=thread_id,
                message=LOOP_CANCELLED_MESSAGE if self.loop_detected else "Run was cancelled",
            )
            return result.merge_message(self._latest_message_or_none())

        if run.status == RunStatus.REQUIRES_ACTION:
            return self._fail_unhandled_action(run)

        error: Optional[str] = run.last_error.message if run.last_error else None
        logger.error("Run %s failed with status: %s", run.id, run.status.value)
        return RunResult(
            status=run.status.value,
            thread_id=thread_id,
            error=error or "Unknown error",
        )
