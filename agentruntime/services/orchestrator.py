"""Agent orchestrator: drives one autonomous run from user prompt to summary.

A run decides between replying directly and acting, sets a goal, plans a
checklist, then loops: ask the model for the next step, execute it through
the tool registry or the shell, record what happened in the context log and
ask whether the goal is met. Reflection, stuck detection, verification and
the continue check hang off that loop.

Cancellation is cooperative. ``cancel()`` sets an event every await point
watches; approvals and file locks held by the session are released at once.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
import uuid
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass
from typing import TypeVar

from agentruntime.config import AppConfig
from agentruntime.errors import AgentAPIError, AgentErrorKind, RecoveryAction
from agentruntime.infra.event_bus import EventBus
from agentruntime.infra.file_lock import FileLockCoordinator
from agentruntime.infra.llm_client import AgentLLMClient
from agentruntime.infra.process_mgr import ProcessManager
from agentruntime.infra.shell import CommandOutput, ShellExecutor
from agentruntime.infra.store import CheckpointStore
from agentruntime.models.agent_event import AgentEvent, AgentEventType
from agentruntime.models.agent_mode import FILE_MUTATING_TOOLS, AgentMode
from agentruntime.models.agent_response import ParsedAgentResponse
from agentruntime.models.checklist import TaskChecklist, TaskStatus
from agentruntime.models.checkpoint import RunCheckpoint
from agentruntime.models.phase import AgentExecutionPhase, PhaseKind
from agentruntime.models.provider import LLMMessage
from agentruntime.models.tool import ToolResult
from agentruntime.services import prompts
from agentruntime.services.approval import (
    ApprovalGate,
    ApprovalKind,
    Approver,
    CommandPolicy,
)
from agentruntime.services.context_window import ContextWindowManager, truncate_output
from agentruntime.services.recovery import RetryController, StuckDetector, has_step_content
from agentruntime.services.tools.context import ToolContext
from agentruntime.services.tools.process_tools import approve_command
from agentruntime.services.tools.registry import AgentTool, ToolRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Tools a verification check may call: none of them change files or processes
VERIFICATION_TOOLS = frozenset({
    "read_file", "list_dir", "search_files", "http_request", "check_process", "search_output",
})

PLAN_TOOLS = frozenset({"plan_and_track", "create_plan"})

_OPEN = (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)


@dataclass(frozen=True)
class AgentRunResult:
    phase: AgentExecutionPhase
    summary: str = ""
    status: str = ""
    iterations: int = 0

    @property
    def completed(self) -> bool:
        return self.phase.kind == PhaseKind.COMPLETED


class _RunStopped(Exception):
    """Ends the run early with a terminal phase and a status line."""

    def __init__(self, phase: AgentExecutionPhase, status: str, detail: str = "") -> None:
        self.phase = phase
        self.status = status
        self.detail = detail
        super().__init__(status)


async def _next_chunk(stream: AsyncIterator[str]) -> str | None:
    try:
        return await anext(stream)
    except StopAsyncIteration:
        return None


class AgentOrchestrator:
    """Runs the agent loop for one session.

    Collaborators are injected; anything omitted gets a default built from
    ``config``. One orchestrator runs one prompt at a time but can be reused
    for later prompts in the same session.
    """

    def __init__(
        self,
        llm: AgentLLMClient,
        registry: ToolRegistry,
        locks: FileLockCoordinator,
        config: AppConfig | None = None,
        mode: AgentMode = AgentMode.PILOT,
        session_id: str | None = None,
        event_bus: EventBus | None = None,
        shell: ShellExecutor | None = None,
        processes: ProcessManager | None = None,
        approver: Approver | None = None,
        auto_approve: bool = False,
        store: CheckpointStore | None = None,
        cwd: str | None = None,
    ) -> None:
        self._config = config or AppConfig()
        agent = self._config.agent
        self._llm = llm
        self._registry = registry
        self._locks = locks
        self.mode = mode
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.bus = event_bus or EventBus()
        self._cwd = os.path.abspath(os.path.expanduser(cwd or os.getcwd()))
        self._shell = shell or ShellExecutor(self._cwd, agent.command_timeout)
        self._processes = processes or ProcessManager()
        self._policy = CommandPolicy(self._config.approval)
        self._gate = ApprovalGate(
            self.session_id,
            self.bus,
            timeout=self._config.approval.approval_timeout,
            approver=approver,
            auto_approve=auto_approve,
        )
        self._store = store
        self._retry = RetryController(agent.max_step_retries, agent.retry_backoff_seconds)
        self._continue_retry = RetryController(2, agent.retry_backoff_seconds)
        self._cancel = asyncio.Event()
        self._feedback: list[str] = []

        self.phase = AgentExecutionPhase.idle()
        self.goal = ""
        self.summary = ""
        self.status = ""
        self.iterations = 0
        self.context_log: list[str] = []
        self._reset()

    # --- state -------------------------------------------------------------

    def _reset(self) -> None:
        agent = self._config.agent
        self._cancel.clear()
        self._feedback.clear()
        self.goal = ""
        self.summary = ""
        self.status = ""
        self.iterations = 0
        self.context_log = []
        self._estimated_total = 0
        self._empty_responses = 0
        self._unknown_tools = 0
        self._fix_attempts = 0
        self._force_compact = False
        self._stuck = StuckDetector(agent.stuck_detection_threshold)
        self._context = ContextWindowManager(
            self._llm.model,
            summarizer=self._summarize_context,
            context_limit_override=self._config.context.context_limit_override,
        )
        self._tool_ctx = ToolContext(
            session_id=self.session_id,
            cwd=self._cwd,
            locks=self._locks,
            outputs=self._registry.outputs,
            memory=self._registry.memory,
            shell=self._shell,
            processes=self._processes,
            approval=self._gate,
            policy=self._policy,
            lock_timeout=agent.file_lock_timeout,
            http_timeout=agent.http_request_timeout,
            command_timeout=agent.command_timeout,
            background_timeout=agent.background_process_timeout,
            on_lock_wait=self._on_lock_wait,
            on_approval_wait=self._on_approval_wait,
        )

    @property
    def checklist(self) -> TaskChecklist | None:
        return self._tool_ctx.checklist

    @checklist.setter
    def checklist(self, value: TaskChecklist | None) -> None:
        self._tool_ctx.checklist = value

    @property
    def context_manager(self) -> ContextWindowManager:
        return self._context

    @property
    def approval_gate(self) -> ApprovalGate:
        return self._gate

    @property
    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def _total_steps(self) -> int:
        if self.checklist is not None and self.checklist.items:
            return len(self.checklist.items)
        return self._estimated_total

    def _set_phase(self, phase: AgentExecutionPhase) -> None:
        if phase == self.phase:
            return
        if not self.phase.can_transition(phase):
            logger.warning(
                "Invalid phase transition %s -> %s", self.phase.kind.value, phase.kind.value,
            )
        self.phase = phase
        self._emit(
            AgentEventType.PHASE_CHANGED,
            str(phase),
            phase.detail,
            phase=phase.kind.value,
            step=phase.step,
            total=phase.total,
        )

    def _resume_executing(self) -> None:
        if self.phase.kind in (PhaseKind.WAITING_FOR_APPROVAL, PhaseKind.WAITING_FOR_FILE_LOCK):
            self._set_phase(AgentExecutionPhase.executing(self.iterations, self._total_steps))

    def _emit(self, event_type: AgentEventType, title: str = "", detail: str = "", **data) -> None:
        self.bus.emit(AgentEvent(
            session_id=self.session_id,
            event_type=event_type,
            title=title,
            detail=detail,
            data=data,
        ))

    def _log(self, entry: str) -> None:
        self.context_log.append(entry)

    def _checklist_changed(self) -> None:
        checklist = self.checklist
        if checklist is None:
            return
        self._emit(
            AgentEventType.CHECKLIST_CHANGED,
            f"Checklist {checklist.completed_count}/{len(checklist.items)}",
            checklist.status_lines(),
            progress=checklist.progress_percent,
        )

    def checkpoint(self) -> RunCheckpoint:
        return RunCheckpoint(
            session_id=self.session_id,
            goal=self.goal,
            mode=self.mode.value,
            phase=self.phase.kind.value,
            iterations=self.iterations,
            checklist=self.checklist,
            context_log=list(self.context_log),
            prompt_tokens=self._llm.prompt_tokens,
            completion_tokens=self._llm.completion_tokens,
            summarization_count=self._context.summarization_count,
        )

    async def _save_checkpoint(self) -> None:
        if self._store is None:
            return
        try:
            await self._store.save(self.checkpoint())
        except Exception as e:
            logger.warning("Failed to save checkpoint for %s: %s", self.session_id, e)

    # --- external control ----------------------------------------------------

    async def cancel(self) -> None:
        """Stop the run at the next await point. Safe to call more than once."""
        if self._cancel.is_set():
            return
        self._cancel.set()
        pending = self._gate.cancel_all()
        released = await self._locks.release_all_locks(self.session_id)
        logger.info(
            "Session %s cancelled (%d approvals, %d locks released)",
            self.session_id, pending, len(released),
        )
        if self.phase.is_active:
            self.status = "Agent cancelled by user"
            self._emit(AgentEventType.STATUS, self.status)
            self._set_phase(AgentExecutionPhase.cancelled())

    def queue_user_feedback(self, text: str) -> bool:
        """Queue feedback for the next iteration. Ignored when no run is active."""
        text = text.strip()
        if not text or not self.phase.is_active:
            return False
        self._feedback.append(text)
        self._emit(AgentEventType.STATUS, "Feedback queued", text)
        return True

    def _drain_feedback(self) -> None:
        if not self._feedback:
            return
        joined = "\n\n".join(self._feedback)
        self._feedback.clear()
        self._log(f"USER FEEDBACK: {joined}")

    def _on_lock_wait(self, path: str, holder: str) -> None:
        self._set_phase(AgentExecutionPhase.waiting_for_file_lock(path))
        self._emit(
            AgentEventType.WAITING_FOR_LOCK,
            f"Waiting for lock on {os.path.basename(path)}",
            f"Held by session {holder}",
            file_path=path,
            holder=holder,
        )

    def _on_approval_wait(self, subject: str) -> None:
        if not self._gate.auto_approve:
            self._set_phase(AgentExecutionPhase.waiting_for_approval(subject))

    # --- model access --------------------------------------------------------

    def _cancelled(self) -> _RunStopped:
        return _RunStopped(AgentExecutionPhase.cancelled(), "Agent cancelled by user")

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise self._cancelled()

    async def _guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation wins the race."""
        if self._cancel.is_set():
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise self._cancelled()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task.done():
            waiter.cancel()
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise self._cancelled()

    async def _request(self, prompt: str) -> str:
        """One structured completion.

        Cancellation and fatal errors end the run. Other errors are
        re-raised for the caller to degrade.
        """
        try:
            result = await self._guard(
                self._llm.complete_one_shot(prompts.SYSTEM_PROMPT, prompt, self._cancel)
            )
        except AgentAPIError as e:
            if e.kind == AgentErrorKind.CANCELLED:
                raise self._cancelled() from e
            if e.is_fatal:
                hint = e.recovery_strategy.hint
                raise _RunStopped(
                    AgentExecutionPhase.failed(e.message), f"Error: {e.message}", hint,
                ) from e
            if e.recovery_strategy.action == RecoveryAction.REDUCE_CONTEXT:
                self._force_compact = True
            self._emit(AgentEventType.ERROR, e.kind.value, e.message)
            raise
        self._context.observe(result.prompt_tokens)
        return result.text

    async def _ask(self, prompt: str) -> ParsedAgentResponse:
        try:
            text = await self._request(prompt)
        except AgentAPIError as e:
            text = e.to_json()
        return ParsedAgentResponse.parse(text)

    async def _complete_text(self, prompt: str) -> str:
        try:
            return (await self._request(prompt)).strip()
        except AgentAPIError:
            return ""

    async def _summarize_context(self, prompt: str) -> str:
        result = await self._llm.complete_one_shot(prompts.SYSTEM_PROMPT, prompt, self._cancel)
        return result.text

    # --- run -----------------------------------------------------------------

    async def run(self, prompt: str) -> AgentRunResult:
        """Run ``prompt`` to a terminal phase. Only ``CancelledError`` escapes."""
        if self.phase.is_active:
            raise RuntimeError(f"Session {self.session_id} already has an active run")
        if self.phase.kind != PhaseKind.IDLE:
            self._set_phase(AgentExecutionPhase.idle())
        self._reset()
        self._llm.reset_peak()
        self._set_phase(AgentExecutionPhase.starting())
        logger.info("Session %s starting run in %s mode", self.session_id, self.mode.value)

        try:
            await self._run(prompt)
        except _RunStopped as stop:
            self.status = stop.status
            if not (stop.phase.kind == PhaseKind.CANCELLED and self.phase.kind == PhaseKind.CANCELLED):
                self._emit(AgentEventType.STATUS, stop.status, stop.detail)
                self._set_phase(stop.phase)
        except Exception as e:
            logger.exception("Session %s run failed", self.session_id)
            self.status = f"Error: {e}"
            self._emit(AgentEventType.ERROR, "Run failed", str(e))
            self._set_phase(AgentExecutionPhase.failed(str(e)))
        finally:
            await self._finish()

        logger.info(
            "Session %s finished: %s after %d iterations",
            self.session_id, self.phase.kind.value, self.iterations,
        )
        return AgentRunResult(self.phase, self.summary, self.status, self.iterations)

    async def _finish(self) -> None:
        self._gate.cancel_all()
        released = await self._locks.release_all_locks(self.session_id)
        if released:
            logger.debug("Released %d file locks at end of run", len(released))
        await self._save_checkpoint()

    async def _run(self, prompt: str) -> None:
        self._set_phase(AgentExecutionPhase.deciding())
        decision = await self._ask(prompts.decision_prompt(prompt))
        action = (decision.action or "RUN").strip().upper()
        self._emit(AgentEventType.DECISION, action, decision.reason or "")

        if action == "RESPOND":
            await self._respond(prompt)
            return

        self._set_phase(AgentExecutionPhase.setting_goal())
        self._registry.clear_session()
        goal = await self._ask(prompts.goal_prompt(prompt))
        self.goal = (goal.goal or "").strip() or prompt.strip()
        self._tool_ctx.goal = self.goal
        self._log(f"GOAL: {self.goal}")
        self._log(f"STARTING_CWD: {self._tool_ctx.working_dir}")
        self._emit(AgentEventType.GOAL, self.goal)

        if self._config.agent.enable_planning:
            await self._plan()

        await self._loop()

    async def _respond(self, prompt: str) -> None:
        self._set_phase(AgentExecutionPhase.executing(1, 1))
        chunks: list[str] = []
        stream = self._llm.stream_reply([
            LLMMessage(role="system", content=prompts.SYSTEM_PROMPT),
            LLMMessage(role="user", content=prompt),
        ])
        try:
            while (chunk := await self._guard(_next_chunk(stream))) is not None:
                chunks.append(chunk)
                self._emit(AgentEventType.REPLY_CHUNK, detail=chunk)
        except AgentAPIError as e:
            raise _RunStopped(AgentExecutionPhase.failed(e.message), f"Error: {e.message}") from e
        finally:
            await stream.aclose()
        self.summary = "".join(chunks)
        self.status = "Replied"
        self._emit(AgentEventType.SUMMARY, "Reply", self.summary)
        self._set_phase(AgentExecutionPhase.completed())

    async def _plan(self) -> None:
        self._set_phase(AgentExecutionPhase.planning())
        plan = await self._ask(
            prompts.plan_prompt(self.goal, self._tool_ctx.working_dir, self._shell.shell)
        )
        steps = [s.strip() for s in plan.plan or [] if s.strip()]
        if not steps:
            self._emit(
                AgentEventType.STATUS, "Could not generate plan, proceeding with adaptive execution",
            )
            return
        self._estimated_total = plan.estimated_commands or len(steps)
        self.checklist = TaskChecklist.from_plan(steps, self.goal)
        self._log(f"CHECKLIST:\n{self.checklist.status_lines()}")
        self._emit(AgentEventType.PLAN, f"Plan: {len(steps)} steps", self.checklist.status_lines())
        self._checklist_changed()

    async def _loop(self) -> None:
        agent = self._config.agent
        limit = agent.max_iterations
        while limit == 0 or self.iterations < limit:
            self._check_cancelled()
            self.iterations += 1
            self._set_phase(AgentExecutionPhase.executing(self.iterations, self._total_steps))
            self._drain_feedback()

            await self._maybe_reflect()
            await self._check_stuck()
            if await self._step():
                return
            await self._save_checkpoint()
            if await self._maybe_continue_check():
                return

        self.status = f"Reached maximum iterations ({limit})"
        self._emit(AgentEventType.STATUS, self.status)
        await self._summarize(stopped_early=True)

    # --- iteration pieces ----------------------------------------------------

    async def _maybe_reflect(self) -> None:
        agent = self._config.agent
        interval = agent.reflection_interval
        if not agent.enable_reflection or interval <= 0:
            return
        if self.iterations <= 1 or self.iterations % interval:
            return

        self._set_phase(AgentExecutionPhase.reflecting(self.iterations))
        status = self.checklist.status_lines() if self.checklist else "(no checklist)"
        reflection = await self._ask(prompts.reflection_prompt(self.goal, status, self.context_log))
        progress = reflection.progress_percent
        self._emit(
            AgentEventType.REFLECTION,
            f"Progress Check ({progress if progress is not None else '?'}%)",
            reflection.new_approach or "",
            on_track=reflection.on_track,
            remaining=reflection.remaining or [],
        )
        if reflection.should_adjust and reflection.new_approach:
            self._log(f"STRATEGY ADJUSTMENT: {reflection.new_approach}")
        self._set_phase(AgentExecutionPhase.executing(self.iterations, self._total_steps))

    async def _check_stuck(self) -> None:
        if not self._stuck.is_possibly_stuck():
            return
        recent = self._stuck.last_window()
        verdict = await self._ask(prompts.stuck_prompt(self.goal, recent))
        self._emit(
            AgentEventType.STUCK,
            "Possible loop detected",
            verdict.new_approach or "",
            is_stuck=verdict.is_stuck,
            commands=recent,
        )
        if verdict.should_stop:
            raise _RunStopped(
                AgentExecutionPhase.failed("Unable to make progress"),
                "Agent stopped - unable to make progress",
            )
        if verdict.is_stuck and verdict.new_approach:
            self._log(f"STUCK RECOVERY - NEW APPROACH: {verdict.new_approach}")
            self._stuck.clear()

    def _stop_agent(self, reason: str, detail: str) -> None:
        raise _RunStopped(AgentExecutionPhase.failed(reason), "Agent stopped", detail)

    def _checklist_context(self) -> str:
        checklist = self.checklist
        if checklist is None or not checklist.items:
            return ""
        lines = [
            f"CHECKLIST ({checklist.completed_count}/{len(checklist.items)} completed):",
            checklist.status_lines(),
        ]
        current = checklist.current_item
        if current is not None:
            lines.append(f"CURRENT ITEM: #{current.id} {current.description}")
        return "\n".join(lines)

    def _start_checklist_item(self, requested: int | None) -> int | None:
        checklist = self.checklist
        if checklist is None:
            return None
        item = checklist.get(requested) if requested is not None else None
        if item is None:
            item = checklist.current_item
        if item is None:
            return None
        if item.status == TaskStatus.PENDING:
            checklist.mark_in_progress(item.id)
            self._checklist_changed()
        return item.id

    async def _step(self) -> bool:
        """One iteration's action. Returns True once the run has completed."""
        agent = self._config.agent
        await self._guard(self._context.compact(self.context_log, force=self._force_compact))
        self._force_compact = False
        self._check_cancelled()
        self._drain_feedback()

        prompt = prompts.step_prompt(
            self.goal,
            self.iterations,
            agent.max_iterations,
            self._registry.descriptions(self.mode),
            self.mode.can_run_commands,
            self._checklist_context(),
            self._context.render(self.context_log),
            self._tool_ctx.working_dir,
            self._shell.shell,
        )
        step = await self._retry.call(lambda: self._ask(prompt), self._cancel)
        self._check_cancelled()

        if not has_step_content(step):
            self._empty_responses += 1
            logger.warning(
                "Empty step response %d/%d", self._empty_responses, agent.max_empty_responses,
            )
            if self._empty_responses >= agent.max_empty_responses:
                self._stop_agent(
                    "Too many empty responses",
                    "Unable to continue - received too many empty responses from the model.",
                )
            self._emit(AgentEventType.STATUS, "Temporary issue", "Empty response from model")
            return False
        self._empty_responses = 0

        command = (step.command or "").strip()
        tool = (step.tool or "").strip()
        if not tool and command:
            tool = "command"
        item_id = self._start_checklist_item(step.checklist_item)
        self._emit(
            AgentEventType.STEP_STARTED,
            step.step or tool or command,
            tool=tool,
            command=command,
            checklist_item=item_id,
        )

        if tool and tool != "command":
            return await self._run_tool_step(tool, step.tool_args or {}, item_id)
        if not command:
            return False
        return await self._run_command_step(command, item_id)

    def _count_unavailable(self, entry: str, title: str) -> None:
        self._unknown_tools += 1
        self._log(entry)
        self._emit(AgentEventType.STATUS, title, entry)
        if self._unknown_tools >= self._config.agent.max_unknown_tools:
            self._stop_agent(
                "Too many unavailable tool requests",
                "Unable to continue - the model kept requesting tools that are not available.",
            )

    async def _run_tool_step(self, name: str, args: dict[str, str], item_id: int | None) -> bool:
        if not self._registry.is_tool_available(name, self.mode):
            if self._registry.get(name) is None:
                self._count_unavailable(f"TOOL: {name} - not found", f"Unknown tool: {name}")
            else:
                self._count_unavailable(
                    f"TOOL: {name} - not available in {self.mode.label} mode",
                    f"Tool not allowed: {name}",
                )
            return False
        self._unknown_tools = 0

        tool = self._registry.get(name)
        result = await self._approve_file_tool(tool, args)
        if result is None:
            result = await self._guard(self._registry.execute(name, args, self._tool_ctx))
        self._resume_executing()

        display = result.display
        self._log(f"TOOL: {name} {json.dumps(args)[:500]}")
        self._log(f"RESULT: {display[: self._config.context.max_output_capture]}")
        self._emit(
            AgentEventType.TOOL_RESULT,
            f"{name}: {'ok' if result.success else 'failed'}",
            display[:2000],
            tool=name,
            success=result.success,
            lock_pending=result.lock_pending,
            file_path=result.file_change.file_path if result.file_change else None,
        )

        if name in PLAN_TOOLS:
            if self._tool_ctx.goal and self._tool_ctx.goal != self.goal:
                self.goal = self._tool_ctx.goal
                self._log(f"GOAL: {self.goal}")
            self._checklist_changed()
        else:
            self._update_item(item_id, result)

        if result.success and self._should_assess(name, args):
            assessment = await self._ask(
                prompts.tool_assess_prompt(self.goal, self.checklist, name, display)
            )
            self._emit(AgentEventType.ASSESSMENT, f"Done: {bool(assessment.done)}", assessment.reason or "")
            if assessment.done:
                return await self._finish_done()
        return False

    async def _approve_file_tool(self, tool: AgentTool, args: dict[str, str]) -> ToolResult | None:
        """Ask for approval of a file change; a result means it was refused."""
        needs_approval = tool.always_requires_approval or (
            tool.mutates_files and self._config.approval.require_file_edit_approval
        )
        if not needs_approval:
            return None
        change = self._registry.prepare_change(tool.name, args, self._tool_ctx)
        target = change.file_path if change else tool.name
        self._on_approval_wait(target)
        decision = await self._guard(
            self._gate.request(ApprovalKind.FILE_CHANGE, file_change=change)
        )
        self._resume_executing()
        if decision.approved:
            return None
        return ToolResult.fail(f"Change to {target} was not approved ({decision.status.value})")

    def _update_item(self, item_id: int | None, result: ToolResult) -> None:
        checklist = self.checklist
        if item_id is None or checklist is None or checklist.get(item_id) is None:
            return
        if result.success:
            checklist.mark_completed(item_id, "Done")
        elif result.lock_pending:
            return
        else:
            checklist.mark_failed(item_id, (result.error or "failed")[:50])
        self._checklist_changed()

    def _should_assess(self, name: str, args: dict[str, str]) -> bool:
        signals_done = name in FILE_MUTATING_TOOLS or (
            name == "plan_and_track" and bool(args.get("complete_task"))
        )
        if not signals_done:
            return False
        checklist = self.checklist
        if checklist is None:
            return True
        return not any(item.status in _OPEN for item in checklist.items)

    async def _run_command_step(self, command: str, item_id: int | None) -> bool:
        if not self.mode.can_run_commands:
            self._count_unavailable(
                f"COMMAND: {command} - not allowed in {self.mode.label} mode",
                "Commands not allowed",
            )
            return False
        self._unknown_tools = 0

        approved, reason = await self._guard(approve_command(self._tool_ctx, command))
        self._resume_executing()
        if approved is None:
            self._log(f"REJECTED: {command}")
            self._emit(AgentEventType.STATUS, "Command rejected", reason)
            return False

        result, output = await self._execute_command(approved)
        if result.success and item_id is not None and self.checklist is not None:
            self.checklist.mark_completed(item_id, "Done")
            self._checklist_changed()

        analysis = await self._ask(prompts.analyze_prompt(
            self.goal, approved, output, self._tool_ctx.working_dir, result.exit_code,
        ))
        self._emit(
            AgentEventType.ASSESSMENT,
            f"Outcome: {analysis.outcome or 'uncertain'}",
            analysis.reason or "",
            next=analysis.next,
        )

        last_command = approved
        agent = self._config.agent
        fixed = (analysis.fixed_command or "").strip()
        if (analysis.next or "").lower() == "fix" and fixed and self._fix_attempts < agent.max_fix_attempts:
            self._fix_attempts += 1
            self._emit(
                AgentEventType.STATUS,
                f"Fix attempt {self._fix_attempts}/{agent.max_fix_attempts}",
                fixed,
            )
            fix_approved, reason = await self._guard(approve_command(self._tool_ctx, fixed))
            self._resume_executing()
            if fix_approved is None:
                self._log(f"REJECTED: {fixed}")
            else:
                result, output = await self._execute_command(fix_approved)
                last_command = fix_approved
                post = await self._ask(prompts.assess_prompt(
                    self.goal, self.checklist, self._tool_ctx.working_dir, last_command,
                    output, result.exit_code, self._context.render(self.context_log),
                    after_fix=True,
                ))
                if post.done:
                    return await self._finish_done()

        assessment = await self._ask(prompts.assess_prompt(
            self.goal, self.checklist, self._tool_ctx.working_dir, last_command,
            output, result.exit_code, self._context.render(self.context_log),
        ))
        self._emit(AgentEventType.ASSESSMENT, f"Done: {bool(assessment.done)}", assessment.reason or "")
        if assessment.done:
            return await self._finish_done()
        return False

    async def _execute_command(self, command: str) -> tuple[CommandOutput, str]:
        timeout = self._config.agent.command_timeout
        self._emit(AgentEventType.COMMAND_STARTED, command)
        result = await self._guard(self._shell.execute(command, timeout=timeout))
        self._log(f"RAN: {command}")
        self._stuck.record(command)

        output = ""
        if result.output.strip():
            self._registry.outputs.store(result.output, command)
            output = await self._process_output(result.output, command)
            self._log(f"OUTPUT: {output}")
        if result.timed_out:
            self._log(f"TIMEOUT: command exceeded {timeout:g}s")
        self._log(f"EXIT_CODE: {result.exit_code}")
        self._emit(
            AgentEventType.COMMAND_OUTPUT,
            command,
            output[:2000],
            exit_code=result.exit_code,
            success=result.success,
        )
        return result, output

    async def _process_output(self, output: str, command: str) -> str:
        """Fit command output into the context log."""
        settings = self._config.context
        if len(output) <= settings.max_output_capture:
            return output
        if (
            settings.enable_output_summarization
            and len(output) > settings.output_summarization_threshold
        ):
            excerpt = truncate_output(output, settings.output_summarization_threshold * 2)
            summary = await self._complete_text(prompts.output_summary_prompt(command, excerpt))
            if summary:
                return f"[SUMMARIZED OUTPUT from '{command[:50]}' ({len(output)} chars)]\n{summary}"
        return truncate_output(output, settings.max_output_capture)

    async def _maybe_continue_check(self) -> bool:
        interval = self._config.agent.continue_check_interval
        if interval <= 0 or self.iterations % interval:
            return False
        verdict = await self._continue_retry.call(
            lambda: self._ask(prompts.continue_prompt(self.goal, self.context_log)),
            self._cancel,
            accept=lambda r: bool(r.decision),
        )
        self._check_cancelled()
        if (verdict.decision or "").strip().upper() != "STOP":
            return False
        self.status = "Stopped: diminishing returns"
        self._emit(AgentEventType.STATUS, self.status, verdict.reason or "")
        await self._summarize(stopped_early=True)
        return True

    # --- completion ----------------------------------------------------------

    async def _finish_done(self) -> bool:
        """Verify and summarize. Returns False when verification sends the run back."""
        if self._config.agent.enable_verification and not await self._verify():
            self._log("VERIFICATION: Failed - continuing to fix issues")
            self._set_phase(AgentExecutionPhase.executing(self.iterations, self._total_steps))
            return False

        checklist = self.checklist
        if checklist is not None and checklist.remaining_items:
            for item in checklist.remaining_items:
                checklist.mark_completed(item.id, item.verification_note)
            self._checklist_changed()
        self.status = "Completed"
        await self._summarize()
        return True

    async def _verify(self) -> bool:
        self._set_phase(AgentExecutionPhase.verifying())
        response = await self._ask(prompts.verification_prompt(self.goal, self.context_log))
        checks = (response.checks or [])[:3]

        if not checks:
            result = await self._guard(
                self._registry.execute("list_dir", {"path": "."}, self._tool_ctx)
            )
            self._log("VERIFY: Listed directory - OK")
            self._emit(AgentEventType.VERIFICATION, "Listed directory", result.display[:200], passed=True)
            return True

        passed = True
        for check in checks:
            name = check.tool.strip()
            if name not in VERIFICATION_TOOLS or not self._registry.is_tool_available(name, self.mode):
                self._log(f"VERIFY[{name}]: SKIPPED - not a read-only check")
                continue
            result = await self._guard(self._registry.execute(name, check.args, self._tool_ctx))
            outcome = "PASS" if result.success else "FAIL"
            self._log(f"VERIFY[{name}]: {outcome} - {result.display[:200]}")
            self._emit(
                AgentEventType.VERIFICATION,
                f"{check.description or name}: {outcome}",
                result.display[:200],
                passed=result.success,
            )
            passed = passed and result.success
        return passed

    async def _summarize(self, stopped_early: bool = False) -> None:
        self._set_phase(AgentExecutionPhase.summarizing())
        summary = await self._complete_text(prompts.summary_prompt(
            self.goal, self._context.render(self.context_log), stopped_early,
        ))
        self.summary = summary or f"Finished: {self.goal}"
        self._emit(AgentEventType.SUMMARY, "Summary", self.summary)
        self._set_phase(AgentExecutionPhase.completed())
