"""Multi-step action orchestration.

An :class:`ActionSpec` describes one user-facing action: the primary command,
the pre-steps that must happen first, how to judge the outcome and which
flags to update. :class:`ActionOrchestrator` runs it through a fixed
sequence::

    Idle -> Validating -> PreSteps -> Running -> Reconciling -> Idle

Validation rejects without side effects. Once the guard is taken every exit
path, including exceptions, removes the progress line, releases the guard,
re-enables interaction and schedules a status refresh.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .commands import ScriptCommands
from .config import AppConfig
from .console import OutputLog
from .errors import (
    GUARD_BUSY_MESSAGE,
    ChrootctlError,
    CommandFailedError,
    GuardBusyError,
    ValidationFailedError,
)
from .executor import ChunkKind, CommandExecutor, CommandResult, ExecutionCallbacks
from .logging import OperationScope, StructuredLogger
from .outcomes import ExitCodeClassifier, Outcome, OutcomeClassifier, Verdict
from .probes import SystemProbes
from .progress import ProgressHandle, ProgressReporter, ProgressStyle
from .reconcile import Probe, ReconciliationEngine
from .session import Session
from .state import FlagRegistry

_LOG = logging.getLogger(__name__)

NO_ACCESS_MESSAGE = "Cannot execute: root access not available"


class OperationStatus(str, Enum):
    """Lifecycle of an :class:`Operation`."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


PrimaryCallable = Callable[["ActionRun"], Awaitable[CommandResult]]
Validator = Callable[[], "str | None"]


@dataclass
class Operation:
    """One execution of an :class:`ActionSpec`."""

    id: str
    title: str
    command: str | PrimaryCallable | None = None
    status: OperationStatus = OperationStatus.PENDING
    output_lines: list[str] = field(default_factory=list)
    error_message: str | None = None
    error: ChrootctlError | None = None
    outcome: Outcome | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Return ``True`` when the operation finished successfully."""
        return self.status is OperationStatus.SUCCEEDED

    @property
    def output(self) -> str:
        """Return the captured output as one string."""
        return "\n".join(self.output_lines)


@dataclass(frozen=True)
class PreStep:
    """A command that must run before the primary command."""

    label: str
    command: str
    progress_text: str
    success_message: str
    failure_message: str
    announce: str | None = None
    should_run: Probe | None = None
    probe_failure_message: str | None = None
    required: bool = False
    flag_updates: Mapping[str, bool] = field(default_factory=dict)
    log_output: bool = False


@dataclass(frozen=True)
class ActionSpec:
    """Everything the orchestrator needs to run one action."""

    name: str
    title: str
    command: str | PrimaryCallable
    progress_text: str
    progress_style: ProgressStyle = ProgressStyle.SPINNER
    banner: str | None = None
    validator: Validator | None = None
    requires_access: bool = True
    pre_steps: Sequence[PreStep] = ()
    on_start: Callable[[], None] | None = None
    classifier: OutcomeClassifier = field(default_factory=ExitCodeClassifier)
    on_success: Mapping[str, bool] = field(default_factory=dict)
    on_failure: Mapping[str, bool] = field(default_factory=dict)
    always: Mapping[str, bool] = field(default_factory=dict)
    success_message: str | None = None
    failure_message: str | None = None
    success_lines: Sequence[str] = ()
    failure_lines: Sequence[str] = ()
    after_success: Callable[["ActionRun"], Awaitable[None]] | None = None
    reconcile_flags: Sequence[str] = ()
    refresh_delay_factor: float = 1.0
    log_output: bool = True
    log_args: Mapping[str, object] = field(default_factory=dict)


class InteractionSurface(Protocol):
    """Whatever accepts user input while no operation runs."""

    def set_interaction_enabled(self, enabled: bool) -> None:
        """Allow or block new requests from the operator."""
        ...


class NullInteraction:
    """Interaction surface for front ends that cannot lock input."""

    def set_interaction_enabled(self, enabled: bool) -> None:
        """Ignore the request."""


class StatusScheduler(Protocol):
    """Something that can refresh status after a delay."""

    def schedule(self, delay: float) -> None:
        """Request a refresh *delay* seconds from now."""
        ...


class ActionRun:
    """Handle passed to callable primary commands and ``after_success`` hooks."""

    def __init__(
        self,
        orchestrator: ActionOrchestrator,
        operation: Operation,
        progress: ProgressHandle | None,
    ) -> None:
        """Bind the run to its *operation* and *progress* line."""
        self.orchestrator = orchestrator
        self.operation = operation
        self.progress = progress
        self.abandoned: asyncio.Future[CommandResult] | None = None

    @property
    def log(self) -> OutputLog:
        """Return the output log."""
        return self.orchestrator.log

    def update_progress(self, text: str) -> None:
        """Change the progress text."""
        if self.progress is not None:
            self.orchestrator.progress.update(self.progress, text)

    def restart_progress(self, text: str, style: ProgressStyle = ProgressStyle.DOTS) -> None:
        """Replace the progress line with a fresh one."""
        if self.progress is not None:
            self.orchestrator.progress.remove(self.progress)
        self.progress = self.orchestrator.progress.create(text, style)

    async def run_command(self, command: str, *, log_output: bool = True) -> CommandResult:
        """Run *command*, streaming its lines into the log and the operation."""
        return await self.orchestrator._stream(self.operation, command, log_output=log_output)


class ActionOrchestrator:
    """Sequence guard, pre-steps, primary command and reconciliation."""

    def __init__(
        self,
        *,
        config: AppConfig,
        session: Session,
        executor: CommandExecutor,
        flags: FlagRegistry,
        log: OutputLog,
        progress: ProgressReporter,
        reconciler: ReconciliationEngine,
        probes: SystemProbes,
        status: StatusScheduler | None = None,
        interaction: InteractionSurface | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Wire the orchestrator to its collaborators."""
        self.config = config
        self.session = session
        self.executor = executor
        self.flags = flags
        self.log = log
        self.progress = progress
        self.reconciler = reconciler
        self.probes = probes
        self.status = status
        self.interaction: InteractionSurface = interaction or NullInteraction()
        self.logger = logger
        self.commands = ScriptCommands(config.paths)

    @property
    def flag_probes(self) -> dict[str, Probe]:
        """Return the probe used to reconcile each flag."""
        return {
            "hotspot": self.probes.hotspot_active,
            "sparse": self.probes.sparse_image_exists,
        }

    async def forwarding_running(self) -> bool:
        """Return whether forward NAT is believed active (flag or state marker)."""
        if self.flags.get("forwarding"):
            return True
        return await self.probes.forwarding_active()

    # ------------------------------------------------------------------
    # Pre-step builders
    # ------------------------------------------------------------------
    def ensure_stopped(self, *, network: bool = True, chroot: bool = True) -> list[PreStep]:
        """Pre-steps that stop dependent services and, optionally, the chroot."""
        steps: list[PreStep] = []
        if network:
            steps.append(
                PreStep(
                    label="Stop hotspot",
                    command=self.commands.hotspot_stop(),
                    progress_text="Stopping hotspot first",
                    announce="Stopping hotspot before operation...",
                    success_message="✓ Hotspot stopped successfully",
                    failure_message="✗ Failed to stop hotspot, continuing with operation",
                    should_run=self.probes.interface_exists,
                    probe_failure_message="⚠ Could not check hotspot status, proceeding with operation",
                    flag_updates={"hotspot": False},
                )
            )
            steps.append(
                PreStep(
                    label="Stop forward NAT",
                    command=self.commands.forward_stop(),
                    progress_text="Stopping forward NAT first",
                    announce="Stopping forward NAT before operation...",
                    success_message="✓ Forward NAT stopped successfully",
                    failure_message="✗ Failed to stop forward NAT, continuing with operation",
                    should_run=self.forwarding_running,
                    probe_failure_message=(
                        "⚠ Could not check forward NAT status, proceeding with operation"
                    ),
                    flag_updates={"forwarding": False},
                )
            )
        if chroot:
            steps.append(
                PreStep(
                    label="Stop chroot",
                    command=self.commands.chroot_quiet("stop"),
                    progress_text="Stopping chroot",
                    success_message="✓ Chroot stopped",
                    failure_message="✗ Failed to stop chroot",
                    should_run=self.probes.chroot_running,
                    probe_failure_message="⚠ Could not check chroot status, proceeding with operation",
                    required=True,
                )
            )
        return steps

    # ------------------------------------------------------------------
    # Running actions
    # ------------------------------------------------------------------
    async def run(self, action: ActionSpec) -> Operation:
        """Run *action* to completion and return its :class:`Operation`."""
        operation = Operation(
            id=f"{action.name}-{uuid.uuid4().hex[:8]}",
            title=action.title,
            command=action.command,
        )
        with self._scope(action) as scope:
            rejection = self._validate(action)
            if rejection is None:
                rejection = self._acquire(operation)
            if rejection is not None:
                self._fail(operation, rejection)
                self._record(scope, operation)
                return operation

            operation.status = OperationStatus.RUNNING
            progress: ProgressHandle | None = None
            run: ActionRun | None = None
            try:
                self.interaction.set_interaction_enabled(False)
                self.log.banner(action.banner or action.title)
                progress = self.progress.create(action.progress_text, action.progress_style)
                run = ActionRun(self, operation, progress)
                try:
                    await self._execute(action, operation, run)
                except ChrootctlError as exc:
                    self.log.err(str(exc))
                    self._fail(operation, exc)
                if run.progress is not None:
                    self.progress.remove(run.progress)
                try:
                    await self._reconcile(action)
                except ChrootctlError as exc:
                    if type(operation.error) is not type(exc):
                        self.log.err(str(exc))
                    if operation.error is None:
                        self._fail(operation, exc)
            finally:
                for handle in (progress, run.progress if run is not None else None):
                    if handle is not None:
                        self.progress.remove(handle)
                abandoned = run.abandoned if run is not None else None
                if abandoned is not None and not abandoned.done():
                    abandoned.add_done_callback(self._release_when_finished)
                else:
                    self.session.release()
                self.interaction.set_interaction_enabled(True)
                if self.status is not None:
                    self.status.schedule(
                        self.config.delays.status_refresh * action.refresh_delay_factor
                    )
            self._record(scope, operation)
        return operation

    def _validate(self, action: ActionSpec) -> ChrootctlError | None:
        if self.session.is_held():
            self.log.warn(f"⚠ {GUARD_BUSY_MESSAGE}")
            return GuardBusyError(holder=self.session.active_operation_id)
        if action.requires_access and not self.session.privileged_access_confirmed:
            self.log.err(NO_ACCESS_MESSAGE)
            return self.session.access_failure()
        if action.validator is not None:
            message = action.validator()
            if message:
                self.log.err(message)
                return ValidationFailedError(message)
        return None

    def _acquire(self, operation: Operation) -> ChrootctlError | None:
        try:
            acquired = self.session.try_acquire(operation.id)
        except ChrootctlError as exc:
            self.log.err(str(exc))
            return exc
        if acquired:
            return None
        holder = self.session.lock.holder() if self.session.lock is not None else None
        self.log.warn(f"⚠ {GUARD_BUSY_MESSAGE}")
        return GuardBusyError(holder=str(holder.get("operation_id")) if holder else None)

    def _release_when_finished(self, task: asyncio.Future[CommandResult]) -> None:
        """Free the guard once a command whose wait timed out has ended."""
        if not task.cancelled() and task.exception() is not None:
            _LOG.debug("Abandoned command failed: %s", task.exception())
        self.session.release()

    async def _execute(self, action: ActionSpec, operation: Operation, run: ActionRun) -> None:
        if action.on_start is not None:
            action.on_start()
        for step in action.pre_steps:
            if not await self._run_pre_step(step, operation, run):
                self.log.err(f"{action.title} aborted: {step.label} failed")
                return

        run.update_progress(action.progress_text)
        await asyncio.sleep(self.config.delays.ui_update)

        result = await self._dispatch(action, operation, run)
        if run.progress is not None:
            self.progress.remove(run.progress)

        outcome = action.classifier.classify(result, operation.output)
        operation.outcome = outcome
        self._apply(action.always)

        if outcome.verdict is Verdict.FAILURE:
            self.log.err(outcome.summary or action.failure_message or f"✗ {action.title} failed")
            for line in action.failure_lines:
                self.log.err(line)
            self._apply(action.on_failure)
            self._fail(
                operation,
                CommandFailedError(
                    result.error or f"{action.title} failed",
                    exit_code=result.exit_code,
                ),
            )
            return

        if outcome.verdict is Verdict.WARNING:
            summary = outcome.summary or f"⚠ {action.title} completed with warnings"
            self.log.warn(summary)
            operation.warnings.append(summary)
        else:
            self.log.success(action.success_message or f"✓ {action.title} completed successfully")
        for line in action.success_lines:
            self.log.info(line)
        self._apply(action.on_success)
        operation.status = OperationStatus.SUCCEEDED

        if action.after_success is not None:
            await action.after_success(run)

    async def _run_pre_step(self, step: PreStep, operation: Operation, run: ActionRun) -> bool:
        if step.should_run is not None:
            try:
                needed = await step.should_run()
            except Exception as exc:  # probe failure: skip the step
                _LOG.debug("Pre-step probe for %s failed: %s", step.label, exc)
                self.log.warn(
                    step.probe_failure_message or f"⚠ Could not check before {step.label}"
                )
                return True
            if not needed:
                return True

        run.update_progress(step.progress_text)
        if step.announce:
            self.log.info(step.announce)
        result = await self._stream(operation, step.command, log_output=step.log_output)
        if result.success:
            self.log.success(step.success_message)
            self._apply(step.flag_updates)
            return True
        if step.required:
            self.log.err(step.failure_message)
            self._fail(
                operation,
                CommandFailedError(
                    f"{step.label} failed",
                    exit_code=result.exit_code,
                    step=step.label,
                ),
            )
            return False
        self.log.warn(step.failure_message)
        operation.warnings.append(step.failure_message)
        return True

    async def _dispatch(
        self, action: ActionSpec, operation: Operation, run: ActionRun
    ) -> CommandResult:
        if isinstance(action.command, str):
            pending: Awaitable[CommandResult] = self._stream(
                operation, action.command, log_output=action.log_output
            )
        else:
            pending = action.command(run)

        timeout = self.config.command_timeout
        if timeout is None:
            return await pending

        task = asyncio.ensure_future(pending)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout)
        except TimeoutError:
            # The backend keeps running and keeps the guard until it ends.
            run.abandoned = task
            raise CommandFailedError(
                f"{action.title} timed out after {timeout:g}s (command still running)"
            ) from None

    async def _stream(self, operation: Operation, command: str, *, log_output: bool) -> CommandResult:
        handle = self.executor.execute_async(command, callbacks=ExecutionCallbacks())
        async for chunk in handle.outputs():
            if chunk.kind is ChunkKind.NOTICE:
                continue
            lines = chunk.lines()
            operation.output_lines.extend(lines)
            if not log_output:
                continue
            for line in lines:
                if chunk.kind is ChunkKind.STDERR:
                    self.log.err(line)
                else:
                    self.log.info(line)
        return await handle.wait()

    async def _reconcile(self, action: ActionSpec) -> None:
        probes = self.flag_probes
        for name in action.reconcile_flags:
            probe = probes.get(name)
            if probe is not None:
                await self.reconciler.reconcile(name, probe)

    def _apply(self, updates: Mapping[str, bool]) -> None:
        for name, value in updates.items():
            self.flags.set(name, value)

    @staticmethod
    def _fail(operation: Operation, error: ChrootctlError) -> None:
        operation.status = OperationStatus.FAILED
        operation.error = error
        operation.error_message = str(error)

    @contextlib.contextmanager
    def _scope(self, action: ActionSpec) -> Iterator[OperationScope | None]:
        if self.logger is None:
            yield None
            return
        with self.logger.operation(
            action.name,
            args=action.log_args,
            target={"kind": "chroot", "path": str(self.config.chroot_dir)},
        ) as scope:
            yield scope

    def _record(self, scope: OperationScope | None, operation: Operation) -> None:
        if scope is None:
            return
        context = {"operation_id": operation.id, "lines": len(operation.output_lines)}
        if self.session.lock is not None:
            scope.set_lock_wait_ms(self.session.lock.wait_ms)
        if operation.status is OperationStatus.SUCCEEDED:
            if operation.warnings:
                scope.warning(
                    f"{operation.title} completed with warnings.",
                    warnings=operation.warnings,
                    changed=1,
                    context=context,
                )
            else:
                scope.success(f"{operation.title} completed.", changed=1, context=context)
            return
        error = operation.error
        rc = int(error.exit_code) if error is not None else 1
        scope.error(operation.error_message or f"{operation.title} failed.", context=context, rc=rc)


__all__ = [
    "ActionOrchestrator",
    "ActionRun",
    "ActionSpec",
    "InteractionSurface",
    "NO_ACCESS_MESSAGE",
    "NullInteraction",
    "Operation",
    "OperationStatus",
    "PreStep",
    "StatusScheduler",
]
