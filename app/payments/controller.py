from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Generic, Mapping, TypeVar

from app.core.config import Settings
from app.db.models import PipelineState
from app.payments.audit import AuditLogEntry, AuditRecorder
from app.payments.deep_link import DeepLinkTarget
from app.payments.effects import (
    Command,
    Navigate,
    Notify,
    OfferActions,
    OpenDeepLink,
    RecordAudit,
    RequestContext,
    is_mobile_context,
    plan_effects,
)
from app.payments.errors import (
    InvalidTransitionError,
    MissingInvoiceIdError,
    VerificationTransportError,
)
from app.payments.outcome import Outcome, classify, classify_parse_failure
from app.payments.redirect_params import RedirectEvent, parse_redirect_params
from app.payments.verification import VerificationClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Flight(Generic[T]):
    task: asyncio.Future[T]
    waiters: int = 0


class InvoiceVerificationGate:
    """Single flight per invoice id.

    A second caller for an invoice that is already being verified awaits the
    running call instead of issuing another one. The shared call is cancelled
    only when its last waiter goes away.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, _Flight] = {}

    def in_flight(self, invoice_id: str) -> bool:
        return invoice_id in self._inflight

    async def run(self, invoice_id: str, factory: Callable[[], Awaitable[T]]) -> T:
        flight = self._inflight.get(invoice_id)
        if flight is None:
            flight = _Flight(asyncio.ensure_future(factory()))
            self._inflight[invoice_id] = flight
            flight.task.add_done_callback(
                lambda _task, key=invoice_id, current=flight: self._release(key, current)
            )
        else:
            logger.info("payment_verification_joined", extra={"invoice_id": invoice_id})

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                flight.task.cancel()
                # A cancelled flight must not be joined by the next caller.
                self._release(invoice_id, flight)

    def _release(self, invoice_id: str, flight: _Flight) -> None:
        if self._inflight.get(invoice_id) is flight:
            del self._inflight[invoice_id]


@dataclass
class RedirectResolution:
    run_id: str
    outcome: Outcome
    event: RedirectEvent | None
    commands: tuple[Command, ...]
    attempts: int = 0
    audit_task: asyncio.Task | None = field(default=None, repr=False)

    @property
    def state(self) -> PipelineState:
        return self.outcome.state

    @property
    def navigate(self) -> Navigate | None:
        return self._first(Navigate)

    @property
    def deep_link(self) -> DeepLinkTarget | None:
        command = self._first(OpenDeepLink)
        return command.target if command else None

    @property
    def notification(self) -> Notify | None:
        return self._first(Notify)

    @property
    def actions(self) -> tuple[str, ...]:
        command = self._first(OfferActions)
        return command.actions if command else ()

    async def wait_for_audit(self, timeout: float) -> int | None:
        """Returns the audit id if the write finished within `timeout`.

        The write itself is never cancelled here.
        """
        if self.audit_task is None:
            return None
        done, _ = await asyncio.wait({self.audit_task}, timeout=max(timeout, 0))
        if not done:
            return None
        return self.audit_task.result()

    def _first(self, kind: type[T]) -> T | None:
        for command in self.commands:
            if isinstance(command, kind):
                return command
        return None


class PipelineRun:
    """State machine for one page load: verifying -> success | cancelled | failed."""

    def __init__(self, *, manual_retry: bool = False) -> None:
        self.run_id = uuid.uuid4().hex
        self.manual_retry = manual_retry
        self.state = PipelineState.VERIFYING
        self.outcome: Outcome | None = None
        self.abandoned = False
        self._task: asyncio.Task | None = None

    @property
    def done(self) -> bool:
        return self.state.is_terminal or self.abandoned

    def transition(self, outcome: Outcome) -> None:
        if self.state.is_terminal:
            raise InvalidTransitionError(
                f"Pipeline already resolved as {self.state.value}; cannot move to {outcome.state.value}"
            )
        if outcome.state is PipelineState.SUCCESS and not (
            outcome.verification is not None and outcome.verification.is_settled
        ):
            raise InvalidTransitionError("Success requires a verified COMPLETED payment")
        self.outcome = outcome
        self.state = outcome.state

    def attach(self, task: asyncio.Task) -> None:
        self._task = task

    def abandon(self) -> None:
        if self.state.is_terminal:
            return
        self.abandoned = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("payment_redirect_abandoned", extra={"run_id": self.run_id})

    async def wait(self) -> RedirectResolution | None:
        if self._task is None:
            raise RuntimeError("PipelineRun has not been started")
        try:
            return await self._task
        except asyncio.CancelledError:
            if self.abandoned:
                return None
            self.abandoned = True
            raise


class RedirectController:
    def __init__(
        self,
        settings: Settings,
        *,
        verifier: VerificationClient,
        recorder: AuditRecorder,
        gate: InvoiceVerificationGate | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._verifier = verifier
        self._recorder = recorder
        self._gate = gate or InvoiceVerificationGate()
        self._sleep = sleep
        self._clock = clock
        self._background: set[asyncio.Task] = set()

    def begin(
        self,
        params: Mapping[str, str],
        *,
        context: RequestContext,
        manual_retry: bool = False,
    ) -> PipelineRun:
        run = PipelineRun(manual_retry=manual_retry)
        if manual_retry:
            logger.info(
                "payment_redirect_manual_retry",
                extra={"run_id": run.run_id, "invoice_id": params.get("invoice_id") or params.get("order_id")},
            )
        run.attach(asyncio.create_task(self._drive(run, dict(params), context)))
        return run

    async def resolve(self, params: Mapping[str, str], *, context: RequestContext) -> RedirectResolution | None:
        return await self.begin(params, context=context).wait()

    async def retry(self, params: Mapping[str, str], *, context: RequestContext) -> RedirectResolution | None:
        """Starts a new run for the same redirect.

        The run gets a fresh retry budget once no verification for the invoice
        is in flight. While one is, the retry joins it and receives its result;
        the joined caller's user id and payment type are not sent again.
        """
        return await self.begin(params, context=context, manual_retry=True).wait()

    async def _drive(
        self,
        run: PipelineRun,
        params: dict[str, str],
        context: RequestContext,
    ) -> RedirectResolution | None:
        try:
            event = parse_redirect_params(params)
        except MissingInvoiceIdError as exc:
            logger.warning(exc.event_code, extra={"run_id": run.run_id, "params": sorted(params)})
            return self._finish(run, classify_parse_failure(exc), None, context, attempts=0)

        if not context.mobile and is_mobile_context(
            self._settings, source=event.source, user_agent=context.user_agent
        ):
            context = replace(context, mobile=True)

        attempts = 0
        outcome = classify(event, None)
        if not outcome.is_terminal:
            outcome, attempts = await self._gate.run(
                event.invoice_id,
                lambda: self._verify_with_budget(event, context.user_id),
            )

        if run.abandoned:
            logger.info(
                "payment_redirect_result_discarded",
                extra={"run_id": run.run_id, "invoice_id": event.invoice_id},
            )
            return None
        return self._finish(run, outcome, event, context, attempts=attempts)

    async def _verify_with_budget(self, event: RedirectEvent, user_id: str | None) -> tuple[Outcome, int]:
        max_attempts = max(1, self._settings.payment_verify_max_attempts)
        total_budget = self._settings.payment_verify_total_budget_seconds
        started = self._clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._verifier.verify(
                    event.invoice_id,
                    event.raw_status,
                    event.payment_type,
                    user_id,
                )
            except VerificationTransportError as exc:
                result = exc

            delay = self._backoff_seconds(attempt)
            elapsed = self._clock() - started
            exhausted = attempt >= max_attempts or elapsed + delay > total_budget
            outcome = classify(event, result, budget_exhausted=exhausted)
            should_retry_transport = isinstance(result, VerificationTransportError) and not exhausted
            if outcome.is_terminal and not should_retry_transport:
                return outcome, attempt

            logger.info(
                "payment_verification_retry_scheduled",
                extra={
                    "invoice_id": event.invoice_id,
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "reason": outcome.reason or "payment_pending",
                },
            )
            await self._sleep(delay)

    def _backoff_seconds(self, attempt: int) -> float:
        return self._settings.payment_verify_backoff_seconds * (2 ** (attempt - 1))

    def _finish(
        self,
        run: PipelineRun,
        outcome: Outcome,
        event: RedirectEvent | None,
        context: RequestContext,
        *,
        attempts: int,
    ) -> RedirectResolution:
        run.transition(outcome)
        commands = tuple(plan_effects(outcome, event, settings=self._settings, context=context))

        audit_task = None
        for command in commands:
            if isinstance(command, RecordAudit):
                audit_task = self._schedule_audit(command.entry)

        logger.info(
            "payment_redirect_resolved",
            extra={
                "run_id": run.run_id,
                "invoice_id": event.invoice_id if event else None,
                "state": outcome.state.value,
                "retryable": outcome.retryable,
                "reason": outcome.reason,
                "attempts": attempts,
                "mobile": context.mobile,
                "manual_retry": run.manual_retry,
            },
        )
        return RedirectResolution(
            run_id=run.run_id,
            outcome=outcome,
            event=event,
            commands=commands,
            attempts=attempts,
            audit_task=audit_task,
        )

    def _schedule_audit(self, entry: AuditLogEntry) -> asyncio.Task:
        task = asyncio.create_task(self._recorder.record(entry))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
