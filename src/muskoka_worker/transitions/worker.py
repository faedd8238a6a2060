"""Bounded worker pool that feeds subscription deliveries to the coordinator."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass

from muskoka_worker.transitions.coordinator import TaskCoordinator
from muskoka_worker.transitions.models import AttemptReport, AttemptState
from muskoka_worker.transport.subscription import InboundMessage, Subscription, SubscriptionError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    received: int = 0
    acknowledged: int = 0
    rejected: int = 0
    skipped: int = 0
    idle_polls: int = 0
    abandoned: int = 0

    def add(self, report: AttemptReport) -> None:
        if report.state is AttemptState.ACKNOWLEDGED:
            self.acknowledged += 1
        elif report.state is AttemptState.SKIPPED:
            self.skipped += 1
        else:
            self.rejected += 1


class TransitionWorker:
    """Pulls deliveries and runs at most ``concurrency`` attempts at a time.

    Stopping (signal or ``request_stop``) ends pulling; in-flight attempts get
    ``graceful_shutdown_seconds`` (plus ``cleanup_allowance_seconds``) to finish.
    Whatever is still running after that is abandoned unacknowledged and comes
    back through transport redelivery. Pool threads are not daemon threads, so
    the interpreter still waits for an abandoned attempt before it exits; the
    subprocess backend bounds that wait by killing the tool at the grace deadline.
    """

    def __init__(
        self,
        *,
        subscription: Subscription,
        coordinator: TaskCoordinator,
        concurrency: int = 4,
        poll_interval_seconds: float = 1.0,
        graceful_shutdown_seconds: int = 30,
        cleanup_allowance_seconds: float = 5.0,
        stop_event: threading.Event | None = None,
    ) -> None:
        if concurrency <= 0:
            raise ValueError("concurrency must be a positive integer.")
        self.subscription = subscription
        self.coordinator = coordinator
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self.graceful_shutdown_seconds = graceful_shutdown_seconds
        self.cleanup_allowance_seconds = cleanup_allowance_seconds
        # Shared with the coordinator's shutdown_requested hook.
        self._stop_event = stop_event or threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self, *, reason: str = "requested") -> None:
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        logger.info(
            "shutting down (%s); draining in-flight attempts for up to %ss",
            reason,
            self.graceful_shutdown_seconds,
        )

    def run_once(self) -> WorkerRunSummary:
        """Pull one batch (up to the concurrency cap) and process it to completion."""

        summary = WorkerRunSummary()
        messages = self._receive(self.concurrency)
        if not messages:
            summary.idle_polls = 1
            return summary
        with ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="transition",
        ) as executor:
            futures = [executor.submit(self.coordinator.handle, message) for message in messages]
            summary.received = len(futures)
            for future in futures:
                self._collect(future, summary)
        return summary

    def run_loop(
        self,
        *,
        max_messages: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run until stopped, or until a message/idle budget is used up.

        Args:
            max_messages: Stop pulling after this many deliveries (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty polls (None = never).
        """

        summary = WorkerRunSummary()
        consecutive_idle = 0
        in_flight: set[Future[AttemptReport]] = set()
        executor = ThreadPoolExecutor(
            max_workers=self.concurrency,
            thread_name_prefix="transition",
        )
        try:
            with self._signal_handlers():
                while not self.stop_requested:
                    if max_messages is not None and summary.received >= max_messages:
                        break
                    free_slots = self.concurrency - len(in_flight)
                    if free_slots <= 0:
                        done, in_flight = _wait_first(in_flight, self.poll_interval_seconds)
                        for future in done:
                            self._collect(future, summary)
                        continue

                    budget = free_slots
                    if max_messages is not None:
                        budget = min(budget, max_messages - summary.received)
                    messages = self._receive(budget)
                    if not messages:
                        summary.idle_polls += 1
                        consecutive_idle += 1
                        if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                            break
                        if not in_flight:
                            self._sleep_with_stop(self.poll_interval_seconds)
                            continue
                        done, in_flight = _wait_first(in_flight, self.poll_interval_seconds)
                        for future in done:
                            self._collect(future, summary)
                        continue

                    consecutive_idle = 0
                    for message in messages:
                        in_flight.add(executor.submit(self.coordinator.handle, message))
                        summary.received += 1
                    done = {future for future in in_flight if future.done()}
                    in_flight -= done
                    for future in done:
                        self._collect(future, summary)

                self._drain(in_flight, summary)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return summary

    def _receive(self, max_messages: int) -> list[InboundMessage]:
        try:
            return self.subscription.receive(max_messages)
        except SubscriptionError as error:
            logger.warning("failed to receive messages: %s", error)
            self._sleep_with_stop(self.poll_interval_seconds)
            return []

    def _drain(self, in_flight: set[Future[AttemptReport]], summary: WorkerRunSummary) -> None:
        if not in_flight:
            return
        if self.stop_requested:
            # Handlers see the stop via coordinator.shutdown_requested and end the
            # subprocess once the grace period is over.
            timeout: float | None = (
                self.graceful_shutdown_seconds + self.cleanup_allowance_seconds
            )
        else:
            timeout = None
        done, pending = wait(in_flight, timeout=timeout)
        for future in done:
            self._collect(future, summary)
        if pending:
            summary.abandoned += len(pending)
            logger.warning(
                "abandoning %d in-flight attempts after grace period; "
                "their messages will be redelivered",
                len(pending),
            )

    def _collect(self, future: Future[AttemptReport], summary: WorkerRunSummary) -> None:
        try:
            report = future.result()
        except Exception:  # noqa: BLE001
            logger.exception("transition handler crashed")
            summary.rejected += 1
            return
        summary.add(report)

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds > 0:
            self._stop_event.wait(timeout=seconds)

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(reason=name)

        installed = False
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            pass
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)


def _wait_first(
    in_flight: set[Future[AttemptReport]],
    timeout: float,
) -> tuple[set[Future[AttemptReport]], set[Future[AttemptReport]]]:
    if not in_flight:
        return set(), in_flight
    done, pending = wait(in_flight, timeout=timeout, return_when=FIRST_COMPLETED)
    return set(done), set(pending)
