"""Run simulations off the caller's thread with progress, cancellation and timeouts.

A :class:`SimulationHost` owns at most one in-flight simulation. Each request
is validated up front, split into shards of trial indices, and executed in
worker processes (see :mod:`pity_core.worker`). A monitor thread merges the
partial aggregates the workers stream back, reports progress, and resolves the
request's :class:`concurrent.futures.Future`.
"""

from __future__ import annotations

import asyncio
import logging
import queue as queue_module
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from enum import Enum
from multiprocessing.process import BaseProcess
from typing import Any, Optional

from .config import load_settings
from .errors import (
    ConfigurationError,
    InputValidationError,
    SimulationCancelled,
    SimulationFailed,
)
from .models import SimulationInput, SimulationResult
from .simulation import (
    SimulationPlan,
    TrialAggregate,
    finalize,
    prepare_plan,
    shard_ranges,
    validate_input,
)
from .worker import error_payload, start_simulation_process

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

JOIN_TIMEOUT = 2.0


class SimulationStatus(str, Enum):
    """Lifecycle of one simulation request."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class SimulationHandle:
    """Caller-side view of one simulation request."""

    def __init__(self, on_progress: Optional[ProgressCallback] = None) -> None:
        self._future: Future[SimulationResult] = Future()
        self._status = SimulationStatus.IDLE
        self._progress = 0.0
        self._lock = threading.Lock()
        self._processes: list[BaseProcess] = []
        self._queue: Any = None
        self._on_progress = on_progress

    @property
    def status(self) -> SimulationStatus:
        return self._status

    @property
    def progress(self) -> float:
        """Completed fraction of the iterations, in ``[0, 1]``."""

        return self._progress

    @property
    def future(self) -> Future[SimulationResult]:
        return self._future

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> SimulationResult:
        """Block until the simulation resolves and return its result.

        Raises
        ------
        SimulationCancelled
            If the request was cancelled or superseded.
        ConfigurationError, InputValidationError
            If the request was rejected before running.
        SimulationFailed
            If a worker raised an unexpected exception.
        concurrent.futures.TimeoutError
            If ``timeout`` elapses first.
        """

        return self._future.result(timeout)

    async def wait(self) -> SimulationResult:
        """Await the result from asyncio code."""

        return await asyncio.wrap_future(self._future)

    def cancel(self) -> bool:
        """Terminate the workers; returns False if the request had already resolved."""

        if self.done():
            return False
        self._terminate()
        cancelled = self._finish(
            SimulationStatus.CANCELLED,
            exc=SimulationCancelled("Simulation cancelled before completion"),
        )
        if cancelled:
            _LOGGER.info("Simulation cancelled at %.0f%%", self._progress * 100)
        return cancelled

    def _start(self, processes: list[BaseProcess], work_queue: Any) -> bool:
        """Attach the spawned workers; returns False if the request already resolved."""

        with self._lock:
            self._processes = processes
            self._queue = work_queue
            if self._future.done():
                return False
            self._status = SimulationStatus.RUNNING
            return True

    def _set_progress(self, fraction: float) -> None:
        self._progress = min(1.0, max(0.0, fraction))
        if self._on_progress is None:
            return
        try:
            self._on_progress(self._progress)
        except Exception:
            _LOGGER.exception("Simulation progress callback failed")

    def _finish(
        self,
        status: SimulationStatus,
        result: Optional[SimulationResult] = None,
        exc: Optional[BaseException] = None,
    ) -> bool:
        """Resolve the future once; later calls are ignored."""

        with self._lock:
            if self._future.done():
                return False
            self._status = status
            if exc is not None:
                self._future.set_exception(exc)
            else:
                self._future.set_result(result)
            return True

    def _terminate(self) -> None:
        with self._lock:
            processes = list(self._processes)
        for process in processes:
            if process.is_alive():
                process.terminate()
        for process in processes:
            process.join(JOIN_TIMEOUT)

    def _release(self) -> None:
        with self._lock:
            processes = list(self._processes)
            work_queue = self._queue
        for process in processes:
            process.join(JOIN_TIMEOUT)
        if work_queue is not None:
            work_queue.close()


def _dead_shards(processes: list[BaseProcess], finished: set[int]) -> list[int]:
    return [
        shard
        for shard, process in enumerate(processes)
        if shard not in finished and not process.is_alive()
    ]


def _monitor(
    handle: SimulationHandle,
    plan: SimulationPlan,
    processes: list[BaseProcess],
    work_queue: Any,
    deadline: Optional[float],
    poll_interval: float,
) -> None:
    aggregate = TrialAggregate.empty(len(plan.targets))
    finished: set[int] = set()
    try:
        while not handle.done():
            if deadline is not None and time.monotonic() >= deadline:
                handle._terminate()
                partial = finalize(plan, aggregate, timed_out=True)
                if handle._finish(SimulationStatus.COMPLETED, result=partial):
                    _LOGGER.info(
                        "Simulation timed out after %d of %d trials",
                        aggregate.trials,
                        plan.iterations,
                    )
                return

            try:
                kind, shard, payload = work_queue.get(timeout=poll_interval)
            except queue_module.Empty:
                dead = _dead_shards(processes, finished)
                if dead:
                    handle._terminate()
                    exit_code = processes[dead[0]].exitcode
                    handle._finish(
                        SimulationStatus.FAILED,
                        exc=SimulationFailed(
                            f"worker for shard {dead[0]} exited with code {exit_code}",
                            error_type="WorkerExited",
                        ),
                    )
                    _LOGGER.error("Simulation worker %d exited with code %s", dead[0], exit_code)
                continue

            if kind == "chunk":
                aggregate.merge(payload)
                handle._set_progress(aggregate.trials / plan.iterations)
                _LOGGER.debug("Merged chunk from shard %d (%d trials)", shard, aggregate.trials)
            elif kind == "finished":
                finished.add(shard)
                if len(finished) == len(processes):
                    result = finalize(plan, aggregate)
                    handle._set_progress(1.0)
                    if handle._finish(SimulationStatus.COMPLETED, result=result):
                        _LOGGER.info("Simulation completed (%d trials)", aggregate.trials)
            elif kind == "error":
                handle._terminate()
                handle._finish(
                    SimulationStatus.FAILED,
                    exc=SimulationFailed(
                        payload["message"],
                        error_type=payload["type"],
                        remote_traceback=payload["traceback"],
                    ),
                )
                _LOGGER.error(
                    "Simulation worker %d failed: %s: %s\n%s",
                    shard,
                    payload["type"],
                    payload["message"],
                    payload["traceback"],
                )
    except Exception as exc:
        _LOGGER.exception("Simulation monitor failed")
        handle._terminate()
        handle._finish(
            SimulationStatus.FAILED,
            exc=SimulationFailed(str(exc), error_type=type(exc).__name__),
        )
    finally:
        handle._release()


class SimulationHost:
    """Owns one in-flight simulation; a new submission supersedes the old one.

    Parameters
    ----------
    workers:
        Worker processes per request. ``None`` uses the request's
        ``config.workers``.
    timeout:
        Wall-clock cap in seconds applied when the request does not set its own.
        ``None`` reads ``PITY_SIM_TIMEOUT`` (unset means no cap).
    poll_interval:
        Seconds the monitor thread waits for worker messages between checks.
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        timeout: Optional[float] = None,
        poll_interval: float = 0.05,
    ) -> None:
        if workers is not None and workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {workers}")
        if timeout is None:
            timeout = load_settings().timeout
        elif timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {timeout}")
        self.workers = workers
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._current: Optional[SimulationHandle] = None
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[SimulationHandle]:
        return self._current

    def submit(
        self,
        sim_input: SimulationInput,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SimulationHandle:
        """Start ``sim_input`` in the background, cancelling any in-flight request.

        Invalid input does not raise here: the returned handle is already
        ``FAILED`` and re-raises the validation error from ``result()``. Any other
        error while preparing the plan surfaces as ``SimulationFailed``.
        """

        handle = SimulationHandle(on_progress)
        with self._lock:
            previous, self._current = self._current, handle
        if previous is not None and previous.cancel():
            _LOGGER.info("Superseded in-flight simulation")

        try:
            validate_input(sim_input)
            plan = prepare_plan(sim_input)
        except (ConfigurationError, InputValidationError) as exc:
            handle._finish(SimulationStatus.FAILED, exc=exc)
            _LOGGER.info("Rejected simulation request: %s", exc)
            return handle
        except Exception as exc:
            payload = error_payload(exc)
            handle._finish(
                SimulationStatus.FAILED,
                exc=SimulationFailed(payload["message"], payload["type"], payload["traceback"]),
            )
            _LOGGER.exception("Could not prepare simulation request")
            return handle

        workers = self.workers or sim_input.config.workers
        timeout = sim_input.config.timeout if sim_input.config.timeout is not None else self.timeout
        deadline = time.monotonic() + timeout if timeout is not None else None

        processes: list[BaseProcess] = []
        work_queue: Any = None
        for shard, (start, stop) in enumerate(shard_ranges(plan.iterations, workers)):
            process, work_queue = start_simulation_process(
                plan, start, stop, queue=work_queue, shard=shard
            )
            processes.append(process)
        if not handle._start(processes, work_queue):
            handle._terminate()
            handle._release()
            _LOGGER.info("Simulation cancelled before its workers started")
            return handle
        _LOGGER.info(
            "Started simulation: %d trials across %d worker(s)", plan.iterations, len(processes)
        )

        monitor = threading.Thread(
            target=_monitor,
            args=(handle, plan, processes, work_queue, deadline, self.poll_interval),
            name="pity-sim-monitor",
            daemon=True,
        )
        monitor.start()
        return handle

    def cancel(self) -> bool:
        """Cancel the in-flight simulation, if any."""

        handle = self._current
        return handle.cancel() if handle is not None else False

    def shutdown(self) -> None:
        """Cancel any running simulation and forget it."""

        self.cancel()
        with self._lock:
            self._current = None


def run_in_background(
    sim_input: SimulationInput,
    on_progress: Optional[ProgressCallback] = None,
    timeout: Optional[float] = None,
) -> SimulationHandle:
    """Submit ``sim_input`` to a fresh single-use host."""

    return SimulationHost(timeout=timeout).submit(sim_input, on_progress=on_progress)


async def run_simulation_async(
    sim_input: SimulationInput,
    on_progress: Optional[ProgressCallback] = None,
    host: Optional[SimulationHost] = None,
) -> SimulationResult:
    """Run ``sim_input`` in worker processes and await the result."""

    host = host or SimulationHost()
    handle = host.submit(sim_input, on_progress=on_progress)
    try:
        return await handle.wait()
    except asyncio.CancelledError:
        handle.cancel()
        raise
