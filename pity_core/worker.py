"""Process-based worker for Monte Carlo trials.

The simulation loop is tight synchronous code, so it runs in a separate
:class:`multiprocessing.Process` that the host can terminate at any time.
Partial aggregates, completion and errors travel back to the parent through a
:class:`multiprocessing.Queue` as ``(kind, shard, payload)`` tuples:

``("chunk", shard, TrialAggregate)``
    Samples for one chunk of trials (every 1-5% of the iterations).
``("finished", shard, None)``
    The shard ran all of its trials.
``("error", shard, {"type", "message", "traceback"})``
    The shard aborted; the whole simulation must be treated as failed.
"""

from __future__ import annotations

import multiprocessing
import traceback
from multiprocessing.process import BaseProcess
from typing import Any, Optional

from .simulation import SimulationPlan, iter_chunks, run_trials

WorkerMessage = tuple[str, int, Any]


def error_payload(exc: BaseException) -> dict[str, str]:
    """Serialise ``exc`` into plain data that survives the queue."""

    return {
        "type": type(exc).__name__,
        "message": str(exc),
        "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


def simulation_worker(
    queue: Any,
    plan: SimulationPlan,
    start: int,
    stop: int,
    shard: int = 0,
    chunk_size: Optional[int] = None,
) -> None:
    """Run trials ``[start, stop)`` of ``plan`` and stream aggregates to ``queue``."""

    step = chunk_size or plan.chunk_size
    try:
        for chunk_start, chunk_stop in iter_chunks(start, stop, step):
            queue.put(("chunk", shard, run_trials(plan, chunk_start, chunk_stop)))
        queue.put(("finished", shard, None))
    except Exception as exc:  # reported to the host, which fails the whole run
        queue.put(("error", shard, error_payload(exc)))


def start_simulation_process(
    plan: SimulationPlan,
    start: int,
    stop: int,
    queue: Any = None,
    shard: int = 0,
    chunk_size: Optional[int] = None,
) -> tuple[BaseProcess, Any]:
    """Start a worker process for one shard of trials.

    Returns the spawned process and the queue it reports on. Several shards may
    share one queue; messages carry the shard number.
    """

    if queue is None:
        queue = multiprocessing.Queue()
    process = multiprocessing.Process(
        target=simulation_worker,
        args=(queue, plan, start, stop, shard, chunk_size),
        daemon=True,
        name=f"pity-sim-{shard}",
    )
    process.start()
    return process, queue


__all__ = ["error_payload", "simulation_worker", "start_simulation_process"]
