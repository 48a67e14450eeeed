"""
Boundary adapters around the simulator.

Two plain-dict protocols expose ``simulate_house_edge`` to callers that speak
JSON:

    handle_simulate_request({"numHands": ..., "rules": {...}})
        → SimulationResult dict, or {"error": "Simulation failed"}

    handle_worker_message({"type": "run-simulation", "numHands": ..., "rules": {...}})
        → {"type": "simulation-complete", "result": {...}}
        | {"type": "simulation-error", "error": "..."}
        | None for any other message type

Rules are merged field by field over the defaults (see ``rules_from_mapping``).
``SimulationWorker`` runs worker messages in a separate process so a long
simulation never blocks the caller, and can kill that process to cancel it.
"""

from __future__ import annotations

import logging
import multiprocessing
from concurrent.futures import Future
from functools import partial
from typing import Any, Mapping

from bjsolver.analysis.simulator import simulate_house_edge
from bjsolver.engine.rules import rules_from_mapping

logger = logging.getLogger(__name__)

DEFAULT_NUM_HANDS: int = 10_000
RUN_SIMULATION: str = "run-simulation"
SIMULATION_COMPLETE: str = "simulation-complete"
SIMULATION_ERROR: str = "simulation-error"
GENERIC_ERROR: str = "Simulation failed"


def _num_hands(value: Any) -> int:
    if not value:
        return DEFAULT_NUM_HANDS
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"numHands must be an integer, got {value!r}")
    return value


def handle_simulate_request(body: Mapping[str, Any] | None) -> dict[str, Any]:
    """Run a simulation for a request body and return the JSON-ready result.

    A missing or zero ``numHands`` runs 10,000 hands. Any failure is logged
    and reported as ``{"error": "Simulation failed"}``.
    """
    try:
        body = body or {}
        num_hands = _num_hands(body.get("numHands"))
        rules = rules_from_mapping(body.get("rules"))
        return simulate_house_edge(num_hands, rules).to_dict()
    except Exception:
        logger.exception("Simulation request failed")
        return {"error": GENERIC_ERROR}


def handle_worker_message(message: Mapping[str, Any]) -> dict[str, Any] | None:
    """Process one worker message; returns the reply, or None to ignore it."""
    if message.get("type") != RUN_SIMULATION:
        return None
    try:
        num_hands = _num_hands(message.get("numHands"))
        rules = rules_from_mapping(message.get("rules"))
        result = simulate_house_edge(num_hands, rules)
    except Exception as exc:
        logger.exception("Worker simulation failed")
        return {"type": SIMULATION_ERROR, "error": str(exc) or GENERIC_ERROR}
    return {"type": SIMULATION_COMPLETE, "result": result.to_dict()}


def _resolve(future: Future, result: Any) -> None:
    if not future.cancelled():
        future.set_result(result)


def _fail(future: Future, exc: BaseException) -> None:
    if not future.cancelled():
        future.set_exception(exc)


class SimulationWorker:
    """Background process that answers worker messages.

    Cancellation is coarse: ``terminate()`` kills the pool process along with
    any simulation it is running, cancels every outstanding reply and starts
    a fresh pool.

    Examples:
        >>> with SimulationWorker() as worker:                    # doctest: +SKIP
        ...     future = worker.post_message({"type": "run-simulation", "numHands": 1000})
        ...     reply = future.result()
    """

    def __init__(self, processes: int = 1):
        self.processes = processes
        self._pool = multiprocessing.Pool(processes)
        self._pending: set[Future] = set()

    def post_message(self, message: Mapping[str, Any]) -> Future | None:
        """Queue a message; returns a Future for the reply, or None if ignored."""
        if message.get("type") != RUN_SIMULATION:
            return None
        future: Future = Future()
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        self._pool.apply_async(
            handle_worker_message,
            (dict(message),),
            callback=partial(_resolve, future),
            error_callback=partial(_fail, future),
        )
        return future

    def terminate(self) -> None:
        logger.debug("Terminating simulation worker pool")
        self._pool.terminate()
        self._pool.join()
        for future in list(self._pending):
            future.cancel()
        self._pool = multiprocessing.Pool(self.processes)

    def close(self) -> None:
        self._pool.close()
        self._pool.join()

    def __enter__(self) -> "SimulationWorker":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
