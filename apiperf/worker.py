"""Distributed worker: connects to a coordinator and executes assigned iteration ranges.

Results are streamed back one frame per request; ``workComplete`` is sent once a
range is finished. Heartbeats run on a background task for the connection's life.
"""

from __future__ import annotations

import asyncio
import contextlib
import platform
from typing import Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed

from . import protocol
from .engine import execute_request
from .exceptions import ProtocolError
from .executor import RequestExecutor
from .extraction import ExtractionStep
from .logging_config import bind_context, get_logger
from .models import IterationRange, PerfRequest
from .protocol import MessageType

logger = get_logger("worker")

DEFAULT_HEARTBEAT_INTERVAL_SEC = 10.0


def _parse_range(raw: Any) -> IterationRange:
    if not isinstance(raw, dict) or "start" not in raw or "end" not in raw:
        raise ProtocolError("work payload requires iterations {start, end}", context={"iterations": raw})
    return IterationRange(start=int(raw["start"]), end=int(raw["end"]))


async def execute_work(
    connection: ClientConnection,
    worker_id: str,
    executor: RequestExecutor,
    work: dict[str, Any],
    extraction: ExtractionStep | None = None,
) -> int:
    """Run every request for each iteration in the assigned range, streaming results.

    Returns the number of results sent.
    """
    if not isinstance(work, dict):
        raise ProtocolError("work payload must be an object", context={"actual_type": type(work).__name__})
    rng = _parse_range(work.get("iterations"))
    requests = sorted(
        (PerfRequest.from_dict(r) for r in work.get("requests") or []),
        key=lambda r: r.order,
    )
    delay_ms = float((work.get("config") or {}).get("delayBetweenRequests") or 0)
    variables: dict[str, str] = dict(work.get("variables") or {})

    log = bind_context(logger, worker_id=worker_id, suite_id=work.get("suiteId"))
    log.info("Received work: iterations %d-%d (%d requests)", rng.start, rng.end, len(requests))
    sent = 0
    for iteration in range(rng.start, rng.end + 1):
        log.debug("Iteration %d", iteration)
        for req in requests:
            result = await execute_request(executor, req, iteration, variables, extraction)
            if result.extracted_values:
                variables.update(result.extracted_values)
            await connection.send(protocol.encode(protocol.result(worker_id, result.to_dict())))
            sent += 1
            if delay_ms > 0:
                await asyncio.sleep(delay_ms / 1000.0)

    await connection.send(protocol.encode(protocol.work_complete(worker_id)))
    log.info("Work completed: %d results sent", sent)
    return sent


async def _heartbeat_loop(connection: ClientConnection, worker_id: str, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await connection.send(protocol.encode(protocol.heartbeat(worker_id)))
        except ConnectionClosed:
            return


async def run_worker(
    url: str,
    worker_id: str,
    executor: RequestExecutor,
    max_concurrent: int = 10,
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_SEC,
    extraction: ExtractionStep | None = None,
) -> int:
    """Serve one coordinator connection until it sends ``stop`` or closes.

    Returns the total number of results sent.
    """
    total_sent = 0
    log = bind_context(logger, worker_id=worker_id)
    log.info("Connecting to coordinator %s as %r", url, worker_id)
    async with connect(url) as connection:
        await connection.send(protocol.encode(
            protocol.register(worker_id, max_concurrent, platform.system().lower(), platform.python_version())
        ))
        heartbeat = asyncio.create_task(_heartbeat_loop(connection, worker_id, heartbeat_interval))
        try:
            async for frame in connection:
                try:
                    message = protocol.decode(frame)
                except ProtocolError as e:
                    log.warning("Error processing message: %s", e)
                    continue

                if message.type == MessageType.WORK:
                    try:
                        total_sent += await execute_work(
                            connection, worker_id, executor, message.payload or {}, extraction,
                        )
                    except (ProtocolError, KeyError, TypeError, ValueError) as e:
                        log.warning("Rejected work: %s", e)
                elif message.type == MessageType.STOP:
                    log.info("Stop signal received")
                    break
                elif message.type == MessageType.ACK:
                    log.debug("Coordinator acknowledged")
                else:
                    log.debug("Unexpected message type: %s", message.type.value)
        except ConnectionClosed:
            log.warning("Disconnected from coordinator")
        finally:
            heartbeat.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await heartbeat
    return total_sent
