"""WebSocket coordinator for distributed runs.

Workers connect, register, send heartbeats and stream results back; the
coordinator partitions a suite's iteration range across registered workers.
Independent of the local engine's run lock.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from . import protocol
from .events import Signal, SignalGroup, WorkerResult
from .exceptions import ProtocolError
from .logging_config import get_logger
from .models import CoordinatorStatus, IterationRange, Suite, Worker, WorkerStatus, now_ms
from .protocol import Message, MessageType

logger = get_logger("coordinator")

DEFAULT_PORT = 8765
DEFAULT_HOST = "0.0.0.0"
DEFAULT_MAX_CONCURRENT = 10


def partition_iterations(total: int, worker_count: int) -> list[IterationRange]:
    """Split ``0..total-1`` into contiguous ranges, one per worker, in order.

    The first worker gets ``ceil(total / worker_count)`` iterations; sizes never
    differ by more than one, so 10 over 3 workers is [0,3], [4,6], [7,9].
    Workers beyond ``total`` get no range.
    """
    if worker_count <= 0 or total <= 0:
        return []
    base, extra = divmod(total, worker_count)
    ranges: list[IterationRange] = []
    start = 0
    for i in range(worker_count):
        size = base + (1 if i < extra else 0)
        if size == 0:
            break
        ranges.append(IterationRange(start=start, end=start + size - 1))
        start += size
    return ranges


def build_work(suite: Suite, variables: dict[str, str] | None = None) -> dict[str, Any]:
    """Shape a suite into the ``work`` payload sent to workers.

    ``variables`` seeds each worker's substitution context; omitted when empty.
    """
    work: dict[str, Any] = {
        "suiteId": suite.id,
        "suiteName": suite.name,
        "requests": [r.to_dict() for r in suite.sorted_requests()],
        "iterations": suite.iterations,
        "config": {
            "delayBetweenRequests": suite.delay_between_requests,
            "concurrency": suite.concurrency,
        },
    }
    if variables:
        work["variables"] = dict(variables)
    return work


def _max_concurrent(raw: Any) -> int:
    """Capacity hint from a register payload; anything unusable falls back to the default."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_MAX_CONCURRENT
    return value if value > 0 else DEFAULT_MAX_CONCURRENT


def _optional_str(raw: Any) -> str | None:
    return str(raw) if raw is not None else None


@dataclass(slots=True)
class _WorkerEntry:
    worker: Worker
    connection: ServerConnection


class WorkerRegistry:
    """Live workers keyed by id, in registration order.

    Disconnected workers are removed, never kept with a ``disconnected`` status.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _WorkerEntry] = {}

    def register(self, worker: Worker, connection: ServerConnection) -> None:
        self._entries[worker.id] = _WorkerEntry(worker, connection)

    def get(self, worker_id: str) -> Worker | None:
        entry = self._entries.get(worker_id)
        return entry.worker if entry else None

    def connection(self, worker_id: str) -> ServerConnection | None:
        entry = self._entries.get(worker_id)
        return entry.connection if entry else None

    def remove_by_connection(self, connection: ServerConnection) -> Worker | None:
        for worker_id, entry in self._entries.items():
            if entry.connection is connection:
                del self._entries[worker_id]
                return entry.worker
        return None

    def workers(self) -> list[Worker]:
        return [e.worker for e in self._entries.values()]

    def connections(self) -> list[ServerConnection]:
        return [e.connection for e in self._entries.values()]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._entries


class CoordinatorEvents(SignalGroup):
    def __init__(self) -> None:
        self.worker_registered: Signal[Worker] = Signal("worker_registered")
        self.worker_disconnected: Signal[str] = Signal("worker_disconnected")
        self.status_update: Signal[CoordinatorStatus] = Signal("status_update")
        self.workers_ready: Signal[int] = Signal("workers_ready")
        self.result: Signal[WorkerResult] = Signal("result")
        self.work_complete: Signal[str] = Signal("work_complete")
        self.error: Signal[BaseException] = Signal("error")


class WorkCoordinator:
    """WebSocket server implementing the worker control protocol."""

    def __init__(self, registry: WorkerRegistry | None = None) -> None:
        self._registry = registry or WorkerRegistry()
        self._server: Server | None = None
        self._port = DEFAULT_PORT
        self._expected_workers = 1
        self.events = CoordinatorEvents()

    @property
    def registry(self) -> WorkerRegistry:
        return self._registry

    @property
    def port(self) -> int:
        """Bound port (resolved after start when 0 was requested)."""
        return self._port

    def is_running(self) -> bool:
        return self._server is not None

    def get_workers(self) -> list[Worker]:
        return self._registry.workers()

    def get_status(self) -> CoordinatorStatus:
        return CoordinatorStatus(
            running=self.is_running(),
            port=self._port,
            workers=self.get_workers(),
            expected_workers=self._expected_workers,
        )

    async def start(self, port: int = DEFAULT_PORT, expected_workers: int = 1, host: str = DEFAULT_HOST) -> None:
        """Bind the server. A second call while running is a no-op; bind errors go to ``events.error``."""
        if self._server is not None:
            logger.info("Coordinator already running on port %d", self._port)
            return

        self._port = port
        self._expected_workers = expected_workers
        try:
            self._server = await serve(self._handle_connection, host, port)
        except OSError as e:
            logger.error("Failed to start coordinator on port %d: %s", port, e)
            self._server = None
            self.events.error.emit(e)
            return

        if port == 0:
            sockets = list(self._server.sockets)
            if sockets:
                self._port = sockets[0].getsockname()[1]
        logger.info("Coordinator started on port %d, expecting %d workers", self._port, expected_workers)
        self._emit_status()

    async def stop(self) -> None:
        """Tell every worker to stop, close all sockets, clear the registry, close the server."""
        if self._server is None:
            return

        connections = self._registry.connections()
        self._registry.clear()
        for connection in connections:
            try:
                await connection.send(protocol.encode(protocol.stop()))
                await connection.close()
            except ConnectionClosed:
                pass

        server, self._server = self._server, None
        server.close()
        await server.wait_closed()
        logger.info("Coordinator stopped")
        self._emit_status()

    async def distribute_work(self, work: dict[str, Any]) -> dict[str, IterationRange]:
        """Assign contiguous iteration ranges to registered workers and send them.

        Fire-and-forget: returns once frames are written, without waiting for acks.
        """
        workers = self._registry.workers()
        if not workers:
            logger.warning("No workers registered; nothing to distribute")
            return {}

        total = int(work.get("iterations") or 1)
        ranges = partition_iterations(total, len(workers))
        assignments: dict[str, IterationRange] = {}

        for worker, rng in zip(workers, ranges):
            connection = self._registry.connection(worker.id)
            worker.status = WorkerStatus.WORKING
            worker.assigned_iterations = rng
            assignments[worker.id] = rng
            logger.info("Assigning iterations %d-%d to %r", rng.start, rng.end, worker.id)
            try:
                await connection.send(protocol.encode(protocol.work({**work, "iterations": rng.to_dict()})))
            except ConnectionClosed:
                logger.warning("Worker %r closed before work could be sent", worker.id)

        self._emit_status()
        return assignments

    async def _handle_connection(self, connection: ServerConnection) -> None:
        try:
            async for frame in connection:
                try:
                    message = protocol.decode(frame)
                except ProtocolError as e:
                    logger.warning("Error parsing message: %s", e)
                    continue
                try:
                    await self._handle_message(connection, message)
                except (TypeError, ValueError) as e:
                    logger.warning("Invalid %s frame ignored: %s", message.type.value, e)
        except ConnectionClosed:
            pass
        finally:
            self._handle_disconnect(connection)

    async def _handle_message(self, connection: ServerConnection, message: Message) -> None:
        if message.type == MessageType.REGISTER:
            await self._register_worker(connection, message)
        elif message.type == MessageType.HEARTBEAT:
            self._handle_heartbeat(message.worker_id)
            await connection.send(protocol.encode(protocol.ack()))
        elif message.type == MessageType.RESULT:
            self.events.result.emit(WorkerResult(worker_id=message.worker_id or "", result=message.payload))
        elif message.type == MessageType.WORK_COMPLETE:
            self._handle_work_complete(message.worker_id)
        else:
            logger.debug("Ignoring server-side message type %s from client", message.type.value)

    async def _register_worker(self, connection: ServerConnection, message: Message) -> None:
        if not message.worker_id:
            logger.warning("Register frame without workerId ignored")
            return
        payload = message.payload if isinstance(message.payload, dict) else {}
        ts = now_ms()
        worker = Worker(
            id=message.worker_id,
            status=WorkerStatus.CONNECTED,
            max_concurrent=_max_concurrent(payload.get("maxConcurrent")),
            platform=_optional_str(payload.get("platform")),
            version=_optional_str(payload.get("version") or payload.get("nodeVersion")),
            connected_at=ts,
            last_heartbeat=ts,
        )
        self._registry.register(worker, connection)
        logger.info("Worker %r registered (%d/%d)", worker.id, len(self._registry), self._expected_workers)

        await connection.send(protocol.encode(protocol.ack()))

        self._emit_status()
        self.events.worker_registered.emit(worker)
        # Evaluated on every registration, so it fires again after a dip and recovery
        if len(self._registry) >= self._expected_workers:
            self.events.workers_ready.emit(len(self._registry))

    def _handle_heartbeat(self, worker_id: str | None) -> None:
        worker = self._registry.get(worker_id) if worker_id else None
        if worker is not None:
            worker.last_heartbeat = now_ms()

    def _handle_work_complete(self, worker_id: str | None) -> None:
        worker = self._registry.get(worker_id) if worker_id else None
        if worker is not None:
            worker.status = WorkerStatus.IDLE
            self._emit_status()
        self.events.work_complete.emit(worker_id or "")

    def _handle_disconnect(self, connection: ServerConnection) -> None:
        worker = self._registry.remove_by_connection(connection)
        if worker is None:
            return
        worker.status = WorkerStatus.DISCONNECTED
        logger.info("Worker %r disconnected", worker.id)
        self._emit_status()
        self.events.worker_disconnected.emit(worker.id)

    def _emit_status(self) -> None:
        self.events.status_update.emit(self.get_status())


async def wait_for_workers(coordinator: WorkCoordinator, timeout: float) -> bool:
    """Wait until ``workers_ready`` fires. Returns False on timeout."""
    ready = asyncio.Event()
    if len(coordinator.registry) >= coordinator.get_status().expected_workers:
        return True
    unsubscribe = coordinator.events.workers_ready.connect(lambda _n: ready.set())
    try:
        await asyncio.wait_for(ready.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False
    finally:
        unsubscribe()
