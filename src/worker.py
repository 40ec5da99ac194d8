# src/worker.py
"""
Placement worker.

Projection is CPU-bound, so placement runs in a separate process and talks to the caller only
through messages (see protocol.py).

Background side:
- ``handle_message`` turns one request dict into exactly one ``placementResult`` or ``error`` dict.
- ``_worker_main`` builds the projector once for the lifetime of the process and serves requests.

Caller side:
- ``PlacementWorker`` owns one process, allows a single request in flight, enforces a timeout and
  cancels by terminating the process. A terminated process is replaced on the next request, so a
  late reply to an abandoned request is never read.
"""

from __future__ import annotations

import asyncio
import multiprocessing
import threading
import time
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from typing import Any, Dict, Optional, Sequence

import numpy as np

from config import Config
from logger import get_logger
from models import AxialHex, EmbeddingItem, NormalizationBounds, PlacementConfig, PlacementResult
from placement import compute_placement
from projection import Projector, ProjectorNotRegisteredError, create_projector
from protocol import (
    ComputePlacementRequest,
    ErrorMessage,
    PlacementResultMessage,
    ProtocolError,
    dump_message,
    error_message,
    parse_message,
)

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.05
JOIN_TIMEOUT_SECONDS = 1.0


class PlacementTimeoutError(TimeoutError):
    """The worker did not answer within the allowed time."""


class PlacementCancelledError(RuntimeError):
    """The request was abandoned because a newer one replaced it or the worker was closed."""


class PlacementWorkerError(RuntimeError):
    """The worker answered with an error message."""


def handle_message(
    raw: Any,
    projector: Optional[Projector],
    rng: Optional[np.random.Generator] = None,
    max_search_radius: Optional[int] = None,
    on_exhausted: Optional[str] = None,
) -> Dict[str, Any]:
    """Serve one request. Never raises: every failure becomes an ``error`` message."""
    try:
        message = parse_message(raw)
        if not isinstance(message, ComputePlacementRequest):
            return error_message(f"Unknown message type: {message.type}")
        items = message.to_items()
        if len(items) >= 2 and projector is None:
            raise ProjectorNotRegisteredError("No projector available in the placement worker")
        radius = Config.MAX_SEARCH_RADIUS if max_search_radius is None else max_search_radius
        result = compute_placement(
            items,
            message.to_bounds(),
            message.to_config(radius),
            projector=projector,
            rng=rng,
            on_exhausted=on_exhausted,
        )
        return dump_message(PlacementResultMessage.from_result(result))
    except Exception as exc:
        logger.error(f"Placement request failed: {exc}")
        return error_message(str(exc) or type(exc).__name__)


def _worker_main(conn: Connection, projector_name: str, seed: Optional[int]) -> None:
    """Process entry point: serve requests until the pipe closes or a None sentinel arrives."""
    projector: Optional[Projector] = None
    startup_error: Optional[str] = None
    try:
        projector = create_projector(projector_name)
    except Exception as exc:
        startup_error = f"Failed to create projector '{projector_name}': {exc}"
        logger.error(startup_error)
    rng = np.random.default_rng(seed) if seed is not None else None

    while True:
        try:
            raw = conn.recv()
        except (EOFError, OSError):
            break
        if raw is None:
            break
        if startup_error is not None:
            conn.send(error_message(startup_error))
        else:
            conn.send(handle_message(raw, projector, rng))
    conn.close()


def _wait_readable(conn: Connection, cancelled: threading.Event, deadline: float) -> bool:
    """Poll in short slices so cancellation and the deadline are noticed promptly."""
    while not cancelled.is_set():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        if conn.poll(min(POLL_INTERVAL_SECONDS, remaining)):
            return True
    return False


@dataclass
class _Session:
    process: Any
    conn: Connection
    cancelled: threading.Event = field(default_factory=threading.Event)
    busy: bool = False


class PlacementWorker:
    """
    Caller-side handle on one background placement process.

    Use as a context manager (sync or async) or call ``close()`` when results are no longer wanted.
    """

    def __init__(
        self,
        projector_name: Optional[str] = None,
        timeout: Optional[float] = None,
        seed: Optional[int] = None,
    ):
        self.projector_name = (projector_name or Config.PROJECTOR).lower()
        self.timeout = Config.WORKER_TIMEOUT_SECONDS if timeout is None else timeout
        self.seed = Config.RANDOM_SEED if seed is None else seed
        self._ctx = multiprocessing.get_context("spawn")
        self._session: Optional[_Session] = None
        self._closed = False
        self._generation = 0

    @property
    def busy(self) -> bool:
        return self._session is not None and self._session.busy

    def _spawn(self) -> _Session:
        parent_conn, child_conn = self._ctx.Pipe()
        process = self._ctx.Process(
            target=_worker_main,
            args=(child_conn, self.projector_name, self.seed),
            name="placement-worker",
            daemon=True,
        )
        process.start()
        child_conn.close()
        logger.info(f"Started placement worker (pid={process.pid}, projector='{self.projector_name}').")
        return _Session(process=process, conn=parent_conn)

    def _stop(self, session: _Session) -> None:
        """Hard cancellation: flag and terminate the process behind ``session`` without waiting on it."""
        session.cancelled.set()
        if self._session is session:
            self._session = None
        if session.process.is_alive():
            session.process.terminate()

    def _reap(self, session: _Session) -> None:
        session.process.join(JOIN_TIMEOUT_SECONDS)
        if not session.busy:
            session.conn.close()
        logger.info(f"Stopped placement worker (pid={session.process.pid}).")

    def _discard(self, session: _Session) -> None:
        self._stop(session)
        self._reap(session)

    async def _discard_async(self, session: _Session) -> None:
        """Like ``_discard``, with the blocking join moved off the event loop."""
        self._stop(session)
        await asyncio.get_running_loop().run_in_executor(None, self._reap, session)

    async def compute_placement(
        self,
        items: Sequence[EmbeddingItem],
        bounds: NormalizationBounds,
        config: Optional[PlacementConfig] = None,
    ) -> PlacementResult:
        if self._closed:
            raise RuntimeError("PlacementWorker is closed")
        items = list(items)
        if not items:
            return PlacementResult()
        if len(items) == 1:
            return PlacementResult(placements={items[0].id: AxialHex(0, 0)})

        request = dump_message(ComputePlacementRequest.build(items, bounds, config))
        self._generation += 1
        generation = self._generation

        session = self._session
        if session is not None and (session.busy or not session.process.is_alive()):
            if session.busy:
                logger.info("Superseding in-flight placement request.")
            await self._discard_async(session)
            session = None
        # a newer request may have arrived while the old process was being torn down
        if generation != self._generation or self._closed:
            raise PlacementCancelledError("Placement request was superseded")
        if session is None:
            session = self._session = self._spawn()

        session.busy = True
        loop = asyncio.get_running_loop()
        deadline = time.monotonic() + self.timeout
        try:
            try:
                await loop.run_in_executor(None, session.conn.send, request)
                ready = await loop.run_in_executor(None, _wait_readable, session.conn, session.cancelled, deadline)
            except OSError as exc:
                # the pipe breaks when a newer request terminated this process mid-send
                if not session.cancelled.is_set():
                    await self._discard_async(session)
                    raise PlacementWorkerError(f"Placement worker pipe failed: {exc}") from exc
                ready = False
            if session.cancelled.is_set():
                raise PlacementCancelledError("Placement request was cancelled")
            if not ready:
                logger.error(f"Placement computation timed out after {self.timeout}s.")
                await self._discard_async(session)
                raise PlacementTimeoutError(f"Placement computation timeout after {self.timeout}s")
            try:
                raw = session.conn.recv()
            except (EOFError, OSError) as exc:
                await self._discard_async(session)
                raise PlacementWorkerError("Placement worker exited unexpectedly") from exc
        except asyncio.CancelledError:
            # the caller is gone; terminate now and join in the background
            self._stop(session)
            loop.run_in_executor(None, self._reap, session)
            raise
        finally:
            session.busy = False
            if session.cancelled.is_set():
                session.conn.close()

        message = parse_message(raw)
        if isinstance(message, ErrorMessage):
            raise PlacementWorkerError(message.error)
        if not isinstance(message, PlacementResultMessage):
            raise ProtocolError(f"Unexpected message type from worker: {message.type}")
        return message.to_result()

    def close(self) -> None:
        """Tear down the worker, cancelling any pending request. Blocks until the process exits."""
        self._closed = True
        session = self._session
        if session is None:
            return
        if not session.busy and session.process.is_alive():
            try:
                session.conn.send(None)
                session.process.join(JOIN_TIMEOUT_SECONDS)
            except OSError as exc:
                logger.warning(f"Could not signal placement worker to stop: {exc}")
        self._discard(session)

    async def aclose(self) -> None:
        """``close()`` for coroutines: the shutdown handshake runs in an executor."""
        self._closed = True
        await asyncio.get_running_loop().run_in_executor(None, self.close)

    def __enter__(self) -> "PlacementWorker":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> "PlacementWorker":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
