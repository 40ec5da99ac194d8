# tests/test_worker.py
"""
Tests for the worker message protocol, the background request handler and the worker process.
Run with `pytest -q` in project root.
"""

from __future__ import annotations
import asyncio
import threading
import numpy as np
import pytest

import sys
from pathlib import Path
# Add the src folder to sys.path if it's not already there
SRC_PATH = Path(__file__).resolve().parents[1] / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.append(str(SRC_PATH))

from models import AxialHex, EmbeddingItem, NormalizationBounds, PlacementConfig
from projection import PCAProjector
from protocol import (
    ComputePlacementRequest,
    PlacementResultMessage,
    ProtocolError,
    dump_message,
    parse_message,
)
from worker import (
    PlacementCancelledError,
    PlacementTimeoutError,
    PlacementWorker,
    PlacementWorkerError,
    _Session,
    handle_message,
)

BOUNDS = NormalizationBounds(-5, 5, -5, 5)
# generous: the spawned process imports numpy, scikit-learn and umap on start-up
PROCESS_TIMEOUT = 120


def sample_items(n=5, dim=4, seed=0):
    rng = np.random.default_rng(seed)
    return [EmbeddingItem(f"story-{i}", rng.normal(size=dim).tolist(), f"theme-{i % 2}") for i in range(n)]

def request_dict(items, bounds=BOUNDS, config=None):
    return dump_message(ComputePlacementRequest.build(items, bounds, config))

def test_request_uses_wire_field_names():
    msg = request_dict(sample_items(2), config=PlacementConfig(hex_radius=10))
    assert msg["type"] == "computePlacement"
    assert set(msg["items"][0]) == {"id", "embedding", "cluster_id"}
    assert msg["bounds"] == {"min_x": -5.0, "max_x": 5.0, "min_y": -5.0, "max_y": 5.0}
    assert msg["config"] == {"canvasWidth": 900.0, "canvasHeight": 600.0, "hexRadius": 10.0, "margin": 20.0}

def test_request_config_defaults_apply():
    parsed = parse_message({
        "type": "computePlacement",
        "items": [{"id": "1", "embedding": [0, 0]}],
        "bounds": {"min_x": -1, "max_x": 1, "min_y": -1, "max_y": 1},
        "config": {"hexRadius": 8},
    })
    config = parsed.to_config(max_search_radius=50)
    assert config == PlacementConfig(900, 600, 8, 20, 50)
    assert parsed.to_items()[0].cluster_hint is None

def test_placements_serialise_as_ordered_pairs():
    message = parse_message({
        "type": "placementResult",
        "placements": [["b", {"q": 1, "r": -1}], ["a", {"q": 0, "r": 0}]],
    })
    assert isinstance(message, PlacementResultMessage)
    result = message.to_result()
    assert list(result.placements.items()) == [("b", AxialHex(1, -1)), ("a", AxialHex(0, 0))]
    assert result.debug_points is None
    assert dump_message(message)["placements"] == [["b", {"q": 1, "r": -1}], ["a", {"q": 0, "r": 0}]]

def test_unknown_and_malformed_messages():
    with pytest.raises(ProtocolError, match="Unknown message type: explode"):
        parse_message({"type": "explode"})
    with pytest.raises(ProtocolError, match="Malformed"):
        parse_message({"type": "computePlacement", "items": []})
    with pytest.raises(ProtocolError):
        parse_message(["computePlacement"])

def test_handle_message_places_items():
    items = sample_items(6)
    response = handle_message(request_dict(items), PCAProjector())
    assert response["type"] == "placementResult"
    ids = [item_id for item_id, _ in response["placements"]]
    assert sorted(ids) == sorted(i.id for i in items)
    cells = {(h["q"], h["r"]) for _, h in response["placements"]}
    assert len(cells) == 6
    assert [p["id"] for p in response["debugPoints"]] == [i.id for i in items]

def test_handle_message_single_item_needs_no_projector():
    response = handle_message(request_dict(sample_items(1)), None)
    assert response == {"type": "placementResult", "placements": [["story-0", {"q": 0, "r": 0}]]}

def test_handle_message_reports_errors():
    assert handle_message(request_dict(sample_items(3)), None)["type"] == "error"
    unknown = handle_message({"type": "error", "error": "boom"}, PCAProjector())
    assert unknown == {"type": "error", "error": "Unknown message type: error"}
    bad_bounds = request_dict(sample_items(3))
    bad_bounds["bounds"]["max_x"] = -10
    response = handle_message(bad_bounds, PCAProjector())
    assert response["type"] == "error"
    assert "Invalid normalization bounds" in response["error"]

def test_handle_message_reports_exhaustion():
    # nearly identical vectors project onto the same cell
    items = [EmbeddingItem("a", [1.0, 1.0]), EmbeddingItem("b", [1.0, 1.001])]
    response = handle_message(request_dict(items), PCAProjector(), max_search_radius=0)
    assert response["type"] == "error"
    assert "No free hex" in response["error"]

def test_worker_answers_small_requests_locally():
    async def run():
        with PlacementWorker("pca") as worker:
            empty = await worker.compute_placement([], BOUNDS)
            single = await worker.compute_placement(sample_items(1), BOUNDS)
            assert worker._session is None
            return empty, single

    empty, single = asyncio.run(run())
    assert empty.placements == {}
    assert single.placements == {"story-0": AxialHex(0, 0)}

def test_worker_process_round_trip():
    items = sample_items(8)

    async def run():
        async with PlacementWorker("pca", timeout=PROCESS_TIMEOUT, seed=1) as worker:
            first = await worker.compute_placement(items, BOUNDS)
            second = await worker.compute_placement(items[:4], BOUNDS)
            return first, second

    first, second = asyncio.run(run())
    assert len(first.placements) == 8
    assert len({h.key for h in first.placements.values()}) == 8
    assert set(second.placements) == {i.id for i in items[:4]}

def test_worker_reports_projector_failure():
    async def run():
        with PlacementWorker("does-not-exist", timeout=PROCESS_TIMEOUT) as worker:
            await worker.compute_placement(sample_items(3), BOUNDS)

    with pytest.raises(PlacementWorkerError, match="Failed to create projector"):
        asyncio.run(run())

def test_worker_timeout_discards_process():
    worker = PlacementWorker("pca", timeout=0.001)

    async def run():
        await worker.compute_placement(sample_items(3), BOUNDS)

    try:
        with pytest.raises(PlacementTimeoutError):
            asyncio.run(run())
        assert worker._session is None
        assert not worker.busy
    finally:
        worker.close()

def test_closed_worker_rejects_requests():
    worker = PlacementWorker("pca")
    worker.close()
    with pytest.raises(RuntimeError, match="closed"):
        asyncio.run(worker.compute_placement(sample_items(2), BOUNDS))

def test_new_request_supersedes_in_flight_one():
    async def run():
        async with PlacementWorker("pca", timeout=PROCESS_TIMEOUT) as worker:
            return await asyncio.gather(
                worker.compute_placement(sample_items(4, seed=1), BOUNDS),
                worker.compute_placement(sample_items(5, seed=2), BOUNDS),
                return_exceptions=True,
            )

    stale, fresh = asyncio.run(run())
    assert isinstance(stale, PlacementCancelledError)
    assert len(fresh.placements) == 5

class SlowExitProcess:
    """Stands in for a worker process whose join takes a while; records the joining thread."""

    pid = 4242

    def __init__(self, join_seconds=0.2):
        self.join_seconds = join_seconds
        self.alive = True
        self.join_threads = []

    def is_alive(self):
        return self.alive

    def terminate(self):
        self.alive = False

    def join(self, timeout=None):
        self.join_threads.append(threading.current_thread())
        threading.Event().wait(self.join_seconds)
        self.alive = False


class SilentConn:
    """Pipe end that accepts everything and never answers."""

    def __init__(self):
        self.sent = []
        self.closed = False

    def send(self, obj):
        self.sent.append(obj)

    def poll(self, timeout=0.0):
        threading.Event().wait(timeout)
        return False

    def recv(self):
        raise EOFError

    def close(self):
        self.closed = True

def test_async_close_joins_off_the_event_loop():
    worker = PlacementWorker("pca")
    process, conn = SlowExitProcess(), SilentConn()
    worker._session = _Session(process=process, conn=conn)
    ticks = []

    async def ticker():
        while True:
            ticks.append(1)
            await asyncio.sleep(0.01)

    async def run():
        async with worker:
            task = asyncio.create_task(ticker())
            await asyncio.sleep(0)
        task.cancel()

    asyncio.run(run())
    assert conn.sent == [None]
    assert conn.closed
    assert process.join_threads
    assert all(t is not threading.main_thread() for t in process.join_threads)
    # the loop kept running while the process was being joined
    assert len(ticks) > 5
    assert worker._session is None

def test_timeout_teardown_joins_off_the_event_loop():
    worker = PlacementWorker("pca", timeout=0.05)
    process, conn = SlowExitProcess(join_seconds=0.05), SilentConn()
    worker._session = _Session(process=process, conn=conn)

    async def run():
        await worker.compute_placement(sample_items(3), BOUNDS)

    with pytest.raises(PlacementTimeoutError):
        asyncio.run(run())
    assert conn.sent[0]["type"] == "computePlacement"
    assert not process.is_alive()
    assert process.join_threads
    assert all(t is not threading.main_thread() for t in process.join_threads)
    assert worker._session is None
    assert conn.closed
