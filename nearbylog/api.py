from __future__ import annotations
import asyncio, logging, time
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from nearbylog.adapters import BleakRadioAdapter, ScanConfig
from nearbylog.runner import ScanRunner
from nearbylog.sinks import BufferedSink, FileSink, LoggingSink, MemorySink, TeeSink

logger = logging.getLogger(__name__)

app = FastAPI(title="nearbylog API", version="0.1.0")

_runner: Optional[ScanRunner] = None
_task: Optional[asyncio.Task] = None
_sink: Optional[BufferedSink] = None
_lines: Optional[MemorySink] = None

SIGHTINGS_KEPT = 10000


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time()}


@app.post("/session/start")
async def start(
    runtime: Optional[float] = Query(None, ge=0.1, description="Optional session duration seconds"),
    adapter: Optional[str] = Query(None, description="BLE adapter identifier"),
    no_bonded: bool = Query(False, description="Skip the bonded device snapshot"),
    log: Optional[str] = Query(None, description="Append sighting lines to this file"),
    buffer: int = Query(1024, ge=1, description="Pending sighting lines kept before dropping"),
):
    global _runner, _task, _sink, _lines
    if _task and not _task.done():
        return {"status": "already-running", "state": _runner.state.value if _runner else None}
    try:
        radio = BleakRadioAdapter(ScanConfig(adapter=adapter))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    await asyncio.to_thread(_close_sink)
    _lines = MemorySink(maxlen=SIGHTINGS_KEPT)
    targets = [_lines, LoggingSink()]
    if log:
        targets.append(FileSink(log))
    _sink = BufferedSink(TeeSink(*targets), capacity=buffer)
    _runner = ScanRunner(radio, sink=_sink, include_bonded=not no_bonded)
    _task = asyncio.create_task(_runner.run(runtime=runtime))
    return {
        "status": "started",
        "adapter": adapter,
        "runtime": runtime,
        "log": log,
    }


@app.post("/session/stop")
async def stop():
    global _task
    if not _task:
        return {"status": "idle"}
    if _runner:
        _runner.request_stop()
    try:
        await asyncio.wait_for(asyncio.shield(_task), timeout=5.0)
    except asyncio.TimeoutError:
        _task.cancel()
        logger.warning("session did not stop in time; cancelled")
    except Exception:
        logger.exception("session stop encountered error")
    _task = None
    await asyncio.to_thread(_close_sink)
    return {"status": "stopped"}


@app.get("/session/status")
async def status():
    if _runner is None:
        return {"status": "idle"}
    payload = {"status": _runner.state.value, **_runner.stats()}
    if _task is not None and _task.done() and not _task.cancelled() and _task.exception() is not None:
        payload["status"] = "failed"
        payload["error"] = str(_task.exception())
    return payload


@app.get("/devices")
async def devices():
    if _runner is None:
        return JSONResponse([])
    return JSONResponse([record.to_dict() for record in _runner.controller.snapshot()])


@app.get("/sightings")
async def sightings(limit: int = Query(100, ge=1, le=SIGHTINGS_KEPT)):
    if _lines is None:
        return {"lines": []}
    return {"lines": _lines.tail(limit)}


def _close_sink() -> None:
    if _sink is not None:
        _sink.close()
