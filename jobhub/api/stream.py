"""Live output subscription over WebSocket.

``/api/runs/{run_id}/stream`` pushes every captured chunk of a run, tagged
with its stream, as it is appended, then one ``finished`` message with the
terminal run, then closes.  Messages are JSON:

    {"type": "output", "run_id": ..., "seq": 0, "stream": "stdout", "data": ..., ...}
    {"type": "finished", "run": {...}}
    {"type": "error", "error": "not_found", "message": ...}

A subscriber may resume with ``?since=<seq>``.  Chunks come from the run
registry, so a late subscriber first receives everything already captured.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from jobhub.api.auth import websocket_authorized
from jobhub.core.errors import RunNotFoundError
from jobhub.core.hub import JobHub

logger = logging.getLogger(__name__)

# How long one blocking wait for output may hold a worker thread.
_STREAM_WAIT_SECONDS = 1.0

WS_UNAUTHORIZED = 4001
WS_NOT_FOUND = 4404

router = APIRouter(prefix="/api", tags=["Runs"])


@router.websocket("/runs/{run_id}/stream")
async def stream_run_output(
    websocket: WebSocket,
    run_id: str,
    since: Annotated[int, Query(ge=0)] = 0,
) -> None:
    """Stream a run's output until it is terminal."""
    if not websocket_authorized(websocket):
        await websocket.close(code=WS_UNAUTHORIZED, reason="Unauthorized")
        return

    hub: JobHub = websocket.app.state.hub
    await websocket.accept()

    seq = since
    try:
        while True:
            try:
                chunks, run = await run_in_threadpool(
                    hub.wait_for_output, run_id, seq, _STREAM_WAIT_SECONDS
                )
            except RunNotFoundError as exc:
                await websocket.send_json({"type": "error", **exc.to_dict()})
                await websocket.close(code=WS_NOT_FOUND)
                return

            for chunk in chunks:
                await websocket.send_json(
                    {"type": "output", "run_id": run_id, **chunk.model_dump(mode="json")}
                )
            if chunks:
                seq = chunks[-1].seq + 1
            elif run.is_terminal:
                await websocket.send_json({"type": "finished", "run": run.model_dump(mode="json")})
                await websocket.close()
                logger.debug("Stream of run %s complete at seq %d", run_id, seq)
                return
    except WebSocketDisconnect:
        logger.debug("Subscriber of run %s disconnected at seq %d", run_id, seq)
