# backend/app/api/pubsub.py
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response
from starlette.concurrency import run_in_threadpool

from backend.app.status import pipeline_status

router = APIRouter()


@router.post("/pubsub/push", status_code=204)
async def pubsub_push(request: Request, token: Optional[str] = None) -> Response:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Pipeline is not running.")

    expected = runtime.settings.pubsub_verification_token
    if expected and not hmac.compare_digest(token or "", expected):
        raise HTTPException(status_code=403, detail="Invalid push token.")

    payload = await request.body()
    # Resolution may sleep and submit may block on a full queue; keep the event loop free.
    result = await run_in_threadpool(runtime.listener.handle, payload)
    pipeline_status.count_delivery(result.status)

    if not result.ack:
        # Not consumed: a non-2xx answer makes Pub/Sub redeliver later.
        raise HTTPException(status_code=503, detail="Listener is shutting down.")
    return Response(status_code=204)
