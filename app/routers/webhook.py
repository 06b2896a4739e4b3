# app/routers/webhook.py
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse

from app.security import SIGNATURE_HEADER, verify_challenge
from app.util.logger import get_logger

log = get_logger("webhook")
router = APIRouter()


@router.get("/webhook/whatsapp", response_class=PlainTextResponse)
def verify_subscription(
    request: Request,
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: str = Query("", alias="hub.challenge"),
):
    expected = request.app.state.pipeline.settings.get().verify_token
    if not verify_challenge(mode, token, expected):
        log.warning({"event": "webhook_verify_failed", "mode": mode})
        raise HTTPException(403, "Forbidden")
    log.info({"event": "webhook_verified"})
    return PlainTextResponse(challenge)


@router.post("/webhook/whatsapp")
async def receive_delivery(request: Request):
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    pipeline = request.app.state.pipeline
    try:
        # DB + outbound HTTP are blocking
        result = await run_in_threadpool(pipeline.handle_delivery, body, signature)
    except Exception:
        # always acknowledge, or the platform retries forever
        log.exception("webhook delivery crashed")
        return {"ok": False, "error": "internal"}

    if result.error == "unauthorized":
        return JSONResponse({"ok": False, "error": "unauthorized"}, status_code=401)
    return result.summary()
