# app/routers/admin.py
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from app.schemas import BotSettingsUpdate
from app.services.bot_settings import SettingsError
from app.services.pipeline import ChannelNotConfigured, CustomerNotFound, DeliveryFailed
from app.util.logger import get_logger

log = get_logger("admin")
router = APIRouter(prefix="/api")


class StatusChange(BaseModel):
    status: Literal["active", "blocked", "archived"]


class ManualMessage(BaseModel):
    customer_id: str
    content: str = Field(..., min_length=1, max_length=4096)


# ---------- settings ----------
@router.get("/settings")
def get_settings(request: Request):
    return request.app.state.pipeline.settings.get().public_dict()


@router.put("/settings")
def update_settings(request: Request, changes: BotSettingsUpdate):
    try:
        bot = request.app.state.pipeline.settings.update(changes)
    except SettingsError as e:
        raise HTTPException(422, str(e))
    return bot.public_dict()


@router.post("/settings/reset")
def reset_settings(request: Request):
    log.info({"event": "settings_reset_requested"})
    return request.app.state.pipeline.settings.reset().public_dict()


# ---------- customers ----------
@router.get("/customers")
def list_customers(
    request: Request,
    status: Optional[Literal["active", "blocked", "archived"]] = None,
    limit: int = Query(100, ge=1, le=500),
):
    customers = request.app.state.pipeline.customers.list_customers(status=status, limit=limit)
    return {"customers": [c.to_dict() for c in customers]}


@router.put("/customers/{customer_id}/status")
def set_customer_status(request: Request, customer_id: str, change: StatusChange):
    c = request.app.state.pipeline.customers.set_status(customer_id, change.status)
    if c is None:
        raise HTTPException(404, "Customer not found")
    log.info({"event": "customer_status_changed", "customer_id": customer_id, "status": change.status})
    return c.to_dict()


# ---------- messages ----------
@router.get("/messages")
def list_messages(
    request: Request,
    customer_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
):
    ledger = request.app.state.pipeline.ledger
    msgs = ledger.list_by_customer(customer_id, limit=limit) if customer_id else ledger.list_recent(limit=limit)
    return {"messages": [m.to_dict() for m in msgs]}


@router.post("/messages", status_code=201)
def send_message(request: Request, payload: ManualMessage):
    try:
        msg = request.app.state.pipeline.send_manual_message(payload.customer_id, payload.content)
    except CustomerNotFound:
        raise HTTPException(404, "Customer not found")
    except ChannelNotConfigured as e:
        raise HTTPException(409, str(e))
    except DeliveryFailed as e:
        raise HTTPException(502, f"Send failed: {e}")
    except ValueError as e:
        raise HTTPException(422, str(e))
    return msg.to_dict()


# ---------- status ----------
@router.get("/status")
def service_status(request: Request):
    pipeline = request.app.state.pipeline
    bot = pipeline.settings.get()
    return {
        "ok": True,
        "env": request.app.state.env,
        "dry_run": request.app.state.dry_run,
        "bot_active": bot.is_active,
        "has_credentials": bot.has_credentials,
        "customers": pipeline.customers.count(),
        "messages": pipeline.ledger.count(),
    }
