"""Alert subscription management, called by the chat bot command surface."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from backend_pnodes.api_server.state import AppState, get_state

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


class SubscriptionRequest(BaseModel):
    chat_id: str = Field(..., min_length=1, max_length=64, description="Chat that receives the alerts")
    pubkey: str = Field(..., min_length=1, max_length=64, description="Node public key to watch")


@router.post("/subscribe")
def subscribe(body: SubscriptionRequest, state: AppState = Depends(get_state)) -> dict[str, Any]:
    try:
        created = state.subscriptions.subscribe(body.chat_id, body.pubkey)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return {
        "chat_id": body.chat_id,
        "pubkey": body.pubkey.strip(),
        "subscribed": True,
        "created": created,
        "last_status": state.alert_engine.last_status(body.pubkey.strip()),
    }


@router.post("/unsubscribe")
def unsubscribe(body: SubscriptionRequest, state: AppState = Depends(get_state)) -> dict[str, Any]:
    removed = state.subscriptions.unsubscribe(body.chat_id, body.pubkey)
    if not removed:
        raise HTTPException(status_code=404, detail="No such subscription")
    return {"chat_id": body.chat_id, "pubkey": body.pubkey.strip(), "subscribed": False}


@router.get("/subscriptions/{chat_id}")
def subscriptions(chat_id: str, state: AppState = Depends(get_state)) -> dict[str, Any]:
    pubkeys = state.subscriptions.subscriptions(chat_id)
    return {
        "chat_id": chat_id,
        "subscriptions": [
            {"pubkey": p, "last_status": state.alert_engine.last_status(p)} for p in pubkeys
        ],
    }
