# dropline/routers/live.py
"""
Websocket transport for the live view.

Only plumbing lives here: who may follow what is decided by
LiveStatusService.subscribe, and location reports go through
LiveStatusService.report_location like their HTTP counterpart.
"""
import json
from typing import Dict

import structlog
from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from pydantic import ValidationError

from dropline.core.errors import CoordinatorError
from dropline.core.policy import auto_topics
from dropline.core.security import principal_from_token
from dropline.models.order import LocationIn, Principal
from dropline.services.bus import Subscription, topic_name

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["live"])


@router.websocket("/ws")
async def live_socket(websocket: WebSocket, token: str = Query(...)):
    try:
        principal = principal_from_token(token)
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    live = websocket.app.state.live
    coordinator = websocket.app.state.coordinator
    subs: Dict[str, Subscription] = {}
    log = logger.bind(principal=principal.id, role=principal.role)

    async def sink(event):
        await websocket.send_json(jsonable_encoder(event))

    async def subscribe(kind: str, key):
        topic = topic_name(kind, key)
        if topic in subs:
            return topic
        subs[topic] = await live.subscribe(kind, key, principal, sink)
        return topic

    async def handle(msg: dict, principal: Principal):
        action = msg.get("action")
        if action == "subscribe":
            kind, key = msg.get("topic"), msg.get("key")
            topic = await subscribe(kind, key)
            await websocket.send_json({"type": "subscribed", "topic": topic})
            if kind == "order":
                snap = await coordinator.snapshot(key, principal)
                await websocket.send_json({"type": "snapshot", **jsonable_encoder(snap)})
        elif action == "unsubscribe":
            topic = topic_name(msg.get("topic"), msg.get("key"))
            sub = subs.pop(topic, None)
            if sub is not None:
                live.unsubscribe(sub)
            await websocket.send_json({"type": "unsubscribed", "topic": topic})
        elif action == "location":
            location = LocationIn(lat=msg.get("lat"), lng=msg.get("lng"))
            sample = await live.report_location(msg.get("order_id"), principal.id, location)
            await websocket.send_json({"type": "location_ack", **jsonable_encoder(sample)})
        else:
            await websocket.send_json({"type": "error", "reason": "BadRequest",
                                       "detail": f"Unknown action {action!r}"})

    try:
        for kind, key in auto_topics(principal):
            await subscribe(kind, key)
        log.info("Live connection opened", topics=list(subs))
        await websocket.send_json({"type": "connected", "topics": list(subs)})

        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
                if not isinstance(msg, dict):
                    raise ValueError("Expected a JSON object")
                await handle(msg, principal)
            except CoordinatorError as exc:
                await websocket.send_json({"type": "error", **jsonable_encoder(exc.to_dict())})
            except (ValueError, ValidationError) as exc:
                await websocket.send_json({"type": "error", "reason": "BadRequest", "detail": str(exc)})
    except WebSocketDisconnect:
        log.info("Live connection closed")
    finally:
        for sub in subs.values():
            live.unsubscribe(sub)
