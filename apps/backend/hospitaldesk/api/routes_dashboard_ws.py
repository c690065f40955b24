import asyncio
import json
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder

from hospitaldesk.services.dashboard import sessions

router = APIRouter(prefix="/ws", tags=["dashboard-ws"])


@router.websocket("/dashboard/{session_id}")
async def dashboard_socket(websocket: WebSocket, session_id: str):
    session = sessions.attach(session_id)
    await websocket.accept()
    if session is None:
        await websocket.send_json({"type": "error", "error": "Session not found"})
        await websocket.close(code=4404)
        return

    # cache observers are sync, so changes are queued and pushed from here
    changed = asyncio.Event()
    remove = session.cache.subscribe(changed.set)

    async def push_views():
        while True:
            await changed.wait()
            changed.clear()
            await websocket.send_json({"type": "view", "view": jsonable_encoder(session.view())})

    pusher = asyncio.create_task(push_views())
    try:
        await websocket.send_json({"type": "view", "view": jsonable_encoder(session.view())})
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "error": "Invalid JSON message"})
                continue
            if not isinstance(payload, dict):
                await websocket.send_json({"type": "error", "error": "Message must be a JSON object"})
                continue

            sessions.touch(session_id)
            action = str(payload.get("action") or "").strip()
            if action == "refresh":
                await session.refresh()
            elif action:
                result = await session.run_control(action)
                if isinstance(result, dict):
                    await websocket.send_json({"type": "export", **result})
                changed.set()
            else:
                await websocket.send_json({"type": "error", "error": "Empty action"})
    except WebSocketDisconnect:
        pass
    finally:
        remove()
        pusher.cancel()
        # the session lives as long as its last socket
        await sessions.detach(session_id)
        print(f"👋 Dashboard socket closed for session {session_id}")
