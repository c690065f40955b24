import json
from fastapi import APIRouter, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from hospitaldesk.config import settings
from hospitaldesk.services.scoring_service import validate_rating, with_derived_score
from hospitaldesk.services.store_client import get_store

router = APIRouter(prefix="/hospitals", tags=["hospitals"])


@router.get("")
def hospitals_probe():
    # liveness only, never touches the store
    return {"ok": True, "route": "hospitals"}


@router.patch("")
async def patch_hospital(request: Request):
    try:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

        body = body if isinstance(body, dict) else {}
        row_id = body.get("id")
        updates = body.get("updates")
        if isinstance(updates, dict):
            updates = with_derived_score(updates)

        if not row_id or not isinstance(updates, dict) or not updates:
            return JSONResponse(status_code=400, content={"error": "Missing id or updates"})

        # null clears the rating; anything else must be a 0-5 whole number
        if updates.get("manual_rating") is not None:
            try:
                updates = with_derived_score({**updates, "manual_rating": validate_rating(updates["manual_rating"])})
            except ValueError as e:
                return JSONResponse(status_code=400, content={"error": str(e)})

        # created lazily so a missing DATABASE_URL only fails here
        store = get_store()
        result = await store.update(settings.HOSPITALS_TABLE, updates, {"id": row_id})
        if result.error is not None:
            print(f"❌ Hospital update error: {result.error}")
            return JSONResponse(status_code=500, content={"error": result.error.message or str(result.error)})

        data = result.data[0] if result.data else result.data
        return JSONResponse(status_code=200, content=jsonable_encoder({"data": data}))
    except Exception as e:
        print(f"❌ Route PATCH error: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
