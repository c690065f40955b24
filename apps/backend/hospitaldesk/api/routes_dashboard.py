from typing import Any, Dict, List, Literal, Optional
from fastapi import APIRouter, File, HTTPException, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import Response
from pydantic import BaseModel, Field

from hospitaldesk.services.dashboard import DashboardSession, sessions
from hospitaldesk.services.mutations import Mutation
from hospitaldesk.services.store_client import StoreConfigError, get_store

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


class OpenSessionReq(BaseModel):
    actor: Optional[str] = None


class CriteriaReq(BaseModel):
    search: Optional[str] = None
    city: Optional[str] = None
    status: Optional[str] = None
    sort_key: Optional[Literal["name", "created_at"]] = None
    sort_dir: Optional[Literal["asc", "desc"]] = None


class SortReq(BaseModel):
    key: Literal["name", "created_at"]


class RatingReq(BaseModel):
    manual_rating: int = Field(ge=0, le=5)


class SelectAllReq(BaseModel):
    checked: bool


class BulkStatusReq(BaseModel):
    status: str = "closed"
    ids: Optional[List[str]] = None


class BulkColdEmailReq(BaseModel):
    mark: bool
    ids: Optional[List[str]] = None


class ControlReq(BaseModel):
    action: str


class QuickAddReq(BaseModel):
    name: Optional[str] = None
    city: Optional[str] = None
    website: Optional[str] = None
    address: Optional[str] = None
    linkedin: Optional[str] = None
    emails: Optional[str] = None
    phones: Optional[str] = None
    telemedicine: Optional[str] = None
    status: Optional[str] = None
    manual_rating: Optional[int] = Field(default=None, ge=0, le=5)


def _session(session_id: str) -> DashboardSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


def _view(session: DashboardSession) -> Dict[str, Any]:
    return jsonable_encoder(session.view())


def _outcome(session: DashboardSession, mutation: Optional[Mutation]) -> Dict[str, Any]:
    return {
        "state": mutation.state.value if mutation is not None else None,
        "error": mutation.error if mutation is not None else None,
        "view": _view(session),
    }


@router.post("/sessions")
async def open_session(req: Optional[OpenSessionReq] = None):
    try:
        store = get_store()
    except StoreConfigError as e:
        raise HTTPException(status_code=503, detail=str(e))
    session = await sessions.open(store, actor=req.actor if req else None)
    return {"session_id": session.id, "view": _view(session)}


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str):
    if not await sessions.close(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"closed": True, "session_id": session_id}


@router.get("/sessions/{session_id}/view")
def get_view(session_id: str):
    return _view(_session(session_id))


@router.put("/sessions/{session_id}/criteria")
def set_criteria(session_id: str, req: CriteriaReq):
    session = _session(session_id)
    session.set_criteria(**req.model_dump())
    return _view(session)


@router.post("/sessions/{session_id}/sort")
def sort_rows(session_id: str, req: SortReq):
    session = _session(session_id)
    session.sort_by(req.key)
    return _view(session)


@router.post("/sessions/{session_id}/closed-filter")
def toggle_closed_filter(session_id: str):
    session = _session(session_id)
    session.toggle_closed_filter()
    return _view(session)


@router.post("/sessions/{session_id}/refresh")
async def refresh(session_id: str):
    session = _session(session_id)
    error = await session.refresh()
    return {"ok": error is None, "error": error.message if error else None, "view": _view(session)}


@router.post("/sessions/{session_id}/selection/{row_id}")
def toggle_selection(session_id: str, row_id: str):
    session = _session(session_id)
    return {"selected": session.toggle_selection(row_id), "row_id": row_id}


@router.post("/sessions/{session_id}/selection")
def select_all(session_id: str, req: SelectAllReq):
    session = _session(session_id)
    session.select_all(req.checked)
    return {"selected": sorted(str(i) for i in session.selected)}


@router.post("/sessions/{session_id}/hospitals/{row_id}/status")
async def toggle_status(session_id: str, row_id: str):
    session = _session(session_id)
    return _outcome(session, await session.toggle_status(row_id))


@router.put("/sessions/{session_id}/hospitals/{row_id}/rating")
async def set_rating(session_id: str, row_id: str, req: RatingReq):
    session = _session(session_id)
    return _outcome(session, await session.set_rating(row_id, req.manual_rating))


@router.post("/sessions/{session_id}/hospitals/{row_id}/cold-email")
async def toggle_cold_email(session_id: str, row_id: str):
    session = _session(session_id)
    return _outcome(session, await session.toggle_cold_email(row_id))


@router.post("/sessions/{session_id}/bulk/status")
async def bulk_status(session_id: str, req: BulkStatusReq):
    session = _session(session_id)
    return _outcome(session, await session.bulk_set_status(req.status, req.ids))


@router.post("/sessions/{session_id}/bulk/cold-email")
async def bulk_cold_email(session_id: str, req: BulkColdEmailReq):
    session = _session(session_id)
    return _outcome(session, await session.bulk_set_cold_emailed(req.mark, req.ids))


@router.post("/sessions/{session_id}/controls")
async def run_control(session_id: str, req: ControlReq):
    session = _session(session_id)
    result = await session.run_control(req.action)
    payload = {"action": req.action, "view": _view(session)}
    if isinstance(result, Mutation):
        payload["state"] = result.state.value
    elif isinstance(result, dict):
        payload["export"] = result
    return payload


@router.post("/sessions/{session_id}/hospitals")
async def quick_add(session_id: str, req: QuickAddReq):
    session = _session(session_id)
    row = await session.quick_add(req.model_dump(exclude_none=True))
    if row is None:
        raise HTTPException(status_code=400, detail="Hospital was not added")
    return {"data": jsonable_encoder(row), "view": _view(session)}


@router.post("/sessions/{session_id}/import")
async def import_csv(session_id: str, file: UploadFile = File(...)):
    session = _session(session_id)
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded")
    report = await session.import_csv(text)
    return {"report": report.to_dict(), "view": _view(session)}


@router.get("/sessions/{session_id}/export")
def export_csv(session_id: str):
    session = _session(session_id)
    export = session.export_csv()
    return Response(
        content=export["content"],
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export["filename"]}"'},
    )
