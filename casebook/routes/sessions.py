"""Session endpoints: session rows, the skill-entry editor and its taxonomy."""

import logging
from datetime import date
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from casebook.db import records
from casebook.db.database import get_db
from casebook.models.session import (
    SessionDetail,
    SessionUpdate,
    SkillEntryCreate,
    SkillEntryUpdate,
    TaxonomyRequest,
)
from casebook.services.assessment_client import AssessmentProviderError
from casebook.services.editors import EditorRegistry, get_editors
from casebook.services.section_store import StoreClosedError
from casebook.services.session_editor import (
    NoTaxonomyError,
    SessionEditor,
    SessionNotFoundError,
    SkillEntryIndexError,
)
from casebook.services.skill_cascade import CascadeError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])


class SessionCreate(BaseModel):
    session_date: str | None = None  # YYYY-MM-DD, defaults to today
    session_type: str = "child"


# -- Helpers --------------------------------------------------------------

async def _open_session(editors: EditorRegistry, session_id: int) -> SessionEditor:
    try:
        return await editors.open_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _edit_errors(e: Exception) -> HTTPException:
    if isinstance(e, SkillEntryIndexError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, NoTaxonomyError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StoreClosedError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=e.errors(include_url=False))
    return HTTPException(status_code=422, detail=str(e))


# -- Session rows ---------------------------------------------------------

@router.post("/api/children/{child_id}/sessions", response_model=SessionDetail, status_code=201)
async def create_session(child_id: int, body: SessionCreate | None = None, db=Depends(get_db)):
    """Create the child's next session; numbering continues from the highest session_no."""
    if not await records.get_child(db, child_id):
        raise HTTPException(status_code=404, detail="Child not found")
    body = body or SessionCreate()
    session_id = await records.create_session_detail(
        db,
        child_id,
        body.session_date or date.today().isoformat(),
        session_type=body.session_type,
    )
    logger.info("Created session %d for child %d", session_id, child_id)
    return SessionDetail(**await records.get_session_detail(db, session_id))


@router.delete("/api/sessions/{session_id}")
async def delete_session(session_id: int, db=Depends(get_db), editors: EditorRegistry = Depends(get_editors)):
    if not await records.get_session_detail(db, session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    # Pending autosaves would recreate entries for a deleted session
    await editors.close_session(session_id)
    await records.delete_session_detail(db, session_id)
    return {"deleted": session_id}


# -- Editor ---------------------------------------------------------------

@router.get("/api/sessions/{session_id}/editor")
async def get_editor(session_id: int, editors: EditorRegistry = Depends(get_editors)):
    """Session row and skill entries as currently edited, with save status."""
    editor = await _open_session(editors, session_id)
    return editor.view()


@router.delete("/api/sessions/{session_id}/editor")
async def close_editor(session_id: int, editors: EditorRegistry = Depends(get_editors)):
    closed = await editors.close_session(session_id)
    return {"closed": closed}


@router.patch("/api/sessions/{session_id}")
async def update_session(session_id: int, body: SessionUpdate, editors: EditorRegistry = Depends(get_editors)):
    editor = await _open_session(editors, session_id)
    try:
        session = editor.update_session(body.model_dump(exclude_unset=True, mode="json"))
    except StoreClosedError as e:
        raise _edit_errors(e)
    return {"session": session, "status": editor.status()}


@router.post("/api/sessions/{session_id}/taxonomy")
async def load_taxonomy(session_id: int, body: TaxonomyRequest, editors: EditorRegistry = Depends(get_editors)):
    """Load the skill taxonomy for the child's assessment email into the editor."""
    editor = await _open_session(editors, session_id)
    try:
        await editor.load_taxonomy(body.email, editors.taxonomy)
    except AssessmentProviderError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return editor.taxonomy_summary()


# -- Skill entries --------------------------------------------------------

@router.post("/api/sessions/{session_id}/skills", status_code=201)
async def add_skill(session_id: int, body: SkillEntryCreate, editors: EditorRegistry = Depends(get_editors)):
    editor = await _open_session(editors, session_id)
    try:
        entry = editor.add_skill(body.is_manual)
    except (NoTaxonomyError, StoreClosedError) as e:
        raise _edit_errors(e)
    return {"index": entry["skill_order"], "entry": entry}


@router.patch("/api/sessions/{session_id}/skills/{index}")
async def update_skill(
    session_id: int,
    index: int,
    body: SkillEntryUpdate,
    editors: EditorRegistry = Depends(get_editors),
):
    editor = await _open_session(editors, session_id)
    try:
        entry = editor.update_skill(index, body.fields)
    except (SkillEntryIndexError, CascadeError, ValidationError, StoreClosedError) as e:
        raise _edit_errors(e)
    return {"index": index, "entry": entry}


@router.get("/api/sessions/{session_id}/skills/{index}/options")
async def skill_options(session_id: int, index: int, editors: EditorRegistry = Depends(get_editors)):
    editor = await _open_session(editors, session_id)
    try:
        return editor.options(index)
    except SkillEntryIndexError as e:
        raise _edit_errors(e)


@router.delete("/api/sessions/{session_id}/skills/{index}")
async def remove_skill(session_id: int, index: int, editors: EditorRegistry = Depends(get_editors)):
    editor = await _open_session(editors, session_id)
    try:
        editor.remove_skill(index)
    except (SkillEntryIndexError, StoreClosedError) as e:
        raise _edit_errors(e)
    return {"skill_entries": editor.skill_entries}


@router.post("/api/sessions/{session_id}/save")
async def save_session(session_id: int, editors: EditorRegistry = Depends(get_editors)):
    """Write the session and all its entries now."""
    editor = await _open_session(editors, session_id)
    saved = await editor.save()
    return {"saved": saved, "status": editor.status()}
