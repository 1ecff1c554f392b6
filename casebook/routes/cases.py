"""Case record endpoints: the case view, section autosave and coach details."""

import logging
from fastapi import APIRouter, Depends, HTTPException
from casebook.db.database import get_db
from casebook.models.case import CaseView, CoachDetailsUpdate, SectionUpdate
from casebook.services.case_record import (
    COACH_DETAILS,
    CaseEditor,
    CaseNotFoundError,
    SectionFieldError,
    SectionKeyError,
)
from casebook.services.editors import EditorRegistry, get_editors
from casebook.services.section_store import StoreClosedError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cases"])


# -- Helpers --------------------------------------------------------------

async def _open_case(db, editors: EditorRegistry, slug: str) -> CaseEditor:
    try:
        return await editors.open_case(db, slug)
    except CaseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


def _apply(editor: CaseEditor, key: str, fields: dict) -> dict:
    try:
        return editor.update_section(key, fields)
    except SectionKeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SectionFieldError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StoreClosedError as e:
        raise HTTPException(status_code=409, detail=str(e))


async def _save(editor: CaseEditor, key: str) -> dict:
    try:
        saved = await editor.save_section(key)
        status = editor.section_status(key)
    except SectionKeyError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"saved": saved, "status": status}


# -- Case view ------------------------------------------------------------

@router.get("/api/cases/{slug}", response_model=CaseView)
async def get_case(slug: str, db=Depends(get_db), editors: EditorRegistry = Depends(get_editors)):
    """Case record with every section, as currently edited."""
    editor = await _open_case(db, editors, slug)
    return editor.view()


@router.delete("/api/cases/{slug}/editors")
async def close_case(slug: str, editors: EditorRegistry = Depends(get_editors)):
    """Leave the case view. Edits still waiting on the debounce window are dropped."""
    closed = await editors.close_case(slug)
    return {"closed": closed}


# -- Sections -------------------------------------------------------------

@router.patch("/api/cases/{slug}/sections/{key}")
async def update_section(
    slug: str,
    key: str,
    body: SectionUpdate,
    db=Depends(get_db),
    editors: EditorRegistry = Depends(get_editors),
):
    editor = await _open_case(db, editors, slug)
    data = _apply(editor, key, body.fields)
    return {"section": key, "data": data, "status": editor.section_status(key)}


@router.post("/api/cases/{slug}/sections/{key}/save")
async def save_section(slug: str, key: str, db=Depends(get_db), editors: EditorRegistry = Depends(get_editors)):
    """Write a section immediately instead of waiting for the debounce window."""
    editor = await _open_case(db, editors, slug)
    return await _save(editor, key)


@router.get("/api/cases/{slug}/sections/{key}/status")
async def section_status(slug: str, key: str, db=Depends(get_db), editors: EditorRegistry = Depends(get_editors)):
    editor = await _open_case(db, editors, slug)
    try:
        return editor.section_status(key)
    except SectionKeyError as e:
        raise HTTPException(status_code=404, detail=str(e))


# -- Coach details --------------------------------------------------------

@router.patch("/api/cases/{slug}/coach")
async def update_coach(
    slug: str,
    body: CoachDetailsUpdate,
    db=Depends(get_db),
    editors: EditorRegistry = Depends(get_editors),
):
    editor = await _open_case(db, editors, slug)
    data = _apply(editor, COACH_DETAILS, body.model_dump(exclude_unset=True))
    return {"section": COACH_DETAILS, "data": data, "status": editor.section_status(COACH_DETAILS)}


@router.post("/api/cases/{slug}/coach/save")
async def save_coach(slug: str, db=Depends(get_db), editors: EditorRegistry = Depends(get_editors)):
    editor = await _open_case(db, editors, slug)
    return await _save(editor, COACH_DETAILS)
