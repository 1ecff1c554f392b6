from fastapi import APIRouter, Depends, HTTPException
from casebook.db import records
from casebook.db.database import get_db
from casebook.models.case import ChildCreate, ChildResponse
from casebook.models.session import SessionDetail
from casebook.utils.slugify import generate_slug

router = APIRouter(tags=["children"])


@router.get("/api/children", response_model=list[ChildResponse])
async def list_children(db=Depends(get_db)):
    rows = await records.list_children(db)
    return [ChildResponse(**row) for row in rows]


@router.post("/api/children", response_model=ChildResponse, status_code=201)
async def create_child(body: ChildCreate, db=Depends(get_db)):
    """Create a child together with its (empty) case record."""
    child_id = await records.create_child(db, body.name, generate_slug(body.name))
    child = await records.get_child(db, child_id)
    return ChildResponse(**child)


@router.get("/api/children/{child_id}/sessions", response_model=list[SessionDetail])
async def list_sessions(child_id: int, db=Depends(get_db)):
    if not await records.get_child(db, child_id):
        raise HTTPException(status_code=404, detail="Child not found")
    rows = await records.list_session_details(db, child_id)
    return [SessionDetail(**row) for row in rows]
