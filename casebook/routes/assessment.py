"""Proxy to the external assessment provider."""

import logging
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from casebook.services.assessment_client import AssessmentProviderError, load_user_assessment

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assessment"])


class AssessmentRequest(BaseModel):
    email: str | None = None


@router.post("/api/assessment/load-user-assessment")
async def load_assessment(body: AssessmentRequest):
    """Fetch a user's expert activities, grouped by skill and indicator."""
    email = (body.email or "").strip()
    if not email:
        raise HTTPException(status_code=400, detail="Email is required")

    try:
        data = await load_user_assessment(email)
    except AssessmentProviderError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return data.model_dump(by_alias=True)
