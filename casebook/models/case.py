from pydantic import BaseModel, field_validator
from typing import Any, Optional


class ChildCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def name_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Child name is required")
        return v


class ChildResponse(BaseModel):
    id: int
    name: str
    case_slug: str
    created_at: Optional[str] = None


class SectionUpdate(BaseModel):
    """Partial edit of one case-history section."""
    fields: dict[str, Any]


class CoachDetailsUpdate(BaseModel):
    coach_name: Optional[str] = None
    date_of_parent_interaction: Optional[str] = None
    child_interaction_start_date: Optional[str] = None
    total_sessions_taken: Optional[int] = None
    child_interaction_end_date: Optional[str] = None
    assessment_report: Optional[str] = None


class CaseView(BaseModel):
    child: ChildResponse
    case_record_id: int
    sections: dict[str, dict[str, Any]]
    coach_details: dict[str, Any]
    assessment_email: str = ""
    changed_sections: list[str] = []
    pending_sections: list[str] = []
    saving: bool = False
