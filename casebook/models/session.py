from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Attendance(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"


# Field groups of a skill entry. The cascade and the formula engine key off these.
SELECTION_FIELDS = ("skill_name", "indicator_name", "activity_name")

ACTIVITY_FIELDS = (
    "activity_objective",
    "activity_instructions",
    "activity_materials",
    "activity_level",
    "activity_level_score",
    "target_f",
    "target_f_value",
    "target_i",
    "target_i_value",
    "target_s",
    "target_s_value",
)

MANUAL_FIELDS = (
    "icebreaker",
    "incident_no",
    "activity_impact_score",
    "actual_f",
    "actual_f_value",
    "actual_i",
    "actual_i_value",
    "actual_s",
    "actual_s_value",
    "fist_remarks",
    "indicator_score_growth",
    "ksa_weightage",
    "ksa_growth_percent",
    "other_observations",
)

CALCULATED_FIELDS = (
    "target_cutoff",
    "actual_cutoff",
    "fist_achieved_percent",
    "indicator_score_calculation",
    "ksa_score_calculation",
)

EDITABLE_FIELDS = ("is_manual",) + SELECTION_FIELDS + ACTIVITY_FIELDS + MANUAL_FIELDS


class SkillEntry(BaseModel):
    """One row of session-level skill tracking."""

    id: Optional[int] = None
    session_id: Optional[int] = None
    skill_order: int = 0
    is_manual: bool = False

    # Taxonomy selection
    skill_name: str = ""
    indicator_name: str = ""
    activity_name: str = ""

    # Copied from the chosen activity
    activity_objective: str = ""
    activity_instructions: str = ""
    activity_materials: str = ""
    activity_level: float = 0
    activity_level_score: float = 0
    target_f: str = ""
    target_f_value: float = 0
    target_i: str = ""
    target_i_value: float = 0
    target_s: str = ""
    target_s_value: float = 0

    # Entered by the coach
    icebreaker: str = ""
    incident_no: Optional[int] = None
    activity_impact_score: Optional[float] = None
    actual_f: str = ""
    actual_f_value: Optional[float] = None
    actual_i: str = ""
    actual_i_value: Optional[float] = None
    actual_s: str = ""
    actual_s_value: Optional[float] = None
    fist_remarks: str = ""
    indicator_score_growth: Optional[float] = None
    ksa_weightage: Optional[float] = None
    ksa_growth_percent: Optional[float] = None
    other_observations: str = ""

    # Derived by services.session_formulas
    target_cutoff: Optional[float] = None
    actual_cutoff: Optional[float] = None
    fist_achieved_percent: Optional[float] = None
    indicator_score_calculation: Optional[float] = None
    ksa_score_calculation: Optional[float] = None


def create_empty_skill_entry(order: int, is_manual: bool = False) -> dict:
    """Blank entry for a freshly added skill slot."""
    return SkillEntry(skill_order=order, is_manual=is_manual).model_dump(exclude={"id", "session_id"})


class SessionDetail(BaseModel):
    id: int
    child_id: int
    session_no: int
    session_date: str
    session_type: str = "child"
    attendance: Optional[Attendance] = None
    session_report_url: Optional[str] = None
    session_link_url: Optional[str] = None
    gemini_summary_url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SessionUpdate(BaseModel):
    """Editable top-level session fields. Only the fields sent are applied."""

    session_date: Optional[str] = None
    attendance: Optional[Attendance] = None
    session_report_url: Optional[str] = None
    session_link_url: Optional[str] = None
    gemini_summary_url: Optional[str] = None

    @field_validator("session_date")
    @classmethod
    def session_date_required(cls, v: Optional[str]) -> str:
        # Omitted leaves the stored date alone; sent means it must be a date
        if v is None or not v.strip():
            raise ValueError("Session date is required")
        return v.strip()


class SkillEntryCreate(BaseModel):
    is_manual: bool = False


class SkillEntryUpdate(BaseModel):
    """Field edits for one skill entry, applied in order."""

    fields: dict = {}


class TaxonomyRequest(BaseModel):
    email: str = Field(min_length=1)


# -- Assessment provider taxonomy ------------------------------------------


class ApiActivity(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str = ""
    name: str
    objective: str = ""
    instructions: str = ""
    materials: str = ""
    level: float = 0
    level_score: float = Field(0, alias="levelScore")
    f_target: str = Field("", alias="fTarget")
    f_target_value: float = Field(0, alias="fTargetValue")
    i_target: str = Field("", alias="iTarget")
    i_target_value: float = Field(0, alias="iTargetValue")
    s_target: str = Field("", alias="sTarget")
    s_target_value: float = Field(0, alias="sTargetValue")


class ApiIndicator(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    indicator_name: str = Field(alias="indicatorName")
    activities: list[ApiActivity] = []


class ApiSkill(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    skill_name: str = Field(alias="skillName")
    indicators: list[ApiIndicator] = []


class AssessmentUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    name: Optional[str] = None
    parent_name: Optional[str] = Field(None, alias="parentName")
    age_group: Optional[str] = Field(None, alias="ageGroup")
    gender: Optional[str] = None


class AssessmentData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    user: Optional[AssessmentUser] = None
    skills: list[ApiSkill] = []
    raw_activities_count: int = Field(0, alias="rawActivitiesCount")
    expert_activities_count: int = Field(0, alias="expertActivitiesCount")
