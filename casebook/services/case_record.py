"""
case_record.py - Case record assembly and the case-history editor

Provides:
- SECTION_KEYS / section_defaults(key, child_name) - the structured intake sub-forms
- load_case(db, case_slug) - child, case record, every section overlaid on its defaults
- CaseEditor - one debounced store per section plus one for coach details
"""

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from casebook.config import settings
from casebook.db import records
from casebook.db.database import open_db
from casebook.services.section_store import DebouncedSectionStore

logger = logging.getLogger(__name__)

GENERAL_INFO = "general_info"
ACADEMIC = "academic_performance"
EMOTIONAL = "emotional_behavioral"
SOCIAL = "social_skills"
SUCCESS = "success_skills"
PHYSICAL = "physical_development"
ATTENTION = "attention_profile"

SECTION_KEYS = (GENERAL_INFO, ACADEMIC, EMOTIONAL, SOCIAL, SUCCESS, PHYSICAL, ATTENTION)

COACH_DETAILS = "coach_details"

_CONCERNS = {"parental_concerns": [], "teacher_concerns": ""}

_SUCCESS_SKILLS = ("creativity", "problem_solving", "decision_making", "collaboration", "initiative", "responsibility")

_SECTION_DEFAULTS: Dict[str, Dict[str, Any]] = {
    GENERAL_INFO: {
        "name_of_child": "",
        "age_of_child": "",
        "gender": "",
        "school_name": "",
        "board": "",
        "city": "",
        "birth_history": "",
        "school_timings": "",
        "other_classes": "",
        "weekly_availability": "",
        "family_type": "",
        "siblings": "",
        "mother_profession": "",
        "father_profession": "",
        "contact_mode": "",
        "contact_number": "",
        "email": "",
        "diagnosis": "",
        **_CONCERNS,
    },
    ACADEMIC: {
        "subjects_excels": "",
        "subjects_struggles": "",
        "handwriting_performance": "",
        "other_concerns": "",
        **_CONCERNS,
    },
    EMOTIONAL: {
        "screen_time": "",
        "behavioral_concerns": "",
        "performance_anxiety": "",
        "task_completion": "",
        **_CONCERNS,
    },
    SOCIAL: {
        "ratings": {
            "shy_to_interact": 3,
            "kids_interaction": 3,
            "adult_interaction": 3,
            "presentation_confidence": 3,
            "expression_clarity": 3,
        },
        "notes": "",
        **_CONCERNS,
    },
    SUCCESS: {
        "ratings": {skill: 3 for skill in _SUCCESS_SKILLS},
        "notes": {skill: "" for skill in _SUCCESS_SKILLS},
        **_CONCERNS,
    },
    PHYSICAL: {
        "physical_concerns": "",
        "daily_play_time": "",
        "physical_activities": "",
        "hobbies": "",
        "medical_history_development_details": [],
        **_CONCERNS,
    },
    ATTENTION: {
        "attention_span": "",
        "attention_notes": "",
        "distraction_types": "",
        "distraction_notes": "",
        "impulsivity": "",
        "impulsivity_notes": "",
        "additional_concerns": "",
        **_CONCERNS,
    },
}

COACH_DEFAULTS: Dict[str, Any] = {
    "coach_name": "",
    "date_of_parent_interaction": "",
    "child_interaction_start_date": "",
    "total_sessions_taken": 0,
    "child_interaction_end_date": "",
    "assessment_report": "",
}


class CaseNotFoundError(LookupError):
    pass


class SectionKeyError(LookupError):
    pass


class SectionFieldError(ValueError):
    pass


def section_defaults(section_key: str, child_name: str = "") -> Dict[str, Any]:
    if section_key not in _SECTION_DEFAULTS:
        raise SectionKeyError(f"Unknown section: {section_key}")
    defaults = copy.deepcopy(_SECTION_DEFAULTS[section_key])
    if section_key == GENERAL_INFO:
        defaults["name_of_child"] = child_name
    return defaults


def get_section_data(stored: Any, section_key: str, child_name: str = "") -> Dict[str, Any]:
    """Stored payload laid over the section defaults. Non-dict payloads are ignored."""
    defaults = section_defaults(section_key, child_name)
    if isinstance(stored, dict):
        return {**defaults, **stored}
    return defaults


def get_coach_data(stored: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    stored = stored or {}
    # Null columns fall back to the blank form values
    return {field: stored.get(field) or default for field, default in COACH_DEFAULTS.items()}


async def load_case(db, case_slug: str) -> Dict[str, Any]:
    """Assemble everything the case view shows, from storage."""
    child = await records.get_case_by_slug(db, case_slug)
    if not child or child.get("case_record_id") is None:
        raise CaseNotFoundError(f"Case not found: {case_slug}")

    case_record_id = child["case_record_id"]
    stored = {row["section_key"]: row["data"] for row in await records.list_sections(db, case_record_id)}
    coach = await records.get_coach_details(db, case_record_id)

    return {
        "child": {k: child[k] for k in ("id", "name", "case_slug", "created_at")},
        "case_record_id": case_record_id,
        "sections": {
            key: get_section_data(stored.get(key), key, child["name"])
            for key in SECTION_KEYS
        },
        "coach_details": get_coach_data(coach),
    }


class CaseEditor:
    """Editing state of one open case: a store per section and one for the coach."""

    def __init__(
        self,
        case_record_id: int,
        *,
        connect: Callable = open_db,
        debounce_ms: Optional[int] = None,
    ):
        self.case_record_id = case_record_id
        self.child: Dict[str, Any] = {}
        self.changed_sections: set = set()
        self._connect = connect
        delay = debounce_ms or settings.section_debounce_ms

        self.sections: Dict[str, DebouncedSectionStore] = {
            key: DebouncedSectionStore(
                self._section_writer(key),
                delay,
                name=f"case:{case_record_id}:{key}",
                failure_message="Failed to save section",
            )
            for key in SECTION_KEYS
        }
        self.coach = DebouncedSectionStore(
            self._save_coach,
            delay,
            name=f"case:{case_record_id}:{COACH_DETAILS}",
            failure_message="Failed to save coach details",
        )

    def _section_writer(self, section_key: str):
        async def _save(data: Dict[str, Any]) -> None:
            async with self._connect() as db:
                await records.upsert_section(db, self.case_record_id, section_key, data)
        return _save

    async def _save_coach(self, data: Dict[str, Any]) -> None:
        async with self._connect() as db:
            await records.upsert_coach_details(db, self.case_record_id, data)

    def initialize(self, case_view: Mapping[str, Any]) -> None:
        """Seed every store from a loaded case; stores already synced keep their data."""
        self.child = dict(case_view["child"])
        for key, store in self.sections.items():
            store.initialize(case_view["sections"][key])
        self.coach.initialize(case_view["coach_details"])

    def store_for(self, section_key: str) -> DebouncedSectionStore:
        if section_key == COACH_DETAILS:
            return self.coach
        try:
            return self.sections[section_key]
        except KeyError:
            raise SectionKeyError(f"Unknown section: {section_key}") from None

    def update_section(self, section_key: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        store = self.store_for(section_key)
        allowed = COACH_DEFAULTS if section_key == COACH_DETAILS else _SECTION_DEFAULTS[section_key]
        unknown = sorted(set(fields) - set(allowed))
        if unknown:
            raise SectionFieldError(f"Unknown fields for {section_key}: {', '.join(unknown)}")
        self.changed_sections.add(section_key)
        return store.merge_fields(fields)

    async def save_section(self, section_key: str) -> bool:
        return await self.store_for(section_key).flush()

    @property
    def assessment_email(self) -> str:
        return self.sections[GENERAL_INFO].data.get("email") or ""

    def _stores(self) -> Iterable[DebouncedSectionStore]:
        yield from self.sections.values()
        yield self.coach

    def section_status(self, section_key: str) -> Dict[str, Any]:
        store = self.store_for(section_key)
        return {
            **store.status(),
            "changed": section_key in self.changed_sections,
            "notifications": store.drain_notifications(),
        }

    def view(self) -> Dict[str, Any]:
        return {
            "child": self.child,
            "case_record_id": self.case_record_id,
            "sections": {key: store.data for key, store in self.sections.items()},
            "coach_details": self.coach.data,
            "assessment_email": self.assessment_email,
            "changed_sections": sorted(self.changed_sections),
            "pending_sections": self.pending_sections(),
            "saving": self.saving,
        }

    @property
    def saving(self) -> bool:
        return any(store.saving for store in self._stores())

    async def close(self, flush_pending: bool = False) -> None:
        for store in self._stores():
            await store.close(flush_pending=flush_pending)

    def pending_sections(self) -> List[str]:
        return [key for key, store in self.sections.items() if store.pending] + (
            [COACH_DETAILS] if self.coach.pending else []
        )
