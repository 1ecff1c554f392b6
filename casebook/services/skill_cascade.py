"""
skill_cascade.py - Skill -> Indicator -> Activity selection for a skill entry

Selecting upstream clears everything downstream; selecting an activity copies
its attributes into the entry. Manual entries bypass the taxonomy and accept
every field as typed.

Provides:
- indicator_choices / activity_choices - options for the next level
- select_skill / select_indicator / select_activity - cascade transitions
- apply_entry_edit(entry, field, value, skills) - one edit, cascade + recompute
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from casebook.models.session import (
    ACTIVITY_FIELDS,
    CALCULATED_FIELDS,
    EDITABLE_FIELDS,
    ApiActivity,
    ApiIndicator,
    ApiSkill,
    SkillEntry,
)
from casebook.services.session_formulas import update_calculated_fields

logger = logging.getLogger(__name__)


class CascadeError(ValueError):
    """An edit the selection cascade does not allow."""


def _cleared_activity_fields() -> Dict[str, Any]:
    blank = SkillEntry()
    return {field: getattr(blank, field) for field in ACTIVITY_FIELDS}


def find_skill(skills: Sequence[ApiSkill], skill_name: str) -> Optional[ApiSkill]:
    return next((s for s in skills if s.skill_name == skill_name), None)


def indicator_choices(skills: Sequence[ApiSkill], skill_name: str) -> List[ApiIndicator]:
    skill = find_skill(skills, skill_name)
    return list(skill.indicators) if skill else []


def activity_choices(skills: Sequence[ApiSkill], skill_name: str, indicator_name: str) -> List[ApiActivity]:
    indicator = next(
        (i for i in indicator_choices(skills, skill_name) if i.indicator_name == indicator_name),
        None,
    )
    return list(indicator.activities) if indicator else []


def select_skill(entry: Mapping[str, Any], skill_name: str) -> Dict[str, Any]:
    return {
        **entry,
        "skill_name": skill_name,
        "indicator_name": "",
        "activity_name": "",
        **_cleared_activity_fields(),
    }


def select_indicator(entry: Mapping[str, Any], indicator_name: str) -> Dict[str, Any]:
    return {
        **entry,
        "indicator_name": indicator_name,
        "activity_name": "",
        **_cleared_activity_fields(),
    }


def select_activity(entry: Mapping[str, Any], activity: ApiActivity) -> Dict[str, Any]:
    """Copy the activity's attributes into the entry (no live link kept)."""
    return {
        **entry,
        "activity_name": activity.name,
        "activity_objective": activity.objective,
        "activity_instructions": activity.instructions,
        "activity_materials": activity.materials,
        "activity_level": activity.level,
        "activity_level_score": activity.level_score,
        "target_f": activity.f_target,
        "target_f_value": activity.f_target_value,
        "target_i": activity.i_target,
        "target_i_value": activity.i_target_value,
        "target_s": activity.s_target,
        "target_s_value": activity.s_target_value,
    }


def _apply_selection(entry: Mapping[str, Any], field: str, value: Any, skills: Sequence[ApiSkill]) -> Dict[str, Any]:
    if field == "skill_name":
        if value and find_skill(skills, value) is None:
            raise CascadeError(f"Unknown skill: {value}")
        return select_skill(entry, value or "")

    if field == "indicator_name":
        if not entry.get("skill_name"):
            raise CascadeError("Select a skill before choosing an indicator")
        names = [i.indicator_name for i in indicator_choices(skills, entry["skill_name"])]
        if value and value not in names:
            raise CascadeError(f"Unknown indicator for {entry['skill_name']}: {value}")
        return select_indicator(entry, value or "")

    # activity_name
    if not entry.get("indicator_name"):
        raise CascadeError("Select an indicator before choosing an activity")
    activities = activity_choices(skills, entry.get("skill_name", ""), entry["indicator_name"])
    activity = next((a for a in activities if a.name == value), None)
    if activity is None:
        raise CascadeError(f"Unknown activity for {entry['indicator_name']}: {value}")
    return select_activity(entry, activity)


def apply_entry_edit(
    entry: Mapping[str, Any],
    field: str,
    value: Any,
    skills: Sequence[ApiSkill] = (),
) -> Dict[str, Any]:
    """Apply one field edit and return the entry with fresh calculated fields."""
    if field in CALCULATED_FIELDS:
        raise CascadeError(f"{field} is calculated and cannot be edited")
    if field not in EDITABLE_FIELDS:
        raise CascadeError(f"Unknown skill entry field: {field}")

    manual = bool(entry.get("is_manual"))
    if field in ("skill_name", "indicator_name", "activity_name") and not manual:
        updated = _apply_selection(entry, field, value, skills)
    elif field in ACTIVITY_FIELDS and not manual:
        raise CascadeError(f"{field} comes from the selected activity; switch the entry to manual to edit it")
    else:
        updated = {**entry, field: value}

    # Coerce through the model so numbers typed as text are stored as numbers
    validated = SkillEntry.model_validate(updated).model_dump()
    for key in ("id", "session_id"):
        if key not in entry:
            validated.pop(key, None)
    return update_calculated_fields(validated)
