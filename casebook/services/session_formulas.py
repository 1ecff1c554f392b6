"""
session_formulas.py - Derived scores for a session skill entry

Provides:
- calculate_target_cutoff(entry)
- calculate_actual_cutoff(entry)
- calculate_fist_achieved_percent(entry)
- calculate_indicator_score(entry)
- calculate_ksa_score(entry)
- update_calculated_fields(entry) - all five at once, returns a new dict

Entries are plain mappings keyed by the SkillEntry column names. Missing or
null inputs count as 0. Nothing is rounded here.
"""

from typing import Any, Dict, Mapping


def _num(entry: Mapping[str, Any], field: str) -> float:
    value = entry.get(field)
    return value if value else 0


def calculate_target_cutoff(entry: Mapping[str, Any]) -> float:
    """(target_f_value * target_i_value * 5 * 0.6) + (target_s_value * 0.4)"""
    f = _num(entry, "target_f_value")
    i = _num(entry, "target_i_value")
    s = _num(entry, "target_s_value")
    return (f * i * 5 * 0.6) + (s * 0.4)


def calculate_actual_cutoff(entry: Mapping[str, Any]) -> float:
    """(actual_f_value * actual_i_value * 5 * 0.6) + (target_s + (target_s - actual_s)) * 0.4

    The S term is measured as a deviation from the target S value.
    """
    target_s = _num(entry, "target_s_value")
    actual_f = _num(entry, "actual_f_value")
    actual_i = _num(entry, "actual_i_value")
    actual_s = _num(entry, "actual_s_value")
    return (actual_f * actual_i * 5 * 0.6) + (target_s + (target_s - actual_s)) * 0.4


def calculate_fist_achieved_percent(entry: Mapping[str, Any]) -> float:
    """actual_cutoff / target_cutoff * 100, or 0 when the target cutoff is 0."""
    target_cutoff = calculate_target_cutoff(entry)
    if target_cutoff == 0:
        return 0
    return (calculate_actual_cutoff(entry) / target_cutoff) * 100


def calculate_indicator_score(entry: Mapping[str, Any]) -> float:
    """(1 - (target_cutoff - actual_cutoff) / 10) * activity_impact_score * activity_level_score"""
    target_cutoff = calculate_target_cutoff(entry)
    actual_cutoff = calculate_actual_cutoff(entry)
    impact_score = _num(entry, "activity_impact_score")
    level_score = _num(entry, "activity_level_score")
    return (1 - (target_cutoff - actual_cutoff) / 10) * impact_score * level_score


def calculate_ksa_score(entry: Mapping[str, Any]) -> float:
    """indicator_score * ksa_weightage / 10"""
    return (calculate_indicator_score(entry) * _num(entry, "ksa_weightage")) / 10


def update_calculated_fields(entry: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``entry`` with every calculated field recomputed."""
    return {
        **entry,
        "target_cutoff": calculate_target_cutoff(entry),
        "actual_cutoff": calculate_actual_cutoff(entry),
        "fist_achieved_percent": calculate_fist_achieved_percent(entry),
        "indicator_score_calculation": calculate_indicator_score(entry),
        "ksa_score_calculation": calculate_ksa_score(entry),
    }
