"""Tests for Skill -> Indicator -> Activity selection on a skill entry."""

import pytest
from pydantic import ValidationError

from casebook.models.session import ApiActivity, ApiIndicator, ApiSkill, create_empty_skill_entry
from casebook.services.skill_cascade import (
    CascadeError,
    activity_choices,
    apply_entry_edit,
    indicator_choices,
    select_skill,
)


@pytest.fixture
def skills():
    listening = ApiActivity(
        name="Story circle",
        objective="Listen and retell",
        instructions="Sit in a circle",
        materials="Picture cards",
        level=2,
        level_score=2,
        f_target="Often",
        f_target_value=4,
        i_target="Mostly",
        i_target_value=5,
        s_target="Good",
        s_target_value=3,
    )
    return [
        ApiSkill(
            skill_name="Communication",
            indicators=[
                ApiIndicator(indicator_name="Active listening", activities=[listening]),
                ApiIndicator(indicator_name="Expression", activities=[]),
            ],
        ),
        ApiSkill(skill_name="Focus", indicators=[]),
    ]


@pytest.fixture
def selected(skills):
    entry = create_empty_skill_entry(0)
    entry = apply_entry_edit(entry, "skill_name", "Communication", skills)
    entry = apply_entry_edit(entry, "indicator_name", "Active listening", skills)
    return apply_entry_edit(entry, "activity_name", "Story circle", skills)


class TestChoices:
    def test_indicator_choices(self, skills):
        names = [i.indicator_name for i in indicator_choices(skills, "Communication")]
        assert names == ["Active listening", "Expression"]
        assert indicator_choices(skills, "Nope") == []

    def test_activity_choices(self, skills):
        acts = activity_choices(skills, "Communication", "Active listening")
        assert [a.name for a in acts] == ["Story circle"]
        assert activity_choices(skills, "Communication", "Expression") == []


class TestSelection:
    def test_activity_attributes_are_copied(self, selected):
        assert selected["activity_objective"] == "Listen and retell"
        assert selected["activity_materials"] == "Picture cards"
        assert selected["activity_level_score"] == 2
        assert selected["target_f"] == "Often"
        assert selected["target_f_value"] == 4
        assert selected["target_i_value"] == 5
        assert selected["target_s_value"] == 3
        assert selected["target_cutoff"] == pytest.approx(61.2)

    def test_new_skill_clears_downstream_and_keeps_actuals(self, skills, selected):
        entry = apply_entry_edit(selected, "actual_f_value", 3, skills)
        entry = apply_entry_edit(entry, "fist_remarks", "tried hard", skills)
        entry = apply_entry_edit(entry, "skill_name", "Focus", skills)

        assert entry["skill_name"] == "Focus"
        assert entry["indicator_name"] == ""
        assert entry["activity_name"] == ""
        assert entry["activity_objective"] == ""
        assert entry["target_f_value"] == 0
        assert entry["target_s"] == ""
        assert entry["actual_f_value"] == 3
        assert entry["fist_remarks"] == "tried hard"
        assert entry["target_cutoff"] == 0

    def test_new_indicator_clears_activity(self, skills, selected):
        entry = apply_entry_edit(selected, "indicator_name", "Expression", skills)
        assert entry["skill_name"] == "Communication"
        assert entry["activity_name"] == ""
        assert entry["target_i_value"] == 0

    def test_select_skill_is_pure(self, selected):
        before = dict(selected)
        select_skill(selected, "Focus")
        assert selected == before

    def test_unknown_names_are_rejected(self, skills):
        entry = create_empty_skill_entry(0)
        with pytest.raises(CascadeError):
            apply_entry_edit(entry, "skill_name", "Juggling", skills)
        entry = apply_entry_edit(entry, "skill_name", "Communication", skills)
        with pytest.raises(CascadeError):
            apply_entry_edit(entry, "indicator_name", "Juggling", skills)

    def test_out_of_order_selection_is_rejected(self, skills):
        entry = create_empty_skill_entry(0)
        with pytest.raises(CascadeError):
            apply_entry_edit(entry, "indicator_name", "Active listening", skills)
        with pytest.raises(CascadeError):
            apply_entry_edit(entry, "activity_name", "Story circle", skills)


class TestEditRules:
    def test_calculated_fields_are_read_only(self, selected):
        with pytest.raises(CascadeError):
            apply_entry_edit(selected, "target_cutoff", 100)

    def test_unknown_field(self, selected):
        with pytest.raises(CascadeError):
            apply_entry_edit(selected, "favourite_colour", "blue")

    def test_activity_fields_locked_outside_manual_mode(self, selected):
        with pytest.raises(CascadeError):
            apply_entry_edit(selected, "target_f_value", 1)

    def test_manual_entry_accepts_typed_values(self):
        entry = create_empty_skill_entry(0, is_manual=True)
        entry = apply_entry_edit(entry, "skill_name", "Made up skill")
        entry = apply_entry_edit(entry, "target_f_value", "4")
        entry = apply_entry_edit(entry, "target_i_value", 5)
        entry = apply_entry_edit(entry, "target_s_value", 3)
        assert entry["skill_name"] == "Made up skill"
        assert entry["target_f_value"] == 4.0
        assert entry["target_cutoff"] == pytest.approx(61.2)

    def test_edit_recomputes_scores(self, skills, selected):
        entry = selected
        for field, value in (
            ("actual_f_value", 3),
            ("actual_i_value", 4),
            ("actual_s_value", 2),
            ("activity_impact_score", 1),
            ("ksa_weightage", 10),
        ):
            entry = apply_entry_edit(entry, field, value, skills)
        assert entry["actual_cutoff"] == pytest.approx(37.6)
        assert entry["indicator_score_calculation"] == pytest.approx(-2.72)
        assert entry["ksa_score_calculation"] == pytest.approx(-2.72)

    def test_bad_number_fails_validation(self):
        entry = create_empty_skill_entry(0, is_manual=True)
        with pytest.raises(ValidationError):
            apply_entry_edit(entry, "actual_f_value", "lots")
