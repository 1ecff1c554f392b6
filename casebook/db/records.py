"""
records.py - Database helper queries for case records and session tracking

Provides insert/fetch/update functions for:
- children and case_records
- case_history_sections (one JSON payload per case record and section key)
- coach_details (one row per case record)
- session_details
- session_skill_entries
"""

import json
from typing import Optional, List, Dict, Any, Mapping, Sequence

import aiosqlite

from casebook.db.database import transaction
from casebook.models.session import (
    ACTIVITY_FIELDS,
    CALCULATED_FIELDS,
    MANUAL_FIELDS,
    SELECTION_FIELDS,
    SkillEntry,
)

COACH_FIELDS = (
    "coach_name",
    "date_of_parent_interaction",
    "child_interaction_start_date",
    "total_sessions_taken",
    "child_interaction_end_date",
    "assessment_report",
)

SESSION_UPDATE_FIELDS = (
    "session_date",
    "session_type",
    "attendance",
    "session_report_url",
    "session_link_url",
    "gemini_summary_url",
)

SKILL_ENTRY_COLUMNS = (
    ("skill_order", "is_manual")
    + SELECTION_FIELDS
    + ACTIVITY_FIELDS
    + MANUAL_FIELDS
    + CALCULATED_FIELDS
)


# ══════════════════════════════════════════════════════════════════════════════
# CHILDREN & CASE RECORDS
# ══════════════════════════════════════════════════════════════════════════════

async def list_children(db: aiosqlite.Connection) -> List[Dict[str, Any]]:
    """All children, newest first."""
    cursor = await db.execute("SELECT * FROM children ORDER BY created_at DESC, id DESC")
    rows = await cursor.fetchall()
    return [_row_to_dict(r) for r in rows]


async def create_child(db: aiosqlite.Connection, name: str, case_slug: str) -> int:
    """Create a child and its case record. Returns the child ID."""
    async with transaction(db):
        cursor = await db.execute(
            "INSERT INTO children (name, case_slug) VALUES (?, ?)",
            (name, case_slug)
        )
        child_id = cursor.lastrowid
        await _insert_case_record(db, child_id)
    return child_id


async def create_case_record(db: aiosqlite.Connection, child_id: int) -> int:
    async with transaction(db):
        return await _insert_case_record(db, child_id)


async def _insert_case_record(db: aiosqlite.Connection, child_id: int) -> int:
    cursor = await db.execute(
        "INSERT INTO case_records (child_id) VALUES (?)",
        (child_id,)
    )
    return cursor.lastrowid


async def get_case_record(db: aiosqlite.Connection, child_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM case_records WHERE child_id = ?", (child_id,))
    return _row_to_dict(await cursor.fetchone())


async def get_child(db: aiosqlite.Connection, child_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM children WHERE id = ?", (child_id,))
    return _row_to_dict(await cursor.fetchone())


async def get_case_by_slug(db: aiosqlite.Connection, case_slug: str) -> Optional[Dict[str, Any]]:
    """Child row plus its case_record_id, or None if the slug is unknown."""
    cursor = await db.execute(
        """SELECT c.id, c.name, c.case_slug, c.created_at, cr.id AS case_record_id
           FROM children c
           LEFT JOIN case_records cr ON cr.child_id = c.id
           WHERE c.case_slug = ?""",
        (case_slug,)
    )
    return _row_to_dict(await cursor.fetchone())


# ══════════════════════════════════════════════════════════════════════════════
# CASE HISTORY SECTIONS
# ══════════════════════════════════════════════════════════════════════════════

async def list_sections(db: aiosqlite.Connection, case_record_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM case_history_sections WHERE case_record_id = ?",
        (case_record_id,)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r, parse_json_fields=["data"]) for r in rows]


async def get_section(db: aiosqlite.Connection, case_record_id: int, section_key: str) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM case_history_sections WHERE case_record_id = ? AND section_key = ?",
        (case_record_id, section_key)
    )
    return _row_to_dict(await cursor.fetchone(), parse_json_fields=["data"])


async def upsert_section(
    db: aiosqlite.Connection,
    case_record_id: int,
    section_key: str,
    data: Mapping[str, Any],
) -> int:
    """Update the (case record, section key) row if present, insert it otherwise.

    Two round trips, not atomic: a concurrent insert for the same pair hits
    the UNIQUE constraint and surfaces as a failed save.
    """
    cursor = await db.execute(
        "SELECT id FROM case_history_sections WHERE case_record_id = ? AND section_key = ?",
        (case_record_id, section_key)
    )
    existing = await cursor.fetchone()

    if existing:
        await db.execute(
            "UPDATE case_history_sections SET data = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (json.dumps(data), existing["id"])
        )
        await db.commit()
        return existing["id"]

    cursor = await db.execute(
        "INSERT INTO case_history_sections (case_record_id, section_key, data) VALUES (?, ?, ?)",
        (case_record_id, section_key, json.dumps(data))
    )
    await db.commit()
    return cursor.lastrowid


# ══════════════════════════════════════════════════════════════════════════════
# COACH DETAILS
# ══════════════════════════════════════════════════════════════════════════════

async def get_coach_details(db: aiosqlite.Connection, case_record_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM coach_details WHERE case_record_id = ?",
        (case_record_id,)
    )
    return _row_to_dict(await cursor.fetchone())


async def upsert_coach_details(
    db: aiosqlite.Connection,
    case_record_id: int,
    data: Mapping[str, Any],
) -> int:
    """Same check-then-write protocol as upsert_section, keyed by case record."""
    values = [data.get(field) for field in COACH_FIELDS]
    cursor = await db.execute(
        "SELECT id FROM coach_details WHERE case_record_id = ?",
        (case_record_id,)
    )
    existing = await cursor.fetchone()

    if existing:
        assignments = ", ".join(f"{field} = ?" for field in COACH_FIELDS)
        await db.execute(
            f"UPDATE coach_details SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (*values, existing["id"])
        )
        await db.commit()
        return existing["id"]

    columns = ", ".join(("case_record_id",) + COACH_FIELDS)
    placeholders = ", ".join("?" for _ in range(len(COACH_FIELDS) + 1))
    cursor = await db.execute(
        f"INSERT INTO coach_details ({columns}) VALUES ({placeholders})",
        (case_record_id, *values)
    )
    await db.commit()
    return cursor.lastrowid


# ══════════════════════════════════════════════════════════════════════════════
# SESSION DETAILS
# ══════════════════════════════════════════════════════════════════════════════

async def list_session_details(db: aiosqlite.Connection, child_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM session_details WHERE child_id = ? ORDER BY session_no ASC",
        (child_id,)
    )
    rows = await cursor.fetchall()
    return [_row_to_dict(r) for r in rows]


async def get_session_detail(db: aiosqlite.Connection, session_id: int) -> Optional[Dict[str, Any]]:
    cursor = await db.execute("SELECT * FROM session_details WHERE id = ?", (session_id,))
    return _row_to_dict(await cursor.fetchone())


async def next_session_number(db: aiosqlite.Connection, child_id: int) -> int:
    cursor = await db.execute(
        "SELECT COALESCE(MAX(session_no), 0) + 1 FROM session_details WHERE child_id = ?",
        (child_id,)
    )
    row = await cursor.fetchone()
    return row[0] if row else 1


async def create_session_detail(
    db: aiosqlite.Connection,
    child_id: int,
    session_date: str,
    session_type: str = "child",
    session_no: Optional[int] = None,
) -> int:
    """Create a session. Numbering continues from the child's highest session_no."""
    if session_no is None:
        session_no = await next_session_number(db, child_id)

    cursor = await db.execute(
        """INSERT INTO session_details (child_id, session_no, session_date, session_type)
           VALUES (?, ?, ?, ?)""",
        (child_id, session_no, session_date, session_type)
    )
    await db.commit()
    return cursor.lastrowid


async def update_session_detail(db: aiosqlite.Connection, session_id: int, fields: Mapping[str, Any]) -> None:
    updates = {k: v for k, v in fields.items() if k in SESSION_UPDATE_FIELDS}
    if not updates:
        return
    assignments = ", ".join(f"{field} = ?" for field in updates)
    await db.execute(
        f"UPDATE session_details SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (*updates.values(), session_id)
    )
    await db.commit()


async def delete_session_detail(db: aiosqlite.Connection, session_id: int) -> None:
    async with transaction(db):
        await db.execute("DELETE FROM session_skill_entries WHERE session_id = ?", (session_id,))
        await db.execute("DELETE FROM session_details WHERE id = ?", (session_id,))


# ══════════════════════════════════════════════════════════════════════════════
# SESSION SKILL ENTRIES
# ══════════════════════════════════════════════════════════════════════════════

async def list_skill_entries(db: aiosqlite.Connection, session_id: int) -> List[Dict[str, Any]]:
    cursor = await db.execute(
        "SELECT * FROM session_skill_entries WHERE session_id = ? ORDER BY skill_order ASC",
        (session_id,)
    )
    rows = await cursor.fetchall()
    entries = []
    for row in rows:
        entry = _row_to_dict(row)
        entry["is_manual"] = bool(entry["is_manual"])
        entry.pop("created_at", None)
        entries.append(entry)
    return entries


async def replace_skill_entries(
    db: aiosqlite.Connection,
    session_id: int,
    entries: Sequence[Mapping[str, Any]],
) -> None:
    """Delete every entry of the session and insert ``entries`` in their place.

    One transaction: a failed insert leaves the previous entries in place.
    """
    columns = ", ".join(("session_id",) + SKILL_ENTRY_COLUMNS)
    placeholders = ", ".join("?" for _ in range(len(SKILL_ENTRY_COLUMNS) + 1))
    async with transaction(db):
        await db.execute("DELETE FROM session_skill_entries WHERE session_id = ?", (session_id,))
        for entry in entries:
            row = SkillEntry.model_validate(entry).model_dump()
            values = [row[column] for column in SKILL_ENTRY_COLUMNS]
            values[1] = int(row["is_manual"])
            await db.execute(
                f"INSERT INTO session_skill_entries ({columns}) VALUES ({placeholders})",
                (session_id, *values)
            )


# ══════════════════════════════════════════════════════════════════════════════
# HELPER FUNCTIONS
# ══════════════════════════════════════════════════════════════════════════════

def _row_to_dict(row, parse_json_fields: List[str] = None) -> Optional[Dict[str, Any]]:
    """Convert a database row to a dictionary, optionally parsing JSON fields."""
    if row is None:
        return None

    result = dict(row)

    if parse_json_fields:
        for field in parse_json_fields:
            if field in result and isinstance(result[field], str):
                try:
                    result[field] = json.loads(result[field])
                except json.JSONDecodeError:
                    result[field] = {}

    return result
