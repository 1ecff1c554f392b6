"""initial_schema

Children, case records with their history sections and coach details,
session details and session skill entries.

Revision ID: 0a1c5e7d2b90
Revises:
Create Date: 2026-10-18 09:12:40.518337

"""
from typing import Sequence, Union
from pathlib import Path

from alembic import op
import sqlalchemy as sa


revision: str = "0a1c5e7d2b90"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _adapt_sql(sql: str, dialect_name: str) -> str:
    """Adapt DDL for the target database dialect."""
    if dialect_name == "postgresql":
        sql = sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY")
    return sql


def upgrade() -> None:
    """Create the schema from casebook/db/schema.sql (CREATE ... IF NOT EXISTS)."""
    dialect_name = op.get_bind().dialect.name

    schema_path = Path(__file__).resolve().parents[2] / "casebook" / "db" / "schema.sql"
    schema_sql = schema_path.read_text()
    # op.execute runs one statement at a time
    for statement in schema_sql.split(";"):
        lines = [
            line for line in statement.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        cleaned = "\n".join(lines).strip()
        if cleaned:
            op.execute(sa.text(_adapt_sql(cleaned, dialect_name)))


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        "session_skill_entries",
        "session_details",
        "coach_details",
        "case_history_sections",
        "case_records",
        "children",
    ):
        op.execute(sa.text(f"DROP TABLE IF EXISTS {table}"))
