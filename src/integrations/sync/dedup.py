"""Idempotent write helpers for synced data.

Repeated syncs of the same date must overwrite, never duplicate.  The
authoritative dedup mechanism is the UNIQUE constraint on each table:

    - daily_logs:            (user_id, log_date)
    - sleep_logs:            (user_id, date)
    - fitbit_credentials:    (user_id)
    - fatsecret_credentials: (user_id)
    - fitbit_sync_progress:  (user_id)
"""

from __future__ import annotations


def build_upsert_query(
    table: str,
    columns: list[str],
    conflict_columns: list[str],
    update_columns: list[str] | None = None,
    preserve_columns: list[str] | None = None,
    touch_column: str | None = "updated_at",
) -> str:
    """Build a PostgreSQL INSERT ... ON CONFLICT DO UPDATE (upsert) query.

    Safe to call multiple times with the same data.  On conflict, updates the
    non-key columns.

    Args:
        table:            Target table name.
        columns:          All columns to insert.
        conflict_columns: Columns that define the UNIQUE constraint.
        update_columns:   Columns to update on conflict (defaults to non-key columns).
        preserve_columns: Subset of update columns where a NULL in the new row
                          keeps the stored value (``COALESCE``), so a field that
                          was not retrieved never wipes one that was.
        touch_column:     Timestamp column set to NOW() on update, or None.

    Returns:
        Parameterized SQL string.
    """
    if update_columns is None:
        update_columns = [c for c in columns if c not in conflict_columns]
    preserved = set(preserve_columns or [])

    placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
    col_list = ", ".join(columns)
    conflict_target = ", ".join(conflict_columns)

    if update_columns:
        assignments = [
            f"{col} = COALESCE(EXCLUDED.{col}, {table}.{col})"
            if col in preserved
            else f"{col} = EXCLUDED.{col}"
            for col in update_columns
        ]
        if touch_column:
            assignments.append(f"{touch_column} = NOW()")
        do_clause = f"DO UPDATE SET {', '.join(assignments)}"
    else:
        do_clause = "DO NOTHING"

    return (
        f"INSERT INTO {table} ({col_list}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT ({conflict_target}) {do_clause}"
    )
