"""Idempotent custom actions used by upgrade steps.

Each action takes the run's ``UpgradeContext`` first.  Re-running an
action after a partial earlier run must converge on the same end state
without erroring.
"""

from __future__ import annotations

import os
from typing import Sequence

from upgrader.core.logging import get_logger
from upgrader.execution.context import UpgradeContext

logger = get_logger(__name__)


def set_file_upload_date(ctx: UpgradeContext, table: str = "civicrm_file") -> int:
    """Backfill ``upload_date`` from each file's creation time.

    Rows without a uri, or whose file is gone from the upload directory,
    get the current time and a warning.  Only rows still NULL are touched.
    Returns the number of rows updated.
    """
    rows = ctx.execute(
        f"SELECT id, uri FROM {table} WHERE upload_date IS NULL"
    ).fetchall()
    upload_dir = ctx.settings.custom_file_upload_dir

    updated = 0
    for row in rows:
        uploaded = None
        if row.uri:
            uploaded = ctx.file_created_at(os.path.join(upload_dir, row.uri))
            if uploaded is None:
                ctx.warn("file missing, using current time", file_id=row.id, uri=row.uri)
        else:
            ctx.warn("file has no uri, using current time", file_id=row.id)
        if uploaded is None:
            uploaded = ctx.now()

        ctx.execute(
            f"UPDATE {table} SET upload_date = %1 WHERE id = %2",
            {1: (uploaded, "Timestamp"), 2: (row.id, "Integer")},
        )
        updated += 1

    logger.info("file_upload_dates_set", table=table, rows=updated)
    return updated


def repair_unique_index(
    ctx: UpgradeContext,
    table: str,
    index_name: str,
    columns: Sequence[str],
    foreign_key: str | None = None,
) -> None:
    """(Re)create *index_name* as a unique index over exactly *columns*.

    When *foreign_key* is given it is dropped first (MySQL refuses to drop
    an index that backs a foreign key) and restored afterwards.
    """
    inspector = ctx.inspector
    editor = ctx.editor
    columns = list(columns)

    current = inspector.get_index(table, index_name)
    if current is not None and current.get("unique") and list(current["column_names"]) == columns:
        logger.info("index_already_matches", table=table, index=index_name)
        return

    saved_fk = None
    if foreign_key is not None:
        saved_fk = inspector.get_foreign_key(table, foreign_key)
        if saved_fk is not None:
            editor.drop_foreign_key(table, foreign_key)

    if inspector.has_index(table, index_name):
        editor.drop_index(table, index_name)

    editor.create_unique_index(table, index_name, columns)

    if saved_fk is not None:
        editor.create_foreign_key(table, saved_fk)
