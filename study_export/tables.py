"""
Maps logical table keys to backing tables, creating and widening those tables as needed.

Table identity lives in the table ID cache (a metadata database shared by all tasks).
A backing table is created at most once per key: we only ever create a table on a cache
miss, and only cache the new ID after the create succeeded. If two tasks race to create the
same table, the cache write is conditional, so both converge on whichever ID landed first.
The losing task's table is left orphaned (and logged), since the store has no transactions.

Column sets only ever grow. Historical rows must stay readable, so we never remove or
retype a column that already exists.
"""

import logging

from study_export import clients, errors
from study_export.columns import ColumnModel
from study_export.config import ExportContext


def ensure_table(
    context: ExportContext, table_key: str, study_id: str, columns: list[ColumnModel]
) -> str:
    """
    Provides the backing table ID for a logical table key, provisioning it if needed.

    :param context: the export context (for the table store, cache, and metadata)
    :param table_key: logical table key, like "my-study-my-schema-v1"
    :param study_id: the study that owns the table (for project and access control lookups)
    :param columns: every column we expect the table to have, in order
    :returns: the backing table ID
    :raises TableCommitError: if the table store fails us
    """
    table_id = context.table_id_cache.get_table_id(table_key)
    if table_id:
        try:
            reconcile_columns(context.table_store, table_id, columns)
        except Exception as exc:
            raise errors.TableCommitError(table_key, f"column update failed: {exc}") from exc
        return table_id

    try:
        project_id = context.metadata.get_project_id_for_study(study_id)
        data_access_team_id = context.metadata.get_data_access_team_id(study_id)
        new_table_id = context.table_store.create_table_with_columns_and_acls(
            list(columns),
            data_access_team_id,
            context.config.admin_principal_id,
            project_id,
            table_key,
        )
    except Exception as exc:
        raise errors.TableCommitError(table_key, f"table creation failed: {exc}") from exc

    try:
        cached_id = context.table_id_cache.set_table_id(table_key, new_table_id)
    except Exception as exc:
        raise errors.TableCommitError(
            table_key, f"could not cache new table ID {new_table_id}: {exc}"
        ) from exc

    if cached_id != new_table_id:
        logging.warning(
            "Another export created table %s for %s first, leaving our table %s unused.",
            cached_id,
            table_key,
            new_table_id,
        )
    return cached_id


def reconcile_columns(
    table_store: clients.TableStore, table_id: str, expected: list[ColumnModel]
) -> list[ColumnModel]:
    """
    Adds any expected columns that the table is missing.

    Columns are matched by name. Existing columns are never modified, even if their type
    no longer matches what we expect.

    :returns: the columns that were added
    """
    existing = {column.name: column for column in table_store.get_column_models_for_table(table_id)}

    missing = []
    for column in expected:
        current = existing.get(column.name)
        if current is None:
            missing.append(column)
        elif current != column:
            logging.warning(
                "Column %s of table %s is %s, but we expected %s. Leaving it alone.",
                column.name,
                table_id,
                current,
                column,
            )

    if missing:
        logging.info(
            "Adding columns to table %s: %s", table_id, ", ".join(x.name for x in missing)
        )
        table_store.add_columns_to_table(table_id, missing)

    return missing
