"""The shared export pipeline that every table handler runs through"""

import logging
from typing import Any, Protocol

from study_export import common, errors, serialize, tables
from study_export.columns import (
    ColumnDefinition,
    ColumnModel,
    ColumnType,
    TransferMethod,
    common_columns,
)
from study_export.config import ExportContext
from study_export.tsv import TsvInfo
from study_export.worker import ExportSubtask, ExportTask

RAW_DATA_COLUMN = ColumnModel("rawData", ColumnType.FILEHANDLEID)

Cells = list[str | None]


class TableHandler(Protocol):
    """
    One kind of table, for one study.

    Handlers only decide which columns their table has and what goes into them for a record.
    Everything else (common columns, staging, provisioning, uploading) is done by TableExporter.
    """

    study_id: str
    table_key: str  # logical table key, used for the table ID cache, metrics, and filenames

    def get_columns(self, context: ExportContext, task: ExportTask) -> list[ColumnModel]:
        """Handler-specific columns, which follow the common columns"""

    def get_row_values(
        self, context: ExportContext, task: ExportTask, subtask: ExportSubtask
    ) -> Cells:
        """Handler-specific values for one record, one per handler-specific column"""

    def should_skip(self, context: ExportContext, subtask: ExportSubtask) -> bool:
        """Whether to silently not export this record into this table"""


###############################################################################
#
# Common column values
#
###############################################################################


def _truncate(value: Any, max_size: int | None) -> str | None:
    if value is None:
        return None
    text = serialize.as_text(value)
    return text if max_size is None else text[:max_size]


def transfer_value(definition: ColumnDefinition, value: Any) -> str | None:
    """Flattens a record metadata value into a single cell, according to the column definition"""
    if value is None:
        return None

    match definition.transfer_method:
        case TransferMethod.STRING:
            text = value if isinstance(value, str) else str(value)
            if definition.sanitize:
                text = common.strip_html(text)
            return _truncate(text, definition.maximum_size)
        case TransferMethod.STRING_SET:
            items = [value] if isinstance(value, str) else list(value)
            if not items:
                return None
            return _truncate(",".join(sorted(str(x) for x in items)), definition.maximum_size)
        case TransferMethod.STRING_MAP:
            if not isinstance(value, dict) or not value:
                return None
            pairs = "|".join(
                f"{key}={'' if val is None else val}" for key, val in sorted(value.items())
            )
            return _truncate(f"|{pairs}|", definition.maximum_size)
        case TransferMethod.DATE:
            return _epoch_millis_text(value)


def _epoch_millis_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    try:
        return str(int(value))
    except (TypeError, ValueError):
        pass
    try:
        return str(common.epoch_millis(common.parse_datetime(value)))
    except (AttributeError, TypeError, ValueError):
        return None


def common_values(context: ExportContext, task: ExportTask, subtask: ExportSubtask) -> Cells:
    """Values for the common columns, in the same order as columns.common_columns()"""
    metadata = subtask.record_metadata()
    values = [
        subtask.record_id,
        _truncate(metadata.get("appVersion"), 48),
        _truncate(metadata.get("phoneInfo"), 48),
        task.exporter_date.isoformat(),
    ]
    values.extend(
        transfer_value(definition, subtask.record.get(definition.source_name))
        for definition in context.config.column_definitions
    )
    return values


def raw_data_value(context: ExportContext, subtask: ExportSubtask) -> str | None:
    """Uploads the record's raw data attachment (if any) and provides its file handle ID"""
    attachment_id = subtask.raw_data_attachment_id
    if not attachment_id:
        return None

    try:
        project_id = context.metadata.get_project_id_for_study(subtask.study_id)
        return context.attachments.upload_attachment(project_id, attachment_id)
    except Exception:
        logging.exception(
            "Could not upload raw data %s for record %s", attachment_id, subtask.record_id
        )
        return None


###############################################################################
#
# The pipeline
#
###############################################################################


class TableExporter:
    """
    Runs records for one table handler through staging and, at the end of a task, commit.

    All per-run state lives on the task passed in, so one exporter may serve many tasks.
    """

    def __init__(self, context: ExportContext, handler: TableHandler):
        self.context = context
        self.handler = handler

    @property
    def table_key(self) -> str:
        return self.handler.table_key

    def get_columns(self, task: ExportTask) -> list[ColumnModel]:
        """The full column list (common columns first), computed once per task"""
        columns = task.column_cache.get(self.table_key)
        if columns is None:
            columns = common_columns(self.context.config.column_definitions)
            columns += self.handler.get_columns(self.context, task)
            task.column_cache[self.table_key] = columns
        return columns

    def prepare(self, task: ExportTask) -> None:
        """Resolves columns up front, so that missing schemas surface before any records do"""
        self.get_columns(task)

    def get_tsv_info(self, task: ExportTask) -> TsvInfo | None:
        return task.tsv_infos.get(self.table_key)

    def handle(self, subtask: ExportSubtask) -> bool:
        """
        Writes one record into this table's staged file.

        :returns: False if the handler chose to skip the record, else True
        :raises: whatever prevented the row from being written (after counting it as an error)
        """
        task = subtask.task
        if self.handler.should_skip(self.context, subtask):
            return False

        try:
            columns = self.get_columns(task)
            values = common_values(self.context, task, subtask)
            values += self.handler.get_row_values(self.context, task, subtask)
            if len(values) != len(columns):
                raise ValueError(
                    f"Row has {len(values)} fields, but the table has {len(columns)} columns"
                )

            tsv_info = self.get_tsv_info(task)
            if tsv_info is None:
                tsv_info = TsvInfo.create(task.tmp_dir, self.table_key, [x.name for x in columns])
                task.tsv_infos[self.table_key] = tsv_info

            tsv_info.write_row(values, subtask.record_id)
        except Exception:
            task.metrics.increment_counter(f"{self.table_key}.errorCount")
            raise

        task.metrics.increment_counter(f"{self.table_key}.lineCount")
        return True

    def upload_to_table_for_task(self, task: ExportTask) -> int | None:
        """
        Commits this task's staged rows to the backing table.

        The staged file is always released, whether or not the upload worked.

        :returns: how many rows the table store processed, or None if there was nothing to upload
        :raises TableCommitError: if provisioning or uploading failed
        """
        tsv_info = self.get_tsv_info(task)
        if tsv_info is None:
            return None

        try:
            if not tsv_info.line_count:
                return None

            tsv_info.close()
            table_id = tables.ensure_table(
                self.context, self.table_key, self.handler.study_id, self.get_columns(task)
            )

            try:
                project_id = self.context.metadata.get_project_id_for_study(self.handler.study_id)
                row_count = self.context.table_store.upload_tsv_file_to_table(
                    project_id, table_id, tsv_info.path
                )
            except Exception as exc:
                raise errors.TableCommitError(self.table_key, f"upload failed: {exc}") from exc

            task.metrics.increment_counter(f"{self.table_key}.uploadedRowCount", row_count)
            if row_count != tsv_info.line_count:
                logging.warning(
                    "Table %s processed %s rows, but we staged %s.",
                    table_id,
                    row_count,
                    tsv_info.line_count,
                )
            return row_count
        finally:
            tsv_info.delete()
