"""Handlers that don't depend on a schema"""

from study_export import serialize
from study_export.columns import ColumnModel, ColumnType
from study_export.config import ExportContext
from study_export.handlers.base import RAW_DATA_COLUMN, Cells, raw_data_value
from study_export.worker import ExportSubtask, ExportTask

# Name we record as the original table of a record that has no schema
DEFAULT_TABLE_NAME = "Default"


class SimpleFieldHandler:
    """A table with a single column, copied straight from one field of each record"""

    def __init__(
        self,
        study_id: str,
        table_kind: str,
        field_name: str,
        max_size: int = serialize.DEFAULT_MAX_LENGTH,
    ):
        self.study_id = study_id
        self.table_key = f"{study_id}-{table_kind}"
        self.field_name = field_name
        self.max_size = max_size

    def get_columns(self, context: ExportContext, task: ExportTask) -> list[ColumnModel]:
        return [ColumnModel(self.field_name, ColumnType.STRING, self.max_size)]

    def get_row_values(
        self, context: ExportContext, task: ExportTask, subtask: ExportSubtask
    ) -> Cells:
        data = serialize.parse_record_data(subtask.record_data)
        value = data.get(self.field_name)
        if value is None:
            return [None]
        return [serialize.as_text(value)[: self.max_size]]

    def should_skip(self, context: ExportContext, subtask: ExportSubtask) -> bool:
        return False


class AppVersionHandler:
    """
    Tracks which table each record originally went to, alongside its app version.

    Every record of a study passes through here, no matter its schema.
    Studies that are excluded from export skip this table entirely.
    """

    ORIGINAL_TABLE_COLUMN = ColumnModel("originalTable", ColumnType.STRING, 128)

    def __init__(self, study_id: str):
        self.study_id = study_id
        self.table_key = f"{study_id}-appVersion"

    def get_columns(self, context: ExportContext, task: ExportTask) -> list[ColumnModel]:
        return [self.ORIGINAL_TABLE_COLUMN]

    def get_row_values(
        self, context: ExportContext, task: ExportTask, subtask: ExportSubtask
    ) -> Cells:
        app_version = subtask.record_metadata().get("appVersion")
        if app_version:
            task.metrics.add_key_value(
                f"uniqueAppVersions[{self.study_id}]", serialize.as_text(app_version)
            )

        if subtask.schema_key is None:
            return [DEFAULT_TABLE_NAME]
        return [str(subtask.schema_key)]

    def should_skip(self, context: ExportContext, subtask: ExportSubtask) -> bool:
        return context.metadata.is_study_excluded(self.study_id)


class SchemalessHandler:
    """Records without a schema, which only get their raw data attached"""

    def __init__(self, study_id: str):
        self.study_id = study_id
        self.table_key = f"{study_id}-default"

    def get_columns(self, context: ExportContext, task: ExportTask) -> list[ColumnModel]:
        return [RAW_DATA_COLUMN]

    def get_row_values(
        self, context: ExportContext, task: ExportTask, subtask: ExportSubtask
    ) -> Cells:
        return [raw_data_value(context, subtask)]

    def should_skip(self, context: ExportContext, subtask: ExportSubtask) -> bool:
        return False
