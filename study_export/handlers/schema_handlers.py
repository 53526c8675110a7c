"""Handlers whose columns come from an upload schema"""

from study_export import errors, serialize
from study_export.columns import ColumnModel
from study_export.config import ExportContext
from study_export.handlers.base import RAW_DATA_COLUMN, Cells, raw_data_value
from study_export.schemas import FieldDefinition, SchemaKey, UploadSchema
from study_export.worker import ExportSubtask, ExportTask


def schema_columns(context: ExportContext, fields: list[FieldDefinition]) -> list[ColumnModel]:
    columns = serialize.columns_for_schema(fields, context.config.default_max_length)
    columns.append(RAW_DATA_COLUMN)
    return columns


def schema_row_values(
    context: ExportContext,
    task: ExportTask,
    table_key: str,
    fields: list[FieldDefinition],
    subtask: ExportSubtask,
) -> Cells:
    data = serialize.parse_record_data(subtask.record_data)  # raises if the payload is garbage

    ctx = serialize.SerializeContext(
        attachments=context.attachments,
        metrics=task.metrics,
        table_key=table_key,
        project_id=context.metadata.get_project_id_for_study(subtask.study_id),
        record_id=subtask.record_id,
        tmp_dir=task.tmp_dir,
        large_text_max_length=context.config.large_text_max_length,
        default_max_length=context.config.default_max_length,
    )
    values = serialize.serialize_record(ctx, fields, data)
    values.append(raw_data_value(context, subtask))
    return values


class SchemaBasedHandler:
    """A table for one schema, which is handed to us directly"""

    def __init__(self, schema: UploadSchema):
        self.schema = schema
        self.study_id = schema.study_id
        self.table_key = str(schema.key)

    def get_columns(self, context: ExportContext, task: ExportTask) -> list[ColumnModel]:
        return schema_columns(context, self.schema.field_definitions)

    def get_row_values(
        self, context: ExportContext, task: ExportTask, subtask: ExportSubtask
    ) -> Cells:
        return schema_row_values(
            context, task, self.table_key, self.schema.field_definitions, subtask
        )

    def should_skip(self, context: ExportContext, subtask: ExportSubtask) -> bool:
        return False


class HealthDataHandler:
    """
    A table for one schema, which we look up from the metadata source by its key.

    The schema is only fetched once per handler.
    """

    def __init__(self, schema_key: SchemaKey):
        self.schema_key = schema_key
        self.study_id = schema_key.study_id
        self.table_key = str(schema_key)
        self._fields: list[FieldDefinition] | None = None

    def get_fields(self, context: ExportContext, task: ExportTask) -> list[FieldDefinition]:
        if self._fields is None:
            schema = context.metadata.get_schema(task.request, self.schema_key)
            if schema is None:
                raise errors.ConfigurationError(
                    f"Schema {self.schema_key} not found.", errors.SCHEMA_NOT_FOUND
                )
            self._fields = schema.field_definitions
        return self._fields

    def get_columns(self, context: ExportContext, task: ExportTask) -> list[ColumnModel]:
        return schema_columns(context, self.get_fields(context, task))

    def get_row_values(
        self, context: ExportContext, task: ExportTask, subtask: ExportSubtask
    ) -> Cells:
        if subtask.schema_key != self.schema_key:
            raise ValueError(
                f"Record {subtask.record_id} uses schema {subtask.schema_key}, "
                f"not {self.schema_key}"
            )
        fields = self.get_fields(context, task)
        return schema_row_values(context, task, self.table_key, fields, subtask)

    def should_skip(self, context: ExportContext, subtask: ExportSubtask) -> bool:
        return False
