"""
Converts schema-described record fields into table cells.

Each field definition expands into one or more table columns (a TIMESTAMP becomes a time
column plus a timezone column, a MULTI_CHOICE becomes one boolean column per answer, etc).
Serializing a single field never raises: a bad value just becomes empty cells.
Only a payload that can't be parsed at all raises, since then the whole row is lost.
"""

import dataclasses
import datetime
import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from typing import Any

from study_export import clients, common, errors
from study_export.columns import ColumnModel, ColumnType
from study_export.metrics import Metrics
from study_export.schemas import FieldDefinition, FieldType

Cells = list[str | None]

TIMEZONE_SUFFIX = ".timezone"
OTHER_SUFFIX = ".other"
DEFAULT_MAX_LENGTH = 100


@dataclasses.dataclass
class SerializeContext:
    """Everything a field serializer might need, beyond the field and its value"""

    attachments: clients.AttachmentStore
    metrics: Metrics
    table_key: str
    project_id: str
    record_id: str | None
    tmp_dir: str
    large_text_max_length: int = 500_000
    default_max_length: int = DEFAULT_MAX_LENGTH


###############################################################################
#
# Columns
#
###############################################################################


def columns_for_field(
    field: FieldDefinition, default_max_length: int = DEFAULT_MAX_LENGTH
) -> list[ColumnModel]:
    name = field.name
    match field.field_type:
        case FieldType.STRING | FieldType.SINGLE_CHOICE:
            if field.unbounded_text:
                return [ColumnModel(name, ColumnType.LARGETEXT)]
            return [ColumnModel(name, ColumnType.STRING, field.max_length or default_max_length)]
        case FieldType.INT:
            return [ColumnModel(name, ColumnType.INTEGER)]
        case FieldType.FLOAT:
            return [ColumnModel(name, ColumnType.DOUBLE)]
        case FieldType.BOOLEAN:
            return [ColumnModel(name, ColumnType.BOOLEAN)]
        case FieldType.CALENDAR_DATE:
            return [ColumnModel(name, ColumnType.STRING, 10)]
        case FieldType.TIMESTAMP:
            return [
                ColumnModel(name, ColumnType.DATE),
                ColumnModel(name + TIMEZONE_SUFFIX, ColumnType.STRING, 5),
            ]
        case FieldType.MULTI_CHOICE:
            columns = [
                ColumnModel(f"{name}.{answer}", ColumnType.BOOLEAN)
                for answer in field.multi_choice_answer_list
            ]
            if field.allow_other_choices:
                columns.append(ColumnModel(name + OTHER_SUFFIX, ColumnType.LARGETEXT))
            return columns
        case FieldType.ATTACHMENT:
            return [ColumnModel(name, ColumnType.FILEHANDLEID)]
        case FieldType.LARGE_TEXT_ATTACHMENT:
            return [ColumnModel(name, ColumnType.LARGETEXT)]
        case _:
            return [ColumnModel(name, ColumnType.STRING, default_max_length)]


def columns_for_schema(
    fields: Iterable[FieldDefinition], default_max_length: int = DEFAULT_MAX_LENGTH
) -> list[ColumnModel]:
    """Expands every field definition into its columns, keeping field order"""
    return [column for field in fields for column in columns_for_field(field, default_max_length)]


###############################################################################
#
# Values
#
###############################################################################


def parse_record_data(raw: Any) -> dict:
    """
    Provides the record payload as a dictionary.

    :raises RecordContentError: if the payload is not a JSON object, with the raw content as message
    """
    if isinstance(raw, dict):
        return raw

    if isinstance(raw, bytes | str):
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed

    raw_text = raw.decode("utf8", errors="replace") if isinstance(raw, bytes) else str(raw)
    raise errors.RecordContentError(raw_text)


def serialize_record(ctx: SerializeContext, fields: Iterable[FieldDefinition], data: dict) -> Cells:
    return [cell for field in fields for cell in serialize_field(ctx, field, data.get(field.name))]


def serialize_field(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    """
    Serializes one field's value into as many cells as the field has columns.

    Absent values give all-empty cells, as do values that don't fit the declared type.
    """
    width = len(columns_for_field(field, ctx.default_max_length))
    if value is None:
        return [None] * width

    serializer = _SERIALIZERS.get(field.field_type)
    if serializer is None:
        return [None] * width

    return serializer(ctx, field, value)


def as_text(value: Any) -> str:
    # Non-string scalars (and the odd nested object) are stored as their JSON text
    return value if isinstance(value, str) else json.dumps(value)


def _serialize_string(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    text = as_text(value)

    if not field.unbounded_text:
        return [text[: field.max_length or ctx.default_max_length]]

    if len(text) <= ctx.large_text_max_length:
        return [text]

    # Too big to inline, so store it as an attachment and point at it instead
    fd, path = tempfile.mkstemp(prefix="text-", suffix=".txt", dir=ctx.tmp_dir)
    try:
        with os.fdopen(fd, "w", encoding="utf8") as f:
            f.write(text)
        file_handle_id = ctx.attachments.upload_attachment(ctx.project_id, path)
    except Exception:
        logging.exception(
            "Could not upload text of field %s for record %s", field.name, ctx.record_id
        )
        return [None]
    finally:
        os.remove(path)

    ctx.metrics.increment_counter(f"{ctx.table_key}.textAttachmentCount")
    return [file_handle_id]


def _serialize_int(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    del ctx, field
    if isinstance(value, bool):
        return [None]
    if isinstance(value, int):
        return [str(value)]

    try:
        if isinstance(value, str):
            try:
                return [str(int(value.strip()))]
            except ValueError:
                value = float(value)
        if isinstance(value, float):
            return [str(int(value))]
    except (ValueError, OverflowError):
        pass
    return [None]


def _serialize_float(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    del ctx, field
    if isinstance(value, bool):
        return [None]
    if isinstance(value, int | float):
        return [str(value)]
    if isinstance(value, str):
        try:
            return [str(float(value))]
        except ValueError:
            pass
    return [None]


def _serialize_boolean(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    del ctx, field
    if isinstance(value, bool):
        return ["true" if value else "false"]
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return [value.lower()]
    return [None]


def _serialize_calendar_date(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    del ctx, field
    try:
        return [datetime.date.fromisoformat(value).isoformat()]
    except (TypeError, ValueError):
        return [None]


def _serialize_timestamp(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    del ctx, field
    if isinstance(value, int | float) and not isinstance(value, bool):
        return [str(int(value)), "+0000"]  # plain numbers are already epoch milliseconds

    try:
        parsed = common.parse_datetime(value)
    except (AttributeError, TypeError, ValueError):
        return [None, None]
    return [str(common.epoch_millis(parsed)), common.utc_offset_string(parsed)]


def _serialize_multi_choice(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    del ctx
    answers = field.multi_choice_answer_list
    if not isinstance(value, list):
        return [None] * (len(answers) + int(field.allow_other_choices))

    selected = [as_text(item) for item in value]
    cells = ["true" if answer in selected else "false" for answer in answers]

    if field.allow_other_choices:
        others = [item for item in selected if item not in answers]
        cells.append(others[0] if others else None)

    return cells


def _serialize_attachment(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    try:
        return [ctx.attachments.upload_attachment(ctx.project_id, as_text(value))]
    except Exception:
        logging.exception(
            "Could not upload attachment %s of field %s for record %s",
            value,
            field.name,
            ctx.record_id,
        )
        return [None]


def _serialize_large_text(ctx: SerializeContext, field: FieldDefinition, value: Any) -> Cells:
    try:
        return [ctx.attachments.download_large_text(as_text(value))]
    except Exception:
        logging.exception(
            "Could not download large text attachment %s of field %s for record %s",
            value,
            field.name,
            ctx.record_id,
        )
        return [None]


_SERIALIZERS: dict[FieldType, Callable[[SerializeContext, FieldDefinition, Any], Cells]] = {
    FieldType.STRING: _serialize_string,
    FieldType.SINGLE_CHOICE: _serialize_string,
    FieldType.INT: _serialize_int,
    FieldType.FLOAT: _serialize_float,
    FieldType.BOOLEAN: _serialize_boolean,
    FieldType.CALENDAR_DATE: _serialize_calendar_date,
    FieldType.TIMESTAMP: _serialize_timestamp,
    FieldType.MULTI_CHOICE: _serialize_multi_choice,
    FieldType.ATTACHMENT: _serialize_attachment,
    FieldType.LARGE_TEXT_ATTACHMENT: _serialize_large_text,
}
