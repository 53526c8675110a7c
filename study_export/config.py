"""Exporter configuration, plus the context object that carries it (and our clients) around"""

import dataclasses

import pydantic

from study_export import clients, common, errors
from study_export.columns import DEFAULT_COLUMN_DEFINITIONS, ColumnDefinition


class ExporterConfig(pydantic.BaseModel):
    """
    Deployment-wide settings for an exporter process.

    These are usually loaded from a JSON file with camelCase keys, like:
        {"adminPrincipalId": 123456, "columnDefinitions": [{"name": "healthCode", ...}]}
    """

    model_config = pydantic.ConfigDict(populate_by_name=True, frozen=True)

    column_definitions: tuple[ColumnDefinition, ...] = pydantic.Field(
        default=DEFAULT_COLUMN_DEFINITIONS, alias="columnDefinitions"
    )
    # principal that gets administrative rights on every table we create
    admin_principal_id: int | None = pydantic.Field(default=None, alias="adminPrincipalId")
    # unbounded strings longer than this get uploaded as attachments instead of being inlined
    large_text_max_length: int = pydantic.Field(default=500_000, alias="largeTextMaxLength")
    # used for bounded string fields that don't declare their own max length
    default_max_length: int = pydantic.Field(default=100, alias="defaultMaxLength")

    @classmethod
    def load(cls, path: str | None) -> "ExporterConfig":
        """Reads config from a JSON file, or provides defaults if no path is given"""
        if not path:
            return cls()

        try:
            return cls.model_validate(common.read_json(path))
        except FileNotFoundError:
            errors.fatal(f"Config file {path} does not exist.", errors.CONFIG_INVALID)
        except ValueError as exc:  # includes both JSON decoding and pydantic validation errors
            errors.fatal(f"Config file {path} is invalid.", errors.CONFIG_INVALID, extra=str(exc))


@dataclasses.dataclass
class ExportContext:
    """
    Everything an export pipeline needs that outlives a single task.

    This is passed explicitly into each handler and helper. Nothing here is task-specific:
    several tasks may share one context, and the table ID cache is the only mutable thing
    those tasks share.
    """

    config: ExporterConfig
    table_store: clients.TableStore
    table_id_cache: clients.TableIdCache
    attachments: clients.AttachmentStore
    metadata: clients.MetadataSource
