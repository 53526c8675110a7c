"""Picks the table exporters that each record should be written through"""

from collections.abc import Callable

from study_export import errors
from study_export.config import ExportContext
from study_export.handlers.base import TableExporter, TableHandler
from study_export.handlers.basic_handlers import AppVersionHandler, SchemalessHandler
from study_export.handlers.schema_handlers import HealthDataHandler
from study_export.worker import ExportSubtask


class HandlerRegistry:
    """
    Keeps one exporter per logical table for the lifetime of an export run.

    Every record goes to its study's app version table, plus either the table for its schema
    or (for schemaless records) the study's default table.
    """

    def __init__(self, context: ExportContext):
        self.context = context
        self._exporters: dict[str, TableExporter] = {}
        self._known_studies: set[str] = set()

    def exporters_for_subtask(self, subtask: ExportSubtask) -> list[TableExporter]:
        """
        Provides the exporters for a record, creating and preparing them on first sight.

        :raises ConfigurationError: if the record's study or schema is unknown
        """
        self._check_study(subtask.study_id)

        study_id = subtask.study_id
        exporters = [self._get_exporter(subtask, f"{study_id}-appVersion", AppVersionHandler)]

        if subtask.schema_key is None:
            exporters.append(
                self._get_exporter(subtask, f"{study_id}-default", SchemalessHandler)
            )
        else:
            schema_key = subtask.schema_key
            exporters.append(
                self._get_exporter(
                    subtask, str(schema_key), lambda _: HealthDataHandler(schema_key)
                )
            )

        return exporters

    def all_exporters(self) -> list[TableExporter]:
        """Every exporter created so far, in the order they were first needed"""
        return list(self._exporters.values())

    def _check_study(self, study_id: str) -> None:
        if study_id in self._known_studies:
            return
        if self.context.metadata.get_study(study_id) is None:
            raise errors.ConfigurationError(f"Study {study_id} not found.", errors.STUDY_NOT_FOUND)
        self._known_studies.add(study_id)

    def _get_exporter(
        self, subtask: ExportSubtask, table_key: str, make_handler: Callable[[str], TableHandler]
    ) -> TableExporter:
        exporter = self._exporters.get(table_key)
        if exporter is None:
            exporter = TableExporter(self.context, make_handler(subtask.study_id))
            exporter.prepare(subtask.task)
            self._exporters[table_key] = exporter
        return exporter
