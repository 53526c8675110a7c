"""Runs a whole export task: every record through its tables, then one commit per table"""

import logging
from collections.abc import Iterable
from socket import gethostname

from study_export import common, errors
from study_export.config import ExportContext
from study_export.handlers import HandlerRegistry, TableExporter
from study_export.worker import ExportSubtask, ExportTask


class TableSummary:
    """Summary of one table's results in one export run"""

    def __init__(self, label: str):
        self.label = label
        self.attempt = 0
        self.success = 0
        self.uploaded = 0
        self.had_errors = False
        self.commit_failed = False
        self.timestamp = common.timestamp_datetime()
        self.hostname = gethostname()

    def success_rate(self) -> float:
        """
        :return: % success rate (0.0 to 1.0)
        """
        if not self.attempt:
            return 1.0

        return float(self.success) / float(self.attempt)

    def as_json(self):
        return {
            "label": self.label,
            "attempt": self.attempt,
            "success": self.success,
            "uploaded": self.uploaded,
            "success_rate": self.success_rate(),
            "had_errors": self.had_errors,
            "commit_failed": self.commit_failed,
            "timestamp": self.timestamp,
            "hostname": self.hostname,
        }


def export_records(
    context: ExportContext,
    task: ExportTask,
    subtasks: Iterable[ExportSubtask],
    registry: HandlerRegistry | None = None,
    progress_callback=None,
) -> list[TableSummary]:
    """
    Exports all records of a task, in the order given.

    A record that can't be written is logged and counted, and the run carries on.
    A table that fails to commit is marked as failed, and the other tables carry on.

    :param context: the export context
    :param task: the task these subtasks belong to
    :param subtasks: the records to export
    :param registry: where to find table exporters (a fresh one by default)
    :param progress_callback: called after each record is processed
    :raises ConfigurationError: if a study or schema is missing (before any record is written)
    :returns: one summary per table touched
    """
    registry = registry or HandlerRegistry(context)
    subtasks = list(subtasks)

    # Resolve every exporter first, so configuration problems stop us before writing anything
    plan = [(subtask, registry.exporters_for_subtask(subtask)) for subtask in subtasks]

    summaries: dict[str, TableSummary] = {
        exporter.table_key: TableSummary(exporter.table_key)
        for exporter in registry.all_exporters()
    }

    for subtask, exporters in plan:
        for exporter in exporters:
            summary = summaries[exporter.table_key]
            summary.attempt += 1
            try:
                if exporter.handle(subtask):
                    summary.success += 1
                else:
                    summary.attempt -= 1  # skipped records don't count either way
            except Exception as exc:
                summary.had_errors = True
                logging.warning(
                    "Could not export record %s to %s: %s",
                    subtask.record_id,
                    exporter.table_key,
                    exc,
                )
        if progress_callback:
            progress_callback()

    for exporter in registry.all_exporters():
        _commit_table(exporter, task, summaries[exporter.table_key])

    return list(summaries.values())


def _commit_table(exporter: TableExporter, task: ExportTask, summary: TableSummary) -> None:
    try:
        summary.uploaded = exporter.upload_to_table_for_task(task) or 0
    except errors.TableCommitError:
        logging.exception("Could not commit table %s", exporter.table_key)
        summary.had_errors = True
        summary.commit_failed = True
