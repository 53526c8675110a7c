"""Export tasks (one run) and subtasks (one record in that run)"""

import dataclasses
import datetime
import json
import logging
import shutil
import tempfile
from typing import Any

from study_export import common
from study_export.columns import ColumnModel
from study_export.metrics import Metrics
from study_export.schemas import SchemaKey
from study_export.tsv import TsvInfo


class ExportTask:
    """
    A single export run.

    The task owns a private scratch folder for its staged TSV files, plus the per-table
    TsvInfo state for this run. Nothing in here is shared with other tasks.

    Use it as a context manager, so that the scratch folder is always removed:
        with ExportTask(date) as task:
            ...
    """

    def __init__(
        self,
        exporter_date: datetime.date,
        *,
        request: dict | None = None,
        metrics: Metrics | None = None,
    ):
        self.exporter_date = exporter_date
        self.request = request or {}
        self.metrics = metrics or Metrics()
        self.tmp_dir = tempfile.mkdtemp(prefix="task-", dir=common.get_temp_dir("tasks"))
        self.tsv_infos: dict[str, TsvInfo] = {}
        # Column lists per table key, computed once per run
        self.column_cache: dict[str, list[ColumnModel]] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.cleanup()

    def cleanup(self) -> None:
        """Releases every staged file and the scratch folder. Safe to call more than once."""
        for tsv_info in self.tsv_infos.values():
            tsv_info.delete()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)


@dataclasses.dataclass(frozen=True)
class ExportSubtask:
    """
    One input record, bound to its task.

    :param task: the owning task
    :param record: record-level metadata (id, healthCode, createdOn, metadata, etc)
    :param record_data: the record payload itself, either already parsed or as raw JSON text
    :param study_id: the owning study
    :param schema_key: which schema the payload follows (None for schemaless records)
    """

    task: ExportTask
    record: dict
    record_data: Any
    study_id: str
    schema_key: SchemaKey | None = None

    @property
    def record_id(self) -> str | None:
        return self.record.get("id")

    @property
    def raw_data_attachment_id(self) -> str | None:
        return self.record.get("rawDataAttachmentId")

    def record_metadata(self) -> dict:
        """The metadata blob (app version, phone info), or an empty dict if it is unusable"""
        metadata = self.record.get("metadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                logging.warning("Record %s has unreadable metadata, ignoring it.", self.record_id)
                return {}
        return metadata if isinstance(metadata, dict) else {}
