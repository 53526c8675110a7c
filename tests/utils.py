"""Various test helper methods"""

import contextlib
import datetime
import os
import tempfile
import unittest
from unittest import mock

import time_machine

from study_export import clients, tsv
from study_export.columns import ColumnModel
from study_export.config import ExportContext, ExporterConfig
from study_export.schemas import FieldDefinition, SchemaKey, Study, UploadSchema
from study_export.worker import ExportSubtask, ExportTask

# Pass a non-UTC time to time-machine to help notice any bad timezone handling.
# But only bother exposing the UTC version to other test code,
# since that's what will be most useful/common.
_FROZEN_TIME = datetime.datetime(
    2021, 9, 15, 1, 23, 45, tzinfo=datetime.timezone(datetime.timedelta(hours=4))
)
FROZEN_TIME_UTC = _FROZEN_TIME.astimezone(datetime.timezone.utc)

STUDY_ID = "my-study"
PROJECT_ID = "my-project"
DATA_ACCESS_TEAM_ID = 1337
ADMIN_PRINCIPAL_ID = 1234
EXPORTER_DATE = datetime.date(2016, 5, 9)
SCHEMA_KEY = SchemaKey(STUDY_ID, "my-schema", 1)

# A record with every common column filled in (and some of them in need of cleanup)
DEFAULT_RECORD = {
    "id": "test-record",
    "healthCode": "test-health-code",
    "createdOn": 7777777,
    "metadata": {"appVersion": "version 1.0.0, build 2", "phoneInfo": "Unit Tests"},
    "userExternalId": "<p>unsanitized external id</p>",
    "userDataGroups": ["foo", "bar", "baz"],
    "userSubstudyMemberships": {"subA": "extA", "subB": ""},
    "userSharingScope": "SPONSORS_AND_PARTNERS",
}

# What DEFAULT_RECORD looks like in the common columns
DEFAULT_COMMON_VALUES = [
    "test-record",
    "version 1.0.0, build 2",
    "Unit Tests",
    "2016-05-09",
    "test-health-code",
    "unsanitized external id",
    "bar,baz,foo",
    "|subA=extA|subB=|",
    "7777777",
    "SPONSORS_AND_PARTNERS",
]


def make_schema(fields: list[dict], schema_key: SchemaKey = SCHEMA_KEY) -> UploadSchema:
    return UploadSchema(
        study_id=schema_key.study_id,
        schema_id=schema_key.schema_id,
        revision=schema_key.revision,
        field_definitions=[FieldDefinition.model_validate(x) for x in fields],
    )


def read_tsv(path: str) -> str:
    with open(path, encoding="utf8", newline="") as f:
        return f.read()


class FakeTableStore:
    """An in-memory table store that remembers what was uploaded to it"""

    def __init__(self):
        self.tables: dict[str, dict] = {}
        self.uploads: list[tuple[str, str, str]] = []  # project, table id, file contents

    def create_table_with_columns_and_acls(
        self, columns, data_access_team_id, admin_principal_id, project_id, table_name
    ) -> str:
        table_id = f"table-{len(self.tables) + 1}"
        self.tables[table_id] = {
            "columns": list(columns),
            "team": data_access_team_id,
            "admin": admin_principal_id,
            "project": project_id,
            "name": table_name,
        }
        return table_id

    def get_column_models_for_table(self, table_id: str) -> list[ColumnModel]:
        return list(self.tables[table_id]["columns"])

    def add_columns_to_table(self, table_id: str, columns: list[ColumnModel]) -> None:
        self.tables[table_id]["columns"].extend(columns)

    def upload_tsv_file_to_table(self, project_id: str, table_id: str, path: str) -> int:
        contents = read_tsv(path)
        self.uploads.append((project_id, table_id, contents))
        return len(contents.splitlines()) - 1


class FakeTableIdCache:
    def __init__(self):
        self.table_ids: dict[str, str] = {}

    def get_table_id(self, table_key: str) -> str | None:
        return self.table_ids.get(table_key)

    def set_table_id(self, table_key: str, table_id: str) -> str:
        return self.table_ids.setdefault(table_key, table_id)


class ExportTestCase(unittest.TestCase):
    """
    Test case to hold some common code

    Every test gets a fresh export context, backed by fakes and mocks, plus a fresh task.
    """

    def setUp(self):
        super().setUp()

        # It's so common to want to see more than the tiny default fragment.
        # So we just enable this across the board.
        self.maxDiff = None

        # Lock our version in place
        self.patch("study_export.__version__", new="1.0.0+test")

        # Several tests involve timestamps in some form, so just pick a standard time for all tests.
        traveller = time_machine.travel(_FROZEN_TIME, tick=False)
        self.addCleanup(traveller.stop)
        self.time_machine = traveller.start()

        self.schemas: dict[SchemaKey, UploadSchema] = {}
        self.table_store = FakeTableStore()
        self.table_id_cache = FakeTableIdCache()

        self.attachments = mock.Mock(spec=clients.AttachmentStore)
        self.attachments.upload_attachment.side_effect = lambda project, ref: f"fh-{ref}"
        self.attachments.download_large_text.return_value = "This is some large text"

        self.metadata = mock.Mock(spec=clients.MetadataSource)
        self.metadata.get_study.side_effect = lambda study_id: Study(identifier=study_id)
        self.metadata.get_project_id_for_study.return_value = PROJECT_ID
        self.metadata.get_data_access_team_id.return_value = DATA_ACCESS_TEAM_ID
        self.metadata.is_study_excluded.return_value = False
        self.metadata.get_schema.side_effect = lambda request, key: self.schemas.get(key)

        self.context = ExportContext(
            config=ExporterConfig(admin_principal_id=ADMIN_PRINCIPAL_ID),
            table_store=self.table_store,
            table_id_cache=self.table_id_cache,
            attachments=self.attachments,
            metadata=self.metadata,
        )

        self.task = ExportTask(EXPORTER_DATE)
        self.addCleanup(self.task.cleanup)

    def add_schema(self, fields: list[dict], schema_key: SchemaKey = SCHEMA_KEY) -> UploadSchema:
        schema = make_schema(fields, schema_key)
        self.schemas[schema_key] = schema
        return schema

    def make_subtask(
        self,
        data=None,
        *,
        schema_key: SchemaKey | None = SCHEMA_KEY,
        study_id: str = STUDY_ID,
        task: ExportTask | None = None,
        **record_overrides,
    ) -> ExportSubtask:
        record = dict(DEFAULT_RECORD, **record_overrides)
        return ExportSubtask(
            task or self.task, record, data if data is not None else {}, study_id, schema_key
        )

    def make_tempdir(self) -> str:
        """Creates a temporary dir that will be automatically cleaned up"""
        tempdir = tempfile.TemporaryDirectory()
        self.addCleanup(tempdir.cleanup)
        return tempdir.name

    def patch(self, *args, **kwargs) -> mock.Mock:
        """Syntactic sugar to ease making a mock over a test's lifecycle, without decorators"""
        patcher = mock.patch(*args, **kwargs)
        self.addCleanup(patcher.stop)
        return patcher.start()

    def patch_object(self, *args, **kwargs) -> mock.Mock:
        """Syntactic sugar for making an object mock over a test's lifecycle, without decorators"""
        patcher = mock.patch.object(*args, **kwargs)
        self.addCleanup(patcher.stop)
        return patcher.start()

    @contextlib.contextmanager
    def assert_fatal_exit(self, code: int | None = None):
        with self.assertRaises(SystemExit) as cm:
            yield
        if code is not None:
            self.assertEqual(cm.exception.code, code)

    def assert_tsv_rows(self, contents: str, expected_rows: list[list[str | None]]) -> None:
        """Checks the data rows (not the header) of uploaded TSV contents"""
        lines = contents.splitlines(keepends=True)[1:]
        self.assertEqual([tsv.encode_row(row) for row in expected_rows], lines)
