"""Tests for pipeline.py and the handler registry"""

from unittest import mock

from study_export import errors, pipeline
from study_export.handlers import AppVersionHandler, HandlerRegistry, HealthDataHandler
from study_export.schemas import SchemaKey
from tests import utils


class PipelineTestCase(utils.ExportTestCase):
    def setUp(self):
        super().setUp()
        self.patch("study_export.pipeline.gethostname", return_value="test-host")
        self.add_schema([{"name": "answer", "type": "INT"}])

    def summaries_by_label(self, summaries) -> dict[str, pipeline.TableSummary]:
        return {summary.label: summary for summary in summaries}


class TestExportRecords(PipelineTestCase):
    """Test case for running a whole task through all of its tables"""

    def test_mixed_records(self):
        subtasks = [
            self.make_subtask({"answer": 42}, id="record-1"),
            self.make_subtask("oops", id="record-2"),
            self.make_subtask({}, id="record-3", schema_key=None, rawDataAttachmentId="raw"),
        ]
        progress = mock.Mock()

        with self.assertLogs(level="WARNING") as logs:
            summaries = pipeline.export_records(
                self.context, self.task, subtasks, progress_callback=progress
            )

        self.assertEqual(
            ["my-study-appVersion", "my-study-my-schema-v1", "my-study-default"],
            [summary.label for summary in summaries],
        )
        by_label = self.summaries_by_label(summaries)

        app_version = by_label["my-study-appVersion"]
        self.assertEqual(
            (3, 3, 3), (app_version.attempt, app_version.success, app_version.uploaded)
        )
        self.assertFalse(app_version.had_errors)

        schema = by_label["my-study-my-schema-v1"]
        self.assertEqual((2, 1, 1), (schema.attempt, schema.success, schema.uploaded))
        self.assertTrue(schema.had_errors)
        self.assertFalse(schema.commit_failed)
        self.assertEqual(0.5, schema.success_rate())

        default = by_label["my-study-default"]
        self.assertEqual((1, 1, 1), (default.attempt, default.success, default.uploaded))

        self.assertEqual(3, progress.call_count)
        self.assertEqual(3, len(self.table_store.uploads))
        self.assertEqual(1, len(logs.output))
        self.assertIn(
            "Could not export record record-2 to my-study-my-schema-v1: oops", logs.output[0]
        )
        self.assertEqual(1, self.task.metrics.counter("my-study-my-schema-v1.errorCount"))

    def test_arrival_order_is_kept(self):
        subtasks = [self.make_subtask({"answer": i}, id=f"record-{i}") for i in range(5)]

        pipeline.export_records(self.context, self.task, subtasks)

        contents = self.table_store.uploads[1][2]
        record_ids = [line.split("\t")[0] for line in contents.splitlines()[1:]]
        self.assertEqual([f'"record-{i}"' for i in range(5)], record_ids)

    def test_missing_study_stops_before_writing(self):
        self.metadata.get_study.side_effect = lambda study_id: None

        with self.assertRaises(errors.ConfigurationError) as cm:
            pipeline.export_records(self.context, self.task, [self.make_subtask({"answer": 1})])

        self.assertEqual(errors.STUDY_NOT_FOUND, cm.exception.status)
        self.assertEqual({}, self.task.tsv_infos)
        self.assertEqual([], self.table_store.uploads)

    def test_missing_schema_stops_before_writing(self):
        subtasks = [
            self.make_subtask({"answer": 1}),
            self.make_subtask({"answer": 2}, schema_key=SchemaKey(utils.STUDY_ID, "gone", 2)),
        ]

        with self.assertRaises(errors.ConfigurationError) as cm:
            pipeline.export_records(self.context, self.task, subtasks)

        self.assertEqual(errors.SCHEMA_NOT_FOUND, cm.exception.status)
        self.assertEqual({}, self.task.tsv_infos)
        self.assertEqual([], self.table_store.uploads)

    def test_commit_failure_is_isolated_to_its_table(self):
        orig_upload = self.table_store.upload_tsv_file_to_table

        def flaky_upload(project_id, table_id, path):
            if table_id == "table-2":
                raise OSError("bulk load failed")
            return orig_upload(project_id, table_id, path)

        self.patch_object(self.table_store, "upload_tsv_file_to_table", side_effect=flaky_upload)
        subtasks = [
            self.make_subtask({"answer": 1}),
            self.make_subtask({}, schema_key=None),
        ]

        with self.assertLogs(level="ERROR"):
            summaries = pipeline.export_records(self.context, self.task, subtasks)

        by_label = self.summaries_by_label(summaries)
        self.assertTrue(by_label["my-study-my-schema-v1"].commit_failed)
        self.assertTrue(by_label["my-study-my-schema-v1"].had_errors)
        self.assertEqual(0, by_label["my-study-my-schema-v1"].uploaded)
        self.assertFalse(by_label["my-study-appVersion"].commit_failed)
        self.assertEqual(2, by_label["my-study-appVersion"].uploaded)
        self.assertFalse(by_label["my-study-default"].commit_failed)
        self.assertEqual(1, by_label["my-study-default"].uploaded)

    def test_excluded_study_only_skips_app_versions(self):
        self.metadata.is_study_excluded.return_value = True

        summaries = pipeline.export_records(
            self.context, self.task, [self.make_subtask({"answer": 1})]
        )

        by_label = self.summaries_by_label(summaries)
        self.assertEqual(0, by_label["my-study-appVersion"].attempt)
        self.assertEqual(0, by_label["my-study-appVersion"].uploaded)
        self.assertEqual(1, by_label["my-study-my-schema-v1"].uploaded)
        self.assertEqual(1, len(self.table_store.uploads))

    def test_no_records(self):
        self.assertEqual([], pipeline.export_records(self.context, self.task, []))
        self.assertEqual([], self.table_store.uploads)


class TestTableSummary(PipelineTestCase):
    def test_as_json(self):
        summary = pipeline.TableSummary("my-table")
        summary.attempt = 4
        summary.success = 3
        summary.uploaded = 3
        summary.had_errors = True

        self.assertEqual(
            {
                "label": "my-table",
                "attempt": 4,
                "success": 3,
                "uploaded": 3,
                "success_rate": 0.75,
                "had_errors": True,
                "commit_failed": False,
                "timestamp": "2021-09-14 21:23:45",
                "hostname": "test-host",
            },
            summary.as_json(),
        )

    def test_empty_success_rate(self):
        self.assertEqual(1.0, pipeline.TableSummary("empty").success_rate())


class TestHandlerRegistry(PipelineTestCase):
    def test_exporters_are_shared_across_records(self):
        registry = HandlerRegistry(self.context)

        first = registry.exporters_for_subtask(self.make_subtask({"answer": 1}))
        second = registry.exporters_for_subtask(self.make_subtask({"answer": 2}))

        self.assertEqual(2, len(first))
        self.assertIs(first[0], second[0])
        self.assertIs(first[1], second[1])
        self.assertIsInstance(first[0].handler, AppVersionHandler)
        self.assertIsInstance(first[1].handler, HealthDataHandler)
        self.assertEqual(first, registry.all_exporters())
        self.metadata.get_study.assert_called_once_with(utils.STUDY_ID)
        self.metadata.get_schema.assert_called_once_with({}, utils.SCHEMA_KEY)

    def test_schemaless_records_go_to_default_table(self):
        registry = HandlerRegistry(self.context)

        exporters = registry.exporters_for_subtask(self.make_subtask({}, schema_key=None))

        self.assertEqual(
            ["my-study-appVersion", "my-study-default"], [x.table_key for x in exporters]
        )

    def test_each_study_gets_its_own_tables(self):
        registry = HandlerRegistry(self.context)
        other_key = SchemaKey("other-study", "my-schema", 1)
        self.add_schema([{"name": "answer", "type": "INT"}], other_key)

        registry.exporters_for_subtask(self.make_subtask({}))
        registry.exporters_for_subtask(
            self.make_subtask({}, study_id="other-study", schema_key=other_key)
        )

        self.assertEqual(
            [
                "my-study-appVersion",
                "my-study-my-schema-v1",
                "other-study-appVersion",
                "other-study-my-schema-v1",
            ],
            [x.table_key for x in registry.all_exporters()],
        )
