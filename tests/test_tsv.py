"""Tests for tsv.py"""

import os

import ddt

from study_export import tsv
from tests import utils


@ddt.ddt
class TestTsvEncoding(utils.ExportTestCase):
    """Test case for the row encoding that the table store's bulk loader expects"""

    @ddt.data(
        (None, ""),
        ("", '""'),
        ("plain", '"plain"'),
        ('say "hi"', '"say ""hi"""'),
        ("back\\slash", '"back\\\\slash"'),
        ('both \\"', '"both \\\\"""'),
        ("tab\tinside", '"tab\tinside"'),
    )
    @ddt.unpack
    def test_escape_field(self, value, expected):
        self.assertEqual(expected, tsv.escape_field(value))

    def test_encode_row(self):
        self.assertEqual('"a"\t\t"c"\n', tsv.encode_row(["a", None, "c"]))

    def test_encode_row_all_null(self):
        self.assertEqual("\t\t\n", tsv.encode_row([None, None, None]))

    def test_sanitize_table_key(self):
        self.assertEqual(
            "CAPITAL_lowercase_removebetween_123_with-dash",
            tsv.sanitize_table_key("CAPITAL_lowercase_remove+ .!@#$between_123_with-dash"),
        )


class TestTsvInfo(utils.ExportTestCase):
    """Test case for staged TSV files"""

    def test_create_writes_header_right_away(self):
        tsv_info = tsv.TsvInfo.create(self.task.tmp_dir, "my-study-schema", ["foo", "bar"])
        tsv_info.close()

        self.assertEqual('"foo"\t"bar"\n', utils.read_tsv(tsv_info.path))
        self.assertEqual(0, tsv_info.line_count)
        self.assertEqual([], tsv_info.record_ids)

    def test_filename_uses_sanitized_key(self):
        tsv_info = tsv.TsvInfo.create(
            self.task.tmp_dir, "CAPITAL_lowercase_remove+ .!@#$between_123_with-dash", ["a"]
        )
        self.addCleanup(tsv_info.delete)

        filename = os.path.basename(tsv_info.path)
        self.assertTrue(filename.startswith("CAPITAL_lowercase_removebetween_123_with-dash."))
        self.assertTrue(filename.endswith(".tsv"))
        self.assertEqual(self.task.tmp_dir, os.path.dirname(tsv_info.path))

    def test_write_rows(self):
        tsv_info = tsv.TsvInfo.create(self.task.tmp_dir, "table", ["foo", "bar"])
        tsv_info.write_row(["1", None], "record-1")
        tsv_info.write_row(['"quoted"', "x"], None)
        tsv_info.close()

        self.assertEqual(
            '"foo"\t"bar"\n"1"\t\n"""quoted"""\t"x"\n', utils.read_tsv(tsv_info.path)
        )
        self.assertEqual(2, tsv_info.line_count)
        self.assertEqual(["record-1"], tsv_info.record_ids)

    def test_write_row_wrong_width(self):
        tsv_info = tsv.TsvInfo.create(self.task.tmp_dir, "table", ["foo", "bar"])
        self.addCleanup(tsv_info.delete)

        with self.assertRaisesRegex(ValueError, "Row has 1 fields, but the table has 2 columns"):
            tsv_info.write_row(["1"], "record-1")
        self.assertEqual(0, tsv_info.line_count)

    def test_delete_is_idempotent(self):
        tsv_info = tsv.TsvInfo.create(self.task.tmp_dir, "table", ["foo"])
        tsv_info.delete()
        tsv_info.delete()
        self.assertFalse(os.path.exists(tsv_info.path))
