"""
Staged TSV files, one per table per task.

The row encoding here is the wire contract with the table store's bulk-load endpoint,
so it must stay bit-for-bit stable:
- fields are separated by tabs and rows end with a single newline
- every non-null field is wrapped in double quotes, with " doubled to "" and \\ doubled to \\\\
- null fields are written as a fully empty span (no quotes at all)
"""

import logging
import os
import re
import tempfile
from collections.abc import Sequence

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def escape_field(value: str | None) -> str:
    if value is None:
        return ""
    return '"' + value.replace('"', '""').replace("\\", "\\\\") + '"'


def encode_row(values: Sequence[str | None]) -> str:
    return "\t".join(escape_field(value) for value in values) + "\n"


def sanitize_table_key(table_key: str) -> str:
    """Reduces a table key to characters that are safe to use in a filename"""
    return _UNSAFE_FILENAME_CHARS.sub("", table_key)


class TsvInfo:
    """
    Per-task, per-table accumulator: the staged file, a row count, and the accepted record IDs.

    Create these with TsvInfo.create(), which writes the header row right away.
    """

    def __init__(self, path: str, column_names: list[str], file):
        self.path = path
        self.column_names = list(column_names)
        self.line_count = 0
        self.record_ids: list[str] = []
        self._file = file

    @classmethod
    def create(cls, tmp_dir: str, table_key: str, column_names: list[str]) -> "TsvInfo":
        fd, path = tempfile.mkstemp(
            prefix=f"{sanitize_table_key(table_key)}.", suffix=".tsv", dir=tmp_dir
        )
        file = os.fdopen(fd, "w", encoding="utf8", newline="")
        file.write(encode_row(column_names))
        return cls(path, column_names, file)

    def write_row(self, values: Sequence[str | None], record_id: str | None) -> None:
        if len(values) != len(self.column_names):
            raise ValueError(
                f"Row has {len(values)} fields, but the table has {len(self.column_names)} columns"
            )
        self._file.write(encode_row(values))
        self.line_count += 1
        if record_id is not None:
            self.record_ids.append(record_id)

    def close(self) -> None:
        """Flushes and closes the staged file (it stays on disk until delete())"""
        if self._file and not self._file.closed:
            self._file.close()

    def delete(self) -> None:
        """Removes the staged file. Safe to call more than once."""
        self.close()
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError:
            logging.exception("Could not delete staged file %s", self.path)
