"""Exception classes and error handling"""

import sys
from typing import NoReturn

import rich.console
import rich.padding

# Error return codes, mostly just distinguished for the benefit of tests.
# These start at 10 just to leave some room for future use.
ARGS_INVALID = 10
FOLDER_DOES_NOT_EXIST = 11
CONFIG_INVALID = 12
SCHEMA_NOT_FOUND = 13
STUDY_NOT_FOUND = 14
TABLE_COMMIT_FAILED = 15


class FatalError(Exception):
    """An unrecoverable error"""


class ConfigurationError(FatalError):
    """A study or schema we need is missing, detected before any record is processed"""

    def __init__(self, message: str, status: int = CONFIG_INVALID):
        super().__init__(message)
        self.status = status


class RecordContentError(ValueError):
    """
    A single record's payload could not be parsed.

    The message is the raw content that we choked on, so that it shows up as-is in logs.
    """


class TableCommitError(Exception):
    """Provisioning or uploading a table failed, for one table in one run"""

    def __init__(self, table_key: str, message: str):
        super().__init__(f"Could not commit table {table_key}: {message}")
        self.table_key = table_key


def fatal(message: str, status: int, extra: str = "") -> NoReturn:
    """Exits the program with a user-friendly error message and a test-friendly status code"""
    stderr = rich.console.Console(stderr=True)
    stderr.print(message, style="bold red", highlight=False)
    if extra:
        stderr.print(rich.padding.Padding.indent(extra, 2), highlight=False)
    sys.exit(status)  # raises a SystemExit exception
