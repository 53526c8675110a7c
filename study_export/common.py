"""Utility methods"""

import contextlib
import datetime
import json
import logging
import os
import re
from collections.abc import Iterator
from typing import Any, TextIO

import inscriptis
import rich

from study_export import store

###############################################################################
#
# Helper Functions: temporary dir handling
#
###############################################################################

_temp_dir: str | None = None


def set_global_temp_dir(path: str) -> None:
    global _temp_dir
    _temp_dir = path


def get_temp_dir(subdir: str) -> str:
    """
    Use to access a specific subdir of the exporter's temporary directory.

    This directory is guaranteed to exist and to be removed when the exporter stops running.

    Each export task makes its own private scratch folder inside of this one.

    :returns: an absolute path to a temporary folder
    """
    if not _temp_dir:
        raise ValueError("No temporary directory was created yet")

    full_path = os.path.join(_temp_dir, subdir)
    os.makedirs(full_path, mode=0o700, exist_ok=True)

    return full_path


###############################################################################
#
# Helper Functions: reading/writing files
#
###############################################################################


@contextlib.contextmanager
def _atomic_open(path: str, mode: str, **kwargs) -> TextIO:
    """A version of open() that handles atomic file access across many filesystems (like S3)"""
    root = store.Root(path)

    with contextlib.ExitStack() as stack:
        if "w" in mode:
            # fsspec is atomic per-transaction.
            # If an error occurs inside the transaction, partial writes will be discarded.
            stack.enter_context(root.fs.transaction)

        yield stack.enter_context(root.fs.open(path, mode=mode, encoding="utf8", **kwargs))


def read_text(path: str) -> str:
    logging.debug("read_text() %s", path)

    with _atomic_open(path, "r") as f:
        return f.read()


def write_text(path: str, text: str) -> None:
    logging.debug("write_text() %s", path)

    with _atomic_open(path, "w") as f:
        f.write(text)


def read_json(path: str) -> Any:
    """
    Reads json from a file
    :param path: filesystem path
    :return: the parsed json structure
    """
    logging.debug("read_json() %s", path)

    with _atomic_open(path, "r") as f:
        return json.load(f)


def write_json(path: str, data: Any, indent: int | None = None) -> None:
    """
    Writes data to the given path, in json format
    :param path: filesystem path
    :param data: the structure to write to disk
    :param indent: whether and how much to indent the output
    """
    logging.debug("write_json() %s", path)

    with _atomic_open(path, "w") as f:
        json.dump(data, f, indent=indent)


def read_ndjson(root: store.Root, path: str) -> Iterator[Any]:
    """
    Yields parsed json from the input ndjson file, line-by-line.

    Blank lines are skipped. So are lines that aren't valid json, with a warning.
    """
    with root.fs.open(path, "r", encoding="utf8") as f:
        for line_num, line in enumerate(f, start=1):
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as exc:
                logging.warning("Skipping unreadable line %d in %s: %s", line_num, path, exc)


def ls_ndjson(root: store.Root, folder: str) -> list[str]:
    """Lists all .ndjson files in a folder, in a stable order"""
    try:
        paths = root.ls(folder)
    except FileNotFoundError:
        return []
    return sorted(path for path in paths if path.endswith(".ndjson"))


###############################################################################
#
# Helper Functions: text
#
###############################################################################


def strip_html(text: str) -> str:
    """Removes any markup from user-provided text, leaving only the plain text behind"""
    return inscriptis.get_text(text).strip()


def print_header(name: str | None = None) -> None:
    """Prints a section break to the console, with a name for the user"""
    rich.get_console().rule()
    if name:
        print(name)


###############################################################################
#
# Helper Functions: date and time
#
###############################################################################

# Python's fromisoformat() wants colons in offsets, but our inputs often look like "+0900"
_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def datetime_now(local: bool = False) -> datetime.datetime:
    """
    Current date and time.

    The returned datetime is always 'aware' (not 'naive').

    :param local: whether to use local timezone or (if False) UTC
    """
    now = datetime.datetime.now(datetime.timezone.utc)
    if local:
        now = now.astimezone()
    return now


def parse_datetime(value: str) -> datetime.datetime:
    """
    Parses an ISO 8601 timestamp, keeping its original offset.

    Timestamps without any offset are assumed to be UTC.

    :raises ValueError: if the value is not a timestamp
    """
    value = _COMPACT_OFFSET.sub(r"\1:\2", value.strip())
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def epoch_millis(time: datetime.datetime) -> int:
    """Milliseconds since the epoch, which is how the table store wants DATE columns"""
    return int(time.timestamp() * 1000)


def utc_offset_string(time: datetime.datetime) -> str:
    """Formats the offset of an aware datetime like +0900 or -0730"""
    return time.strftime("%z") or "+0000"


def timestamp_datetime(time: datetime.datetime | None = None) -> str:
    """
    Human-readable UTC date and time
    :return: YYYY-MM-DD hh:mm:ss
    """
    time = time or datetime_now()
    return time.strftime("%Y-%m-%d %H:%M:%S")


def timestamp_filename(time: datetime.datetime | None = None) -> str:
    """
    Human-readable UTC date and time suitable for a filesystem path

    :return: YYYY-MM-DD__hh.mm.ss
    """
    time = time or datetime_now()
    return time.strftime("%Y-%m-%d__%H.%M.%S")
