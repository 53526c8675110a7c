"""Helper methods for CLI parsing."""

import argparse
import datetime

import rich.progress

from study_export import common, errors, store


def add_aws(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("AWS")
    group.add_argument(
        "--s3-region",
        metavar="REGION",
        help="if using S3 paths (s3://...), this is their region (default is us-east-1)",
    )
    group.add_argument(
        "--s3-kms-key",
        metavar="KEY",
        help="if using S3 paths (s3://...), this is the KMS key ID to use",
    )


def parse_export_date(arg: str | None) -> datetime.date:
    """Turns an --export-date argument into a date (defaulting to today, in UTC)"""
    if not arg:
        return common.datetime_now().date()

    try:
        return datetime.date.fromisoformat(arg)
    except ValueError:
        errors.fatal(f"Invalid export date '{arg}', expected YYYY-MM-DD.", errors.ARGS_INVALID)


def confirm_dir_exists(root: store.Root) -> None:
    """Errors out if the folder does not exist"""
    if not root.exists(root.path):
        errors.fatal(f"The folder '{root.path}' does not exist.", errors.FOLDER_DOES_NOT_EXIST)


def make_progress_bar() -> rich.progress.Progress:
    # Elapsed time is more honest than the default time-remaining estimate
    columns = [
        rich.progress.TextColumn("[progress.description]{task.description}"),
        rich.progress.BarColumn(),
        rich.progress.TaskProgressColumn(),
        rich.progress.TimeElapsedColumn(),
    ]
    return rich.progress.Progress(*columns)
