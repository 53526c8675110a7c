"""The command line interface to study-export"""

import argparse
import datetime
import logging
import sys
import tempfile
from collections.abc import Iterator

import rich
import rich.logging
import rich.table

import study_export
from study_export import cli_utils, common, errors, pipeline, store
from study_export.backends import (
    FolderMetadataSource,
    JsonTableIdCache,
    LocalAttachmentStore,
    LocalTableStore,
)
from study_export.config import ExportContext, ExporterConfig
from study_export.schemas import SchemaKey
from study_export.worker import ExportSubtask, ExportTask

###############################################################################
#
# Input records
#
###############################################################################


def read_subtasks(root_input: store.Root, task: ExportTask) -> Iterator[ExportSubtask]:
    """
    Yields one subtask per record line found in INPUT/records/*.ndjson.

    Each line holds the record metadata, plus "studyId", an optional "schemaKey", and "data".
    """
    for path in common.ls_ndjson(root_input, root_input.joinpath("records")):
        for line in common.read_ndjson(root_input, path):
            if not isinstance(line, dict):
                logging.warning("Skipping non-object record in %s.", path)
                continue
            record = dict(line)
            study_id = record.pop("studyId", None)
            schema_key = record.pop("schemaKey", None)
            data = record.pop("data", None)

            if not study_id:
                logging.warning("Skipping record %s in %s: no studyId.", record.get("id"), path)
                continue

            yield ExportSubtask(
                task,
                record,
                data,
                study_id,
                SchemaKey.from_json(schema_key) if schema_key else None,
            )


def make_context(
    config: ExporterConfig, root_input: store.Root, root_output: store.Root
) -> ExportContext:
    """Wires up the file-backed clients for a local export"""
    return ExportContext(
        config=config,
        table_store=LocalTableStore(store.Root(root_output.joinpath("tables"), create=True)),
        table_id_cache=JsonTableIdCache(root_output.joinpath("table_ids.json")),
        attachments=LocalAttachmentStore(
            store.Root(root_input.joinpath("attachments")),
            store.Root(root_output.joinpath("file_handles"), create=True),
        ),
        metadata=FolderMetadataSource(root_input),
    )


###############################################################################
#
# Reporting
#
###############################################################################


def print_config(
    args: argparse.Namespace, job_datetime: datetime.datetime, export_date: datetime.date
) -> None:
    """Prints the export configuration to the console."""
    common.print_header("Configuration:")
    table = rich.table.Table("", rich.table.Column(overflow="fold"), box=None, show_header=False)
    table.add_row("Input path:", args.dir_input)
    table.add_row("Output path:", args.dir_output)
    if args.config:
        table.add_row("Config file:", args.config)
    table.add_row("Export date:", export_date.isoformat())
    table.add_row("Current time:", f"{common.timestamp_datetime(job_datetime)} UTC")
    rich.get_console().print(table)


def print_summaries(summaries: list[pipeline.TableSummary]) -> None:
    table = rich.table.Table("Table", "Attempted", "Exported", "Uploaded", "Status")
    for summary in summaries:
        if summary.commit_failed:
            status = "[red]commit failed"
        elif summary.had_errors:
            status = "[yellow]some records failed"
        else:
            status = "[green]ok"
        table.add_row(
            summary.label,
            f"{summary.attempt:,}",
            f"{summary.success:,}",
            f"{summary.uploaded:,}",
            status,
        )
    rich.get_console().print(table)


def write_summary(
    root_output: store.Root,
    job_datetime: datetime.datetime,
    task: ExportTask,
    summaries: list[pipeline.TableSummary],
) -> str:
    job_dir = root_output.joinpath("JobConfig", common.timestamp_filename(job_datetime))
    root_output.makedirs(job_dir)
    path = f"{job_dir}/summary.json"
    common.write_json(
        path,
        {
            "exportDate": task.exporter_date.isoformat(),
            "timestamp": common.timestamp_datetime(job_datetime),
            "tables": [summary.as_json() for summary in summaries],
            "metrics": task.metrics.as_json(),
        },
        indent=4,
    )
    return path


###############################################################################
#
# Main
#
###############################################################################


def define_export_parser(parser: argparse.ArgumentParser) -> None:
    parser.usage = "%(prog)s [OPTION]... INPUT OUTPUT"
    parser.description = "Export health study records into tables."

    parser.add_argument("dir_input", metavar="/path/to/input")
    parser.add_argument("dir_output", metavar="/path/to/output")
    parser.add_argument(
        "--version", action="version", version=f"study-export {study_export.__version__}"
    )
    parser.add_argument("--config", metavar="PATH", help="exporter config file (JSON)")
    parser.add_argument(
        "--export-date",
        metavar="YYYY-MM-DD",
        help="upload date to stamp on every row (default is today)",
    )

    cli_utils.add_aws(parser)


def export_main(args: argparse.Namespace) -> None:
    # record filesystem options like --s3-region before creating Roots
    store.set_user_fs_options(vars(args))

    root_input = store.Root(args.dir_input)
    cli_utils.confirm_dir_exists(root_input)
    root_output = store.Root(args.dir_output, create=True)

    job_datetime = common.datetime_now()  # grab timestamp before we do anything
    export_date = cli_utils.parse_export_date(args.export_date)
    config = ExporterConfig.load(args.config)

    print_config(args, job_datetime, export_date)
    common.print_header()

    context = make_context(config, root_input, root_output)
    request = {"inputPath": root_input.path, "exportDate": export_date.isoformat()}

    with ExportTask(export_date, request=request) as task:
        subtasks = list(read_subtasks(root_input, task))

        with cli_utils.make_progress_bar() as progress:
            progress_task = progress.add_task("Exporting records", total=len(subtasks))
            try:
                summaries = pipeline.export_records(
                    context,
                    task,
                    subtasks,
                    progress_callback=lambda: progress.update(progress_task, advance=1),
                )
            except errors.ConfigurationError as exc:
                errors.fatal(str(exc), exc.status)

        write_summary(root_output, job_datetime, task, summaries)

    print_summaries(summaries)

    # Flag final status to user
    common.print_header()
    if any(s.commit_failed for s in summaries):
        print("🚨 One or more tables could not be committed! 🚨", file=sys.stderr)
        raise SystemExit(errors.TABLE_COMMIT_FAILED)
    elif any(s.had_errors for s in summaries):
        print("Export finished, but some records could not be exported.", file=sys.stderr)
    else:
        print("⭐ All tables exported successfully! ⭐", file=sys.stderr)


def main(argv: list[str]) -> None:
    # RichHandler plays nicer with our progress bars than the default handler does.
    # But turn off all the complex bits - we just want the message.
    logging.basicConfig(
        format="%(message)s",
        handlers=[rich.logging.RichHandler(show_time=False, show_level=False, show_path=False)],
    )

    parser = argparse.ArgumentParser(prog="study-export")
    define_export_parser(parser)
    args = parser.parse_args(argv)

    with tempfile.TemporaryDirectory() as tempdir:
        common.set_global_temp_dir(tempdir)
        export_main(args)


def main_cli():
    main(sys.argv[1:])  # pragma: no cover


if __name__ == "__main__":
    main_cli()  # pragma: no cover
