"""
File-backed implementations of the external systems the exporter talks to.

These are useful for trying out an export without any cloud services, and for testing.
Layouts:
- table store:      <root>/<table id>/table.json + rows.NNN.tsv
- table ID cache:   a single JSON file of {table key: table id}
- attachments:      read from <source>/<attachment id>, written to <target>/<project>/<handle>
- metadata:         <root>/studies.json + <root>/schemas/*.json
"""

import csv
import hashlib
import logging
import os
import posixpath
import threading
import uuid

from study_export import common, store
from study_export.columns import ColumnModel
from study_export.schemas import SchemaKey, Study, UploadSchema


class LocalTableStore:
    """Keeps each table as a folder of uploaded TSV files plus a JSON description"""

    def __init__(self, root: store.Root):
        self.root = root
        self.root.makedirs(self.root.path)

    def _table_path(self, table_id: str) -> str:
        return self.root.joinpath(table_id, "table.json")

    def _read_table(self, table_id: str) -> dict:
        return common.read_json(self._table_path(table_id))

    def create_table_with_columns_and_acls(
        self,
        columns: list[ColumnModel],
        data_access_team_id: int | None,
        admin_principal_id: int | None,
        project_id: str,
        table_name: str,
    ) -> str:
        table_id = f"table-{uuid.uuid4().hex[:12]}"
        acls = []
        if data_access_team_id is not None:
            acls.append({"principalId": data_access_team_id, "access": "read"})
        if admin_principal_id is not None:
            acls.append({"principalId": admin_principal_id, "access": "admin"})

        self.root.makedirs(self.root.joinpath(table_id))
        common.write_json(
            self._table_path(table_id),
            {
                "name": table_name,
                "projectId": project_id,
                "acls": acls,
                "columns": [column.as_json() for column in columns],
                "uploads": 0,
            },
            indent=2,
        )
        logging.info("Created table %s for %s", table_id, table_name)
        return table_id

    def get_column_models_for_table(self, table_id: str) -> list[ColumnModel]:
        return [ColumnModel.from_json(x) for x in self._read_table(table_id)["columns"]]

    def add_columns_to_table(self, table_id: str, columns: list[ColumnModel]) -> None:
        table = self._read_table(table_id)
        table["columns"].extend(column.as_json() for column in columns)
        common.write_json(self._table_path(table_id), table, indent=2)

    def upload_tsv_file_to_table(self, project_id: str, table_id: str, path: str) -> int:
        table = self._read_table(table_id)
        if table["projectId"] != project_id:
            raise ValueError(f"Table {table_id} is not in project {project_id}")

        with open(path, encoding="utf8", newline="") as f:
            reader = csv.reader(f, delimiter="\t", quotechar='"', escapechar="\\", doublequote=True)
            header = next(reader, [])
            row_count = sum(1 for _ in reader)

        known_columns = {column["name"] for column in table["columns"]}
        if unknown := set(header) - known_columns:
            raise ValueError(f"Table {table_id} has no columns named {', '.join(sorted(unknown))}")

        self.root.put(path, self.root.joinpath(table_id, f"rows.{table['uploads']:03}.tsv"))
        table["uploads"] += 1
        common.write_json(self._table_path(table_id), table, indent=2)
        return row_count


class JsonTableIdCache:
    """
    Maps table keys to table IDs in a single JSON file.

    Writes are set-if-absent, guarded by a lock. That only protects against other threads in
    this process, which is enough for local use.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        try:
            return common.read_json(self.path)
        except FileNotFoundError:
            return {}

    def get_table_id(self, table_key: str) -> str | None:
        return self._read().get(table_key)

    def set_table_id(self, table_key: str, table_id: str) -> str:
        with self._lock:
            table_ids = self._read()
            if existing := table_ids.get(table_key):
                return existing
            table_ids[table_key] = table_id
            common.write_json(self.path, table_ids, indent=2)
            return table_id


class LocalAttachmentStore:
    """Copies attachments from a source folder into a folder of content-addressed file handles"""

    def __init__(self, source: store.Root, target: store.Root):
        self.source = source
        self.target = target

    def _source_path(self, source_ref: str) -> str:
        """
        Resolves an attachment reference to a readable path.

        Absolute paths are only allowed inside our own scratch space, where generated text lives.
        Anything else is an attachment ID and must stay inside the source folder.
        """
        if os.path.isabs(source_ref):
            scratch = os.path.realpath(common.get_temp_dir("tasks"))
            path = os.path.realpath(source_ref)
            if os.path.commonpath([scratch, path]) != scratch:
                raise ValueError(f"Attachment path {source_ref} is outside of the scratch folder")
            return path

        normalized = posixpath.normpath(source_ref.replace("\\", "/"))
        if normalized == ".." or normalized.startswith("../") or normalized.startswith("/"):
            raise ValueError(f"Attachment ID {source_ref} is outside of the attachment folder")
        return self.source.joinpath(normalized)

    def _read_source(self, source_ref: str) -> bytes:
        path = self._source_path(source_ref)
        fs = store.Root(path).fs
        with fs.open(path, "rb") as f:
            return f.read()

    def upload_attachment(self, project_id: str, source_ref: str) -> str:
        content = self._read_source(source_ref)
        file_handle_id = "fh-" + hashlib.sha256(content).hexdigest()[:16]

        folder = self.target.joinpath(project_id)
        self.target.makedirs(folder)
        with self.target.fs.open(os.path.join(folder, file_handle_id), "wb") as f:
            f.write(content)

        return file_handle_id

    def download_large_text(self, attachment_id: str) -> str:
        return common.read_text(self._source_path(attachment_id))


class FolderMetadataSource:
    """Reads study settings from studies.json and upload schemas from schemas/*.json"""

    def __init__(self, root: store.Root):
        self.root = root
        self._studies: dict[str, Study] | None = None
        self._schemas: dict[SchemaKey, UploadSchema] | None = None

    def _load_studies(self) -> dict[str, Study]:
        if self._studies is None:
            try:
                studies = common.read_json(self.root.joinpath("studies.json"))
            except FileNotFoundError:
                studies = []
            self._studies = {}
            for study_json in studies:
                study = Study.model_validate(study_json)
                self._studies[study.identifier] = study
        return self._studies

    def _load_schemas(self) -> dict[SchemaKey, UploadSchema]:
        if self._schemas is None:
            self._schemas = {}
            schema_dir = self.root.joinpath("schemas")
            paths = self.root.ls(schema_dir) if self.root.exists(schema_dir) else []
            for path in sorted(paths):
                if path.endswith(".json"):
                    schema = UploadSchema.model_validate(common.read_json(path))
                    self._schemas[schema.key] = schema
        return self._schemas

    def get_schema(self, request: dict, schema_key: SchemaKey) -> UploadSchema | None:
        del request
        return self._load_schemas().get(schema_key)

    def get_study(self, study_id: str) -> Study | None:
        return self._load_studies().get(study_id)

    def get_project_id_for_study(self, study_id: str) -> str:
        study = self.get_study(study_id)
        return (study and study.synapse_project_id) or study_id

    def get_data_access_team_id(self, study_id: str) -> int | None:
        study = self.get_study(study_id)
        return study and study.synapse_data_access_team_id

    def is_study_excluded(self, study_id: str) -> bool:
        study = self.get_study(study_id)
        return bool(study and study.study_id_excluded_in_export)
