"""
Interfaces to the external systems that the exporter talks to.

The exporter never talks to the network directly, it only calls these.
Each call is a single bounded synchronous call; any retry policy belongs to the implementation.
See study_export.backends.local for file-backed implementations.
"""

from typing import Protocol

from study_export.columns import ColumnModel
from study_export.schemas import SchemaKey, Study, UploadSchema


class TableStore(Protocol):
    """The managed tabular data store that our tables live in"""

    def create_table_with_columns_and_acls(
        self,
        columns: list[ColumnModel],
        data_access_team_id: int | None,
        admin_principal_id: int | None,
        project_id: str,
        table_name: str,
    ) -> str:
        """Creates a table and returns its ID"""

    def get_column_models_for_table(self, table_id: str) -> list[ColumnModel]: ...

    def add_columns_to_table(self, table_id: str, columns: list[ColumnModel]) -> None: ...

    def upload_tsv_file_to_table(self, project_id: str, table_id: str, path: str) -> int:
        """Bulk-loads a staged TSV file and returns how many rows the store processed"""


class TableIdCache(Protocol):
    """The metadata-database map of logical table key -> backing table ID, shared across tasks"""

    def get_table_id(self, table_key: str) -> str | None: ...

    def set_table_id(self, table_key: str, table_id: str) -> str:
        """
        Stores the table ID only if the key is not already set.

        :returns: the ID that is cached after this call (which is the earlier ID, if we lost a race)
        """


class AttachmentStore(Protocol):
    """Object storage for file attachments and large text blobs"""

    def upload_attachment(self, project_id: str, source_ref: str) -> str:
        """Uploads an attachment (by ID or local path) and returns the new file handle ID"""

    def download_large_text(self, attachment_id: str) -> str: ...


class MetadataSource(Protocol):
    """Where study and schema metadata comes from"""

    def get_schema(self, request: dict, schema_key: SchemaKey) -> UploadSchema | None: ...

    def get_study(self, study_id: str) -> Study | None: ...

    def get_project_id_for_study(self, study_id: str) -> str: ...

    def get_data_access_team_id(self, study_id: str) -> int | None: ...

    def is_study_excluded(self, study_id: str) -> bool: ...
