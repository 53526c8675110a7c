"""Table column descriptors, and the common columns that every exported table starts with"""

import dataclasses
import enum
from collections.abc import Iterable

import pydantic


class ColumnType(enum.Enum):
    """Column types that the table store understands"""

    STRING = "STRING"
    INTEGER = "INTEGER"
    DOUBLE = "DOUBLE"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    FILEHANDLEID = "FILEHANDLEID"
    LARGETEXT = "LARGETEXT"


@dataclasses.dataclass(frozen=True)
class ColumnModel:
    """One column of a backing table, as the table store describes it"""

    name: str
    column_type: ColumnType
    maximum_size: int | None = None

    def as_json(self) -> dict:
        return {
            "name": self.name,
            "columnType": self.column_type.value,
            "maximumSize": self.maximum_size,
        }

    @classmethod
    def from_json(cls, data: dict) -> "ColumnModel":
        return cls(data["name"], ColumnType(data["columnType"]), data.get("maximumSize"))


class TransferMethod(enum.Enum):
    """How a common column's source value gets flattened into a single table cell"""

    STRING = "STRING"
    STRING_SET = "STRING_SET"  # sorted, comma-joined
    STRING_MAP = "STRING_MAP"  # |k1=v1|k2=v2|
    DATE = "DATE"  # epoch milliseconds

    def column_type(self) -> ColumnType:
        return ColumnType.DATE if self == TransferMethod.DATE else ColumnType.STRING


class ColumnDefinition(pydantic.BaseModel):
    """
    A deployment-wide description of one common column.

    These are read from exporter configuration and apply identically to every table.
    """

    model_config = pydantic.ConfigDict(populate_by_name=True, frozen=True)

    name: str
    # name of the field in the record metadata (defaults to name)
    ddb_name: str | None = pydantic.Field(default=None, alias="ddbName")
    maximum_size: int | None = pydantic.Field(default=None, alias="maximumSize")
    transfer_method: TransferMethod = pydantic.Field(alias="transferMethod")
    # whether to strip markup from the value (for user-entered values like external IDs)
    sanitize: bool = False

    @property
    def source_name(self) -> str:
        return self.ddb_name or self.name

    def to_column_model(self) -> ColumnModel:
        return ColumnModel(self.name, self.transfer_method.column_type(), self.maximum_size)


DEFAULT_COLUMN_DEFINITIONS = (
    ColumnDefinition(name="healthCode", maximum_size=36, transfer_method=TransferMethod.STRING),
    ColumnDefinition(
        name="externalId",
        ddb_name="userExternalId",
        maximum_size=128,
        transfer_method=TransferMethod.STRING,
        sanitize=True,
    ),
    ColumnDefinition(
        name="dataGroups",
        ddb_name="userDataGroups",
        maximum_size=100,
        transfer_method=TransferMethod.STRING_SET,
    ),
    ColumnDefinition(
        name="substudyMemberships",
        ddb_name="userSubstudyMemberships",
        maximum_size=250,
        transfer_method=TransferMethod.STRING_MAP,
    ),
    ColumnDefinition(name="createdOn", transfer_method=TransferMethod.DATE),
    ColumnDefinition(
        name="userSharingScope", maximum_size=48, transfer_method=TransferMethod.STRING
    ),
)

# These always lead every table, ahead of the configured column definitions
FIXED_COMMON_COLUMNS = (
    ColumnModel("recordId", ColumnType.STRING, 36),
    ColumnModel("appVersion", ColumnType.STRING, 48),
    ColumnModel("phoneInfo", ColumnType.STRING, 48),
    ColumnModel("uploadDate", ColumnType.STRING, 10),
)


def common_columns(column_definitions: Iterable[ColumnDefinition]) -> list[ColumnModel]:
    """All columns that precede the handler-specific columns, in order"""
    return [*FIXED_COMMON_COLUMNS, *(x.to_column_model() for x in column_definitions)]
