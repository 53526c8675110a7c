"""Study and upload schema metadata, as handed to us by the metadata source"""

import dataclasses
import enum

import pydantic


class FieldType(enum.Enum):
    """Declared type of a single schema field"""

    STRING = "STRING"
    INT = "INT"
    FLOAT = "FLOAT"
    BOOLEAN = "BOOLEAN"
    CALENDAR_DATE = "CALENDAR_DATE"
    TIMESTAMP = "TIMESTAMP"
    SINGLE_CHOICE = "SINGLE_CHOICE"
    MULTI_CHOICE = "MULTI_CHOICE"
    ATTACHMENT = "ATTACHMENT"
    LARGE_TEXT_ATTACHMENT = "LARGE_TEXT_ATTACHMENT"
    # Anything we don't recognize. It still gets a column, but that column is always empty.
    UNSUPPORTED = "UNSUPPORTED"


@dataclasses.dataclass(frozen=True)
class SchemaKey:
    """Identifies one revision of one schema in one study"""

    study_id: str
    schema_id: str
    revision: int

    def __str__(self) -> str:
        return f"{self.study_id}-{self.schema_id}-v{self.revision}"

    def as_json(self) -> dict:
        return {"studyId": self.study_id, "schemaId": self.schema_id, "revision": self.revision}

    @classmethod
    def from_json(cls, data: dict) -> "SchemaKey":
        return cls(data["studyId"], data["schemaId"], int(data["revision"]))


class FieldDefinition(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True, frozen=True)

    name: str
    field_type: FieldType = pydantic.Field(alias="type")
    max_length: int | None = pydantic.Field(default=None, alias="maxLength")
    unbounded_text: bool = pydantic.Field(default=False, alias="unboundedText")
    multi_choice_answer_list: tuple[str, ...] = pydantic.Field(
        default=(), alias="multiChoiceAnswerList"
    )
    allow_other_choices: bool = pydantic.Field(default=False, alias="allowOtherChoices")

    @pydantic.field_validator("field_type", mode="before")
    @classmethod
    def _unknown_types_are_unsupported(cls, value):
        if isinstance(value, FieldType):
            return value
        try:
            return FieldType(str(value).upper())
        except ValueError:
            return FieldType.UNSUPPORTED


class UploadSchema(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(populate_by_name=True)

    study_id: str = pydantic.Field(alias="studyId")
    schema_id: str = pydantic.Field(alias="schemaId")
    revision: int
    field_definitions: list[FieldDefinition] = pydantic.Field(
        default_factory=list, alias="fieldDefinitions"
    )

    @property
    def key(self) -> SchemaKey:
        return SchemaKey(self.study_id, self.schema_id, self.revision)


class Study(pydantic.BaseModel):
    """Per-study export settings"""

    model_config = pydantic.ConfigDict(populate_by_name=True)

    identifier: str
    synapse_project_id: str | None = pydantic.Field(default=None, alias="synapseProjectId")
    synapse_data_access_team_id: int | None = pydantic.Field(
        default=None, alias="synapseDataAccessTeamId"
    )
    study_id_excluded_in_export: bool = pydantic.Field(
        default=False, alias="studyIdExcludedInExport"
    )
