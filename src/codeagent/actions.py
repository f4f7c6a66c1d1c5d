"""Typed file operations proposed by the model.

An action is one of four variants discriminated on ``type``. Each variant
carries exactly the fields it needs: ``delete_file`` and ``create_folder``
have no ``content``.
"""

from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

CREATE_FILE = "create_file"
EDIT_FILE = "edit_file"
DELETE_FILE = "delete_file"
CREATE_FOLDER = "create_folder"

ACTION_TYPES = (CREATE_FILE, EDIT_FILE, DELETE_FILE, CREATE_FOLDER)
CONTENT_ACTIONS = (CREATE_FILE, EDIT_FILE)


class _ActionBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    path: str = Field(min_length=1)
    reason: str = ""
    dependencies: List[str] = Field(default_factory=list)

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        value = value.strip().replace("\\", "/")
        while value.startswith("./"):
            value = value[2:]
        if not value:
            raise ValueError("path must not be empty")
        return value

    @field_validator("reason", mode="before")
    @classmethod
    def _coerce_reason(cls, value):
        return "" if value is None else value

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class CreateFile(_ActionBase):
    type: Literal["create_file"] = CREATE_FILE
    content: str = Field(min_length=1)


class EditFile(_ActionBase):
    type: Literal["edit_file"] = EDIT_FILE
    content: str = Field(min_length=1)


class DeleteFile(_ActionBase):
    type: Literal["delete_file"] = DELETE_FILE


class CreateFolder(_ActionBase):
    type: Literal["create_folder"] = CREATE_FOLDER


AgentAction = Annotated[
    Union[CreateFile, EditFile, DeleteFile, CreateFolder],
    Field(discriminator="type"),
]


class AgentResponse(BaseModel):
    """The structured reply expected from the model."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    analysis: str = Field(min_length=1)
    actions: List[AgentAction]
    explanation: str = ""

    @field_validator("analysis")
    @classmethod
    def _analysis_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("analysis must not be empty")
        return value

    @field_validator("explanation", mode="before")
    @classmethod
    def _coerce_explanation(cls, value):
        return "" if value is None else value


def describe_action(action) -> str:
    """Human-readable one-liner for an action."""
    labels = {
        CREATE_FILE: "Created file",
        EDIT_FILE: "Modified file",
        DELETE_FILE: "Deleted file",
        CREATE_FOLDER: "Created folder",
    }
    label = labels.get(action.type)
    if label is None:
        return f"{action.type}: {action.path}"
    return f"{label}: {action.path}"
