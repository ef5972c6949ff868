"""
Template Schemas.

Pydantic models for template definitions read from JSON files.

A template is a declarative recipe for one data source:
    - Inputs: parameters the user can set per instance or per target
    - Execution: how to fetch (single request or a chain of steps),
      what to extract from the response, and how to transform it
    - Outputs: formatted renderings of the final variables

Template files use PascalCase keys. Every field carries a PascalCase
alias and the models accept either spelling:

    {
        "Id": "weather",
        "Meta": {"Name": "Weather", "Version": "1.0"},
        "Inputs": [{"Key": "city", "Label": "City", "DefaultValue": "Berlin"}],
        "Execution": {
            "Type": "api_json",
            "Url": "https://api.example.com/weather?q={{city}}",
            "Interval": 600000,
            "Extract": {"temp": "data.temp"}
        },
        "Outputs": [{"Key": "t", "Format": "{{temp}}°C", "Label": "{{city}} Temp"}]
    }
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

ExecutionType = Literal["api_json", "api_text", "chain"]
TransformFunction = Literal["regex_replace", "map"]
InputScope = Literal["global", "target"]


class _TemplateModel(BaseModel):
    """Shared model configuration for template documents."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        # Hand-written templates often carry explicit nulls for empty
        # maps and lists; let the field default apply instead.
        if value is None:
            field_info = cls.model_fields[info.field_name]
            if field_info.is_required():
                return value
            return field_info.get_default(call_default_factory=True)
        return value


class TemplateMeta(_TemplateModel):
    """Descriptive metadata shown in settings screens."""

    name: str = Field(default="", alias="Name")
    version: str = Field(default="", alias="Version")
    author: str = Field(default="", alias="Author")
    description: str = Field(default="", alias="Description")


class TemplateInput(_TemplateModel):
    """A user-editable parameter of a template."""

    key: str = Field(..., alias="Key")
    label: str = Field(default="", alias="Label")
    default_value: str = Field(default="", alias="DefaultValue")
    scope: InputScope = Field(default="global", alias="Scope")


class Transform(_TemplateModel):
    """
    A post-processing rule applied to the variable context.

    The source variable is `source_var` when set, otherwise `target_var`.
    """

    function: TransformFunction = Field(..., alias="Function")
    source_var: str = Field(default="", alias="SourceVar")
    target_var: str = Field(..., alias="TargetVar")
    pattern: str = Field(default="", alias="Pattern")
    to: str = Field(default="", alias="To")
    map: dict[str, str] = Field(default_factory=dict, alias="Map")

    @property
    def source(self) -> str:
        """Variable the transform reads from."""
        return self.source_var or self.target_var


class _RequestFields(_TemplateModel):
    """Fields shared by single-request executions and chain steps."""

    url: str = Field(default="", alias="Url")
    method: str = Field(default="GET", alias="Method")
    body: str = Field(default="", alias="Body")
    headers: dict[str, str] = Field(default_factory=dict, alias="Headers")
    extract: dict[str, str] = Field(default_factory=dict, alias="Extract")
    process: list[Transform] = Field(default_factory=list, alias="Process")

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        return "POST" if value.strip().upper() == "POST" else "GET"


class Step(_RequestFields):
    """One fetch + extract + transform unit of a chain execution."""

    id: str = Field(..., alias="Id")
    response_encoding: str = Field(default="utf8", alias="ResponseEncoding")
    response_format: str = Field(default="json", alias="ResponseFormat")
    cache_minutes: float = Field(default=0, alias="CacheMinutes")

    @field_validator("response_encoding", "response_format")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def produced_vars(self) -> list[str]:
        """Variables written by this step's Extract and Process rules."""
        names = list(self.extract)
        names.extend(t.target_var for t in self.process)
        return names


class Execution(_RequestFields):
    """How a template fetches its data."""

    type: ExecutionType = Field(default="api_json", alias="Type")
    interval: int = Field(default=60000, alias="Interval", description="Milliseconds")
    steps: list[Step] = Field(default_factory=list, alias="Steps")


class TemplateOutput(_TemplateModel):
    """A named, formatted rendering of the final variable context."""

    key: str = Field(..., alias="Key")
    format: str = Field(default="", alias="Format")
    label: str = Field(default="", alias="Label")
    short_label: str = Field(default="", alias="ShortLabel")
    unit: str = Field(default="", alias="Unit")


class Template(_TemplateModel):
    """A complete template definition (one JSON file)."""

    id: str = Field(..., min_length=1, alias="Id")
    meta: TemplateMeta = Field(default_factory=TemplateMeta, alias="Meta")
    inputs: list[TemplateInput] = Field(default_factory=list, alias="Inputs")
    execution: Execution = Field(default_factory=Execution, alias="Execution")
    outputs: list[TemplateOutput] = Field(default_factory=list, alias="Outputs")

    def default_inputs(self) -> dict[str, str]:
        """Default value of every declared input."""
        return {i.key: i.default_value for i in self.inputs}

    def label_pattern(self, output: TemplateOutput) -> str:
        """Label pattern for an output, falling back to '<name> <key>'."""
        return output.label or f"{self.meta.name} {output.key}"
