"""Result frame models: the typed tables returned for each query."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from parse_time import datetime_to_ns

TIME_SERIES_TIME_FIELD = "Time"
TIME_SERIES_VALUE_FIELD = "Value"
VIS_TYPE_LOGS = "logs"


class FieldType(str, Enum):
    time = "time"
    number = "number"
    string = "string"
    boolean = "boolean"
    json = "json"


class FieldConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filterable: bool | None = None
    display_name_from_ds: str | None = Field(default=None, alias="displayNameFromDS")


class FrameField(BaseModel):
    name: str
    type: FieldType
    values: list[Any] = Field(default_factory=list)
    labels: dict[str, str] = Field(default_factory=dict)
    config: FieldConfig | None = None

    @field_serializer("values")
    def _serialize_values(self, values: list[Any]) -> list[Any]:
        # Time columns travel as epoch milliseconds
        if self.type != FieldType.time:
            return values
        return [
            datetime_to_ns(v) // 1_000_000 if isinstance(v, datetime) else v
            for v in values
        ]


class FrameMeta(BaseModel):
    preferred_visualisation_type: str | None = None
    custom: dict[str, Any] = Field(default_factory=dict)


class Frame(BaseModel):
    name: str = ""
    fields: list[FrameField] = Field(default_factory=list)
    meta: FrameMeta | None = None

    def row_count(self) -> int:
        return len(self.fields[0].values) if self.fields else 0

    def field(self, name: str) -> FrameField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


class QueryResult(BaseModel):
    """Outcome of one query: frames, or an error with an HTTP-like status."""

    frames: list[Frame] = Field(default_factory=list)
    error: str | None = None
    status: int | None = None


def time_series_frame(
    times: list[datetime],
    values: list[float | None],
    labels: dict[str, str],
    display_name: str,
) -> Frame:
    return Frame(fields=[
        FrameField(name=TIME_SERIES_TIME_FIELD, type=FieldType.time, values=times),
        FrameField(
            name=TIME_SERIES_VALUE_FIELD,
            type=FieldType.number,
            values=values,
            labels=dict(labels),
            config=FieldConfig(display_name_from_ds=display_name),
        ),
    ])
