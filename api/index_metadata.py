"""Index metadata discovery.

Reads Quickwit index configs to find the timestamp field of an index (or
of every index matching a pattern) and the output format its values come
back in.
"""

from __future__ import annotations

import json
import logging

import httpx
from pydantic import BaseModel, Field, ValidationError

import quickwit_connector
from config import QUICKWIT_URL

log = logging.getLogger(__name__)


class MetadataError(Exception):
    """Timestamp discovery failed; `status` is an HTTP-like code."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(str(self))

    def to_dict(self) -> dict:
        return {"message": self.message, "status": self.status}

    def __str__(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


# ── Index config models ───────────────────────────────────────────────


class FieldMappingEntry(BaseModel):
    name: str
    type: str = ""
    output_format: str | None = None
    field_mappings: list[FieldMappingEntry] | None = None


class DocMapping(BaseModel):
    timestamp_field: str = ""
    field_mappings: list[FieldMappingEntry] = Field(default_factory=list)


class IndexConfig(BaseModel):
    doc_mapping: DocMapping = Field(default_factory=DocMapping)


class IndexMetadata(BaseModel):
    index_config: IndexConfig = Field(default_factory=IndexConfig)


class TimestampFieldInfo(BaseModel):
    timestamp_field: str = ""
    timestamp_output_format: str = ""


# ── Mapping search ────────────────────────────────────────────────────


def find_timestamp_format(
    timestamp_field: str,
    mappings: list[FieldMappingEntry] | None,
    parent: str | None = None,
) -> str | None:
    """Output format of the datetime mapping whose full dotted path is `timestamp_field`."""
    for mapping in mappings or []:
        path = f"{parent}.{mapping.name}" if parent else mapping.name
        if (
            mapping.type == "datetime"
            and path == timestamp_field
            and mapping.output_format is not None
        ):
            return mapping.output_format
        if mapping.type == "object" and mapping.field_mappings:
            found = find_timestamp_format(timestamp_field, mapping.field_mappings, path)
            if found is not None:
                return found
    return None


def timestamp_info_of(metadata: IndexMetadata) -> TimestampFieldInfo:
    doc_mapping = metadata.index_config.doc_mapping
    return TimestampFieldInfo(
        timestamp_field=doc_mapping.timestamp_field,
        timestamp_output_format=find_timestamp_format(
            doc_mapping.timestamp_field, doc_mapping.field_mappings
        ) or "",
    )


def decode_timestamp_field_from_index_config(body: bytes | str) -> TimestampFieldInfo:
    try:
        metadata = IndexMetadata.model_validate_json(body)
    except ValidationError as e:
        log.error("Cannot decode index config: %s", e)
        raise MetadataError(500, f"Unmarshalling body error: err = {e}, body = {_text(body)}") from e
    return timestamp_info_of(metadata)


def decode_timestamp_field_from_index_configs(body: bytes | str) -> TimestampFieldInfo:
    """Timestamp info shared by every index config of a pattern listing.

    Raises MetadataError(400) when two indexes disagree on the field or its
    output format.
    """
    try:
        payload = json.loads(body)
        if not isinstance(payload, list):
            raise ValueError("expected a list of index metadata")
        configs = [IndexMetadata.model_validate(item) for item in payload]
    except (ValueError, ValidationError) as e:
        log.error("Cannot decode index configs: %s", e)
        raise MetadataError(500, f"Unmarshalling body error: err = {e}, body = {_text(body)}") from e

    reference: TimestampFieldInfo | None = None
    for metadata in configs:
        info = timestamp_info_of(metadata)
        if reference is None or not reference.timestamp_field:
            reference = info
            continue
        if info != reference:
            message = (
                "Index matching the pattern should have the same timestamp fields, "
                f"two found: {reference.timestamp_field} ({reference.timestamp_output_format}) "
                f"and {info.timestamp_field} ({info.timestamp_output_format})"
            )
            log.error(message)
            raise MetadataError(400, message)

    return reference or TimestampFieldInfo()


# ── Public API ────────────────────────────────────────────────────────


def get_timestamp_field_infos(
    index: str,
    base_url: str = QUICKWIT_URL,
    client: httpx.Client | None = None,
) -> TimestampFieldInfo:
    """Discover the timestamp field of an index id, pattern or comma list."""
    client = client or quickwit_connector._default_client
    base_url = base_url.rstrip("/")
    is_pattern = "*" in index or "," in index
    if is_pattern:
        url = f"{base_url}/indexes"
        params = {"index_id_patterns": index}
    else:
        url = f"{base_url}/indexes/{index}"
        params = None

    log.debug("Calling quickwit endpoint: %s", url)
    response = client.get(url, params=params)
    if not 200 <= response.status_code < 400:
        message = f"Error when calling url = {url}"
        log.error(message)
        raise MetadataError(response.status_code, message)

    if is_pattern:
        info = decode_timestamp_field_from_index_configs(response.content)
    else:
        info = decode_timestamp_field_from_index_config(response.content)
    log.info(
        "Found timestamp field %r (%s) for %s",
        info.timestamp_field, info.timestamp_output_format or "no output format", index,
    )
    return info


def _text(body: bytes | str) -> str:
    return body.decode(errors="replace") if isinstance(body, bytes) else body
