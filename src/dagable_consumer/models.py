"""Domain models for job requests, jobs and batches."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from dagable_consumer.errors import MessageDecodeError

_GRAPH_SETTINGS_FIELDS = (
    "MinLayer",
    "MaxLayer",
    "MinNodes",
    "MaxNodes",
    "MinComm",
    "MaxComm",
    "MinComp",
    "MaxComp",
    "MinProcessors",
    "MaxProcessors",
)


@dataclass(slots=True, frozen=True)
class GraphSettings:
    """Inclusive bounds controlling unit generation."""

    min_layer: int
    max_layer: int
    min_nodes: int
    max_nodes: int
    min_comm: int
    max_comm: int
    min_comp: int
    max_comp: int
    min_processors: int
    max_processors: int

    @classmethod
    def from_wire(cls, payload: object) -> GraphSettings:
        if not isinstance(payload, Mapping):
            raise MessageDecodeError("GraphSettings must be a JSON object.")
        values = {name: _require_int(payload, name, minimum=0) for name in _GRAPH_SETTINGS_FIELDS}
        settings = cls(
            min_layer=values["MinLayer"],
            max_layer=values["MaxLayer"],
            min_nodes=values["MinNodes"],
            max_nodes=values["MaxNodes"],
            min_comm=values["MinComm"],
            max_comm=values["MaxComm"],
            min_comp=values["MinComp"],
            max_comp=values["MaxComp"],
            min_processors=values["MinProcessors"],
            max_processors=values["MaxProcessors"],
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        pairs = (
            ("Layer", self.min_layer, self.max_layer),
            ("Nodes", self.min_nodes, self.max_nodes),
            ("Comm", self.min_comm, self.max_comm),
            ("Comp", self.min_comp, self.max_comp),
            ("Processors", self.min_processors, self.max_processors),
        )
        for name, low, high in pairs:
            if low > high:
                raise MessageDecodeError(f"Min{name} ({low}) must not exceed Max{name} ({high}).")

    def to_wire(self) -> dict[str, int]:
        return {
            "MinLayer": self.min_layer,
            "MaxLayer": self.max_layer,
            "MinNodes": self.min_nodes,
            "MaxNodes": self.max_nodes,
            "MinComm": self.min_comm,
            "MaxComm": self.max_comm,
            "MinComp": self.min_comp,
            "MaxComp": self.max_comp,
            "MinProcessors": self.min_processors,
            "MaxProcessors": self.max_processors,
        }


@dataclass(slots=True, frozen=True)
class JobRequest:
    """Inbound job request decoded from a queue message."""

    request_guid: str
    user_guid: str
    graph_count: int
    include_cp: bool
    graph_settings: GraphSettings

    @classmethod
    def from_message(cls, body: bytes | str | Mapping[str, Any]) -> JobRequest:
        """Decode a raw or pre-parsed message body; raise `MessageDecodeError` if invalid."""

        payload: object = body
        if isinstance(body, (bytes, bytearray)):
            try:
                payload = body.decode("utf-8")
            except UnicodeDecodeError as error:
                raise MessageDecodeError(f"Message body is not UTF-8: {error}") from error
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as error:
                raise MessageDecodeError(f"Message body is not valid JSON: {error}") from error
        if not isinstance(payload, Mapping):
            raise MessageDecodeError("Message body must be a JSON object.")

        include_cp = payload.get("IncludeCP", False)
        if not isinstance(include_cp, bool):
            raise MessageDecodeError("IncludeCP must be a boolean.")
        return cls(
            request_guid=_require_guid(payload, "RequestGuid"),
            user_guid=_require_guid(payload, "UserGuid"),
            graph_count=_require_int(payload, "GraphCount", minimum=0),
            include_cp=include_cp,
            graph_settings=GraphSettings.from_wire(payload.get("GraphSettings")),
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "RequestGuid": self.request_guid,
            "UserGuid": self.user_guid,
            "GraphCount": self.graph_count,
            "IncludeCP": self.include_cp,
            "GraphSettings": self.graph_settings.to_wire(),
        }


@dataclass(slots=True)
class JobCreate:
    """Input payload for upserting a job by request id."""

    request_guid: str
    user_guid: str
    total_graphs: int


@dataclass(slots=True)
class JobView:
    """Readable job view for orchestrator and CLI."""

    id: int
    request_guid: str
    user_guid: str
    total_graphs: int
    completed_graphs: int
    created_at: datetime


@dataclass(slots=True)
class JobUpsertResult:
    job: JobView
    reset: bool
    deleted_batches: int = 0


@dataclass(slots=True)
class BatchWrite:
    """Input payload for upserting a batch by (job id, batch number)."""

    job_id: int
    batch_number: int
    compressed_data: bytes


@dataclass(slots=True)
class BatchView:
    id: int
    job_id: int
    batch_number: int
    compressed_data: bytes
    created_at: datetime


def _require_guid(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str):
        raise MessageDecodeError(f"{name} must be a GUID string.")
    try:
        return str(UUID(value))
    except ValueError as error:
        raise MessageDecodeError(f"{name} is not a valid GUID: {value!r}") from error


def _require_int(payload: Mapping[str, Any], name: str, *, minimum: int) -> int:
    value = payload.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MessageDecodeError(f"{name} must be an integer.")
    if value < minimum:
        raise MessageDecodeError(f"{name} must be >= {minimum}, got {value}.")
    return value
