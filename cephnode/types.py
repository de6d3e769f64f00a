"""Request and response records exchanged with the node daemon."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping


def _get_bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"field {key!r} must be a boolean, got {value!r}")
    return value


def _get_optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string, got {value!r}")
    return value


def _get_str(data: Mapping[str, Any], key: str) -> str:
    value = _get_optional_str(data, key)
    return "" if value is None else value


@dataclass
class ClientConfig:
    """A client configuration key, its value and the host it applies to."""

    key: str = ""
    value: str = ""
    host: str = ""
    wait: bool = False


@dataclass
class Config:
    """A cluster configuration key and value."""

    key: str = ""
    value: str = ""
    wait: bool = False


@dataclass
class DisksPost:
    """Parameters of a disk addition request."""

    path: list[str] = field(default_factory=list)
    wipe: bool = False
    encrypt: bool = False
    wal_dev: str | None = None
    wal_wipe: bool = False
    wal_encrypt: bool = False
    db_dev: str | None = None
    db_wipe: bool = False
    db_encrypt: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DisksPost":
        """Build a request from its decoded JSON form."""
        paths = data.get("path")
        if paths is None:
            paths = []
        if not isinstance(paths, list) or not all(isinstance(p, str) for p in paths):
            raise ValueError(f"field 'path' must be a list of strings, got {paths!r}")
        return cls(
            path=list(paths),
            wipe=_get_bool(data, "wipe"),
            encrypt=_get_bool(data, "encrypt"),
            wal_dev=_get_optional_str(data, "waldev"),
            wal_wipe=_get_bool(data, "walwipe"),
            wal_encrypt=_get_bool(data, "walencrypt"),
            db_dev=_get_optional_str(data, "dbdev"),
            db_wipe=_get_bool(data, "dbwipe"),
            db_encrypt=_get_bool(data, "dbencrypt"),
        )


@dataclass
class DiskAddReport:
    """Outcome of adding a single disk."""

    path: str = ""
    report: str = ""
    error: str = ""


@dataclass
class DiskAddResponse:
    """Outcome of a disk addition request."""

    validation_error: str = ""
    reports: list[DiskAddReport] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the response."""
        return {
            "validation_error": self.validation_error,
            "report": [
                {"path": r.path, "report": r.report, "error": r.error}
                for r in self.reports
            ]
            if self.reports
            else None,
        }


@dataclass
class DisksDelete:
    """Parameters of an OSD removal request."""

    osd: int = 0
    bypass_safety: bool = False
    confirm_downgrade: bool = False
    prohibit_crush_scaledown: bool = False
    timeout: int = 0


@dataclass
class Disk:
    """An OSD, its device path and the member hosting it."""

    osd: int = 0
    path: str = ""
    location: str = ""


@dataclass
class DiskParameter:
    """A device to turn into an OSD, with its preparation flags."""

    path: str = ""
    encrypt: bool = False
    wipe: bool = False
    loop_size: int = 0


@dataclass
class LogLevelPut:
    """A request to change the daemon log level."""

    level: str = ""


@dataclass
class PoolPut:
    """A request to change the replication factor of pools."""

    pools: list[str] = field(default_factory=list)
    size: int = 0


@dataclass
class Service:
    """A service and the member it runs on."""

    service: str = ""
    location: str = ""


@dataclass
class EnableService:
    """A request to place a service on a host.

    ``payload`` carries service specific data as a JSON string.
    """

    name: str = ""
    wait: bool = False
    payload: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EnableService":
        """Build a request from its decoded JSON form."""
        return cls(
            name=_get_str(data, "name"),
            wait=_get_bool(data, "bool"),
            payload=_get_str(data, "payload"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON form of the request."""
        return {"name": self.name, "bool": self.wait, "payload": self.payload}


@dataclass
class RGWService(Service):
    """The RADOS gateway service, with its port and state."""

    port: int = 0
    enabled: bool = False


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def parse_disks_post(body: str | bytes) -> DisksPost:
    """Parse a disk addition request body.

    Older clients send a single path string; it is wrapped in a list.
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid disk request body: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("disk request body must be a JSON object")
    paths = data.get("path")
    if not isinstance(paths, list):
        data = {**data, "path": [_as_text(paths)]}
    return DisksPost.from_dict(data)