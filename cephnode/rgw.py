"""Enabling and disabling the RADOS gateway on a member."""

from __future__ import annotations

import os
from typing import Sequence

from .cluster import ClusterError, ClusterState, Paths
from .configwriter import radosgw_config
from .keyring import gen_auth
from .runner import CommandError, snap_start, snap_stop

_KEYRING_LINK = "ceph.client.radosgw.gateway.keyring"
_GATEWAY_DIR = ("radosgw", "ceph-radosgw.gateway")


def _gateway_path(paths: Paths) -> str:
    return os.path.join(paths.data_path, *_GATEWAY_DIR)


def enable_rgw(state: ClusterState, port: int, monitors: Sequence[str]) -> None:
    """Configure, record and start the gateway listening on ``port``."""
    paths = Paths.from_env()
    radosgw_config(paths.conf_path).write(
        {
            "runDir": paths.run_path,
            "monitors": ",".join(monitors),
            "rgwPort": port,
        },
        0o644,
    )
    path = _gateway_path(paths)
    create_rgw_keyring(path)
    # The conf directory copy lets radosgw-admin find the keyring.
    symlink_rgw_keyring(path, paths.conf_path)
    _record_rgw(state)
    start_rgw()


def disable_rgw(state: ClusterState) -> None:
    """Stop the gateway and remove its record, keyring and configuration."""
    paths = Paths.from_env()
    stop_rgw()

    database = state.require_database()
    try:
        with database.transaction():
            database.delete_service(state.name, "rgw")
    except ClusterError as exc:
        raise ClusterError(f"failed to remove service from db 'rgw': {exc}") from exc

    for path, what in (
        (os.path.join(paths.conf_path, _KEYRING_LINK), "RGW keyring symlink"),
        (os.path.join(_gateway_path(paths), "keyring"), "RGW keyring"),
        (os.path.join(paths.conf_path, "radosgw.conf"), "RGW configuration"),
    ):
        try:
            os.remove(path)
        except OSError as exc:
            raise ClusterError(f"failed to remove {what}: {exc}") from exc


def _record_rgw(state: ClusterState) -> None:
    database = state.require_database()
    try:
        with database.transaction():
            database.create_service(state.name, "rgw")
    except ClusterError as exc:
        raise ClusterError(f"Failed to record role: {exc}") from exc


def start_rgw() -> None:
    """Start and enable the gateway service."""
    try:
        snap_start("rgw", True)
    except CommandError as exc:
        raise ClusterError(f"Failed to start RGW service: {exc}") from exc


def stop_rgw() -> None:
    """Stop and disable the gateway service."""
    try:
        snap_stop("rgw", True)
    except CommandError as exc:
        raise ClusterError(f"Failed to stop RGW service: {exc}") from exc


def create_rgw_keyring(path: str) -> None:
    """Create the gateway keyring in ``path`` unless it already exists."""
    os.makedirs(path, mode=0o770, exist_ok=True)
    keyring = os.path.join(path, "keyring")
    if os.path.exists(keyring):
        return
    gen_auth(keyring, "client.radosgw.gateway", ["mon", "allow rw"], ["osd", "allow rwx"])


def symlink_rgw_keyring(key_path: str, conf_path: str) -> None:
    """Link the gateway keyring into the configuration directory."""
    try:
        os.symlink(os.path.join(key_path, "keyring"), os.path.join(conf_path, _KEYRING_LINK))
    except OSError as exc:
        raise ClusterError(f"Failed to create symlink to RGW keyring: {exc}") from exc