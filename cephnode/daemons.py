"""Bootstrapping of monitor, manager and metadata server daemons."""

from __future__ import annotations

import logging
import os
import tempfile

from .runner import CommandError, ceph_run, get_runner

logger = logging.getLogger(__name__)


def bootstrap_mgr(hostname: str, path: str) -> None:
    """Create the manager credentials for ``hostname`` in ``path``."""
    ceph_run(
        "auth", "get-or-create", f"mgr.{hostname}",
        "mon", "allow profile mgr",
        "osd", "allow *",
        "mds", "allow *",
        "-o", os.path.join(path, "keyring"),
    )


def join_mgr(hostname: str, path: str) -> None:
    """Set up a manager on a joining host."""
    bootstrap_mgr(hostname, path)


def bootstrap_mds(hostname: str, path: str) -> None:
    """Create the metadata server credentials for ``hostname`` in ``path``."""
    ceph_run(
        "auth", "get-or-create", f"mds.{hostname}",
        "mon", "allow profile mds",
        "mgr", "allow profile mds",
        "mds", "allow *",
        "osd", "allow *",
        "-o", os.path.join(path, "keyring"),
    )


def join_mds(hostname: str, path: str) -> None:
    """Set up a metadata server on a joining host."""
    bootstrap_mds(hostname, path)


def gen_monmap(path: str, fsid: str) -> None:
    """Create an empty monitor map for cluster ``fsid``."""
    get_runner().run("monmaptool", "--create", "--fsid", fsid, path)


def add_monmap(path: str, name: str, address: str) -> None:
    """Add a monitor to the map at ``path``."""
    get_runner().run("monmaptool", "--add", name, address, path)


def bootstrap_mon(hostname: str, path: str, monmap: str, keyring: str) -> None:
    """Create the monitor data store for ``hostname``."""
    get_runner().run(
        "ceph-mon", "--mkfs",
        "-i", hostname,
        "--mon-data", path,
        "--monmap", monmap,
        "--keyring", keyring,
    )


def join_mon(hostname: str, path: str) -> None:
    """Set up a monitor on a joining host from the running cluster's map and key."""
    with tempfile.TemporaryDirectory() as tmp:
        monmap = os.path.join(tmp, "mon.map")
        try:
            ceph_run("mon", "getmap", "-o", monmap)
        except CommandError as exc:
            raise RuntimeError(f"failed to retrieve monmap: {exc}") from exc

        keyring = os.path.join(tmp, "mon.keyring")
        try:
            ceph_run("auth", "get", "mon.", "-o", keyring)
        except CommandError as exc:
            raise RuntimeError(f"failed to retrieve mon keyring: {exc}") from exc

        bootstrap_mon(hostname, path, monmap, keyring)


def remove_mon(hostname: str) -> None:
    """Remove the monitor of ``hostname`` from the cluster."""
    try:
        ceph_run("mon", "rm", hostname)
    except CommandError as exc:
        logger.error('failed to remove monitor "%s": %s', hostname, exc)
        raise RuntimeError(f'failed to remove monitor "{hostname}": {exc}') from exc