"""Creation of OSDs on block devices and loopback files."""

from __future__ import annotations

import base64
import logging
import os
import re
import secrets
import shutil
import stat
import uuid
from contextlib import suppress
from dataclasses import replace
from typing import Sequence

from .cluster import ClusterError, ClusterState, Paths
from .crush import pools_for_domain, set_default_crush_rule, set_pool_crush_rule
from .keyring import gen_auth
from .runner import CommandError, get_runner, is_interface_connected, snap_restart
from .types import Disk, DiskAddReport, DiskAddResponse, DiskParameter

logger = logging.getLogger(__name__)

_LOOP_SPEC = "loop,"
_BACKING_SPEC = re.compile(r"loop,([1-9][0-9]*[MGT]),([1-9][0-9]*)")
_UNIT_MB = {"M": 1, "G": 1024, "T": 1024 * 1024}
_DEV_DISK = "/dev/disk"
_WIPE_TIMEOUT = 30.0


def _timeout_wipe(path: str) -> None:
    """Zero the start of a device, giving up after a timeout."""
    get_runner().run(
        "dd", "if=/dev/zero", f"of={path}", "bs=4M", "count=10", "status=none",
        timeout=_WIPE_TIMEOUT,
    )


def prepare_disk(disk: DiskParameter, suffix: str, osd_path: str, osd_id: int) -> DiskParameter:
    """Wipe and encrypt a device as requested; return it with its final path.

    The data device (empty ``suffix``) is also linked as the OSD's block device.
    """
    if disk.wipe:
        try:
            _timeout_wipe(disk.path)
        except CommandError as exc:
            raise ClusterError(f"failed to wipe device {disk.path}: {exc}") from exc
    if disk.encrypt:
        try:
            check_encrypt_support()
        except ClusterError as exc:
            raise ClusterError(f"encryption unsupported on this machine: {exc}") from exc
        try:
            path = setup_encrypted_osd(disk.path, osd_path, osd_id, suffix)
        except (ClusterError, CommandError, OSError) as exc:
            raise ClusterError(f"failed to encrypt device {disk.path}: {exc}") from exc
        disk = replace(disk, path=path)
    # WAL and DB devices are handled by ceph itself.
    if suffix:
        return disk
    os.symlink(disk.path, os.path.join(osd_path, "block"))
    return disk


def setup_encrypted_osd(device_path: str, osd_data_path: str, osd_id: int, suffix: str) -> str:
    """Encrypt and open a device for an OSD; return the path of the opened device."""
    try:
        os.symlink(device_path, os.path.join(osd_data_path, "unencrypted" + suffix))
    except OSError as exc:
        raise ClusterError(f"failed to add unencrypted block symlink: {exc}") from exc

    key = create_key()
    try:
        store_key(key, osd_id, suffix)
    except ClusterError as exc:
        raise ClusterError(f"key store error: {exc}") from exc
    try:
        encrypt_device(device_path, key)
    except ClusterError as exc:
        raise ClusterError(f"failed to encrypt: {exc}") from exc
    try:
        return open_encrypted_device(device_path, osd_id, key, suffix)
    except ClusterError as exc:
        raise ClusterError(f"failed to open: {exc}") from exc


def create_key() -> bytes:
    """Return a new 128 byte key for use with LUKS."""
    return base64.b64encode(secrets.token_bytes(96))


def encrypt_device(path: str, key: bytes) -> None:
    """Format ``path`` as a LUKS device locked with ``key``."""
    try:
        get_runner().run(
            "cryptsetup", "--batch-mode", "--key-file", "-", "luksFormat", path,
            stdin=key,
        )
    except CommandError as exc:
        raise ClusterError(f"failed to luksFormat device: {path}, {exc}") from exc


def store_key(key: bytes, osd_id: int, suffix: str) -> None:
    """Keep ``key`` in the cluster's key value store under a name derived from the OSD."""
    try:
        get_runner().run(
            "ceph", "config-key", "set", f"microceph:osd{suffix}.{osd_id}/key",
            key.decode("ascii"),
        )
    except CommandError as exc:
        raise ClusterError(f"failed to store key: {exc}") from exc


def open_encrypted_device(path: str, osd_id: int, key: bytes, suffix: str) -> str:
    """Open the LUKS device ``path`` and return the path of its mapping."""
    mapping = f"luksosd{suffix}-{osd_id}"
    try:
        get_runner().run(
            "cryptsetup", "--keyfile-size", "128", "--key-file", "-",
            "luksOpen", path, mapping,
            stdin=key,
        )
    except CommandError as exc:
        raise ClusterError(
            f"failed to luksOpen: {path}, {exc}\n\n"
            "NOTE: OSD Encryption requires a snapd >= 2.59.1\n"
            'Verify your version of snapd by running "snap version"\n'
        ) from exc
    return f"/dev/mapper/{mapping}"


def check_encrypt_support() -> None:
    """Raise ClusterError unless the host can set up encrypted devices."""
    if not os.path.exists("/dev/mapper/control"):
        raise ClusterError("missing /dev/mapper/control")
    if not is_interface_connected("dm-crypt"):
        helper = ('use "sudo snap connect microceph:dm-crypt ; '
                  'sudo snap restart microceph.daemon" to enable encryption.')
        raise ClusterError(f"dm-crypt interface connection missing: \n{helper}")
    if not os.path.isdir("/sys/module/dm_crypt"):
        raise ClusterError("missing dm_crypt module")
    try:
        os.listdir("/run")
    except OSError as exc:
        raise ClusterError(
            f"can't access /run, might need to update snapd to >=2.59.1: {exc}"
        ) from exc


def switch_failure_domain(old: str, new: str) -> None:
    """Move the default rule and every pool on the ``old`` automatic rule to ``new``."""
    new_rule = f"microceph_auto_{new}"
    logger.debug("Setting default crush rule to %s", new_rule)
    set_default_crush_rule(new_rule)

    pools = pools_for_domain(old)
    logger.debug("Found pools %s for domain %s", pools, old)
    for pool in pools:
        logger.debug("Setting pool %s crush rule to %s", pool, new_rule)
        set_pool_crush_rule(pool, new_rule)


def update_failure_domain(state: ClusterState) -> None:
    """Switch to host level failure domain once three members hold OSDs."""
    try:
        members = state.require_database().member_count()
    except ClusterError as exc:
        raise ClusterError(f"failed to count members: {exc}") from exc
    if members >= 3:
        try:
            switch_failure_domain("osd", "host")
        except (ClusterError, CommandError) as exc:
            raise ClusterError(f"failed to set host failure domain: {exc}") from exc


def _find_link(directory: str, rdev: int) -> str | None:
    try:
        names = sorted(os.listdir(directory))
    except OSError:
        return None
    for name in names:
        candidate = os.path.join(directory, name)
        if os.path.isdir(candidate):
            continue
        try:
            info = os.stat(candidate)
        except OSError:
            continue
        if stat.S_ISBLK(info.st_mode) and info.st_rdev == rdev:
            return candidate
    return None


def set_stable_path(param: DiskParameter) -> DiskParameter:
    """Return ``param`` with its path replaced by a stable by-id or by-path link."""
    try:
        info = os.stat(param.path)
    except OSError as exc:
        raise ClusterError(f"invalid disk path: {param.path}") from exc
    if not stat.S_ISBLK(info.st_mode):
        raise ClusterError(f"invalid disk path: {param.path}")
    for kind in ("by-id", "by-path"):
        candidate = _find_link(os.path.join(_DEV_DISK, kind), info.st_rdev)
        if candidate is not None:
            return replace(param, path=candidate)
    return param


def parse_backing_spec(spec: str) -> tuple[int, int]:
    """Parse ``loop,<size><M|G|T>,<count>`` into a size in MB and a count."""
    match = _BACKING_SPEC.search(spec)
    if match is None:
        raise ValueError(f"illegal spec: {spec}")
    size_text = match.group(1)
    size = int(size_text[:-1]) * _UNIT_MB[size_text[-1].upper()]
    return size, int(match.group(2))


def free_space_mb(path: str) -> int:
    """Return the megabytes available to unprivileged users at ``path``."""
    info = os.statvfs(path)
    return info.f_bavail * info.f_bsize // 1024 // 1024


def create_backing_file(directory: str, size: int) -> str:
    """Create a sparse backing file of ``size`` MB in ``directory``; return its path."""
    backing = os.path.join(directory, "osd-backing.img")
    try:
        get_runner().run("truncate", "-s", f"{size}M", backing)
    except CommandError as exc:
        raise ClusterError(f"failed to create backing file {backing}: {exc}") from exc
    return backing


def add_loopback_osds(state: ClusterState, spec: str) -> None:
    """Add the OSDs backed by loopback files that ``spec`` describes."""
    size, count = parse_backing_spec(spec)
    free = free_space_mb(os.environ.get("SNAP_COMMON", ""))
    if free < size * count:
        raise ClusterError(
            f"insufficient free space for {count} loopback files of size {size}MB"
        )
    for _ in range(count):
        try:
            add_osd(state, DiskParameter(loop_size=size), None, None)
        except Exception as exc:
            raise ClusterError(f"failed to add loop OSD: {exc}") from exc


def bootstrap_osd(osd_data_path: str, osd_id: int,
                  wal: DiskParameter | None, db: DiskParameter | None) -> None:
    """Create the OSD's store, with optional WAL and DB devices, and mark it ready."""
    args = ["--mkfs", "--no-mon-config", "-i", str(osd_id)]
    for device, suffix, label, option in (
        (wal, ".wal", "WAL", "--bluestore-block-wal-path"),
        (db, ".db", "DB", "--bluestore-block-db-path"),
    ):
        if device is None:
            continue
        try:
            device = set_stable_path(device)
        except ClusterError as exc:
            raise ClusterError(f"failed to set stable path for {label}: {exc}") from exc
        try:
            device = prepare_disk(device, suffix, osd_data_path, osd_id)
        except (ClusterError, OSError) as exc:
            raise ClusterError(f"failed to set up {label} device: {exc}") from exc
        args += [option, device.path]

    try:
        get_runner().run("ceph-osd", *args)
    except CommandError as exc:
        raise ClusterError(f"failed to bootstrap OSD: {exc}") from exc

    try:
        fd = os.open(os.path.join(osd_data_path, "ready"),
                     os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
        os.close(fd)
    except OSError as exc:
        raise ClusterError(f"failed to write stamp file: {exc}") from exc


def validate_bulk_disk_args(disks: Sequence[DiskParameter],
                            wal: DiskParameter | None, db: DiskParameter | None) -> None:
    """Raise ValueError when a batch request asks for something unsupported."""
    if len(disks) == 1:
        return
    if wal is not None or db is not None:
        message = "wal/db devices are not supported in batch disk addition"
        logger.error(message)
        raise ValueError(message)
    for disk in disks:
        if disk.path.startswith(_LOOP_SPEC):
            message = (f"cannot add loop spec '{disk.path}', add a single loop spec "
                       "or one or more block device paths")
            logger.error(message)
            raise ValueError(message)


def validation_failure_response(disks: Sequence[DiskParameter], error: Exception) -> DiskAddResponse:
    """Return the response for a request rejected by validation."""
    return DiskAddResponse(
        validation_error=str(error),
        reports=[DiskAddReport(path=d.path, report="Failure", error="") for d in disks],
    )


def add_bulk_disks(state: ClusterState, disks: Sequence[DiskParameter],
                   wal: DiskParameter | None, db: DiskParameter | None) -> DiskAddResponse:
    """Add each disk as an OSD and report the outcome of each."""
    if len(disks) == 1:
        return DiskAddResponse(reports=[add_single_disk(state, disks[0], wal, db)])
    try:
        validate_bulk_disk_args(disks, wal, db)
    except ValueError as exc:
        return validation_failure_response(disks, exc)
    return DiskAddResponse(
        reports=[add_single_disk(state, disk, None, None) for disk in disks],
    )


def add_single_disk(state: ClusterState, disk: DiskParameter,
                    wal: DiskParameter | None, db: DiskParameter | None) -> DiskAddReport:
    """Add one disk or loop spec and report success or failure."""
    try:
        if _LOOP_SPEC in disk.path:
            add_loopback_osds(state, disk.path)
        else:
            add_osd(state, disk, wal, db)
    except Exception as exc:
        logger.error("failed to add disk: %s, err %s", disk.path, exc)
        return DiskAddReport(path=disk.path, report="Failure", error=str(exc))
    return DiskAddReport(path=disk.path, report="Success", error="")


def add_osd(state: ClusterState, data: DiskParameter,
            wal: DiskParameter | None, db: DiskParameter | None) -> None:
    """Add an OSD on ``data``, with optional WAL and DB devices.

    A non-zero ``data.loop_size`` backs the OSD with a file of that many MB.
    """
    logger.debug("Adding OSD %s", data.path)
    if data.loop_size and (wal is not None or db is not None):
        raise ValueError("loopback and WAL/DB are mutually exclusive")

    if not data.loop_size:
        try:
            data = set_stable_path(data)
        except ClusterError as exc:
            raise ClusterError(f"failed to set stable disk path: {exc}") from exc

    database = state.require_database()
    try:
        with database.transaction():
            osd_id = database.create_disk(state.name, data.path)
    except ClusterError as exc:
        raise ClusterError(f"failed to record disk: {exc}") from exc
    logger.debug("Created disk record for osd.%d", osd_id)

    osd_data_path = os.path.join(Paths.from_env().data_path, "osd", f"ceph-{osd_id}")
    try:
        _populate_osd(state, data, wal, db, osd_id, osd_data_path)
    except Exception:
        shutil.rmtree(osd_data_path, ignore_errors=True)
        with suppress(ClusterError), database.transaction():
            database.delete_osd(osd_id)
        raise
    logger.debug("Added osd.%d", osd_id)


def _populate_osd(state: ClusterState, data: DiskParameter,
                  wal: DiskParameter | None, db: DiskParameter | None,
                  osd_id: int, osd_data_path: str) -> None:
    database = state.require_database()
    try:
        os.makedirs(osd_data_path, mode=0o700, exist_ok=True)
    except OSError as exc:
        raise ClusterError(f"failed to create OSD directory: {exc}") from exc

    if data.loop_size:
        backing = create_backing_file(osd_data_path, data.loop_size)
        data = replace(data, path=backing)
        try:
            with database.transaction():
                database.update_disk_path(osd_id, backing)
        except ClusterError as exc:
            raise ClusterError(f"failed to update disk record: {exc}") from exc

    try:
        data = prepare_disk(data, "", osd_data_path, osd_id)
    except (ClusterError, OSError) as exc:
        raise ClusterError(f"failed to prepare data device: {exc}") from exc

    try:
        gen_auth(
            os.path.join(osd_data_path, "keyring"), f"osd.{osd_id}",
            ["mgr", "allow profile osd"], ["mon", "allow profile osd"], ["osd", "allow *"],
        )
    except CommandError as exc:
        raise ClusterError(f"failed to generate OSD keyring: {exc}") from exc

    try:
        fd = os.open(os.path.join(osd_data_path, "fsid"),
                     os.O_CREAT | os.O_TRUNC | os.O_WRONLY, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(str(uuid.uuid4()))
    except OSError as exc:
        raise ClusterError(f"failed to write fsid: {exc}") from exc

    bootstrap_osd(osd_data_path, osd_id, wal, db)

    logger.debug("Spawning OSD %d", osd_id)
    try:
        snap_restart("osd", True)
    except CommandError as exc:
        raise ClusterError(f"failed to start osd.{osd_id}: {exc}") from exc

    update_failure_domain(state)


def list_osds(state: ClusterState) -> list[Disk]:
    """Return the OSDs recorded in the cluster."""
    return state.require_database().disks()