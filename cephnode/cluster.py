"""Cluster state: file system paths, host networking and the internal database."""

from __future__ import annotations

import abc
import copy
import ipaddress
import os
import socket
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

import psutil

from .types import ClientConfig, Disk, Service


class ClusterError(RuntimeError):
    """A cluster operation could not be carried out."""


@dataclass(frozen=True)
class Paths:
    """Directories used by the node for configuration, runtime state, data and logs."""

    conf_path: str
    run_path: str
    data_path: str
    log_path: str

    @classmethod
    def from_env(cls) -> "Paths":
        """Derive the paths from the SNAP_DATA and SNAP_COMMON variables."""
        snap_data = os.environ.get("SNAP_DATA", "")
        snap_common = os.environ.get("SNAP_COMMON", "")
        return cls(
            conf_path=os.path.join(snap_data, "conf"),
            run_path=os.path.join(snap_data, "run"),
            data_path=os.path.join(snap_common, "data"),
            log_path=os.path.join(snap_common, "logs"),
        )

    def directories(self) -> dict[str, int]:
        """Return every directory together with the mode it is created with."""
        return {
            self.conf_path: 0o755,
            self.run_path: 0o700,
            self.data_path: 0o700,
            self.log_path: 0o700,
        }


class Network(abc.ABC):
    """Lookups of the addresses configured on the host."""

    @abc.abstractmethod
    def find_ip_on_subnet(self, subnet: str) -> str:
        """Return a host address that lies in ``subnet``."""

    @abc.abstractmethod
    def is_ip_on_subnet(self, address: str, subnet: str) -> bool:
        """Report whether ``address`` lies in ``subnet``."""

    @abc.abstractmethod
    def find_network_address(self, address: str) -> str:
        """Return the network, in CIDR form, of the host interface holding ``address``."""


def _parse_network(subnet: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
    try:
        return ipaddress.ip_network(subnet, strict=False)
    except ValueError as exc:
        raise ClusterError(f"invalid subnet {subnet!r}: {exc}") from exc


def _prefix_length(netmask: str) -> int:
    return bin(int(ipaddress.ip_address(netmask))).count("1")


def _host_interfaces() -> Iterator[ipaddress.IPv4Interface | ipaddress.IPv6Interface]:
    for addresses in psutil.net_if_addrs().values():
        for addr in addresses:
            if addr.family not in (socket.AF_INET, socket.AF_INET6) or not addr.netmask:
                continue
            ip = addr.address.split("%", 1)[0]
            try:
                yield ipaddress.ip_interface(f"{ip}/{_prefix_length(addr.netmask)}")
            except ValueError:
                continue


class HostNetwork(Network):
    """Network lookups against the interfaces of the running host."""

    def find_ip_on_subnet(self, subnet: str) -> str:
        network = _parse_network(subnet)
        for interface in _host_interfaces():
            if interface.version == network.version and interface.ip in network:
                return str(interface.ip)
        raise ClusterError(f"no address found on subnet {subnet}")

    def is_ip_on_subnet(self, address: str, subnet: str) -> bool:
        try:
            ip = ipaddress.ip_address(address)
            network = ipaddress.ip_network(subnet, strict=False)
        except ValueError:
            return False
        return ip.version == network.version and ip in network

    def find_network_address(self, address: str) -> str:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError as exc:
            raise ClusterError(f"invalid address {address!r}: {exc}") from exc
        for interface in _host_interfaces():
            if interface.ip == ip:
                return str(interface.network)
        raise ClusterError(f"address {address} not found on host")


_NETWORK_METHODS = ("find_ip_on_subnet", "is_ip_on_subnet", "find_network_address")

_network: Network = HostNetwork()


def get_network() -> Network:
    """Return the network lookup in use."""
    return _network


def set_network(network: Network) -> Network:
    """Replace the network lookup in use; return the old one.

    Raises TypeError when ``network`` lacks one of the lookup methods.
    """
    global _network
    missing = [m for m in _NETWORK_METHODS if not callable(getattr(network, m, None))]
    if missing:
        raise TypeError(
            f"{type(network).__name__} object lacks network lookups: {', '.join(missing)}"
        )
    previous = _network
    _network = network
    return previous


@dataclass
class _Tables:
    config: dict[str, str] = field(default_factory=dict)
    services: list[Service] = field(default_factory=list)
    disks: dict[int, Disk] = field(default_factory=dict)
    client_configs: list[ClientConfig] = field(default_factory=list)


class Database:
    """The cluster's internal record of configuration, services and disks."""

    def __init__(self) -> None:
        self._tables = _Tables()
        self._lock = threading.RLock()
        self.is_open = True

    @contextmanager
    def transaction(self) -> Iterator["Database"]:
        """Group changes; all of them are undone if the block raises."""
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield self
            except BaseException:
                self._tables = snapshot
                raise

    # Configuration items.

    def config_items(self) -> dict[str, str]:
        """Return all configuration items."""
        with self._lock:
            return dict(self._tables.config)

    def config_item_exists(self, key: str) -> bool:
        """Report whether the configuration item ``key`` is recorded."""
        with self._lock:
            return key in self._tables.config

    def get_config_item(self, key: str) -> str:
        """Return the value of configuration item ``key``."""
        with self._lock:
            try:
                return self._tables.config[key]
            except KeyError:
                raise ClusterError(f"config item {key!r} not found") from None

    def create_config_item(self, key: str, value: str) -> None:
        """Record a new configuration item."""
        with self._lock:
            if key in self._tables.config:
                raise ClusterError(f"config item {key!r} already exists")
            self._tables.config[key] = value

    # Services.

    def services(self, member: str | None = None, service: str | None = None) -> list[Service]:
        """Return service records, optionally filtered by member and service name."""
        with self._lock:
            return [
                Service(service=s.service, location=s.location)
                for s in self._tables.services
                if (member is None or s.location == member)
                and (service is None or s.service == service)
            ]

    def create_service(self, member: str, service: str) -> None:
        """Record that ``service`` runs on ``member``."""
        with self._lock:
            if self.services(member=member, service=service):
                raise ClusterError(f"service {service!r} already recorded for {member!r}")
            self._tables.services.append(Service(service=service, location=member))

    def delete_service(self, member: str, service: str) -> None:
        """Remove the record of ``service`` on ``member``."""
        with self._lock:
            kept = [
                s for s in self._tables.services
                if not (s.location == member and s.service == service)
            ]
            if len(kept) == len(self._tables.services):
                raise ClusterError(f"service {service!r} not recorded for {member!r}")
            self._tables.services = kept

    # Disks.

    def create_disk(self, member: str, path: str) -> int:
        """Record a disk on ``member`` and return the OSD number given to it."""
        with self._lock:
            if any(d.location == member and d.path == path for d in self._tables.disks.values()):
                raise ClusterError(f"disk {path!r} already recorded for {member!r}")
            osd = next(n for n in range(len(self._tables.disks) + 1) if n not in self._tables.disks)
            self._tables.disks[osd] = Disk(osd=osd, path=path, location=member)
            return osd

    def delete_disk(self, member: str, path: str) -> None:
        """Remove the disk ``path`` of ``member``."""
        with self._lock:
            for osd, disk in self._tables.disks.items():
                if disk.location == member and disk.path == path:
                    del self._tables.disks[osd]
                    return
            raise ClusterError(f"disk {path!r} not recorded for {member!r}")

    def disks(self) -> list[Disk]:
        """Return all disks ordered by OSD number."""
        with self._lock:
            return [
                Disk(osd=d.osd, path=d.path, location=d.location)
                for _, d in sorted(self._tables.disks.items())
            ]

    def have_osd(self, osd: int) -> bool:
        """Report whether OSD ``osd`` is recorded."""
        with self._lock:
            return osd in self._tables.disks

    def disk_path(self, osd: int) -> str:
        """Return the device path of OSD ``osd``."""
        with self._lock:
            try:
                return self._tables.disks[osd].path
            except KeyError:
                raise ClusterError(f"osd.{osd} not found") from None

    def update_disk_path(self, osd: int, path: str) -> None:
        """Change the device path of OSD ``osd``."""
        with self._lock:
            if osd not in self._tables.disks:
                raise ClusterError(f"osd.{osd} not found")
            self._tables.disks[osd].path = path

    def delete_osd(self, osd: int) -> None:
        """Remove the record of OSD ``osd``."""
        with self._lock:
            if self._tables.disks.pop(osd, None) is None:
                raise ClusterError(f"osd.{osd} not found")

    def member_count(self, exclude_osd: int | None = None) -> int:
        """Count the members holding at least one OSD, ignoring ``exclude_osd``."""
        with self._lock:
            return len({
                d.location for osd, d in self._tables.disks.items() if osd != exclude_osd
            })

    # Client configuration.

    def add_client_config(self, key: str, value: str, host: str) -> None:
        """Record a client configuration value, replacing one for the same key and host."""
        with self._lock:
            self._tables.client_configs = [
                c for c in self._tables.client_configs if not (c.key == key and c.host == host)
            ]
            self._tables.client_configs.append(ClientConfig(key=key, value=value, host=host))

    def client_configs(self, host: str | None = None, key: str | None = None) -> list[ClientConfig]:
        """Return client configuration values, optionally filtered by host and key."""
        with self._lock:
            return [
                ClientConfig(key=c.key, value=c.value, host=c.host)
                for c in self._tables.client_configs
                if (host is None or c.host == host) and (key is None or c.key == key)
            ]


@dataclass
class ClusterState:
    """The local member: its name, address, database and the other members' addresses."""

    name: str
    address: str = ""
    database: Database | None = None
    remotes: dict[str, str] = field(default_factory=dict)

    def require_database(self) -> Database:
        """Return the database or raise ClusterError when there is none."""
        if self.database is None:
            raise ClusterError("no database")
        return self.database