"""Cluster configuration keys, client settings and generation of ceph.conf."""

from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import dataclass, fields

from .cluster import ClusterError, ClusterState, Paths, get_network
from .configwriter import ceph_config, ceph_keyring
from .runner import ceph_run
from .types import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigTableEntry:
    """Where a supported key lives and which daemons must restart when it changes."""

    who: str
    daemons: tuple[str, ...] = ()


def config_table() -> dict[str, ConfigTableEntry]:
    """Return the table of supported cluster configuration keys."""
    return {
        "cluster_network": ConfigTableEntry("global", ("osd",)),
        "osd_pool_default_crush_rule": ConfigTableEntry("global", ()),
    }


def service_set() -> frozenset[str]:
    """Return the names of the services the node can run."""
    return frozenset({"mon", "mgr", "osd", "mds", "rgw"})


@dataclass
class ClientConfigValues:
    """Client configuration values that apply to one host."""

    is_cache: str = ""
    cache_size: str = ""
    is_cache_writethrough: str = ""
    cache_max_dirty: str = ""
    cache_target_dirty: str = ""


def client_config_fields() -> dict[str, str]:
    """Map each client configuration key to its ClientConfigValues field."""
    return {
        "rbd_cache": "is_cache",
        "rbd_cache_size": "cache_size",
        "rbd_cache_writethrough_until_flush": "is_cache_writethrough",
        "rbd_cache_max_dirty": "cache_max_dirty",
        "rbd_cache_target_dirty": "cache_target_dirty",
    }


def _who(key: str) -> str:
    entry = config_table().get(key)
    return entry.who if entry else ""


def set_config_item(config: Config) -> None:
    """Set a cluster configuration key."""
    ceph_run("config", "set", _who(config.key), config.key, config.value, "-f", "json-pretty")


def get_config_item(config: Config) -> list[Config]:
    """Return the value of a cluster configuration key."""
    who = _who(config.key)
    if who == "global":
        # Global values are read back through the monitors.
        who = "mon"
    value = ceph_run("config", "get", who, config.key)
    return [Config(key=config.key, value=value)]


def remove_config_item(config: Config) -> None:
    """Remove a cluster configuration key."""
    ceph_run("config", "rm", _who(config.key), config.key)


def list_configs() -> list[Config]:
    """Return the values of every supported key that is set in the cluster."""
    output = ceph_run("config", "dump", "-f", "json-pretty")
    try:
        dump = json.loads(output)
    except ValueError:
        dump = []
    if not isinstance(dump, list):
        dump = []
    table = config_table()
    configs = []
    for item in dump:
        if not isinstance(item, dict):
            continue
        entry = {str(k).lower(): v for k, v in item.items()}
        name = entry.get("name")
        if name in table:
            value = entry.get("value")
            configs.append(Config(key=name, value="" if value is None else str(value)))
    return configs


def client_config_for_host(state: ClusterState, hostname: str) -> ClientConfigValues:
    """Collect the client configuration values recorded for ``hostname``."""
    try:
        items = state.require_database().client_configs(host=hostname)
    except ClusterError as exc:
        raise ClusterError(f"could not query database for client configs: {exc}") from exc

    names = client_config_fields()
    values = ClientConfigValues()
    for item in items:
        attribute = names.get(item.key)
        if attribute is None:
            raise ClusterError(f"failed object population: cannot set field {item.key}")
        setattr(values, attribute, item.value)
    return values


def config_from_db(state: ClusterState) -> dict[str, str]:
    """Return the configuration items recorded in the database."""
    database = state.require_database()
    with database.transaction():
        return database.config_items()


def monitor_addresses(configs: dict[str, str]) -> list[str]:
    """Return the monitor addresses found among configuration items."""
    return [value for key, value in configs.items() if "mon.host." in key]


def _is_cidr(value: str) -> bool:
    if "/" not in value:
        return False
    try:
        ipaddress.ip_interface(value)
    except ValueError:
        return False
    return True


def backward_compat_pubnet(state: ClusterState) -> None:
    """Record public_network in the database when it is missing or invalid."""
    try:
        config = config_from_db(state)
    except ClusterError as exc:
        raise ClusterError(f"failed to get config from db: {exc}") from exc

    if _is_cidr(config.get("public_network", "")):
        return
    try:
        public_net = get_network().find_network_address(state.address)
    except ClusterError as exc:
        raise ClusterError(f"failed to locate public network: {exc}") from exc

    database = state.require_database()
    try:
        with database.transaction():
            database.create_config_item("public_network", public_net)
    except ClusterError as exc:
        logger.warning("failed to record public_network: %s", exc)


def backward_compat_monitors(state: ClusterState) -> list[str]:
    """Return the addresses of members recorded as running a monitor."""
    database = state.require_database()
    with database.transaction():
        monitors = database.services(service="mon")
    return [
        state.remotes[monitor.location]
        for monitor in monitors
        if monitor.location in state.remotes
    ]


def update_config(state: ClusterState) -> None:
    """Regenerate ceph.conf and the admin keyring from the database."""
    paths = Paths.from_env()

    try:
        backward_compat_pubnet(state)
    except ClusterError as exc:
        raise ClusterError(f"failed to ensure backward compat: {exc}") from exc

    try:
        config = config_from_db(state)
    except ClusterError as exc:
        raise ClusterError(f"failed to get config db: {exc}") from exc

    # Clients only need to reach one monitor that is online.
    monitors = monitor_addresses(config)
    if not monitors:
        try:
            monitors = backward_compat_monitors(state)
        except ClusterError as exc:
            raise ClusterError(f"failed to get monitor addresses: {exc}") from exc

    public_net = config.get("public_network", "")
    try:
        get_network().find_ip_on_subnet(public_net)
    except ClusterError as exc:
        raise ClusterError(
            f"failed to locate IP on public network {public_net}: {exc}"
        ) from exc

    try:
        client = client_config_for_host(state, state.name)
    except ClusterError as exc:
        logger.error("Failed to pull Client Configurations: %s", exc)
        raise

    conf = ceph_config(paths.conf_path)
    try:
        conf.write(
            {
                "fsid": config.get("fsid", ""),
                "runDir": paths.run_path,
                "monitors": ",".join(monitors),
                "pubNet": public_net,
                "ipv4": "." in public_net,
                "ipv6": ":" in public_net,
                "isCache": client.is_cache,
                "cacheSize": client.cache_size,
                "isCacheWritethrough": client.is_cache_writethrough,
                "cacheMaxDirty": client.cache_max_dirty,
                "cacheTargetDirty": client.cache_target_dirty,
            },
            0o644,
        )
    except OSError as exc:
        raise ClusterError(f"couldn't render ceph.conf: {exc}") from exc
    logger.debug("updated ceph.conf: %s", conf.path())

    keyring = ceph_keyring(paths.conf_path, "ceph.keyring")
    try:
        keyring.write(
            {"name": "client.admin", "key": config.get("keyring.client.admin", "")},
            0o640,
        )
    except OSError as exc:
        raise ClusterError(f"couldn't render ceph.client.admin.keyring: {exc}") from exc


__all_fields__ = tuple(f.name for f in fields(ClientConfigValues))