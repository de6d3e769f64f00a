"""Management of the automatic crush rules."""

from __future__ import annotations

import json
from typing import Any

from .cluster import ClusterError
from .config import get_config_item, set_config_item
from .runner import CommandError, ceph_run
from .types import Config

_DEFAULT_RULE_KEY = "osd_pool_default_crush_rule"


def _as_text(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value)


def add_crush_rule(name: str, failure_domain: str) -> None:
    """Create a replicated crush rule under the default root."""
    ceph_run("osd", "crush", "rule", "create-replicated", name, "default", failure_domain)


def list_crush_rules() -> list[str]:
    """Return the names of all crush rules."""
    return ceph_run("osd", "crush", "rule", "ls").strip().split("\n")


def have_crush_rule(name: str) -> bool:
    """Report whether a crush rule called ``name`` exists."""
    try:
        rules = list_crush_rules()
    except CommandError:
        return False
    return name in rules


def crush_rule_id(name: str) -> str:
    """Return the id of crush rule ``name`` as a string."""
    output = ceph_run("osd", "crush", "rule", "dump", name)
    try:
        dump = json.loads(output)
    except ValueError as exc:
        raise ClusterError(f"invalid crush rule dump: {exc}") from exc
    if not isinstance(dump, dict) or "rule_id" not in dump:
        raise ClusterError("rule_id not found in crush rule dump")
    return _as_text(dump["rule_id"])


def pools_for_domain(domain: str) -> list[str]:
    """Return the pools using the automatic rule of failure domain ``domain``."""
    rule = f"microceph_auto_{domain}"
    if not have_crush_rule(rule):
        return []
    rule_id = crush_rule_id(rule)
    output = ceph_run("osd", "pool", "ls", "detail", "--format=json")
    try:
        pools = json.loads(output)
    except ValueError as exc:
        raise ClusterError(f"invalid pool listing: {exc}") from exc
    if not isinstance(pools, list):
        return []
    return [
        _as_text(pool.get("pool_name", ""))
        for pool in pools
        if isinstance(pool, dict) and _as_text(pool.get("crush_rule")) == rule_id
    ]


def set_pool_crush_rule(pool: str, rule: str) -> None:
    """Make ``pool`` use crush rule ``rule``."""
    ceph_run("osd", "pool", "set", pool, "crush_rule", rule)


def set_default_crush_rule(rule: str) -> None:
    """Make ``rule`` the crush rule of newly created pools."""
    set_config_item(Config(key=_DEFAULT_RULE_KEY, value=crush_rule_id(rule)))


def default_crush_rule() -> str:
    """Return the id of the crush rule used for new pools."""
    return get_config_item(Config(key=_DEFAULT_RULE_KEY))[0].value.strip()


def ensure_crush_rules() -> None:
    """Create the automatic osd and host level rules when they are missing."""
    for name, domain in (("microceph_auto_osd", "osd"), ("microceph_auto_host", "host")):
        if have_crush_rule(name):
            continue
        try:
            add_crush_rule(name, domain)
        except CommandError as exc:
            raise ClusterError(f"Failed to add microceph default crush rule: {exc}") from exc