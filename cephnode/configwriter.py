"""Rendering and writing of ceph configuration and keyring files."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Mapping

_DIRECTIVE = re.compile(r"\{\{if \.(\w+)\}\}(.*?)\{\{end\}\}|\{\{\.(\w+)\}\}", re.S)
_VARIABLE = re.compile(r"\{\{\.(\w+)\}\}")
_MISSING = "<no value>"


def _format(value: Any) -> str:
    if value is None:
        return _MISSING
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _lookup(data: Mapping[str, Any], name: str) -> str:
    return _format(data[name]) if name in data else _MISSING


@dataclass(frozen=True)
class ConfigFile:
    """A configuration file rendered from a template into a directory.

    Templates use ``{{.name}}`` for values and ``{{if .name}}...{{end}}``
    for text kept only when the value is set.
    """

    name: str
    template: str
    config_dir: str
    config_file: str

    def path(self) -> str:
        """Return the full path of the file."""
        return os.path.join(self.config_dir, self.config_file)

    def render(self, data: Mapping[str, Any]) -> str:
        """Render the template with ``data``."""

        def substitute(match: re.Match) -> str:
            cond_name, body, var_name = match.groups()
            if var_name is not None:
                return _lookup(data, var_name)
            if not data.get(cond_name):
                return ""
            return _VARIABLE.sub(lambda m: _lookup(data, m.group(1)), body)

        return _DIRECTIVE.sub(substitute, self.template)

    def write(self, data: Mapping[str, Any], mode: int = 0o644) -> None:
        """Render the template and write it, creating the file with ``mode``."""
        content = self.render(data)
        try:
            fd = os.open(self.path(), os.O_CREAT | os.O_TRUNC | os.O_RDWR, mode)
        except OSError as exc:
            raise OSError(f"Couldn't write {self.config_file}: {exc}") from exc
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)


_CEPH_CONF = """# # Generated by MicroCeph, DO NOT EDIT.
[global]
run dir = {{.runDir}}
fsid = {{.fsid}}
mon host = {{.monitors}}
public_network = {{.pubNet}}
auth allow insecure global id reclaim = false
ms bind ipv4 = {{.ipv4}}
ms bind ipv6 = {{.ipv6}}

[client]
{{if .isCache}}rbd_cache = {{.isCache}}{{end}}
{{if .cacheSize}}rbd_cache_size = {{.cacheSize}}{{end}}
{{if .isCacheWritethrough}}rbd_cache_writethrough_until_flush = {{.isCacheWritethrough}}{{end}}
{{if .cacheMaxDirty}}rbd_cache_max_dirty = {{.cacheMaxDirty}}{{end}}
{{if .cacheTargetDirty}}rbd_cache_target_dirty = {{.cacheTargetDirty}}{{end}}
"""

_KEYRING_TEMPLATE = """# Generated by MicroCeph, DO NOT EDIT.
[{{.name}}]
\tkey = {{.key}}
"""

_RADOSGW_CONF = """# Generated by MicroCeph, DO NOT EDIT.
[global]
mon host = {{.monitors}}
run dir = {{.runDir}}
auth allow insecure global id reclaim = false

[client.radosgw.gateway]
rgw init timeout = 1200
rgw frontends = beast port={{.rgwPort}}
"""


def ceph_config(config_dir: str) -> ConfigFile:
    """Return the ceph.conf writer for ``config_dir``."""
    return ConfigFile("cephConf", _CEPH_CONF, config_dir, "ceph.conf")


def ceph_keyring(config_dir: str, config_file: str) -> ConfigFile:
    """Return a keyring writer for ``config_file`` in ``config_dir``."""
    return ConfigFile("cephKeyring", _KEYRING_TEMPLATE, config_dir, config_file)


def radosgw_config(config_dir: str) -> ConfigFile:
    """Return the radosgw.conf writer for ``config_dir``."""
    return ConfigFile("radosgwConfig", _RADOSGW_CONF, config_dir, "radosgw.conf")