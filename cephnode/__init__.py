"""Node-level management of a small Ceph cluster: configuration, keyrings, CRUSH rules, OSDs and the RADOS gateway."""

__version__ = "0.1.0"

__all__ = [
    "types",
    "runner",
    "configwriter",
    "keyring",
    "daemons",
    "loglevel",
    "cluster",
    "config",
    "crush",
    "osd",
    "rgw",
]