"""Creation and reading of ceph keyrings."""

from __future__ import annotations

from typing import Sequence

from .runner import ceph_run, get_runner


def _checked(capability: Sequence[str]) -> tuple[str, str]:
    if len(capability) != 2:
        raise ValueError(f"Invalid keyring capability: {list(capability)}")
    return capability[0], capability[1]


def gen_keyring(path: str, name: str, *args: Sequence[str]) -> None:
    """Create a keyring at ``path`` with a new key for ``name``.

    Each extra argument is an (entity, capability) pair.
    """
    command = ["--create-keyring", path, "--gen-key", "-n", name]
    for capability in args:
        entity, cap = _checked(capability)
        command += ["--cap", entity, cap]
    get_runner().run("ceph-authtool", *command)


def import_keyring(path: str, source: str) -> None:
    """Import the keys of ``source`` into the keyring at ``path``."""
    get_runner().run("ceph-authtool", path, "--import-keyring", source)


def gen_auth(path: str, name: str, *args: Sequence[str]) -> None:
    """Get or create cluster credentials for ``name`` and write them to ``path``."""
    command = ["auth", "get-or-create", name]
    for capability in args:
        command += list(_checked(capability))
    command += ["-o", path]
    ceph_run(*command)


def parse_keyring(path: str) -> str:
    """Return the secret of the first key entry in the keyring at ``path``."""
    secret = ""
    with open(path, encoding="utf-8") as handle:
        for raw in handle:
            line = raw.strip()
            if not line.startswith("key"):
                continue
            name, sep, value = line.partition("=")
            if not sep:
                continue
            secret = value.strip()
            break
    if not secret:
        raise ValueError("Couldn't find a keyring entry")
    return secret