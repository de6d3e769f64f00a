import json

import pytest

from cephnode.cluster import ClusterError
from cephnode.crush import (
    add_crush_rule,
    crush_rule_id,
    default_crush_rule,
    ensure_crush_rules,
    have_crush_rule,
    list_crush_rules,
    pools_for_domain,
    set_default_crush_rule,
    set_pool_crush_rule,
)
from cephnode.runner import CommandError, Runner, set_runner


class FakeRunner(Runner):
    def __init__(self, responses=()):
        self.responses = list(responses)
        self.calls = []

    def run(self, name, *args, stdin=None, timeout=None):
        command = (name, *args)
        self.calls.append(command)
        for prefix, result in self.responses:
            if command[: len(prefix)] == tuple(prefix):
                if isinstance(result, Exception):
                    raise result
                return result
        return ""


@pytest.fixture
def runner():
    fake = FakeRunner()
    previous = set_runner(fake)
    yield fake
    set_runner(previous)


LS = ("ceph", "osd", "crush", "rule", "ls")
DUMP = ("ceph", "osd", "crush", "rule", "dump")
POOLS = ("ceph", "osd", "pool", "ls", "detail")
FAILURE = CommandError(("ceph",), returncode=1, reason="exit status 1")


def test_add_and_set_pool_rule(runner):
    add_crush_rule("microceph_auto_host", "host")
    set_pool_crush_rule("foopool", "microceph_auto_host")
    assert runner.calls == [
        ("ceph", "osd", "crush", "rule", "create-replicated", "microceph_auto_host", "default", "host"),
        ("ceph", "osd", "pool", "set", "foopool", "crush_rule", "microceph_auto_host"),
    ]


def test_list_and_have_rules(runner):
    runner.responses.append((LS, "microceph_auto_osd\nmicroceph_auto_host\n"))
    assert list_crush_rules() == ["microceph_auto_osd", "microceph_auto_host"]
    assert have_crush_rule("microceph_auto_host")
    assert not have_crush_rule("microceph_auto_rack")


def test_have_rule_false_on_failure(runner):
    runner.responses.append((LS, FAILURE))
    assert have_crush_rule("microceph_auto_osd") is False


def test_crush_rule_id(runner):
    runner.responses.append((DUMP, '{ "rule_id": 77 }'))
    assert crush_rule_id("microceph_auto_osd") == "77"
    assert runner.calls == [DUMP + ("microceph_auto_osd",)]


def test_crush_rule_id_missing(runner):
    runner.responses.append((DUMP, '{ "name": "x" }'))
    with pytest.raises(ClusterError, match="rule_id not found"):
        crush_rule_id("x")


def test_pools_for_domain(runner):
    pools = [
        {"crush_rule": 77, "pool_name": "foopool"},
        {"crush_rule": 1, "pool_name": "otherpool"},
    ]
    runner.responses += [
        (LS, "microceph_auto_osd"),
        (DUMP, '{ "rule_id": 77 }'),
        (POOLS, json.dumps(pools)),
    ]
    assert pools_for_domain("osd") == ["foopool"]


def test_pools_for_domain_without_rule(runner):
    runner.responses.append((LS, "microceph_auto_osd"))
    assert pools_for_domain("host") == []
    assert all(call[:len(POOLS)] != POOLS for call in runner.calls)


def test_set_default_crush_rule(runner):
    runner.responses.append((DUMP, '{ "rule_id": 77 }'))
    set_default_crush_rule("microceph_auto_osd")
    assert runner.calls[-1] == (
        "ceph", "config", "set", "global", "osd_pool_default_crush_rule", "77", "-f", "json-pretty"
    )


def test_default_crush_rule(runner):
    runner.responses.append((("ceph", "config", "get"), " 77\n"))
    assert default_crush_rule() == "77"
    assert runner.calls == [("ceph", "config", "get", "mon", "osd_pool_default_crush_rule")]


def test_ensure_crush_rules_adds_missing(runner):
    runner.responses.append((LS, "microceph_auto_osd"))
    ensure_crush_rules()
    created = [c for c in runner.calls if "create-replicated" in c]
    assert created == [
        ("ceph", "osd", "crush", "rule", "create-replicated", "microceph_auto_host", "default", "host")
    ]


def test_ensure_crush_rules_failure(runner):
    runner.responses += [
        (LS, ""),
        (("ceph", "osd", "crush", "rule", "create-replicated"), FAILURE),
    ]
    with pytest.raises(ClusterError, match="Failed to add microceph default crush rule"):
        ensure_crush_rules()