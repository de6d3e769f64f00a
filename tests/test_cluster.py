import socket
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from cephnode.cluster import (
    ClusterError,
    ClusterState,
    Database,
    HostNetwork,
    Network,
    Paths,
    get_network,
    set_network,
)


def _addr(family, address, netmask):
    return SimpleNamespace(family=family, address=address, netmask=netmask)


FAKE_INTERFACES = {
    "eth0": [
        _addr(socket.AF_INET, "10.1.2.3", "255.255.255.0"),
        _addr(socket.AF_INET6, "fe80::1%eth0", "ffff:ffff:ffff:ffff::"),
    ],
}


def test_paths_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SNAP_DATA", str(tmp_path / "SNAP_DATA"))
    monkeypatch.setenv("SNAP_COMMON", str(tmp_path / "SNAP_COMMON"))
    paths = Paths.from_env()
    assert paths.conf_path == str(tmp_path / "SNAP_DATA" / "conf")
    assert paths.run_path == str(tmp_path / "SNAP_DATA" / "run")
    assert paths.data_path == str(tmp_path / "SNAP_COMMON" / "data")
    assert paths.log_path == str(tmp_path / "SNAP_COMMON" / "logs")
    assert set(paths.directories()) == {
        paths.conf_path, paths.run_path, paths.data_path, paths.log_path
    }


@pytest.mark.parametrize(
    "address,subnet,expected",
    [("1.1.1.1", "1.1.1.1/24", True), ("1.1.1.1", "2.1.1.1/24", False), ("bad", "1.1.1.1/24", False)],
)
def test_is_ip_on_subnet(address, subnet, expected):
    assert HostNetwork().is_ip_on_subnet(address, subnet) is expected


def test_find_ip_on_subnet():
    with patch("psutil.net_if_addrs", return_value=FAKE_INTERFACES):
        network = HostNetwork()
        assert network.find_ip_on_subnet("10.1.2.0/24") == "10.1.2.3"
        assert network.find_ip_on_subnet("fe80::/64") == "fe80::1"
        with pytest.raises(ClusterError):
            network.find_ip_on_subnet("192.0.2.0/24")


def test_find_network_address():
    with patch("psutil.net_if_addrs", return_value=FAKE_INTERFACES):
        network = HostNetwork()
        assert network.find_network_address("10.1.2.3") == "10.1.2.0/24"
        with pytest.raises(ClusterError):
            network.find_network_address("192.0.2.9")


def test_set_network_round_trip():
    class Fixed(Network):
        def find_ip_on_subnet(self, subnet):
            return "x"

        def is_ip_on_subnet(self, address, subnet):
            return True

        def find_network_address(self, address):
            return "y"

    fixed = Fixed()
    previous = set_network(fixed)
    try:
        assert get_network() is fixed
    finally:
        set_network(previous)
    assert get_network() is previous


def test_require_database():
    with pytest.raises(ClusterError, match="no database"):
        ClusterState(name="foohost").require_database()
    db = Database()
    assert ClusterState(name="foohost", database=db).require_database() is db


def test_config_items():
    db = Database()
    db.create_config_item("fsid", "abc")
    assert db.get_config_item("fsid") == "abc"
    assert db.config_item_exists("fsid")
    assert not db.config_item_exists("other")
    with pytest.raises(ClusterError):
        db.create_config_item("fsid", "def")
    with pytest.raises(ClusterError):
        db.get_config_item("missing")


def test_transaction_rolls_back():
    db = Database()
    db.create_config_item("a", "1")
    with pytest.raises(ValueError):
        with db.transaction():
            db.create_config_item("b", "2")
            raise ValueError("boom")
    assert db.config_items() == {"a": "1"}
    with db.transaction():
        db.create_config_item("b", "2")
    assert db.config_items() == {"a": "1", "b": "2"}


def test_services():
    db = Database()
    db.create_service("h1", "mon")
    db.create_service("h2", "mon")
    db.create_service("h1", "mgr")
    assert {s.location for s in db.services(service="mon")} == {"h1", "h2"}
    assert {s.service for s in db.services(member="h1")} == {"mon", "mgr"}
    with pytest.raises(ClusterError):
        db.create_service("h1", "mon")
    db.delete_service("h1", "mon")
    assert [s.location for s in db.services(service="mon")] == ["h2"]
    with pytest.raises(ClusterError):
        db.delete_service("h1", "mon")


def test_disks():
    db = Database()
    first = db.create_disk("a", "/dev/x")
    second = db.create_disk("a", "/dev/y")
    third = db.create_disk("b", "/dev/z")
    assert len({first, second, third}) == 3
    assert [d.osd for d in db.disks()] == sorted([first, second, third])
    assert db.have_osd(third)
    assert db.disk_path(second) == "/dev/y"
    db.update_disk_path(second, "/dev/w")
    assert db.disk_path(second) == "/dev/w"
    assert db.member_count(exclude_osd=third) == db.member_count() - 1
    db.delete_osd(third)
    assert not db.have_osd(third)
    db.delete_disk("a", "/dev/x")
    assert [d.path for d in db.disks()] == ["/dev/w"]
    with pytest.raises(ClusterError):
        db.disk_path(third)
    with pytest.raises(ClusterError):
        db.create_disk("a", "/dev/w")


def test_client_configs_replace_per_host():
    db = Database()
    db.add_client_config("rbd_cache", "true", "h1")
    db.add_client_config("rbd_cache", "false", "h1")
    db.add_client_config("rbd_cache", "true", "h2")
    h1 = db.client_configs(host="h1")
    assert [(c.key, c.value) for c in h1] == [("rbd_cache", "false")]
    assert len(db.client_configs(key="rbd_cache")) == 2