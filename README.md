# cephnode

`cephnode` is a library for managing one node of a small Ceph cluster. It
runs the `ceph`, `ceph-authtool`, `monmaptool`, `ceph-mon`, `ceph-osd`,
`cryptsetup`, `dd`, `truncate` and `snapctl` tools on your behalf and keeps
a record of the node's disks, services and configuration.

## Modules

- `cephnode.types`: dataclasses for requests and responses (`Config`,
  `ClientConfig`, `DisksPost`, `DiskParameter`, `DiskAddReport`,
  `DiskAddResponse`, `DisksDelete`, `Disk`, `Service`, `EnableService`,
  `RGWService`, `LogLevelPut`, `PoolPut`). `parse_disks_post` parses a disk
  addition body and wraps a single `path` string in a list.
- `cephnode.runner`: `Runner.run` starts a command and returns its standard
  output, raising `CommandError` on failure or timeout. `get_runner` and
  `set_runner` select the runner every module uses. Helpers: `ceph_run`,
  `is_interface_connected`, `snap_start`, `snap_stop`, `snap_restart`,
  `snap_check_active`.
- `cephnode.configwriter`: `ConfigFile` renders and writes templates;
  `ceph_config`, `ceph_keyring` and `radosgw_config` return the writers for
  `ceph.conf`, a keyring and `radosgw.conf`.
- `cephnode.keyring`: `gen_keyring`, `import_keyring`, `gen_auth` and
  `parse_keyring` (returns the secret of the first `key = ...` entry).
- `cephnode.daemons`: credentials and data stores for monitors, managers and
  metadata servers (`bootstrap_mon`, `join_mon`, `remove_mon`, `gen_monmap`,
  `add_monmap`, `bootstrap_mgr`, `join_mgr`, `bootstrap_mds`, `join_mds`).
- `cephnode.loglevel`: `set_log_level` accepts a name (`"debug"`,
  `"info"`, ...) or a number from 0 (panic) to 6 (trace) and adjusts the
  package's Python logger; `get_log_level` returns the number.
- `cephnode.cluster`: `Paths.from_env`, the `Network` lookups (`HostNetwork`
  reads the host's interfaces through psutil; `get_network`/`set_network`
  swap it), `Database` and `ClusterState`.
- `cephnode.config`: `set_config_item`, `get_config_item`,
  `remove_config_item` and `list_configs` for the supported keys
  (`cluster_network`, `osd_pool_default_crush_rule`); per-host RBD client
  cache values (`client_config_for_host`); `update_config` renders
  `ceph.conf` and `ceph.keyring` from the database.
- `cephnode.crush`: the `microceph_auto_osd` and `microceph_auto_host` rules
  (`ensure_crush_rules`, `set_default_crush_rule`, `default_crush_rule`,
  `pools_for_domain`, `set_pool_crush_rule`, ...).
- `cephnode.osd`: adds OSDs on block devices, optionally wiped and
  LUKS-encrypted, with WAL/DB devices (`add_osd`, `add_single_disk`,
  `add_bulk_disks`), or backed by loop files from a spec such as
  `loop,4G,3` (`parse_backing_spec`, `add_loopback_osds`). Once three members
  hold OSDs, pools move to the host-level rule (`update_failure_domain`).
- `cephnode.rgw`: `enable_rgw` writes `radosgw.conf`, creates and links the
  gateway keyring, records the service and starts it; `disable_rgw` undoes
  that.

## Example

```python
from cephnode import config
from cephnode.types import Config

config.set_config_item(Config(key="cluster_network", value="10.0.0.0/24"))
for item in config.list_configs():
    print(item.key, item.value)
```

Every command goes through the selected runner, so the package can be driven
against a fake one:

```python
from cephnode.runner import Runner, set_runner

class Recorder(Runner):
    def run(self, name, *args, stdin=None, timeout=None):
        print(name, *args)
        return ""

set_runner(Recorder())
```

## Paths

`Paths.from_env` derives paths from the `SNAP_DATA` and `SNAP_COMMON`
environment variables: configuration under `$SNAP_DATA/conf`, runtime files
under `$SNAP_DATA/run`, daemon data under `$SNAP_COMMON/data` and logs under
`$SNAP_COMMON/logs`.

## What it does not do

- `Database` keeps its records in memory for the life of the process; changes
  made inside `Database.transaction()` are undone if the block raises, but
  nothing is persisted or shared with other members.
- There is no bootstrap of a new cluster or joining of an existing one as a
  single operation, no background refresh of `ceph.conf`, no OSD removal or
  pool replication changes, and no restart, placement or deletion of mon,
  mgr and mds services. The building blocks above are the pieces available.
- There is no command-line program and no HTTP API server.

## Tests

```
pip install -e .[test]
pytest
```