# virtstore

Building blocks for working with libvirt storage from Python.

- **Connection URIs** (`virtstore.uri`): `parse()` turns a
  `driver+transport://host/path?options` URI into a `ConnectionURI`, which reports
  its `driver()`, `transport()` and `remote_name()`. `tls_config()` builds an
  `ssl.SSLContext` from `cacert.pem`, `clientcert.pem` and `clientkey.pem` found in
  the `pkipath` option's directory, or in `~/.pki/libvirt` (non-root) and
  `/etc/pki`. `dial()` opens a connection over the `tcp`, `tls`, `unix` or `ssh`
  transport; any other transport raises `ValueError`.
- **SSH transport** (`virtstore.ssh`): `parse_auth_methods()` collects agent,
  private-key and password credentials according to the `sshauth` and `keyfile`
  options; `dial_ssh()` connects with paramiko, checks the host key against
  `known_hosts` unless `no_verify` or `known_hosts_verify=ignore` is given, and
  relays the remote libvirt socket by running `nc -U` on the remote host.
- **Volume definitions** (`virtstore.volume_def`): a `StorageVolume` dataclass that
  reads (`new_def_volume_from_xml()`) and writes (`to_xml()`) libvirt volume XML.
  `new_def_volume()` gives the default definition: qcow2, mode 644, one byte.
- **Source images** (`virtstore.image`): `new_image()` returns a `LocalImage` for a
  path or `file://` URL and an `HttpImage` for an `http(s)://` URL. Both report
  `size()`, detect qcow2 headers with `is_qcow2()` and pass their content to a
  copier in `import_image()`, skipping the copy when the volume's recorded
  modification time shows it is unchanged. HTTP downloads are retried on 5xx
  responses.
- **XSLT** (`virtstore.xslt`): `transform_xml()` applies a stylesheet with lxml,
  without network or file-write access; `xslt_diff_suppress()` tells whether two
  stylesheets differ only in whitespace.
- **Host capabilities** (`virtstore.domain_def`): `parse_capabilities()` reads
  capabilities XML into `Caps`; `get_canonical_machine_name()` and
  `get_original_machine_name()` map machine types to canonical names and back;
  `split_kernel_cmdline()` splits a kernel command line into key/value maps.
- **Networking and misc** (`virtstore.net`, `virtstore.utils`): random
  libvirt-prefixed MAC addresses, the usable address range of a network (at most
  65536 hosts), disk letters (`a`..`z`, `aa`..), UUID conversion, yes/no
  formatting, epoch timestamps and a retry helper, `wait_for_success()`.

## Installation

```
pip install virtstore
```

## Examples

```python
from virtstore.uri import parse

u = parse("qemu+ssh://host.example.com/system")
print(u.driver(), u.transport(), u.remote_name())   # qemu ssh qemu:///system
```

```python
from virtstore.image import new_image
from virtstore.volume_def import new_def_volume

img = new_image("file:///var/lib/images/base.qcow2")
vol = new_def_volume()
if img.is_qcow2():
    vol.target.format.type = "qcow2"
vol.capacity.unit = "B"
vol.capacity.value = img.size()
print(vol.to_xml())
```

```python
import ipaddress
from virtstore.net import network_range, random_mac_address

first, last = network_range(ipaddress.ip_network("192.168.18.0/24"))
print(first, last)            # 192.168.18.0 192.168.18.255
print(random_mac_address())   # 52:54:00:xx:xx:xx
```

```python
from virtstore.domain_def import split_kernel_cmdline

split_kernel_cmdline("console=ttyS0 quiet")
# [{'console': 'ttyS0'}, {'_': 'quiet'}]
```

## What it does not do

The package does not speak the libvirt RPC protocol. `ConnectionURI.dial()` only
returns an open socket or SSH channel; it does not create, start, refresh or delete
storage pools or volumes, and there is no command-line tool. Callers supply their
own client and pass a copier function to `import_image()` to upload data.

## Running the tests

```
pip install -e ".[test]"
pytest
```