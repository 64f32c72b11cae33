"""Libvirt connection URIs and the transports they name."""

from __future__ import annotations

import logging
import os
import re
import socket
import ssl
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, unquote, urlsplit

log = logging.getLogger(__name__)

DIAL_TIMEOUT = 2.0

DEFAULT_TCP_PORT = "16509"
DEFAULT_TLS_PORT = "16514"
DEFAULT_UNIX_SOCK = "/var/run/libvirt/libvirt-sock"

CA_CERT_NAME = "cacert.pem"
CLIENT_CERT_NAME = "clientcert.pem"
CLIENT_KEY_NAME = "clientkey.pem"

DEFAULT_USER_PKI_PATH = "${HOME}/.pki/libvirt"
DEFAULT_GLOBAL_CA_CERT_PATH = "/etc/pki/CA"
DEFAULT_GLOBAL_CLIENT_CERT_PATH = "/etc/pki/libvirt"
DEFAULT_GLOBAL_CLIENT_KEY_PATH = "/etc/pki/libvirt/private"

_ENV_VAR = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z0-9_]+)")
_OPTIONAL_PORT = re.compile(r":[0-9]*")
_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


def _expand_env(text: str) -> str:
    """Replace ``$VAR`` and ``${VAR}`` with their values; unset ones become empty."""
    return _ENV_VAR.sub(
        lambda m: os.environ.get(m.group(1) if m.group(1) is not None else m.group(2), ""),
        text,
    )


def _format_url(
    scheme: str,
    userinfo: Optional[str],
    host: str,
    path: str,
    raw_query: str,
    fragment: str,
) -> str:
    out = f"{scheme}:" if scheme else ""
    if scheme or host or userinfo is not None:
        if host or path or userinfo is not None:
            out += "//"
        if userinfo is not None:
            out += userinfo + "@"
        out += host
    if path and not path.startswith("/") and host:
        out += "/"
    out += path
    if raw_query:
        out += "?" + raw_query
    if fragment:
        out += "#" + fragment
    return out


def _split_host_port(host_port: str) -> Tuple[str, str]:
    host, port = host_port, ""
    colon = host_port.rfind(":")
    if colon != -1 and _OPTIONAL_PORT.fullmatch(host_port[colon:]):
        host, port = host_port[:colon], host_port[colon + 1:]
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port


@dataclass(frozen=True)
class ConnectionURI:
    """A parsed libvirt connection URI such as ``qemu+ssh://host/system``."""

    scheme: str
    userinfo: Optional[str]
    host: str
    path: str
    raw_query: str
    fragment: str

    def __str__(self) -> str:
        return _format_url(
            self.scheme, self.userinfo, self.host, self.path, self.raw_query, self.fragment
        )

    @property
    def query(self) -> Dict[str, List[str]]:
        values: Dict[str, List[str]] = {}
        for key, value in parse_qsl(self.raw_query, keep_blank_values=True):
            values.setdefault(key, []).append(value)
        return values

    def param(self, name: str) -> str:
        """Return the first value of query parameter ``name``, or an empty string."""
        return self.query.get(name, [""])[0]

    @property
    def username(self) -> str:
        if self.userinfo is None:
            return ""
        return unquote(self.userinfo.split(":", 1)[0])

    @property
    def password(self) -> Optional[str]:
        if self.userinfo is None or ":" not in self.userinfo:
            return None
        return unquote(self.userinfo.split(":", 1)[1])

    @property
    def hostname(self) -> str:
        return _split_host_port(self.host)[0]

    @property
    def port(self) -> str:
        return _split_host_port(self.host)[1]

    def remote_name(self) -> str:
        """Return the name the remote daemon should open.

        This is the ``name`` parameter when given; otherwise the URI with the
        transport, host, port and query removed.
        """
        name = self.param("name")
        if name:
            return name
        return _format_url(self.driver(), self.userinfo, "", self.path, "", self.fragment)

    def transport(self) -> str:
        parts = self.scheme.split("+")
        if len(parts) > 1:
            return parts[1]
        if self.host:
            return "tls"
        return "unix"

    def driver(self) -> str:
        return self.scheme.split("+")[0]

    def dial(self):
        """Open a connection to libvirtd over the transport this URI names."""
        transport = self.transport()
        if transport == "tcp":
            return self._dial_tcp()
        if transport == "tls":
            return self._dial_tls()
        if transport == "unix":
            return self._dial_unix()
        if transport == "ssh":
            from .ssh import dial_ssh

            return dial_ssh(self)
        raise ValueError(f"transport '{transport}' not implemented")

    def _dial_tcp(self) -> socket.socket:
        port = self.port or DEFAULT_TCP_PORT
        sock = socket.create_connection((self.hostname, int(port)), timeout=DIAL_TIMEOUT)
        sock.settimeout(None)
        return sock

    def _dial_unix(self) -> socket.socket:
        address = self.param("socket") or DEFAULT_UNIX_SOCK
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.settimeout(DIAL_TIMEOUT)
            sock.connect(address)
            sock.settimeout(None)
        except BaseException:
            sock.close()
            raise
        return sock

    def _dial_tls(self) -> ssl.SSLSocket:
        port = self.port or DEFAULT_TLS_PORT
        context = self.tls_config()
        sock = socket.create_connection((self.hostname, int(port)))
        try:
            return context.wrap_socket(sock, server_hostname=self.hostname)
        except BaseException:
            sock.close()
            raise

    def tls_config(self) -> ssl.SSLContext:
        """Build the client TLS context from the certificates libvirt expects."""
        ca_search = [DEFAULT_GLOBAL_CA_CERT_PATH]
        cert_search = [DEFAULT_GLOBAL_CLIENT_CERT_PATH]
        key_search = [DEFAULT_GLOBAL_CLIENT_KEY_PATH]

        pki_path = self.param("pkipath")
        if pki_path:
            # certificates must all be in the given directory
            ca_search = cert_search = key_search = [pki_path]
        elif not am_i_root():
            user_pki = _expand_env(DEFAULT_USER_PKI_PATH)
            ca_search = [user_pki, *ca_search]
            cert_search = [user_pki, *cert_search]
            key_search = [user_pki, *key_search]

        ca_cert_path = find_resource(CA_CERT_NAME, *ca_search)
        client_cert_path = find_resource(CLIENT_CERT_NAME, *cert_search)
        client_key_path = find_resource(CLIENT_KEY_NAME, *key_search)

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        try:
            context.load_verify_locations(cafile=ca_cert_path)
        except ssl.SSLError as exc:
            raise ValueError(f"failed to parse CA certificate '{ca_cert_path}'") from exc
        context.load_cert_chain(client_cert_path, client_key_path)

        if non_zero(self.param("no_verify")):
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context


def parse(uri_str: str) -> ConnectionURI:
    """Parse a libvirt connection URI; raise ValueError if it is malformed."""
    parts = urlsplit(uri_str)
    userinfo: Optional[str] = None
    host = parts.netloc
    if "@" in host:
        userinfo, _, host = host.rpartition("@")
    return ConnectionURI(
        scheme=parts.scheme,
        userinfo=userinfo,
        host=host,
        path=parts.path,
        raw_query=parts.query,
        fragment=parts.fragment,
    )


def find_resource(name: str, *dirs: str) -> str:
    """Return the path of the first regular file ``name`` found in ``dirs``."""
    for directory in dirs:
        path = os.path.join(_expand_env(directory), name)
        try:
            st = os.stat(path)
        except FileNotFoundError:
            continue
        if os.path.isdir(path) or not os.path.exists(path) or st is None:
            raise IsADirectoryError(f"resource '{path}' is not a file")
        return path
    raise FileNotFoundError(f"can't locate resource '{name}' in {list(dirs)}")


def am_i_root() -> bool:
    """Tell whether the current user is root."""
    getuid = getattr(os, "getuid", None)
    if getuid is None:
        return False
    return getuid() == 0


def non_zero(s: str) -> bool:
    """Tell whether ``s`` is a non-zero number or a non-empty non-number."""
    if _INTEGER.fullmatch(s):
        n = int(s)
        if n < _INT64_MIN or n > _INT64_MAX:
            return False
        return n != 0
    return len(s) > 0