"""SSH transport to a remote libvirt daemon."""

from __future__ import annotations

import getpass
import io
import logging
import os
import shlex
import socket
from typing import List, Union

import paramiko

from .uri import DEFAULT_UNIX_SOCK, DIAL_TIMEOUT, ConnectionURI, _expand_env

log = logging.getLogger(__name__)

DEFAULT_SSH_PORT = "22"
DEFAULT_SSH_KEY_PATH = "${HOME}/.ssh/id_rsa"
DEFAULT_SSH_KNOWN_HOSTS_PATH = "${HOME}/.ssh/known_hosts"
DEFAULT_SSH_AUTH_METHODS = "agent,privkey"

AuthMethod = Union[paramiko.PKey, str]

_KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


def _agent_keys(socket_path: str) -> list[paramiko.PKey] | None:
    """Return the keys held by the agent behind ``socket_path``, or None."""
    if not hasattr(socket, "AF_UNIX"):
        log.error("Unable to connect to SSH agent: unix sockets are unsupported")
        return None
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as probe:
            probe.connect(socket_path)
        return list(paramiko.Agent().get_keys())
    except (OSError, paramiko.SSHException) as exc:
        log.error("Unable to connect to SSH agent: %s", exc)
        return None


def _load_private_key(data: str) -> paramiko.PKey:
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(data))
        except (paramiko.SSHException, ValueError):
            continue
    raise paramiko.SSHException("unsupported or unreadable private key")


def parse_auth_methods(uri: ConnectionURI) -> List[AuthMethod]:
    """Collect the authentication methods named by the ``sshauth`` parameter.

    Agent and private-key methods yield keys; the password method yields the
    password string from the URI. Methods that cannot be set up are skipped.
    """
    auth_methods = uri.param("sshauth") or DEFAULT_SSH_AUTH_METHODS
    key_path = uri.param("keyfile") or DEFAULT_SSH_KEY_PATH

    result: List[AuthMethod] = []
    for method in auth_methods.split(","):
        if method == "agent":
            agent_socket = os.environ.get("SSH_AUTH_SOCK", "")
            if not agent_socket:
                continue
            keys = _agent_keys(agent_socket)
            if keys is not None:
                result.extend(keys)
        elif method == "privkey":
            try:
                with open(_expand_env(key_path), encoding="utf-8") as file:
                    key_text = file.read()
            except (OSError, UnicodeDecodeError) as exc:
                log.error("Failed to read ssh key: %s", exc)
                continue
            try:
                result.append(_load_private_key(key_text))
            except paramiko.SSHException as exc:
                log.error("Failed to parse ssh key: %s", exc)
        elif method == "ssh-password":
            password = uri.password
            if password is not None:
                result.append(password)
            else:
                log.error("Missing password in userinfo of URI authority section")
        else:
            # warn rather than fail, for forward compatibility
            log.warning("Unsupported auth method: %s", method)
    return result


def _host_key_name(hostname: str, port: str) -> str:
    if port == DEFAULT_SSH_PORT:
        return hostname
    return f"[{hostname}]:{port}"


def _authenticate(
    transport: paramiko.Transport, username: str, methods: List[AuthMethod]
) -> None:
    for method in methods:
        try:
            if isinstance(method, str):
                transport.auth_password(username, method)
            else:
                transport.auth_publickey(username, method)
        except paramiko.AuthenticationException as exc:
            log.debug("SSH authentication method failed: %s", exc)
            continue
        if transport.is_authenticated():
            return
    raise paramiko.AuthenticationException(
        f"unable to authenticate as {username}: no method succeeded"
    )


def dial_ssh(uri: ConnectionURI) -> paramiko.Channel:
    """Open a stream to the remote libvirt socket over SSH.

    The stream is relayed by running ``nc -U`` on the remote host.
    """
    auth_methods = parse_auth_methods(uri)
    if not auth_methods:
        raise ValueError("could not configure SSH authentication methods")

    known_hosts_path = uri.param("knownhosts") or DEFAULT_SSH_KNOWN_HOSTS_PATH
    do_verify = uri.param("no_verify") == ""
    if uri.param("known_hosts_verify") == "ignore":
        do_verify = False

    host_keys: paramiko.HostKeys | None = None
    if do_verify:
        host_keys = paramiko.HostKeys()
        try:
            host_keys.load(_expand_env(known_hosts_path))
        except OSError as exc:
            raise OSError(f"failed to read ssh known hosts: {exc}") from exc

    username = uri.username or getpass.getuser()
    port = uri.port or DEFAULT_SSH_PORT
    hostname = uri.hostname

    sock = socket.create_connection((hostname, int(port)), timeout=DIAL_TIMEOUT)
    transport = paramiko.Transport(sock)
    try:
        transport.start_client(timeout=DIAL_TIMEOUT)
        if host_keys is not None:
            name = _host_key_name(hostname, port)
            server_key = transport.get_remote_server_key()
            if not host_keys.check(name, server_key):
                raise paramiko.SSHException(
                    f"ssh host key verification failed for {name}"
                )
        _authenticate(transport, username, auth_methods)
        sock.settimeout(None)

        address = uri.param("socket") or DEFAULT_UNIX_SOCK
        try:
            channel = transport.open_session(timeout=DIAL_TIMEOUT)
            channel.exec_command(f"nc -U {shlex.quote(address)}")
        except (paramiko.SSHException, OSError) as exc:
            raise ConnectionError(
                f"failed to connect to libvirt on the remote host: {exc}"
            ) from exc
        return channel
    except BaseException:
        transport.close()
        raise