import socket
import time
from getpass import getpass
from pathlib import Path

from invoke import Exit, task
from paramiko import SSHException, Transport

from .auth import fingerprints
from .builder import TunnelBuilder
from .exceptions import TunnelError
from .util import split_address


def read_key(path):
    try:
        return Path(path).expanduser().read_text()
    except OSError as e:
        raise Exit("Could not read key file {!r}: {}".format(path, e), code=1)


@task(
    iterable=["fingerprint"],
    help={
        "host": "SSH server to tunnel through; ssh_config aliases are honored.",
        "target": "host:port to reach from the SSH server.",
        "user": "SSH user. Defaults to ssh_config, then the local user.",
        "port": "SSH port. Defaults to ssh_config, then 22.",
        "identity": "Private key file. Defaults to the first ssh_config IdentityFile.",  # noqa
        "public-key": "Public key file. Defaults to the identity path plus '.pub'.",  # noqa
        "fingerprint": "Accepted host key fingerprint. May be given multiple times.",  # noqa
        "prompt-for-passphrase": "Request an upfront private key passphrase prompt.",  # noqa
        "interval": "Seconds between health checks.",
    },
)
def forward(
    c,
    host,
    target,
    user=None,
    port=None,
    identity=None,
    public_key=None,
    fingerprint=None,
    prompt_for_passphrase=False,
    interval=10,
):
    """
    Open a tunnel to ``target`` and keep it up until interrupted.
    """
    resolved = c.config.lookup_host(host)
    if identity is None and resolved["identities"]:
        identity = resolved["identities"][0]
    if identity is None:
        raise Exit("No identity file given, use --identity", code=1)
    if public_key is None:
        public_key = "{}.pub".format(identity)
    passphrase = ""
    if prompt_for_passphrase:
        passphrase = getpass("Enter passphrase for {}: ".format(identity))
    target_host, target_port = split_address(target)
    builder = (
        TunnelBuilder.from_config(c.config)
        .set_ssh_host(resolved["host"])
        .set_ssh_port(int(port or resolved["port"]))
        .set_ssh_user(user or resolved["user"])
        .set_private_key(read_key(identity))
        .set_public_key(read_key(public_key))
        .set_passphrase(passphrase)
    )
    if fingerprint:
        builder.set_host_fingerprints(fingerprint)
    tunnel = builder.build()
    try:
        tunnel.start(target_host, target_port)
    except TunnelError as e:
        raise Exit(str(e), code=1)
    print(
        "Forwarding {}:{} -> {}:{} via {}".format(
            tunnel.entry_host, tunnel.entry_port, target_host, target_port, host
        )
    )
    try:
        while True:
            time.sleep(float(interval))
            tunnel.health_check()
    except KeyboardInterrupt:
        pass
    except TunnelError as e:
        raise Exit(str(e), code=1)
    finally:
        if tunnel.is_running:
            tunnel.stop()


@task(help={"host": "SSH server to query.", "port": "SSH port."})
def fingerprint(c, host, port=None):
    """
    Print the host key fingerprints an SSH server presents.
    """
    resolved = c.config.lookup_host(host)
    address = (resolved["host"], int(port or resolved["port"]))
    timeout = c.config.timeouts.connect
    try:
        sock = socket.create_connection(address, timeout=timeout)
    except OSError as e:
        err = "Could not connect to '{}:{}', error: {}"
        raise Exit(err.format(*address, e), code=1)
    transport = Transport(sock)
    try:
        transport.start_client(timeout=timeout)
        key = transport.get_remote_server_key()
    except (SSHException, EOFError, OSError) as e:
        err = "SSH handshake with '{}:{}' failed, error: {}"
        raise Exit(err.format(*address, e), code=1)
    finally:
        transport.close()
    for value in fingerprints(key).values():
        print("{} {}".format(key.get_name(), value))
