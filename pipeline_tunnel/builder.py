import dataclasses
from dataclasses import dataclass, fields

from .exceptions import TunnelConfigError
from .tunnel import Tunnel


REQUIRED = (
    "ssh_host",
    "ssh_port",
    "ssh_user",
    "private_key",
    "public_key",
    "passphrase",
)


@dataclass(frozen=True)
class TunnelConfig:
    ssh_host: str
    ssh_port: int
    ssh_user: str
    private_key: str
    public_key: str
    passphrase: str
    host_fingerprints: tuple = ()
    compression: bool = True
    ready_timeout: float = 2.0
    keep_alive: int = 30
    entry_host: str = "localhost"
    connect_timeout: float | None = 10
    startup_window: float = 1.0
    shutdown_timeout: float = 5.0
    check_target: bool = True

    def __post_init__(self):
        for name in REQUIRED:
            value = getattr(self, name)
            if value is None or (name == "ssh_port" and value <= 0):
                raise TunnelConfigError("{} not set".format(name))
        check_ready_timeout(self.ready_timeout)
        check_keep_alive(self.keep_alive)
        if self.connect_timeout is not None and self.connect_timeout <= 0:
            raise TunnelConfigError("connect_timeout must be greater than zero")
        for name in ("startup_window", "shutdown_timeout"):
            check_not_negative(name, getattr(self, name))
        # Frozen; normalize through object.__setattr__.
        fingerprints = tuple(self.host_fingerprints or ())
        object.__setattr__(self, "host_fingerprints", fingerprints)

    def replace(self, **changes):
        return dataclasses.replace(self, **changes)

    def __repr__(self):
        # Key material stays out of logs and tracebacks.
        bits = [
            "{}={!r}".format(f.name, getattr(self, f.name))
            for f in fields(self)
            if f.name not in ("private_key", "passphrase")
        ]
        return "TunnelConfig({})".format(", ".join(bits))


def check_ready_timeout(value):
    if value is None or value <= 0:
        raise TunnelConfigError("ready_timeout must be greater than zero")
    return value


def check_not_negative(name, value):
    if value is None or value < 0:
        err = "{} must be greater or equal than zero"
        raise TunnelConfigError(err.format(name))
    return value


def check_keep_alive(value):
    return check_not_negative("keep_alive", value)


def tunnel_config(**kwargs):
    return TunnelConfig(**kwargs)


class TunnelBuilder:
    def __init__(self):
        self.ssh_host = None
        self.ssh_port = 0
        self.ssh_user = None
        self.host_fingerprints = []
        self.private_key = None
        self.public_key = None
        self.passphrase = None
        self.compression = True
        self.ready_timeout = 2.0
        self.keep_alive = 30
        self.entry_host = "localhost"
        self.connect_timeout = 10
        self.startup_window = 1.0
        self.shutdown_timeout = 5.0
        self.check_target = True

    @classmethod
    def from_config(cls, config):
        builder = cls()
        builder.ssh_port = config.port
        builder.ssh_user = config.user
        builder.host_fingerprints = list(config.tunnel.host_fingerprints)
        builder.compression = config.tunnel.compression
        builder.entry_host = config.tunnel.entry_host
        builder.check_target = config.tunnel.check_target
        builder.connect_timeout = config.timeouts.connect
        builder.set_startup_window(config.timeouts.startup)
        builder.set_shutdown_timeout(config.timeouts.shutdown)
        builder.set_ready_timeout(config.timeouts.ready)
        builder.set_keep_alive(config.tunnel.keep_alive)
        return builder

    def set_ssh_host(self, ssh_host):
        self.ssh_host = ssh_host
        return self

    def set_ssh_port(self, ssh_port):
        self.ssh_port = ssh_port
        return self

    def set_ssh_user(self, ssh_user):
        self.ssh_user = ssh_user
        return self

    def set_host_fingerprints(self, fingerprints):
        self.host_fingerprints = list(fingerprints or [])
        return self

    def set_private_key(self, private_key):
        self.private_key = private_key
        return self

    def set_public_key(self, public_key):
        self.public_key = public_key
        return self

    def set_passphrase(self, passphrase):
        self.passphrase = passphrase
        return self

    def set_compression(self, compression):
        self.compression = bool(compression)
        return self

    def set_ready_timeout(self, ready_timeout):
        self.ready_timeout = check_ready_timeout(ready_timeout)
        return self

    def set_keep_alive(self, keep_alive):
        self.keep_alive = check_keep_alive(keep_alive)
        return self

    def set_entry_host(self, entry_host):
        self.entry_host = entry_host
        return self

    def set_connect_timeout(self, connect_timeout):
        self.connect_timeout = connect_timeout
        return self

    def set_check_target(self, check_target):
        self.check_target = bool(check_target)
        return self

    def set_startup_window(self, startup_window):
        self.startup_window = check_not_negative(
            "startup_window", startup_window
        )
        return self

    def set_shutdown_timeout(self, shutdown_timeout):
        self.shutdown_timeout = check_not_negative(
            "shutdown_timeout", shutdown_timeout
        )
        return self

    def snapshot(self):
        return TunnelConfig(
            ssh_host=self.ssh_host,
            ssh_port=self.ssh_port,
            ssh_user=self.ssh_user,
            private_key=self.private_key,
            public_key=self.public_key,
            passphrase=self.passphrase,
            host_fingerprints=tuple(self.host_fingerprints),
            compression=self.compression,
            ready_timeout=self.ready_timeout,
            keep_alive=self.keep_alive,
            entry_host=self.entry_host,
            connect_timeout=self.connect_timeout,
            startup_window=self.startup_window,
            shutdown_timeout=self.shutdown_timeout,
            check_target=self.check_target,
        )

    def build(self):
        return Tunnel(self.snapshot())
