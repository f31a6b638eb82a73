import socket
import time
from contextlib import contextmanager
from enum import Enum
from threading import RLock

from decorator import decorator
from paramiko import SSHException, Transport

from .auth import KeyPairAuthStrategy, host_key_policy
from .exceptions import (
    ForwardingBrokenError,
    ReadinessTimeoutError,
    TunnelBindError,
    TunnelConnectionError,
    TunnelNotRunningError,
    TunnelStartError,
    TunnelStateError,
)
from .tunnels import ForwardingWorker, port_is_open
from .util import debug, log


READY_POLL_INTERVAL = 0.1
PROBE_TIMEOUT = 1.0


@decorator
def locked(method, self, *args, **kwargs):
    with self._lock:
        return method(self, *args, **kwargs)


class TunnelState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class HealthState(Enum):
    HEALTHY = "healthy"
    BROKEN = "broken"
    NOT_RUNNING = "not running"


def health_state(failure_recorded, worker_attached):
    if failure_recorded:
        return HealthState.BROKEN
    if not worker_attached:
        return HealthState.NOT_RUNNING
    return HealthState.HEALTHY


class Tunnel:
    def __init__(self, config):
        self._config = config
        self._lock = RLock()
        self._state = TunnelState.IDLE
        self._entry_host = config.entry_host
        self._entry_port = -1
        self._transport = None
        self._server_socket = None
        self._worker = None

    @property
    def config(self):
        return self._config

    @property
    def entry_host(self):
        return self._entry_host

    @property
    def entry_port(self):
        return self._entry_port

    def get_tunnel_entry_host(self):
        return self._entry_host

    def get_tunnel_entry_port(self):
        return self._entry_port

    @property
    def state(self):
        return self._state

    @property
    def is_running(self):
        return self._entry_port != -1

    def __repr__(self):
        return "<Tunnel {}@{}:{} entry={}:{} state={}>".format(
            self._config.ssh_user,
            self._config.ssh_host,
            self._config.ssh_port,
            self._entry_host,
            self._entry_port,
            self._state.value,
        )

    @locked
    def start(self, target_host, target_port):
        if self._entry_port != -1 or self._state is not TunnelState.IDLE:
            raise TunnelStateError("Already running")
        self._state = TunnelState.STARTING
        try:
            self._connect()
            self._bind()
            self._spawn(target_host, target_port)
            self._wait_until_ready()
        except BaseException as e:
            self._teardown()
            self._entry_port = -1
            self._state = TunnelState.IDLE
            if isinstance(e, Exception):
                raise TunnelStartError(cause=e) from e
            raise
        self._state = TunnelState.RUNNING
        debug(
            "Started tunnel from '{}:{}' to '{}:{}' via '{}:{}'".format(
                self._entry_host,
                self._entry_port,
                target_host,
                target_port,
                self._config.ssh_host,
                self._config.ssh_port,
            )
        )

    def _connect(self):
        config = self._config
        policy = host_key_policy(config)
        address = (config.ssh_host, config.ssh_port)
        try:
            sock = socket.create_connection(
                address, timeout=config.connect_timeout
            )
        except OSError as e:
            err = "Could not connect via SSH to '{}:{}', error: {}"
            raise TunnelConnectionError(err.format(*address, e)) from e
        try:
            transport = Transport(sock)
        except Exception:
            sock.close()
            raise
        self._transport = transport
        transport.use_compression(config.compression)
        try:
            transport.start_client(timeout=config.connect_timeout)
        except (SSHException, EOFError, OSError) as e:
            err = "SSH handshake with '{}:{}' failed, error: {}"
            raise TunnelConnectionError(err.format(*address, e)) from e
        policy.missing_host_key(
            None, "{}:{}".format(*address), transport.get_remote_server_key()
        )
        KeyPairAuthStrategy.from_config(config).authenticate(transport)
        transport.set_keepalive(config.keep_alive)

    def _bind(self):
        sock = None
        try:
            infos = socket.getaddrinfo(
                self._entry_host, 0, type=socket.SOCK_STREAM
            )
            family, _, _, _, address = sorted(
                infos, key=lambda x: x[0] != socket.AF_INET
            )[0]
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            # Port 0 lets the OS pick a free port.
            sock.bind(address[:2])
            sock.listen(socket.SOMAXCONN)
        except OSError as e:
            if sock is not None:
                sock.close()
            err = "Could not bind to '{}' on an ephemeral port, error: {}"
            raise TunnelBindError(err.format(self._entry_host, e)) from e
        self._server_socket = sock
        self._entry_port = sock.getsockname()[1]

    def _spawn(self, target_host, target_port):
        worker = ForwardingWorker(
            sock=self._server_socket,
            transport=self._transport,
            remote_host=target_host,
            remote_port=target_port,
            check_target=self._config.check_target,
            channel_timeout=self._config.connect_timeout,
        )
        self._worker = worker
        worker.start()
        worker.started.wait(self._config.startup_window)

    def _wait_until_ready(self):
        worker = self._worker
        self._raise_failure(worker)
        retries = round(self._config.ready_timeout * 1000) // 100
        while retries > 0:
            retries -= 1
            self._raise_failure(worker)
            # The listener queues connections before the worker accepts them.
            if worker.started.is_set() and port_is_open(
                self._entry_host, self._entry_port, PROBE_TIMEOUT
            ):
                self._raise_failure(worker)
                return
            time.sleep(READY_POLL_INTERVAL)
        raise ReadinessTimeoutError("Port forwarding failed to start")

    @staticmethod
    def _raise_failure(worker):
        if worker.failure.is_set():
            raise worker.failure.exception

    def health_check(self):
        state, failure = self._health()
        if state is HealthState.BROKEN:
            raise ForwardingBrokenError(cause=failure) from failure
        if state is HealthState.NOT_RUNNING:
            raise TunnelNotRunningError()

    @property
    def health(self):
        return self._health()[0]

    def _health(self):
        worker = self._worker
        if worker is None:
            return health_state(False, False), None
        failure = worker.failure.exception
        state = health_state(failure is not None, worker.is_alive())
        return state, failure

    @locked
    def stop(self):
        if self._entry_port == -1:
            raise TunnelStateError("Not running")
        port = self._entry_port
        self._entry_port = -1
        self._state = TunnelState.STOPPING
        debug(
            "Stopping tunnel from '{}:{}' via '{}:{}'".format(
                self._entry_host,
                port,
                self._config.ssh_host,
                self._config.ssh_port,
            )
        )
        try:
            self._teardown()
        finally:
            self._state = TunnelState.IDLE

    def _teardown(self):
        worker = self._worker
        if worker is not None:
            worker.finished.set()
        if self._server_socket is not None:
            try:
                self._server_socket.close()
            except OSError as e:
                log.error(
                    "Could not close tunnel listener on '%s', error: %s",
                    self._entry_host,
                    e,
                )
            finally:
                self._server_socket = None
        if self._transport is not None:
            try:
                self._transport.close()
            except Exception as e:
                log.warning("Error while disconnecting SSH session: %s", e)
            finally:
                self._transport = None
        if worker is not None:
            worker.join(self._config.shutdown_timeout)
            if worker.is_alive():
                log.warning(
                    "Forwarding worker %s did not stop within %ss",
                    worker.name,
                    self._config.shutdown_timeout,
                )
            self._worker = None

    @contextmanager
    def forwarding(self, target_host, target_port):
        self.start(target_host, target_port)
        try:
            yield self._entry_host, self._entry_port
        finally:
            if self.is_running:
                self.stop()
