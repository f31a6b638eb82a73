"""
Forwarding internals: the accept loop, per-connection relays and the
failure slot shared with the controlling `.Tunnel`.
"""

import select
import socket
import time
from threading import Event, Lock

from invoke.util import ExceptionHandlingThread

from .exceptions import ForwardingError
from .util import debug


class FailureSlot:
    def __init__(self):
        self._lock = Lock()
        self._exception = None
        self._recorded = Event()

    def record(self, exception):
        with self._lock:
            if self._exception is not None:
                return False
            self._exception = exception
        self._recorded.set()
        return True

    @property
    def exception(self):
        with self._lock:
            return self._exception

    def is_set(self):
        return self._recorded.is_set()


class ForwardingWorker(ExceptionHandlingThread):
    accept_interval = 0.01

    def __init__(
        self,
        sock,
        transport,
        remote_host,
        remote_port,
        finished=None,
        check_target=True,
        channel_timeout=None,
    ):
        super().__init__(
            name="tunnel-forwarder-{}".format(sock.getsockname()[1])
        )
        self.sock = sock
        self.local_address = sock.getsockname()[:2]
        self.remote_address = (remote_host, remote_port)
        self.transport = transport
        self.finished = finished if finished is not None else Event()
        self.check_target = check_target
        self.channel_timeout = channel_timeout
        self.failure = FailureSlot()
        self.started = Event()
        self.relays = []

    def _run(self):
        try:
            self._forward()
        except Exception as e:
            if not self.finished.is_set():
                raise self._fail(e)
            debug("Forwarder stopped during {!r}".format(e))
        finally:
            self.started.set()
        self._join_relays()

    def _fail(self, exc):
        err = "Forwarding from '{}:{}' to '{}:{}' failed: {}"
        detail = str(exc) or type(exc).__name__
        error = ForwardingError(
            err.format(*self.local_address, *self.remote_address, detail),
            cause=exc,
        )
        error.__cause__ = exc
        self.failure.record(error)
        return error

    def _forward(self):
        if self.check_target:
            self.open_channel(self.local_address).close()
            debug("Target {}:{} is reachable".format(*self.remote_address))
        self.started.set()
        self.sock.setblocking(False)
        while not self.finished.is_set():
            if not self.transport.is_active():
                if self.finished.is_set():
                    break
                raise ForwardingError("SSH session is no longer active")
            try:
                client, client_address = self.sock.accept()
            except BlockingIOError:
                time.sleep(self.accept_interval)
                continue
            except OSError:
                if self.finished.is_set():
                    break
                raise
            client.setblocking(True)
            try:
                channel = self.open_channel(client_address[:2])
            except Exception:
                client.close()
                raise
            relay = Relay(channel=channel, sock=client, finished=self.finished)
            relay.start()
            self.relays = [x for x in self.relays if self._is_running(x)]
            self.relays.append(relay)

    def open_channel(self, src_addr):
        return self.transport.open_channel(
            kind="direct-tcpip",
            dest_addr=self.remote_address,
            src_addr=src_addr,
            timeout=self.channel_timeout,
        )

    def _is_running(self, relay):
        if relay.is_alive():
            return True
        wrapper = relay.exception()
        if wrapper is not None:
            debug("Relay {} ended with {!r}".format(relay.name, wrapper.value))
        return False

    def _join_relays(self):
        for relay in self.relays:
            relay.join()
            self._is_running(relay)
        self.relays = []


class Relay(ExceptionHandlingThread):
    def __init__(self, channel, sock, finished):
        self.channel = channel
        self.sock = sock
        self.finished = finished
        self.socket_chunk_size = 1024
        self.channel_chunk_size = 1024
        super().__init__()

    def _run(self):
        try:
            empty_sock, empty_chan = None, None
            while not self.finished.is_set():
                r, w, x = select.select([self.sock, self.channel], [], [], 1)
                if self.sock in r:
                    empty_sock = self.read_and_write(
                        self.sock, self.channel, self.socket_chunk_size
                    )
                if self.channel in r:
                    empty_chan = self.read_and_write(
                        self.channel, self.sock, self.channel_chunk_size
                    )
                if empty_sock or empty_chan:
                    break
        finally:
            self.channel.close()
            self.sock.close()

    def read_and_write(self, reader, writer, chunk_size):
        data = reader.recv(chunk_size)
        if len(data) == 0:
            return True
        writer.sendall(data)


def port_is_open(host, port, timeout=1.0):
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError:
        return False
    sock.close()
    return True
