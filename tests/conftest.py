import select
import socket
import socketserver
import threading
from io import StringIO

import paramiko
import pytest

from pipeline_tunnel import TunnelBuilder, tunnel_config


def private_key_text(key, password=None):
    buf = StringIO()
    key.write_private_key(buf, password=password)
    return buf.getvalue()


def public_key_text(key):
    return "{} {} tests@pipeline-tunnel".format(key.get_name(), key.get_base64())


def minimal_config(**kwargs):
    settings = dict(
        ssh_host="bastion",
        ssh_port=22,
        ssh_user="etl",
        private_key="private",
        public_key="public",
        passphrase="",
    )
    settings.update(kwargs)
    return tunnel_config(**settings)


def free_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def echo(host, port, payload=b"ping", timeout=2):
    received = b""
    with socket.create_connection((host, port), timeout=timeout) as sock:
        sock.sendall(payload)
        while len(received) < len(payload):
            chunk = sock.recv(1024)
            if not chunk:
                break
            received += chunk
    return received


def pump(channel, sock):
    try:
        while True:
            r, _, _ = select.select([channel, sock], [], [], 0.5)
            if channel in r:
                data = channel.recv(4096)
                if not data:
                    break
                sock.sendall(data)
            if sock in r:
                data = sock.recv(4096)
                if not data:
                    break
                channel.sendall(data)
    except (OSError, EOFError, paramiko.SSHException):
        pass
    finally:
        channel.close()
        sock.close()


class ForwardingServerInterface(paramiko.ServerInterface):
    def __init__(self, username, authorized_key):
        self.username = username
        self.authorized_key = authorized_key
        self.destinations = {}

    def get_allowed_auths(self, username):
        return "publickey"

    def check_auth_publickey(self, username, key):
        if username == self.username and key == self.authorized_key:
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_channel_request(self, kind, chanid):
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_direct_tcpip_request(self, chanid, origin, destination):
        try:
            sock = socket.create_connection(destination, timeout=2)
        except OSError:
            return paramiko.OPEN_FAILED_CONNECT_FAILED
        self.destinations[chanid] = sock
        return paramiko.OPEN_SUCCEEDED


class SSHServer:
    """
    Minimal in-process SSH server allowing public key auth for one user and
    ``direct-tcpip`` channels to anywhere reachable from this host.
    """

    def __init__(self, host_key, username, authorized_key):
        self.host_key = host_key
        self.username = username
        self.authorized_key = authorized_key
        self.sock = socket.socket()
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(16)
        self.sock.settimeout(0.2)
        self.host, self.port = self.sock.getsockname()
        self.transports = []
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self):
        self._thread.start()
        return self

    def _serve(self):
        while not self._stopped.is_set():
            try:
                conn, _ = self.sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            threading.Thread(
                target=self._handle, args=(conn,), daemon=True
            ).start()

    def _handle(self, conn):
        conn.settimeout(None)
        transport = paramiko.Transport(conn)
        transport.add_server_key(self.host_key)
        self.transports.append(transport)
        interface = ForwardingServerInterface(
            self.username, self.authorized_key
        )
        try:
            transport.start_server(server=interface)
        except (paramiko.SSHException, EOFError, OSError):
            return
        while transport.is_active() and not self._stopped.is_set():
            channel = transport.accept(0.2)
            if channel is None:
                continue
            target = interface.destinations.pop(channel.get_id(), None)
            if target is None:
                channel.close()
                continue
            threading.Thread(
                target=pump, args=(channel, target), daemon=True
            ).start()

    def drop_sessions(self):
        for transport in list(self.transports):
            transport.close()

    def close(self):
        self._stopped.set()
        self.sock.close()
        self.drop_sessions()
        self._thread.join(2)


class EchoHandler(socketserver.BaseRequestHandler):
    def handle(self):
        try:
            while True:
                data = self.request.recv(4096)
                if not data:
                    break
                self.request.sendall(data)
        except OSError:
            pass


class EchoServer(socketserver.ThreadingTCPServer):
    allow_reuse_address = True
    daemon_threads = True


@pytest.fixture(scope="session")
def host_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def client_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def stranger_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def ssh_server(host_key, client_key):
    server = SSHServer(host_key, "etl", client_key).start()
    yield server
    server.close()


@pytest.fixture
def echo_server():
    server = EchoServer(("127.0.0.1", 0), EchoHandler)
    thread = threading.Thread(
        target=server.serve_forever, kwargs=dict(poll_interval=0.1), daemon=True
    )
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def echo_port(echo_server):
    return echo_server.server_address[1]


@pytest.fixture
def builder(ssh_server, client_key):
    return (
        TunnelBuilder()
        .set_ssh_host(ssh_server.host)
        .set_ssh_port(ssh_server.port)
        .set_ssh_user("etl")
        .set_host_fingerprints([])
        .set_private_key(private_key_text(client_key))
        .set_public_key(public_key_text(client_key))
        .set_passphrase("")
        .set_ready_timeout(2.0)
        .set_connect_timeout(5)
    )


@pytest.fixture
def tunnel(builder):
    tunnel = builder.build()
    yield tunnel
    if tunnel.is_running:
        tunnel.stop()
