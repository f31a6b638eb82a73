import threading

from conftest import SSHServer


def test_ssh_server_closes_cleanly_right_after_start(
    host_key, client_key, monkeypatch
):
    errors = []
    monkeypatch.setattr(threading, "excepthook", errors.append)
    for _ in range(20):
        server = SSHServer(host_key, "etl", client_key).start()
        server.close()
        assert not server._thread.is_alive()
    assert errors == []
