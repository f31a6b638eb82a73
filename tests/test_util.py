import pytest

from pipeline_tunnel import (
    ErrorCode,
    ForwardingBrokenError,
    ForwardingError,
    HostKeyVerificationError,
    TunnelConnectionError,
    TunnelError,
    TunnelNotRunningError,
    TunnelStartError,
)
from pipeline_tunnel.util import split_address


class TestSplitAddress:
    def test_host_and_port(self):
        assert split_address("db.internal:5432") == ("db.internal", 5432)

    def test_bracketed_ipv6(self):
        assert split_address("[::1]:5432") == ("::1", 5432)

    def test_default_port(self):
        assert split_address("db.internal", 22) == ("db.internal", 22)

    def test_missing_port(self):
        with pytest.raises(ValueError, match="missing a port"):
            split_address("db.internal")

    def test_bad_port(self):
        with pytest.raises(ValueError):
            split_address("db.internal:postgres")


class TestErrors:
    def test_codes(self):
        assert ErrorCode.SSH_TUNNEL_00.format() == "SSH tunnel is not running"
        assert (
            ErrorCode.SSH_TUNNEL_01.format("boom")
            == "Could not start SSH tunnel: boom"
        )
        assert ErrorCode.SSH_TUNNEL_02.format() == (
            "SSH tunnel port forwarding is broken"
        )

    def test_message_from_code_and_cause(self):
        cause = TunnelConnectionError("refused")
        error = TunnelStartError(cause=cause)
        assert str(error) == "Could not start SSH tunnel: refused"
        assert error.cause is cause
        assert error.code is ErrorCode.SSH_TUNNEL_01

    def test_message_from_code_alone(self):
        assert str(TunnelNotRunningError()) == "SSH tunnel is not running"

    def test_explicit_message_wins(self):
        error = ForwardingBrokenError("custom", cause=ForwardingError("x"))
        assert str(error) == "custom"
        assert error.code is ErrorCode.SSH_TUNNEL_02

    def test_plain_errors_have_no_code(self):
        error = ForwardingError("lost")
        assert error.code is None
        assert error.cause is None

    def test_hierarchy(self):
        error = HostKeyVerificationError("bad", fingerprints=["SHA256:x"])
        assert isinstance(error, TunnelConnectionError)
        assert isinstance(error, TunnelError)
        assert error.fingerprints == ("SHA256:x",)
