from enum import Enum


class ErrorCode(Enum):
    """
    Stable identifiers for the failures a running pipeline stage reports.

    The message templates accept a single positional argument, normally the
    underlying cause.
    """

    SSH_TUNNEL_00 = "SSH tunnel is not running"
    SSH_TUNNEL_01 = "Could not start SSH tunnel: {}"
    SSH_TUNNEL_02 = "SSH tunnel port forwarding is broken: {}"

    def format(self, *args):
        if "{}" in self.value and not args:
            return self.value.replace(": {}", "")
        return self.value.format(*args)


class TunnelError(Exception):
    """
    Base class for every error raised by this package.

    Instances built from an `ErrorCode` expose it as ``code``; the
    originating exception, if any, is available as ``cause`` (and is also
    chained as ``__cause__`` by the raising code).
    """

    code = None

    def __init__(self, message=None, cause=None):
        if message is None and self.code is not None:
            if cause is None:
                message = self.code.format()
            else:
                message = self.code.format(cause)
        super().__init__(message)
        self.cause = cause


class TunnelConfigError(TunnelError, ValueError):
    """
    A required tunnel setting is missing or has an invalid value.

    Raised at configuration time (setters, `TunnelBuilder.build`,
    `TunnelConfig` construction); never reaches `Tunnel.start`.
    """

    pass


class TunnelStateError(TunnelError, RuntimeError):
    """
    A lifecycle method was called in a state that does not allow it.

    E.g. starting an already running tunnel, or stopping a stopped one.
    """

    pass


class TunnelConnectionError(TunnelError):
    """
    The SSH endpoint was unreachable, refused the connection, or the SSH
    handshake with it failed.
    """

    pass


class HostKeyVerificationError(TunnelConnectionError):
    """
    The SSH server presented a host key matching none of the configured
    fingerprints.
    """

    def __init__(self, message=None, fingerprints=()):
        super().__init__(message)
        self.fingerprints = tuple(fingerprints)


class TunnelAuthenticationError(TunnelError):
    """
    The key material could not be loaded, or the server rejected it.
    """

    pass


class TunnelBindError(TunnelError):
    """
    No local ephemeral port could be bound for the tunnel entry endpoint.
    """

    pass


class ReadinessTimeoutError(TunnelError):
    """
    The tunnel entry endpoint never became connectable within the configured
    ready timeout.
    """

    pass


class ForwardingError(TunnelError):
    """
    The forwarding worker failed while accepting or relaying connections.

    Recorded once by the worker; surfaced to callers either from `Tunnel.start`
    (wrapped in `TunnelStartError`) or later from `Tunnel.health_check`
    (wrapped in `ForwardingBrokenError`).
    """

    pass


class TunnelStartError(TunnelError):
    """
    `Tunnel.start` failed. ``cause`` holds the specific reason.
    """

    code = ErrorCode.SSH_TUNNEL_01


class ForwardingBrokenError(TunnelError):
    """
    The tunnel was started but its forwarding worker has since failed.
    """

    code = ErrorCode.SSH_TUNNEL_02


class TunnelNotRunningError(TunnelError):
    """
    The tunnel has no forwarding worker attached: it was never started, has
    been stopped, or its worker is gone.
    """

    code = ErrorCode.SSH_TUNNEL_00
