from ._version import __version_info__, __version__
from .config import Config
from .builder import TunnelBuilder, TunnelConfig, tunnel_config
from .tunnel import Tunnel, TunnelState, HealthState, health_state
from .exceptions import (
    ErrorCode,
    TunnelError,
    TunnelConfigError,
    TunnelStateError,
    TunnelStartError,
    TunnelConnectionError,
    HostKeyVerificationError,
    TunnelAuthenticationError,
    TunnelBindError,
    ReadinessTimeoutError,
    ForwardingError,
    ForwardingBrokenError,
    TunnelNotRunningError,
)

__all__ = [
    '__version_info__', '__version__',
    'Config',
    'TunnelBuilder', 'TunnelConfig', 'tunnel_config',
    'Tunnel', 'TunnelState', 'HealthState', 'health_state',
    'ErrorCode',
    'TunnelError',
    'TunnelConfigError',
    'TunnelStateError',
    'TunnelStartError',
    'TunnelConnectionError',
    'HostKeyVerificationError',
    'TunnelAuthenticationError',
    'TunnelBindError',
    'ReadinessTimeoutError',
    'ForwardingError',
    'ForwardingBrokenError',
    'TunnelNotRunningError',
]
