import base64
import hashlib
from io import StringIO

from paramiko import (
    ECDSAKey,
    Ed25519Key,
    PasswordRequiredException,
    PublicBlob,
    RSAKey,
    SSHException,
)
from paramiko.auth_strategy import AuthStrategy, InMemoryPrivateKey
from paramiko.client import MissingHostKeyPolicy
from paramiko.config import SSHConfig
from paramiko.ssh_exception import AuthenticationException

from .exceptions import HostKeyVerificationError, TunnelAuthenticationError
from .util import debug, log


KEY_CLASSES = (RSAKey, Ed25519Key, ECDSAKey)


def load_private_key(text, passphrase=None):
    password = passphrase or None
    errors = []
    for key_class in KEY_CLASSES:
        try:
            return key_class.from_private_key(StringIO(text), password=password)
        except PasswordRequiredException as e:
            raise TunnelAuthenticationError(
                "Private key is encrypted but no passphrase was given"
            ) from e
        except (SSHException, ValueError, TypeError) as e:
            errors.append(e)
    raise TunnelAuthenticationError(
        "Could not load private key: {}".format(errors[-1])
    ) from errors[-1]


def load_key_pair(private_key, public_key, passphrase=None):
    pkey = load_private_key(private_key, passphrase)
    try:
        blob = PublicBlob.from_string(public_key.strip())
    except (ValueError, IndexError) as e:
        raise TunnelAuthenticationError(
            "Could not parse public key: {}".format(e)
        ) from e
    if blob.key_type.endswith("-cert-v01@openssh.com"):
        try:
            pkey.load_certificate(blob)
        except ValueError as e:
            raise TunnelAuthenticationError(str(e)) from e
    elif blob.key_blob != pkey.asbytes():
        raise TunnelAuthenticationError(
            "Public key does not match private key"
        )
    return pkey


def fingerprints(key):
    blob = key.asbytes()
    md5 = hashlib.md5(blob, usedforsecurity=False).hexdigest()
    sha256 = base64.b64encode(hashlib.sha256(blob).digest()).decode()
    return {
        "md5": "MD5:" + ":".join(md5[i:i + 2] for i in range(0, len(md5), 2)),
        "sha256": "SHA256:" + sha256.rstrip("="),
    }


def fingerprint_matches(key, fingerprint):
    value = fingerprint.strip()
    prints = fingerprints(key)
    if value[:7].upper() == "SHA256:":
        return value[7:].rstrip("=") == prints["sha256"][7:]
    if value[:4].upper() == "MD5:":
        value = value[4:]
    return value.lower() == prints["md5"][4:]


class FingerprintPolicy(MissingHostKeyPolicy):
    def __init__(self, fingerprints=()):
        self.fingerprints = tuple(fingerprints)

    @property
    def accepts_any(self):
        return not self.fingerprints

    def missing_host_key(self, client, hostname, key):
        if self.accepts_any:
            return
        for fingerprint in self.fingerprints:
            if fingerprint_matches(key, fingerprint):
                debug("Host key for {} matched {}".format(hostname, fingerprint))
                return
        raise HostKeyVerificationError(
            "Host key {} for '{}' matches none of the configured fingerprints".format(  # noqa
                fingerprints(key)["sha256"], hostname
            ),
            fingerprints=self.fingerprints,
        )


def host_key_policy(config):
    policy = FingerprintPolicy(config.host_fingerprints)
    if policy.accepts_any:
        log.info(
            "Connecting to '%s:%d' without SSH fingerprint verification",
            config.ssh_host,
            config.ssh_port,
        )
    return policy


class KeyPairAuthStrategy(AuthStrategy):
    def __init__(self, username, pkey, ssh_config=None):
        super().__init__(ssh_config=ssh_config or SSHConfig())
        self.username = username
        self.pkey = pkey

    @classmethod
    def from_config(cls, config):
        pkey = load_key_pair(
            config.private_key, config.public_key, config.passphrase
        )
        return cls(username=config.ssh_user, pkey=pkey)

    def get_sources(self):
        yield InMemoryPrivateKey(username=self.username, pkey=self.pkey)

    def authenticate(self, transport):
        try:
            return super().authenticate(transport)
        except AuthenticationException as e:
            err = "Public key authentication as {!r} failed: {}"
            raise TunnelAuthenticationError(
                err.format(self.username, e)
            ) from e
