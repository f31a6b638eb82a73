import logging


log = logging.getLogger("pipeline_tunnel")
for x in ("debug",):
    globals()[x] = getattr(log, x)


def get_local_user() -> str | None:
    """
    Return the local executing username, or ``None`` if one can't be found.
    """
    import getpass
    username = None
    try:
        username = getpass.getuser()
    except (KeyError, OSError):
        pass
    return username


def split_address(value: str, default_port: int | None = None):
    host, sep, port = value.rpartition(":")
    if not sep:
        host, port = value, None
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if port is None:
        if default_port is None:
            raise ValueError("Address {!r} is missing a port".format(value))
        return host, default_port
    return host, int(port)
