"""Connection settings for simpleftp clients.

Settings come from an INI file read with configparser, then from the
SIMPLEFTP_HOST and SIMPLEFTP_PORT environment variables, which win over
the file::

    [connection]
    host = ftp.example.com
    port = 21
    timeout = 30
    encoding = iso-8859-1

    [login]
    user = anonymous
    password = guest
"""

import configparser
import os
from typing import Any, Dict, Optional

from .protocol import ENCODING

DEFAULT_PORT = 21
DEFAULT_USER = "anonymous"


class ConfigError(ValueError):
    """Raised when a config file is missing, unparsable or holds an
    invalid value."""


def _check_port(port: int) -> int:
    if not 0 < port < 65536:
        raise ConfigError("port out of range: {}".format(port))
    return port


def load_config(path: Optional[str] = None,
                environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Load client settings.

    Args:
        path: INI file to read, or None to use defaults and environment
            only.
        environ: Mapping to read overrides from (default: os.environ).

    Returns a dict with keys 'host' (None if unset), 'port', 'timeout'
    (None means blocking sockets), 'encoding', 'user', 'password'.
    """
    if environ is None:
        environ = os.environ

    result = {
        "host": None,
        "port": DEFAULT_PORT,
        "timeout": None,
        "encoding": ENCODING,
        "user": DEFAULT_USER,
        "password": "",
    }  # type: Dict[str, Any]

    if path is not None:
        if not os.path.exists(path):
            raise ConfigError("config file not found: {}".format(path))

        # Passwords may contain '%', so no interpolation
        config = configparser.ConfigParser(interpolation=None)
        try:
            config.read(path)
        except configparser.Error as e:
            raise ConfigError(
                "failed to parse config file: {}".format(e)) from e

        host = config.get("connection", "host", fallback=None)
        if host is not None:
            host = host.strip() or None
        result["host"] = host

        try:
            port = config.getint("connection", "port", fallback=DEFAULT_PORT)
            result["timeout"] = config.getfloat(
                "connection", "timeout", fallback=None)
        except ValueError as e:
            raise ConfigError(
                "invalid value in config file: {}".format(e)) from e
        result["port"] = _check_port(port)

        encoding = config.get("connection", "encoding", fallback=ENCODING)
        result["encoding"] = encoding.strip() or ENCODING
        result["user"] = config.get("login", "user", fallback=DEFAULT_USER)
        result["password"] = config.get("login", "password", fallback="")

    env_host = environ.get("SIMPLEFTP_HOST")
    if env_host:
        result["host"] = env_host

    env_port = environ.get("SIMPLEFTP_PORT")
    if env_port:
        try:
            port = int(env_port)
        except ValueError as e:
            raise ConfigError(
                "SIMPLEFTP_PORT must be an integer, got: {!r}".format(
                    env_port)) from e
        result["port"] = _check_port(port)

    return result
