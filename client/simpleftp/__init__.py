"""simpleftp -- Python FTP client library.

Provides FtpClient, a passive-mode FTP client speaking over one control
connection and opening a fresh data connection per transfer, plus an
exception hierarchy for the ways a server can refuse a command.

Usage::

    with FtpClient("ftp.example.com") as ftp:
        ftp.login("demo", "password")
        with open("readme.txt", "wb") as f:
            ftp.get("/readme.txt", f)
"""

import enum
import io
import logging
import socket
from typing import Any, Dict, List, Optional, Tuple, Type

from . import status as codes
from .config import DEFAULT_PORT, ConfigError, load_config
from .protocol import (
    ENCODING, ByteSink, ByteSource, FileError, FtpConnectionError, FtpError,
    PassiveAddress, Reply, ResponseError,
    open_data_connection, parse_pasv_address, read_reply, recv_to_sink,
    send_command, send_from_source, shutdown_data_connection,
)


__all__ = [
    "ByteSink",
    "ByteSource",
    "CommandError",
    "ConfigError",
    "FileError",
    "FtpClient",
    "FtpConnectionError",
    "FtpError",
    "LoginError",
    "PassiveAddress",
    "Reply",
    "ResponseError",
    "SessionState",
    "load_config",
    "parse_pasv_address",
    "read_reply",
]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class LoginError(FtpError):
    """The server rejected USER, PASS or ACCT."""


class CommandError(FtpError):
    """A reply code outside the set the command accepts (including 503
    "bad sequence of commands" for out-of-order use)."""


def _require(reply: Reply, expected: Tuple[int, ...],
             exc_class: Type[FtpError] = CommandError) -> Reply:
    """Return reply if its code is one of expected, else raise."""
    if reply.code not in expected:
        raise exc_class(reply.message, reply.code, expected)
    return reply


def _join(verb: str, argument: Any = "") -> str:
    argument = str(argument)
    if argument:
        return "{} {}".format(verb, argument)
    return verb


def _parse_quoted_path(message: str) -> str:
    """Extract the path from a 257 message such as '"/home" is cwd'.

    Doubled quotes inside the path stand for one quote.  Messages with
    no quoted path are returned unchanged.
    """
    start = message.find('"')
    if start < 0:
        return message
    path = []
    i = start + 1
    while i < len(message):
        c = message[i]
        if c == '"':
            if message[i + 1:i + 2] == '"':
                path.append('"')
                i += 2
                continue
            return "".join(path)
        path.append(c)
        i += 1
    return message


# Codes accepted when a transfer verb opens the data connection.
# Uploads need the server ready to receive, so 125 is not enough there.
_OPEN_FOR_READ = (codes.FILE_OK, codes.ALREADY_OPEN)
_OPEN_FOR_WRITE = (codes.FILE_OK,)


class SessionState(enum.Enum):
    """Where an FtpClient is in the connect/login/logout sequence."""

    DISCONNECTED = "disconnected"
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_PASSWORD = "awaiting-password"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Client class
# ---------------------------------------------------------------------------

class FtpClient:
    """A passive-mode FTP client.

    Can be used as a context manager::

        with FtpClient("ftp.example.com") as ftp:
            ftp.login("user", "secret")
            print(ftp.list("/pub"))

    Or managed manually::

        ftp = FtpClient("ftp.example.com")
        ftp.connect()
        try:
            ftp.login("user", "secret")
        finally:
            ftp.close()

    One client owns one control connection and is not thread-safe:
    every command must finish (including any transfer) before the next
    one starts.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: Optional[float] = None,
        encoding: str = ENCODING,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.encoding = encoding
        self._sock = None  # type: Optional[socket.socket]
        self._welcome = None  # type: Optional[Reply]
        self._state = SessionState.DISCONNECTED

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FtpClient":
        """Build an unconnected client from a load_config() dict."""
        if not config.get("host"):
            raise ConfigError("no host configured")
        return cls(
            config["host"],
            port=config.get("port", DEFAULT_PORT),
            timeout=config.get("timeout"),
            encoding=config.get("encoding", ENCODING),
        )

    # -- Context manager ---------------------------------------------------

    def __enter__(self) -> "FtpClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.close()
        return None

    def __repr__(self) -> str:
        return "FtpClient({!r}, port={}, {})".format(
            self.host, self.port, self._state.value)

    # -- Session state -----------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED

    @property
    def welcome(self) -> Optional[Reply]:
        """The greeting received on connect, or None if not connected."""
        return self._welcome

    # -- Connection lifecycle ----------------------------------------------

    def connect(self) -> Reply:
        """Open the control connection and check the greeting.

        Raises FtpConnectionError if the server cannot be reached or
        does not greet with 220 (service ready).
        """
        if self._sock is not None:
            raise FtpConnectionError(
                "Already connected to {}:{}".format(self.host, self.port))

        logger.info("Connecting to %s:%d", self.host, self.port)
        try:
            sock = socket.create_connection(
                (self.host, self.port), timeout=self.timeout)
        except OSError as e:
            raise FtpConnectionError(
                "Failed to connect to {}:{} - {}".format(
                    self.host, self.port, e)) from e

        try:
            reply = read_reply(sock, self.encoding)
        except FtpError:
            sock.close()
            raise
        if reply.code != codes.SERVICE_READY:
            sock.close()
            raise FtpConnectionError(
                reply.message, reply.code, (codes.SERVICE_READY,))

        self._sock = sock
        self._welcome = reply
        self._state = SessionState.UNAUTHENTICATED
        logger.info("Connected to %s:%d", self.host, self.port)
        return reply

    def login(self, user: str = "anonymous", password: str = "") -> Reply:
        """Authenticate with USER and, when asked for one, PASS.

        Servers that answer USER with 230 are logged in without PASS
        being sent.  Raises LoginError on any other reply; the session
        is then back to unauthenticated.
        """
        reply = self._command(_join("USER", user))
        if reply.code == codes.LOGGED_IN:
            self._state = SessionState.AUTHENTICATED
            logger.info("Logged in as %s", user)
            return reply
        if reply.code != codes.NEED_PASSWORD:
            self._state = SessionState.UNAUTHENTICATED
            raise LoginError(reply.message, reply.code,
                             (codes.NEED_PASSWORD, codes.LOGGED_IN))

        self._state = SessionState.AWAITING_PASSWORD
        reply = self._command(_join("PASS", password))
        if reply.code != codes.LOGGED_IN:
            self._state = SessionState.UNAUTHENTICATED
            raise LoginError(reply.message, reply.code, (codes.LOGGED_IN,))

        self._state = SessionState.AUTHENTICATED
        logger.info("Logged in as %s", user)
        return reply

    def account(self, info: str) -> Reply:
        """Send ACCT with account information after login."""
        return self._simple("ACCT", info,
                            (codes.LOGGED_IN, codes.COMMAND_NOT_IMPLEMENTED),
                            LoginError)

    def logout(self) -> None:
        """Send QUIT and close the connection.

        The connection is unusable afterwards whatever the server
        answered, but only 221 (service closing) counts as success;
        any other reply raises FtpConnectionError.
        """
        try:
            reply = self._command("QUIT")
        finally:
            self._teardown()
        if reply.code != codes.SERVICE_CLOSING:
            logger.warning("Unexpected reply to QUIT: %s", reply)
            raise FtpConnectionError(
                reply.message, reply.code, (codes.SERVICE_CLOSING,))
        logger.info("Logged out from %s:%d", self.host, self.port)

    def close(self) -> None:
        """Send QUIT (best-effort) and close the socket.  Never raises."""
        if self._sock is None:
            return
        try:
            send_command(self._sock, "QUIT", self.encoding)
            read_reply(self._sock, self.encoding)
        except (FtpError, OSError) as e:
            logger.debug("QUIT while closing failed: %s", e)
        self._teardown()

    def _teardown(self) -> None:
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug("Error closing control connection: %s", e)
        self._sock = None
        self._welcome = None
        self._state = SessionState.CLOSED

    # -- Internal helpers --------------------------------------------------

    def _command(self, line: str) -> Reply:
        """Send one command line and read exactly one reply.

        Every write to the control connection goes through here, so a
        reply is always fully read before the next command is sent.
        """
        if self._sock is None:
            raise FtpConnectionError("Not connected")
        send_command(self._sock, line, self.encoding)
        return read_reply(self._sock, self.encoding)

    def _simple(self, verb: str, argument: Any, expected: Tuple[int, ...],
                exc_class: Type[FtpError] = CommandError) -> Reply:
        return _require(self._command(_join(verb, argument)), expected,
                        exc_class)

    def _transfer_complete(self, verb: str) -> Reply:
        """Read the control reply that closes a transfer; must be 226."""
        if self._sock is None:
            raise FtpConnectionError("Not connected")
        reply = read_reply(self._sock, self.encoding)
        if reply.code != codes.CLOSING_DATA_CONNECTION:
            logger.warning("%s not confirmed by server: %s", verb, reply)
            raise FtpConnectionError(
                reply.message, reply.code, (codes.CLOSING_DATA_CONNECTION,))
        return reply

    def _discard_reply(self, verb: str) -> None:
        """Consume the reply closing an abandoned transfer, so the next
        command reads its own reply."""
        try:
            reply = read_reply(self._sock, self.encoding)
        except FtpError as e:
            logger.debug("No closing reply for abandoned %s: %s", verb, e)
            return
        logger.debug("Abandoned %s closed by server: %s", verb, reply)

    def _retrieve(self, verb: str, argument: str, sink: ByteSink) -> Reply:
        data_sock = self.pasv()
        try:
            try:
                self._simple(verb, argument, _OPEN_FOR_READ)
                received = recv_to_sink(data_sock, sink)
            finally:
                data_sock.close()
        except FileError:
            self._discard_reply(verb)
            raise
        logger.debug("%s received %d bytes", verb, received)
        return self._transfer_complete(verb)

    def _store(self, verb: str, argument: str, source: ByteSource) -> Reply:
        data_sock = self.pasv()
        try:
            try:
                reply = self._simple(verb, argument, _OPEN_FOR_WRITE)
                sent = send_from_source(data_sock, source)
                shutdown_data_connection(data_sock)
            finally:
                data_sock.close()
        except FileError:
            self._discard_reply(verb)
            raise
        logger.debug("%s sent %d bytes", verb, sent)
        self._transfer_complete(verb)
        return reply

    def _list(self, verb: str, path: str) -> List[str]:
        buf = io.BytesIO()
        self._retrieve(verb, path, buf)
        # Undecodable names are kept, with U+FFFD in place of bad bytes
        lines = buf.getvalue().decode(self.encoding, "replace").split("\n")
        if lines[-1] == "":
            lines.pop()
        return [line[:-1] if line.endswith("\r") else line
                for line in lines]

    # -- Data transfers ----------------------------------------------------

    def pasv(self) -> socket.socket:
        """Enter passive mode and open the data connection it announces.

        Accepts 227 (entering passive mode) and 125 (data connection
        already open).  The caller owns the returned socket.
        """
        reply = self._simple("PASV", "",
                             (codes.PASSIVE_MODE, codes.ALREADY_OPEN))
        address = parse_pasv_address(reply.message)
        return open_data_connection(address, self.timeout)

    def get(self, path: str, sink: ByteSink) -> None:
        """Download path, writing its bytes to sink (e.g. a file opened
        "wb").

        Raises CommandError if RETR is refused, FileError if sink fails,
        and FtpConnectionError if the server does not confirm the
        transfer with 226, even when every byte arrived.
        """
        self._retrieve("RETR", path, sink)

    def put(self, path: str, source: ByteSource) -> None:
        """Upload everything readable from source to path."""
        self._store("STOR", path, source)

    def put_unique(self, source: ByteSource) -> str:
        """Upload source under a name chosen by the server (STOU).

        Returns the message of the server's 150 reply, which usually
        names the file created.
        """
        return self._store("STOU", "", source).message

    def append(self, path: str, source: ByteSource) -> None:
        """Append everything readable from source to path (APPE)."""
        self._store("APPE", path, source)

    def list(self, path: str = "") -> List[str]:
        """Return the LIST output for path, one string per line."""
        return self._list("LIST", path)

    def name_list(self, path: str = "") -> List[str]:
        """Return the names in path (NLST), one per entry."""
        return self._list("NLST", path)

    # -- Commands ----------------------------------------------------------

    def noop(self) -> Reply:
        """Send NOOP; requires 200."""
        return self._simple("NOOP", "", (codes.COMMAND_OK,))

    def rename(self, from_path: str, to_path: str) -> None:
        """Rename from_path to to_path with RNFR followed by RNTO.

        RNTO is only sent once RNFR is answered with 350.
        """
        self._simple("RNFR", from_path, (codes.FILE_ACTION_PENDING,))
        self._simple("RNTO", to_path, (codes.FILE_ACTION_OK,))

    def delete(self, path: str) -> None:
        self._simple("DELE", path, (codes.FILE_ACTION_OK,))

    def change_dir(self, path: str) -> None:
        self._simple("CWD", path,
                     (codes.COMMAND_OK, codes.FILE_ACTION_OK), FileError)

    def change_dir_up(self) -> None:
        self._simple("CDUP", "", (codes.COMMAND_OK, codes.FILE_ACTION_OK))

    def makedir(self, path: str) -> None:
        self._simple("MKD", path, (codes.PATH_CREATED,), FileError)

    def remove_dir(self, path: str) -> None:
        self._simple("RMD", path, (codes.FILE_ACTION_OK,), FileError)

    def pwd(self) -> str:
        """Return the server's current directory."""
        reply = self._simple("PWD", "", (codes.PATH_CREATED,))
        return _parse_quoted_path(reply.message)

    def abort(self) -> None:
        """Send ABOR; 225 or 226 mean no transfer is left running."""
        self._simple("ABOR", "", (codes.DATA_CONNECTION_OPEN,
                                  codes.CLOSING_DATA_CONNECTION))

    def status(self, path: str = "") -> str:
        """Return the full STAT text for path (server status if empty)."""
        reply = self._simple("STAT", path,
                             (codes.SYSTEM, codes.DIRECTORY, codes.FILE))
        return reply.text

    def system(self) -> str:
        reply = self._simple("SYST", "", (codes.SYSTEM, codes.NAME_SYSTEM))
        return reply.message

    def help(self, item: str = "") -> str:
        """Return the server's HELP text, optionally for one command."""
        reply = self._simple("HELP", item, (codes.SYSTEM, codes.FILE,
                                            codes.HELP_MESSAGE))
        return reply.text

    def allocate(self, size: int) -> None:
        """Reserve size bytes on the server before an upload (ALLO)."""
        self._simple("ALLO", size, (codes.COMMAND_OK,
                                    codes.COMMAND_NOT_IMPLEMENTED))

    def mount(self, path: str) -> None:
        """Mount a different file system structure (SMNT)."""
        self._simple("SMNT", path,
                     (codes.COMMAND_OK, codes.COMMAND_NOT_IMPLEMENTED,
                      codes.FILE_ACTION_OK), FileError)

    def transfer_type(self, mode: str = "I") -> None:
        """Select the representation type: "A" (ASCII) or "I" (binary)."""
        self._simple("TYPE", mode, (codes.COMMAND_OK,))

    def quote(self, line: str) -> Reply:
        """Send a raw command line and return the reply, whatever its
        code.  Must not be used for commands that open a data
        connection."""
        return self._command(line)
