"""Wire protocol helpers for the simpleftp client.

Handles control-line reading, reply parsing (including RFC 959
multi-line replies), command sending, PASV address decoding and byte
copying on passive-mode data connections.  Control traffic uses
ISO-8859-1 unless the caller asks for another encoding.
"""

import logging
import socket
import string
from typing import Any, List, NamedTuple, Optional, Protocol, Tuple

ENCODING = "iso-8859-1"
CHUNK_SIZE = 8192

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions raised at the protocol layer
# ---------------------------------------------------------------------------

class FtpError(Exception):
    """Base exception for simpleftp.

    Attributes:
        message: Server text (or a description for local failures).
        code: Reply code that caused the error, None if no reply did.
        expected: Reply codes that would have been accepted.
    """

    def __init__(self, message: str, code: Optional[int] = None,
                 expected: Tuple[int, ...] = ()) -> None:
        self.message = message
        self.code = code
        self.expected = tuple(expected)
        if code is None:
            super().__init__(message)
        else:
            super().__init__("{} {}".format(code, message))


class FtpConnectionError(FtpError):
    """Transport failure: connect/read/write error, or a greeting,
    closing or transfer-complete reply with the wrong code."""


class ResponseError(FtpError):
    """The server's reply text could not be parsed (short or truncated
    line, non-numeric code, PASV reply without an address)."""


class FileError(FtpError):
    """Filesystem-flavored failure: a directory command rejected by the
    server, or local I/O failing on the caller's sink or source."""


# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------

class Reply(NamedTuple):
    """One server reply.

    code is the leading 3-digit status code.  message is the rest of
    the first line after the code and its separator.  lines holds every
    line of the reply as received (a single entry unless the reply was
    multi-line).
    """

    code: int
    message: str
    lines: Tuple[str, ...] = ()

    @property
    def text(self) -> str:
        """Full reply payload, one line per entry.

        The code prefix is removed from the opening and closing lines of
        a multi-line reply; lines in between are kept verbatim.
        """
        if len(self.lines) <= 1:
            return self.message
        body = [self.lines[0][4:]]
        body.extend(self.lines[1:-1])
        body.append(self.lines[-1][4:])
        return "\n".join(body)

    @property
    def is_preliminary(self) -> bool:
        return 100 <= self.code < 200

    @property
    def is_success(self) -> bool:
        return 200 <= self.code < 300

    @property
    def is_intermediate(self) -> bool:
        return 300 <= self.code < 400

    @property
    def is_transient_error(self) -> bool:
        return 400 <= self.code < 500

    @property
    def is_permanent_error(self) -> bool:
        return 500 <= self.code < 600

    @property
    def is_error(self) -> bool:
        return self.code >= 400

    def __str__(self) -> str:
        return "{} {}".format(self.code, self.message)


def _all_digits(text: str) -> bool:
    return bool(text) and all(c in string.digits for c in text)


def read_line(sock: socket.socket, encoding: str = ENCODING) -> str:
    """Read one reply line, a byte at a time so nothing past the LF is
    consumed.

    The terminating CR LF (or bare LF) is not part of the result.  EOF
    and bytes that do not decode in *encoding* raise ResponseError;
    socket errors and timeouts raise FtpConnectionError.
    """
    raw = bytearray()
    b = b""
    while b != b"\n":
        try:
            b = sock.recv(1)
        except socket.timeout as e:
            raise FtpConnectionError(
                "Timed out waiting for reply from server") from e
        except OSError as e:
            raise FtpConnectionError("Socket error: {}".format(e)) from e
        if not b:
            if raw:
                raise ResponseError(
                    "Connection closed mid-line (partial data: {!r})".format(
                        bytes(raw)))
            raise ResponseError("Connection closed by server")
        raw += b

    raw = raw[:-2] if raw.endswith(b"\r\n") else raw[:-1]
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as e:
        raise ResponseError("Reply line is not valid {}: {!r}".format(
            encoding, bytes(raw))) from e


def read_reply(sock: socket.socket, encoding: str = ENCODING) -> Reply:
    """Read one complete reply from the control connection.

    A reply line needs at least a 3-digit code and a separator.  When
    the separator is "-" the reply continues until a line starting with
    the same code followed by anything but "-"; lines in between are
    payload and are never parsed.

    Examples:
      "220 Service ready"                 -> Reply(220, "Service ready")
      "211-Status", "211-more", "211 End" -> Reply(211, "Status", 3 lines)
    """
    first = read_line(sock, encoding)
    if len(first) < 4:
        raise ResponseError("Reply too short: {!r}".format(first))

    code_text = first[:3]
    if not _all_digits(code_text) or code_text[0] not in "12345":
        raise ResponseError("Invalid reply code: {!r}".format(first))

    lines = [first]
    if first[3] == "-":
        while True:
            line = read_line(sock, encoding)
            lines.append(line)
            if line[:3] == code_text and line[3:4] != "-":
                break

    for line in lines:
        logger.debug("<- %s", line)
    return Reply(int(code_text), first[4:], tuple(lines))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

_MASKED_VERBS = ("PASS", "ACCT")


def _mask(command: str) -> str:
    verb = command.split(" ", 1)[0].upper()
    if verb in _MASKED_VERBS and len(command) > len(verb):
        return verb + " ****"
    return command


def send_command(sock: socket.socket, command: str,
                 encoding: str = ENCODING) -> None:
    """Send a command line to the server.

    Appends CR LF.  A command containing CR or LF, or one that cannot
    be encoded in *encoding*, is refused with ValueError before
    anything is written.
    """
    if "\r" in command or "\n" in command:
        raise ValueError(
            "Command must not contain CR or LF: {!r}".format(_mask(command)))
    try:
        data = (command + "\r\n").encode(encoding)
    except UnicodeEncodeError as e:
        raise ValueError("Command cannot be encoded as {}: {!r}".format(
            encoding, _mask(command))) from e
    logger.debug("-> %s", _mask(command))
    try:
        sock.sendall(data)
    except OSError as e:
        raise FtpConnectionError(
            "Failed to send {}: {}".format(_mask(command), e)) from e


# ---------------------------------------------------------------------------
# Passive mode
# ---------------------------------------------------------------------------

class PassiveAddress(NamedTuple):
    """Data connection endpoint announced by a PASV reply."""

    host: str
    port: int


def _digit_runs(text: str) -> List[Tuple[str, bool]]:
    """Split text into maximal runs of decimal digits.

    Returns (digits, comma_joined) pairs in order of appearance, where
    comma_joined is True when only a comma (and optional blanks)
    separates the run from the previous one.
    """
    runs = []  # type: List[Tuple[str, bool]]
    prev_end = None  # type: Optional[int]
    i = 0
    n = len(text)
    while i < n:
        if text[i] not in string.digits:
            i += 1
            continue
        start = i
        while i < n and text[i] in string.digits:
            i += 1
        joined = (prev_end is not None
                  and text[prev_end:start].strip() == ",")
        runs.append((text[start:i], joined))
        prev_end = i
    return runs


def parse_pasv_address(message: str) -> PassiveAddress:
    """Decode the h1,h2,h3,h4,p1,p2 address of a PASV reply.

    Punctuation around the numbers varies between servers, so the text
    is scanned for digit runs instead of matched against one format.
    The first six comma-joined runs win; failing that, the last six
    runs are used.  Raises ResponseError with fewer than six runs.

    Example:
      "Entering Passive Mode (192,168,1,1,234,56)."
      -> PassiveAddress("192.168.1.1", 60024)
    """
    runs = _digit_runs(message)
    if len(runs) < 6:
        raise ResponseError(
            "Invalid PASV reply, expected 6 numbers: {!r}".format(message))

    start = len(runs) - 6
    for candidate in range(len(runs) - 5):
        if all(joined for _digits, joined in runs[candidate + 1:candidate + 6]):
            start = candidate
            break

    numbers = [int(digits) for digits, _joined in runs[start:start + 6]]
    host = "{}.{}.{}.{}".format(*numbers[:4])
    port = numbers[4] * 256 + numbers[5]
    return PassiveAddress(host, port)


# ---------------------------------------------------------------------------
# Data connections
# ---------------------------------------------------------------------------

class ByteSink(Protocol):
    """Anything downloaded bytes can be written to (file, BytesIO...)."""

    def write(self, data: bytes) -> Any:
        ...


class ByteSource(Protocol):
    """Anything upload bytes can be read from until it returns b""."""

    def read(self, size: int = -1) -> bytes:
        ...


def open_data_connection(address: Tuple[str, int],
                         timeout: Optional[float] = None) -> socket.socket:
    """Open the TCP data connection for one transfer."""
    host, port = address
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise FtpConnectionError(
            "Failed to open data connection to {}:{} - {}".format(
                host, port, e)) from e
    logger.debug("Data connection open to %s:%d", host, port)
    return sock


def recv_to_sink(sock: socket.socket, sink: ByteSink) -> int:
    """Copy bytes from the data connection into sink until EOF.

    FTP has no length framing; the server closing the data connection
    marks the end of the transfer.  Returns the number of bytes copied.
    """
    total = 0
    while True:
        try:
            chunk = sock.recv(CHUNK_SIZE)
        except OSError as e:
            raise FtpConnectionError(
                "Data connection failed after {} bytes: {}".format(
                    total, e)) from e
        if not chunk:
            break
        try:
            sink.write(chunk)
        except OSError as e:
            raise FileError(
                "Failed to write received data after {} bytes: {}".format(
                    total, e)) from e
        total += len(chunk)
    return total


def send_from_source(sock: socket.socket, source: ByteSource) -> int:
    """Copy bytes from source into the data connection until source
    is exhausted.  Returns the number of bytes sent."""
    total = 0
    while True:
        try:
            chunk = source.read(CHUNK_SIZE)
        except OSError as e:
            raise FileError(
                "Failed to read upload data after {} bytes: {}".format(
                    total, e)) from e
        if not chunk:
            break
        try:
            sock.sendall(chunk)
        except OSError as e:
            raise FtpConnectionError(
                "Data connection failed after {} bytes: {}".format(
                    total, e)) from e
        total += len(chunk)
    return total


def shutdown_data_connection(sock: socket.socket) -> None:
    """Shut down both directions so the server sees end-of-file."""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        raise FtpConnectionError(
            "Failed to shut down data connection: {}".format(e)) from e
