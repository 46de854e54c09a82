"""Shared fixtures and helpers for simpleftp tests.

No FTP server is needed.  Sockets are replaced by FakeSocket objects
that replay scripted server bytes and record everything the client
does to them in one ordered event log, so tests can assert the exact
command/connection choreography of a session.

Usage:
    pytest tests/ -v
"""

import os
import sys
from unittest import mock

import pytest

# Add the client library to the path so tests can import simpleftp
_client_dir = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "client",
)
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)

from simpleftp import FtpClient


# ---------------------------------------------------------------------------
# Wire helpers
# ---------------------------------------------------------------------------

def wire(*lines):
    """Encode reply lines as the server would send them (CR LF)."""
    return b"".join(line.encode("iso-8859-1") + b"\r\n" for line in lines)


# ---------------------------------------------------------------------------
# Fake sockets
# ---------------------------------------------------------------------------

class FakeSocket:
    """Stand-in for socket.socket.

    recv() hands out the scripted bytes (at most bufsize at a time) and
    returns b"" once they are used up, like a peer closing the
    connection.  sendall(), shutdown() and close() are recorded in the
    shared event log.  Control sockets log each sent command as
    ("control", line) and each reply line the client finishes reading
    as ("reply", line), both decoded and without CR LF.
    """

    def __init__(self, name, incoming=b"", log=None, recv_error=None):
        self.name = name
        self.log = log if log is not None else []
        self.sent = bytearray()
        self.closed = False
        self.shutdown_how = None
        self.recv_error = recv_error
        self._incoming = bytearray(incoming)
        self._partial = bytearray()

    def feed(self, data):
        self._incoming.extend(data)

    @property
    def unread(self):
        return bytes(self._incoming)

    def recv(self, bufsize):
        if self.recv_error is not None and not self._incoming:
            raise self.recv_error
        chunk = bytes(self._incoming[:bufsize])
        del self._incoming[:bufsize]
        if self.name == "control":
            self._log_reply_lines(chunk)
        return chunk

    def _log_reply_lines(self, chunk):
        self._partial.extend(chunk)
        while b"\n" in self._partial:
            line, _, rest = bytes(self._partial).partition(b"\n")
            self.log.append(("reply", line.decode("iso-8859-1").rstrip("\r")))
            self._partial = bytearray(rest)

    def sendall(self, data):
        self.sent.extend(data)
        if self.name == "control":
            self.log.append(("control", data.decode("iso-8859-1").rstrip("\r\n")))
        else:
            self.log.append((self.name, "send", bytes(data)))

    def settimeout(self, timeout):
        pass

    def shutdown(self, how):
        self.shutdown_how = how
        self.log.append((self.name, "shutdown"))

    def close(self):
        self.closed = True
        self.log.append((self.name, "close"))


class FakeNetwork:
    """Replacement for socket.create_connection.

    Sockets queued with add() are handed out in order; every call is
    logged as ("connect", (host, port)).  An empty queue behaves like a
    refused connection.
    """

    def __init__(self):
        self.log = []
        self.timeouts = []
        self._queue = []

    def add(self, name, incoming=b"", **kwargs):
        sock = FakeSocket(name, incoming, self.log, **kwargs)
        self._queue.append(sock)
        return sock

    def create_connection(self, address, timeout=None, *args, **kwargs):
        self.log.append(("connect", tuple(address)))
        self.timeouts.append(timeout)
        if not self._queue:
            raise ConnectionRefusedError(111, "Connection refused")
        return self._queue.pop(0)

    def commands(self):
        """Commands written to the control connection, in order."""
        return [event[1] for event in self.log if event[0] == "control"]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def net():
    """A FakeNetwork patched in as socket.create_connection."""
    network = FakeNetwork()
    with mock.patch("socket.create_connection",
                    side_effect=network.create_connection):
        yield network


@pytest.fixture
def control(net):
    """The control socket, already holding a 220 greeting."""
    return net.add("control", wire("220 Service ready"))


@pytest.fixture
def ftp(net, control):
    """A connected (not logged in) FtpClient on the fake network."""
    client = FtpClient("ftp.example.com", timeout=5)
    client.connect()
    return client


def pasv_reply(host="10,0,0,2", p1=4, p2=1):
    return "227 Entering Passive Mode ({},{},{}).".format(host, p1, p2)
