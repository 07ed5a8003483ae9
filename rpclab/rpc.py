"""ONC RPC version 2 messages, a client and a UDP/TCP server."""

from __future__ import annotations

import enum
import logging
import random
import socket
import socketserver
import threading
import time
from typing import Callable, Optional

from rpclab.xdr import Packer, Unpacker, XdrError

log = logging.getLogger(__name__)

RPC_VERSION = 2
CALL = 0
REPLY = 1
MSG_ACCEPTED = 0
MSG_DENIED = 1
AUTH_NONE = 0
MAX_AUTH_BYTES = 400

SUCCESS = 0
PROG_UNAVAIL = 1
PROG_MISMATCH = 2
PROC_UNAVAIL = 3
GARBAGE_ARGS = 4
SYSTEM_ERR = 5

RPC_MISMATCH = 0
AUTH_ERROR = 1

NULLPROC = 0
DEFAULT_TIMEOUT = 25.0
DEFAULT_RETRY = 5.0

_LAST_FRAGMENT = 0x80000000

Handler = Callable[[bytes], Optional[bytes]]


class Protocol(enum.IntEnum):
    """Transport protocols, numbered as their IP protocol numbers."""

    TCP = 6
    UDP = 17


class RpcError(Exception):
    """A remote call failed."""


class RpcTimeout(RpcError):
    """No reply arrived in time."""


class ProcedureUnavailable(RpcError):
    """The server does not implement the requested procedure."""


class GarbageArguments(RpcError):
    """The server could not decode the call's arguments."""


class SystemError_(RpcError):
    """The server failed while running the procedure."""


def _padded(length: int) -> int:
    return length + (4 - length % 4) % 4


def _pack_null_auth(p: Packer) -> None:
    p.pack_uint(AUTH_NONE)
    p.pack_opaque(b"", MAX_AUTH_BYTES)


def _skip_auth(u: Unpacker) -> int:
    u.unpack_uint()
    body = u.unpack_opaque(MAX_AUTH_BYTES)
    return 8 + _padded(len(body))


def encode_call(xid: int, prog: int, vers: int, proc: int, payload: bytes = b"") -> bytes:
    """Build a call message with null credentials around ``payload``."""
    p = Packer()
    for value in (xid, CALL, RPC_VERSION, prog, vers, proc):
        p.pack_uint(value)
    _pack_null_auth(p)
    _pack_null_auth(p)
    return p.get_buffer() + bytes(payload)


def decode_reply(data: bytes, xid: int) -> bytes:
    """Check a reply to call ``xid`` and return its result bytes."""
    u = Unpacker(data)
    try:
        reply_xid = u.unpack_uint()
        if reply_xid != xid:
            raise RpcError(f"reply xid {reply_xid} does not match call xid {xid}")
        if u.unpack_uint() != REPLY:
            raise RpcError("message is not a reply")
        status = u.unpack_uint()
        if status == MSG_DENIED:
            reason = u.unpack_uint()
            if reason == RPC_MISMATCH:
                low, high = u.unpack_uint(), u.unpack_uint()
                raise RpcError(f"RPC version mismatch; server supports {low}-{high}")
            raise RpcError(f"authentication error {u.unpack_uint()}")
        if status != MSG_ACCEPTED:
            raise RpcError(f"unknown reply status {status}")
        offset = 12 + _skip_auth(u)
        accept = u.unpack_uint()
        offset += 4
    except XdrError as err:
        raise RpcError("cannot decode reply") from err
    if accept == SUCCESS:
        return bytes(data[offset:])
    if accept == PROG_UNAVAIL:
        raise RpcError("program unavailable")
    if accept == PROG_MISMATCH:
        try:
            low, high = u.unpack_uint(), u.unpack_uint()
        except XdrError as err:
            raise RpcError("program version mismatch") from err
        raise RpcError(f"program version mismatch; server supports {low}-{high}")
    if accept == PROC_UNAVAIL:
        raise ProcedureUnavailable("procedure unavailable")
    if accept == GARBAGE_ARGS:
        raise GarbageArguments("server can't decode arguments")
    if accept == SYSTEM_ERR:
        raise SystemError_("remote system error")
    raise RpcError(f"unknown accept status {accept}")


def _accepted(xid: int, status: int, body: bytes = b"") -> bytes:
    p = Packer()
    p.pack_uint(xid)
    p.pack_uint(REPLY)
    p.pack_uint(MSG_ACCEPTED)
    _pack_null_auth(p)
    p.pack_uint(status)
    return p.get_buffer() + body


def _version_range(low: int, high: int) -> bytes:
    p = Packer()
    p.pack_uint(low)
    p.pack_uint(high)
    return p.get_buffer()


def _rpc_mismatch(xid: int) -> bytes:
    p = Packer()
    p.pack_uint(xid)
    p.pack_uint(REPLY)
    p.pack_uint(MSG_DENIED)
    p.pack_uint(RPC_MISMATCH)
    return p.get_buffer() + _version_range(RPC_VERSION, RPC_VERSION)


def _recv_exact(sock: socket.socket, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = sock.recv(size - len(buf))
        if not chunk:
            raise EOFError("connection closed")
        buf += chunk
    return bytes(buf)


def _read_record(sock: socket.socket) -> bytes:
    fragments = []
    while True:
        header = int.from_bytes(_recv_exact(sock, 4), "big")
        fragments.append(_recv_exact(sock, header & ~_LAST_FRAGMENT))
        if header & _LAST_FRAGMENT:
            return b"".join(fragments)


def _write_record(sock: socket.socket, data: bytes) -> None:
    sock.sendall((_LAST_FRAGMENT | len(data)).to_bytes(4, "big") + data)


class RpcClient:
    """A connection to one program version on a server."""

    def __init__(
        self,
        host: str,
        port: int,
        prog: int,
        vers: int,
        protocol: Protocol = Protocol.UDP,
        timeout: float = DEFAULT_TIMEOUT,
        retry: float = DEFAULT_RETRY,
    ) -> None:
        self.prog = prog
        self.vers = vers
        self.protocol = Protocol(protocol)
        self.timeout = timeout
        self.retry = retry
        self._xid = random.getrandbits(32)
        try:
            if self.protocol is Protocol.TCP:
                self._sock = socket.create_connection((host, port), timeout)
            else:
                family, kind, proto, _, address = socket.getaddrinfo(
                    host, port, type=socket.SOCK_DGRAM
                )[0]
                self._sock = socket.socket(family, kind, proto)
                self._sock.connect(address)
        except OSError as err:
            raise RpcError(f"{host}: cannot connect: {err}") from err

    def _next_xid(self) -> int:
        self._xid = (self._xid + 1) & 0xFFFFFFFF
        return self._xid

    def call(self, proc: int, payload: bytes = b"") -> bytes:
        """Call procedure ``proc`` with encoded arguments; return encoded result."""
        xid = self._next_xid()
        message = encode_call(xid, self.prog, self.vers, proc, payload)
        if self.protocol is Protocol.TCP:
            return self._call_tcp(xid, message)
        return self._call_udp(xid, message)

    def _call_udp(self, xid: int, message: bytes) -> bytes:
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RpcTimeout("timed out")
            try:
                self._sock.send(message)
            except OSError as err:
                raise RpcError(f"cannot send: {err}") from err
            resend_at = time.monotonic() + min(self.retry, remaining)
            while (wait := resend_at - time.monotonic()) > 0:
                self._sock.settimeout(wait)
                try:
                    data = self._sock.recv(65536)
                except TimeoutError:
                    break
                except OSError as err:
                    raise RpcError(f"cannot receive: {err}") from err
                if len(data) >= 4 and int.from_bytes(data[:4], "big") == xid:
                    return decode_reply(data, xid)

    def _call_tcp(self, xid: int, message: bytes) -> bytes:
        deadline = time.monotonic() + self.timeout
        try:
            self._sock.settimeout(self.timeout)
            _write_record(self._sock, message)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise RpcTimeout("timed out")
                self._sock.settimeout(remaining)
                data = _read_record(self._sock)
                if len(data) >= 4 and int.from_bytes(data[:4], "big") == xid:
                    return decode_reply(data, xid)
        except TimeoutError as err:
            raise RpcTimeout("timed out") from err
        except EOFError as err:
            raise RpcError("connection closed by server") from err
        except OSError as err:
            raise RpcError(f"transport error: {err}") from err

    def ping(self) -> None:
        """Call the null procedure."""
        self.call(NULLPROC)

    def close(self) -> None:
        """Release the connection."""
        self._sock.close()

    def __enter__(self) -> "RpcClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class _UdpHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        data, sock = self.request
        reply = self.server.rpc.handle_message(data)
        if reply is not None:
            sock.sendto(reply, self.client_address)


class _TcpHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        while True:
            try:
                record = _read_record(self.request)
            except (EOFError, OSError):
                return
            reply = self.server.rpc.handle_message(record)
            if reply is not None:
                try:
                    _write_record(self.request, reply)
                except OSError:
                    return


class _UdpServer(socketserver.UDPServer):
    allow_reuse_address = True
    max_packet_size = 65536


class _TcpServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True


class RpcServer:
    """Dispatches calls for one program version to registered handlers."""

    def __init__(self, prog: int, vers: int) -> None:
        self.prog = prog
        self.vers = vers
        self.bound: dict[Protocol, int] = {}
        self._handlers: dict[int, Handler] = {}
        self._servers: list[socketserver.BaseServer] = []
        self._threads: list[threading.Thread] = []
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    def register(self, proc: int, handler: Handler) -> None:
        """Serve procedure ``proc``; the handler maps argument bytes to result bytes.

        A handler that returns None sends no reply.
        """
        if proc == NULLPROC:
            raise ValueError("procedure 0 is reserved for the null procedure")
        self._handlers[proc] = handler

    def handle_message(self, data: bytes) -> Optional[bytes]:
        """Answer one call message; None when nothing is to be sent back."""
        u = Unpacker(data)
        try:
            xid = u.unpack_uint()
            if u.unpack_uint() != CALL:
                return None
            rpcvers = u.unpack_uint()
            prog = u.unpack_uint()
            vers = u.unpack_uint()
            proc = u.unpack_uint()
            if rpcvers != RPC_VERSION:
                return _rpc_mismatch(xid)
            offset = 24 + _skip_auth(u) + _skip_auth(u)
        except XdrError:
            return None
        if prog != self.prog:
            return _accepted(xid, PROG_UNAVAIL)
        if vers != self.vers:
            return _accepted(xid, PROG_MISMATCH, _version_range(self.vers, self.vers))
        if proc == NULLPROC:
            return _accepted(xid, SUCCESS)
        handler = self._handlers.get(proc)
        if handler is None:
            return _accepted(xid, PROC_UNAVAIL)
        try:
            result = handler(bytes(data[offset:]))
        except (GarbageArguments, XdrError):
            return _accepted(xid, GARBAGE_ARGS)
        except Exception:
            log.exception("procedure %d failed", proc)
            return _accepted(xid, SYSTEM_ERR)
        if result is None:
            return None
        return _accepted(xid, SUCCESS, bytes(result))

    def _start(self, server: socketserver.BaseServer, protocol: Protocol) -> int:
        server.rpc = self
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        port = server.server_address[1]
        with self._lock:
            self._servers.append(server)
            self._threads.append(thread)
            self.bound[protocol] = port
        return port

    def serve_udp(self, host: str = "", port: int = 0) -> int:
        """Serve over UDP in the background; return the bound port."""
        return self._start(_UdpServer((host, port), _UdpHandler), Protocol.UDP)

    def serve_tcp(self, host: str = "", port: int = 0) -> int:
        """Serve over TCP in the background; return the bound port."""
        return self._start(_TcpServer((host, port), _TcpHandler), Protocol.TCP)

    def serve_forever(self, host: str = "", udp_port: int = 0, tcp_port: int = 0) -> None:
        """Serve over UDP and TCP until ``shutdown`` is called."""
        self._stopped.clear()
        self.serve_udp(host, udp_port)
        self.serve_tcp(host, tcp_port)
        self._stopped.wait()

    def shutdown(self) -> None:
        """Stop every transport and wake ``serve_forever``."""
        with self._lock:
            servers, threads = self._servers, self._threads
            self._servers, self._threads = [], []
            self.bound = {}
        for server in servers:
            server.shutdown()
            server.server_close()
        for thread in threads:
            thread.join()
        self._stopped.set()