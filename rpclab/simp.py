"""The addition/subtraction service: wire types, client stub and server procedures."""

from __future__ import annotations

import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional, TextIO

from rpclab import portmap
from rpclab.rpc import DEFAULT_TIMEOUT, Protocol, RpcClient, RpcError, RpcServer
from rpclab.xdr import Packer, Unpacker, XdrError

FOO = 127

SIMP_PROG = 555555555
SIMP_VERSION = 1

ADD = 1
SUB = 2


def _wrap32(value: int) -> int:
    """Reduce ``value`` to a signed 32-bit integer the way C int arithmetic wraps."""
    return (value + 0x80000000) % 0x100000000 - 0x80000000


def _encode_int(value: int) -> bytes:
    p = Packer()
    p.pack_int(value)
    return p.get_buffer()


def _decode_int(data: bytes) -> int:
    u = Unpacker(data)
    try:
        value = u.unpack_int()
        u.done()
    except XdrError as err:
        raise RpcError("cannot decode integer result") from err
    return value


class ServiceExit(Exception):
    """Raised by a procedure that makes the whole service stop without replying."""


@dataclass(frozen=True)
class Operands:
    """The two integers a request carries."""

    x: int
    y: int

    def pack(self, packer: Packer) -> None:
        packer.pack_int(self.x)
        packer.pack_int(self.y)

    @classmethod
    def unpack(cls, unpacker: Unpacker) -> "Operands":
        x = unpacker.unpack_int()
        y = unpacker.unpack_int()
        return cls(x, y)

    def encode(self) -> bytes:
        """Return the XDR encoding of both operands."""
        p = Packer()
        self.pack(p)
        return p.get_buffer()

    @classmethod
    def decode(cls, data: bytes) -> "Operands":
        """Parse operands, requiring the buffer to hold nothing else."""
        u = Unpacker(data)
        operands = cls.unpack(u)
        u.done()
        return operands


class SimpClient:
    """Calls the remote add and subtract procedures over an open RPC client."""

    def __init__(self, client: RpcClient) -> None:
        self.client = client

    @classmethod
    def connect(
        cls,
        host: str,
        protocol: Protocol = Protocol.UDP,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "SimpClient":
        """Find the service through the port mapper on ``host`` and connect."""
        return cls(portmap.connect(host, SIMP_PROG, SIMP_VERSION, protocol, timeout))

    def _call(self, proc: int, x: int, y: int) -> int:
        return _decode_int(self.client.call(proc, Operands(x, y).encode()))

    def add(self, x: int, y: int) -> int:
        """Return ``x + y`` as computed by the server."""
        return self._call(ADD, x, y)

    def sub(self, x: int, y: int) -> int:
        """Return ``x - y`` as computed by the server."""
        return self._call(SUB, x, y)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "SimpClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class SimpService:
    """Server procedures; each logs the request, may pause, then computes.

    ``delay`` seconds are slept before each result. With ``exit_on_add`` the add
    procedure stops the whole service instead of answering.
    """

    def __init__(
        self,
        delay: float = 0.0,
        exit_on_add: bool = False,
        out: Optional[TextIO] = None,
    ) -> None:
        self.delay = delay
        self.exit_on_add = exit_on_add
        self._out = out

    def _log(self, message: str) -> None:
        out = self._out if self._out is not None else sys.stdout
        out.write(message + "\n")
        out.flush()

    def _pause(self) -> None:
        if self.delay > 0:
            time.sleep(self.delay)

    def add(self, operands: Operands) -> int:
        """Return the wrapped sum of the operands."""
        self._log(f"Got request: adding {operands.x}, {operands.y}")
        if self.exit_on_add:
            raise ServiceExit("service stopped while adding")
        self._pause()
        return _wrap32(operands.x + operands.y)

    def sub(self, operands: Operands) -> int:
        """Return the wrapped difference of the operands."""
        self._log(f"Got request: subtracting {operands.x}, {operands.y}")
        self._pause()
        return _wrap32(operands.x - operands.y)

    def build_server(self) -> RpcServer:
        """Return a server for the program with both procedures registered."""
        server = RpcServer(SIMP_PROG, SIMP_VERSION)

        def stop() -> None:
            threading.Thread(target=server.shutdown, daemon=True).start()

        def procedure(method):
            def handle(payload: bytes) -> Optional[bytes]:
                operands = Operands.decode(payload)
                try:
                    result = method(operands)
                except ServiceExit:
                    stop()
                    return None
                return _encode_int(result)

            return handle

        server.register(ADD, procedure(self.add))
        server.register(SUB, procedure(self.sub))
        return server