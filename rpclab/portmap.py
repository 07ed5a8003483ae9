"""Client side of the port mapper (program 100000, version 2)."""

from __future__ import annotations

from dataclasses import dataclass

from rpclab.rpc import DEFAULT_TIMEOUT, Protocol, RpcClient, RpcError
from rpclab.xdr import Packer, Unpacker, XdrError

PMAP_PROG = 100000
PMAP_VERS = 2
PMAP_PORT = 111

PMAPPROC_SET = 1
PMAPPROC_UNSET = 2
PMAPPROC_GETPORT = 3


@dataclass(frozen=True)
class Mapping:
    """A program version bound to a port over one protocol."""

    prog: int
    vers: int
    prot: int
    port: int

    def pack(self, packer: Packer) -> None:
        for value in (self.prog, self.vers, self.prot, self.port):
            packer.pack_uint(value)

    @classmethod
    def unpack(cls, unpacker: Unpacker) -> "Mapping":
        return cls(
            unpacker.unpack_uint(),
            unpacker.unpack_uint(),
            unpacker.unpack_uint(),
            unpacker.unpack_uint(),
        )


def _call(host: str, proc: int, mapping: Mapping, timeout: float) -> int:
    p = Packer()
    mapping.pack(p)
    with RpcClient(host, PMAP_PORT, PMAP_PROG, PMAP_VERS, Protocol.UDP, timeout) as client:
        reply = client.call(proc, p.get_buffer())
    try:
        u = Unpacker(reply)
        value = u.unpack_uint()
        u.done()
    except XdrError as err:
        raise RpcError("cannot decode port mapper reply") from err
    return value


def get_port(
    host: str,
    prog: int,
    vers: int,
    protocol: Protocol = Protocol.UDP,
    timeout: float = DEFAULT_TIMEOUT,
) -> int:
    """Ask the port mapper on ``host`` where a program version listens."""
    port = _call(host, PMAPPROC_GETPORT, Mapping(prog, vers, int(protocol), 0), timeout)
    if port == 0:
        raise RpcError(f"{host}: program {prog} version {vers} is not registered")
    return port


def set_mapping(
    prog: int, vers: int, protocol: Protocol, port: int, host: str = "localhost"
) -> bool:
    """Register a program version's port; True when the mapper accepted it."""
    mapping = Mapping(prog, vers, int(protocol), port)
    return bool(_call(host, PMAPPROC_SET, mapping, DEFAULT_TIMEOUT))


def unset_mapping(prog: int, vers: int, host: str = "localhost") -> bool:
    """Remove every registration of a program version."""
    return bool(_call(host, PMAPPROC_UNSET, Mapping(prog, vers, 0, 0), DEFAULT_TIMEOUT))


def connect(
    host: str,
    prog: int,
    vers: int,
    protocol: Protocol = Protocol.UDP,
    timeout: float = DEFAULT_TIMEOUT,
) -> RpcClient:
    """Open a client to a program version, finding its port through the mapper."""
    port = get_port(host, prog, vers, protocol, timeout)
    return RpcClient(host, port, prog, vers, protocol, timeout)