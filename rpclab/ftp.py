"""The file transfer service: wire types, client stub and server procedures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rpclab import portmap
from rpclab.rpc import DEFAULT_TIMEOUT, Protocol, RpcClient, RpcError, RpcServer
from rpclab.xdr import Packer, Unpacker, XdrError

FTP_SERVER = 0x20000001
VERSION = 1

READ_FILE = 1
WRITE_FILE = 2

MAX_NAME = 512
MAX_DATA = 512


@dataclass(frozen=True)
class FtpFile:
    """A named chunk of file data at an offset."""

    name: str
    data: bytes = b""
    pos: int = 0

    def pack(self, packer: Packer) -> None:
        packer.pack_string(self.name, MAX_NAME)
        packer.pack_opaque(self.data, MAX_DATA)
        packer.pack_uhyper(self.pos)

    @classmethod
    def unpack(cls, unpacker: Unpacker) -> "FtpFile":
        name = unpacker.unpack_string(MAX_NAME)
        data = unpacker.unpack_opaque(MAX_DATA)
        pos = unpacker.unpack_uhyper()
        return cls(name, data, pos)


@dataclass(frozen=True)
class FtpReq:
    """A request for up to ``length`` bytes of a file from ``pos``."""

    name: str
    pos: int = 0
    length: int = MAX_DATA

    def pack(self, packer: Packer) -> None:
        packer.pack_string(self.name, MAX_NAME)
        packer.pack_uhyper(self.pos)
        packer.pack_uhyper(self.length)

    @classmethod
    def unpack(cls, unpacker: Unpacker) -> "FtpReq":
        name = unpacker.unpack_string(MAX_NAME)
        pos = unpacker.unpack_uhyper()
        length = unpacker.unpack_uhyper()
        return cls(name, pos, length)


def _encode(value) -> bytes:
    p = Packer()
    value.pack(p)
    return p.get_buffer()


def _decode(cls, data: bytes):
    u = Unpacker(data)
    value = cls.unpack(u)
    u.done()
    return value


def _truncate_name(name: str) -> str:
    return name.encode("utf-8")[:MAX_NAME].decode("utf-8", errors="ignore")


class FtpClient:
    """Reads and writes remote files over an open RPC client."""

    def __init__(self, client: RpcClient) -> None:
        self.client = client

    @classmethod
    def connect(
        cls,
        host: str,
        protocol: Protocol = Protocol.UDP,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "FtpClient":
        """Find the service through the port mapper on ``host`` and connect."""
        return cls(portmap.connect(host, FTP_SERVER, VERSION, protocol, timeout))

    def read_file(self, name: str, pos: int = 0, length: int = MAX_DATA) -> FtpFile:
        """Fetch up to ``length`` bytes (at most 512) of ``name`` from ``pos``."""
        reply = self.client.call(READ_FILE, _encode(FtpReq(name, pos, length)))
        try:
            return _decode(FtpFile, reply)
        except XdrError as err:
            raise RpcError("cannot decode file chunk") from err

    def write_file(self, name: str, data: bytes, pos: int = 0) -> int:
        """Append ``data`` to the remote file; return the bytes written."""
        reply = self.client.call(WRITE_FILE, _encode(FtpFile(name, data, pos)))
        u = Unpacker(reply)
        try:
            written = u.unpack_int()
            u.done()
        except XdrError as err:
            raise RpcError("cannot decode write result") from err
        return written

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "FtpClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()


class FtpService:
    """Server procedures that read from and append to local files."""

    def read_file(self, request: FtpReq) -> FtpFile:
        """Read at most 512 bytes of the named file from the requested offset."""
        size = min(request.length, MAX_DATA)
        with open(request.name, "rb") as f:
            f.seek(request.pos)
            data = f.read(size)
        return FtpFile(_truncate_name(request.name), data, 0)

    def write_file(self, file: FtpFile) -> int:
        """Append the chunk to the named file; return the bytes written."""
        with open(file.name, "ab") as f:
            return f.write(file.data)

    def build_server(self) -> RpcServer:
        """Return a server for the program with both procedures registered."""
        server = RpcServer(FTP_SERVER, VERSION)

        def handle_read(payload: bytes) -> Optional[bytes]:
            return _encode(self.read_file(_decode(FtpReq, payload)))

        def handle_write(payload: bytes) -> Optional[bytes]:
            p = Packer()
            p.pack_int(self.write_file(_decode(FtpFile, payload)))
            return p.get_buffer()

        server.register(READ_FILE, handle_read)
        server.register(WRITE_FILE, handle_write)
        return server