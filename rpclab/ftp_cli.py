"""Command-line programs for the file transfer service."""

from __future__ import annotations

import argparse
import os
import sys
import time
from typing import Optional, Sequence, TextIO

from rpclab import portmap
from rpclab.calc import parse_int
from rpclab.ftp import FTP_SERVER, MAX_DATA, VERSION, FtpClient, FtpService
from rpclab.rpc import DEFAULT_TIMEOUT, Protocol, RpcClient, RpcError, RpcServer

DEFAULT_DEST = "dest_name"
_UHYPER_MOD = 2**64
_POLL_INTERVAL = 0.2


def _prog_name(default: str) -> str:
    if sys.argv and sys.argv[0]:
        return os.path.basename(sys.argv[0])
    return default


def download(
    client,
    src_name: str,
    pos: int = 0,
    count: int = 0,
    dest_name: str = DEFAULT_DEST,
    out: Optional[TextIO] = None,
) -> int:
    """Copy a remote file into ``dest_name``; return the final request offset.

    With ``count`` 0 the whole file is fetched in 512-byte chunks. Otherwise the
    first chunk holds up to ``count`` bytes from ``pos``, and if it came back
    short the rest of the file is fetched until an empty chunk arrives.
    """
    out = out if out is not None else sys.stdout
    length = MAX_DATA if count == 0 else count % _UHYPER_MOD
    request_pos = pos % _UHYPER_MOD

    chunk = client.read_file(src_name, request_pos, length).data
    with open(dest_name, "wb") as dest:
        out.write(f"Writing to {dest_name}\n")
        out.write(f"datalen es {len(chunk)}\n")
        if count == 0:
            request_pos = 0
            while chunk:
                dest.seek(request_pos)
                request_pos += dest.write(chunk)
                chunk = client.read_file(src_name, request_pos, length).data
        else:
            dest.seek(0)
            request_pos += dest.write(chunk)
            received = len(chunk)
            if received < count:
                while chunk:
                    chunk = client.read_file(src_name, request_pos, length).data
                    out.write(f"datalen es {len(chunk)}\n")
                    dest.seek(received)
                    request_pos += dest.write(chunk)
                    received += len(chunk)
    out.write(f"{request_pos} bytes written.\n")
    return request_pos


def upload(client, src_name: str, dest_name: str, out: Optional[TextIO] = None) -> int:
    """Send a local file to the server in 512-byte chunks; return bytes sent."""
    out = out if out is not None else sys.stdout
    pos = 0
    with open(src_name, "rb") as src:
        out.write(f"Reading file {src_name}\n")
        while chunk := src.read(MAX_DATA):
            client.write_file(dest_name, chunk, pos)
            pos += len(chunk)
    out.write(f"{pos} bytes sent.\n")
    return pos


def _open(host: str, port: Optional[int], protocol: Protocol, timeout: float) -> FtpClient:
    if port is None:
        return FtpClient.connect(host, protocol, timeout)
    return FtpClient(RpcClient(host, port, FTP_SERVER, VERSION, protocol, timeout))


def client_main(argv: Optional[Sequence[str]] = None) -> int:
    """Read a remote file into a local one, or write a local file remotely."""
    prog = _prog_name("ftp_client")
    parser = argparse.ArgumentParser(prog=prog)
    parser.add_argument("--tcp", action="store_true", help="call over TCP instead of UDP")
    parser.add_argument(
        "--port", type=int, default=None, help="server port; skips the port mapper"
    )
    parser.add_argument(
        "--timeout", type=float, default=DEFAULT_TIMEOUT, help="seconds to wait for a reply"
    )
    parser.add_argument(
        "--output", default=DEFAULT_DEST, help="local file that a read writes to"
    )
    parser.add_argument(
        "args", nargs="*", help="host read SRC POS COUNT | host write SRC DEST"
    )
    args = parser.parse_args(argv)

    if len(args.args) < 4:
        print(f"usage: {prog} server_host")
        return 1
    host, command, *rest = args.args
    if command not in ("read", "write"):
        print("Unknown command.")
        print()
        return 0
    if command == "read" and len(rest) < 3:
        print(f"usage: {prog} server_host")
        return 1

    protocol = Protocol.TCP if args.tcp else Protocol.UDP
    try:
        client = _open(host, args.port, protocol, args.timeout)
    except RpcError as err:
        message = str(err)
        if not message.startswith(f"{host}:"):
            message = f"{host}: {message}"
        print(message, file=sys.stderr)
        return 1

    with client:
        try:
            if command == "read":
                download(
                    client,
                    rest[0],
                    parse_int(rest[1]),
                    parse_int(rest[2]),
                    args.output,
                    sys.stdout,
                )
            else:
                upload(client, rest[0], rest[1], sys.stdout)
        except RpcError as err:
            print(f"call failed: {err}", file=sys.stderr)
            return 1
        except OSError as err:
            print(err, file=sys.stderr)
            return 1
    print()
    return 0


def _start(
    server: RpcServer, protocol: Protocol, host: str, port: int, use_portmap: bool
) -> bool:
    name = protocol.name.lower()
    try:
        if protocol is Protocol.UDP:
            bound = server.serve_udp(host, port)
        else:
            bound = server.serve_tcp(host, port)
    except OSError:
        print(f"cannot create {name} service.", file=sys.stderr)
        return False
    if use_portmap:
        try:
            registered = portmap.set_mapping(FTP_SERVER, VERSION, protocol, bound)
        except RpcError:
            registered = False
        if not registered:
            print(f"unable to register (FTP_SERVER, VERSION, {name}).", file=sys.stderr)
            return False
    return True


def server_main(argv: Optional[Sequence[str]] = None) -> int:
    """Serve the file read and write procedures over UDP and TCP."""
    parser = argparse.ArgumentParser(prog=_prog_name("ftp_server"))
    parser.add_argument("--host", default="", help="address to bind")
    parser.add_argument("--udp-port", type=int, default=0)
    parser.add_argument("--tcp-port", type=int, default=0)
    parser.add_argument(
        "--no-portmap", action="store_true", help="do not register with the port mapper"
    )
    args = parser.parse_args(argv)
    use_portmap = not args.no_portmap

    server = FtpService().build_server()
    if use_portmap:
        try:
            portmap.unset_mapping(FTP_SERVER, VERSION)
        except RpcError:
            pass

    for protocol, port in ((Protocol.UDP, args.udp_port), (Protocol.TCP, args.tcp_port)):
        if not _start(server, protocol, args.host, port, use_portmap):
            server.shutdown()
            return 1

    try:
        while server.bound:
            time.sleep(_POLL_INTERVAL)
    except KeyboardInterrupt:
        server.shutdown()
        return 130

    print("svc_run returned", file=sys.stderr)
    return 1