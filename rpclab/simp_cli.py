"""Command-line programs for the addition/subtraction service."""

from __future__ import annotations

import argparse
import os
import re
import sys
import time
from typing import Optional, Sequence

from rpclab import portmap
from rpclab.rpc import DEFAULT_TIMEOUT, Protocol, RpcClient, RpcError, RpcServer
from rpclab.simp import SIMP_PROG, SIMP_VERSION, SimpClient, SimpService

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")
_POLL_INTERVAL = 0.2


def _atoi(text: str) -> int:
    """Read a leading decimal integer as a C int; text without one reads as 0."""
    match = _LEADING_INT.match(text)
    if match is None:
        return 0
    value = int(match.group(1))
    return (value + 0x80000000) % 0x100000000 - 0x80000000


def _prog_name(default: str) -> str:
    if sys.argv and sys.argv[0]:
        return os.path.basename(sys.argv[0])
    return default


def _create_error(host: str, err: RpcError) -> str:
    message = str(err)
    if message.startswith(f"{host}:"):
        return message
    return f"{host}: {message}"


def _open(
    host: str, port: Optional[int], protocol: Protocol, timeout: float
) -> SimpClient:
    if port is None:
        return SimpClient.connect(host, protocol, timeout)
    return SimpClient(RpcClient(host, port, SIMP_PROG, SIMP_VERSION, protocol, timeout))


def _add_connection_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--tcp", action="store_true", help="call over TCP instead of UDP")
    parser.add_argument(
        "--port", type=int, default=None, help="server port; skips the port mapper"
    )
    parser.add_argument(
        "--timeout", type=float, default=DEFAULT_TIMEOUT, help="seconds to wait for a reply"
    )


def client_main(argv: Optional[Sequence[str]] = None) -> int:
    """Add and subtract two integers on a remote server and print both results."""
    prog = _prog_name("simpclient")
    parser = argparse.ArgumentParser(prog=prog)
    _add_connection_options(parser)
    parser.add_argument("args", nargs="*", help="hostname num1 num2")
    args = parser.parse_args(argv)

    if len(args.args) != 3:
        print(f"Usage: {prog} hostname num1 num", file=sys.stderr)
        return 0
    host, first, second = args.args
    protocol = Protocol.TCP if args.tcp else Protocol.UDP

    try:
        client = _open(host, args.port, protocol, args.timeout)
    except RpcError as err:
        print(_create_error(host, err), file=sys.stderr)
        return 1

    x, y = _atoi(first), _atoi(second)
    with client:
        try:
            total = client.add(x, y)
        except RpcError:
            print("Trouble calling remote procedure", file=sys.stderr)
            return 0
        print(f"{x} + {y} = {total}")
        try:
            difference = client.sub(x, y)
        except RpcError:
            print("Trouble calling remote procedure", file=sys.stderr)
            return 0
        print(f"{x} - {y} = {difference}")
    return 0


def probe_main(argv: Optional[Sequence[str]] = None) -> int:
    """Call both remote procedures once with zero operands, reporting failures."""
    prog = _prog_name("simp_client")
    parser = argparse.ArgumentParser(prog=prog)
    _add_connection_options(parser)
    parser.add_argument("host", nargs="?")
    args = parser.parse_args(argv)

    if args.host is None:
        print(f"usage: {prog} server_host")
        return 1
    protocol = Protocol.TCP if args.tcp else Protocol.UDP

    try:
        client = _open(args.host, args.port, protocol, args.timeout)
    except RpcError as err:
        print(_create_error(args.host, err), file=sys.stderr)
        return 1

    with client:
        for call in (client.add, client.sub):
            try:
                call(0, 0)
            except RpcError as err:
                print(f"call failed: {err}", file=sys.stderr)
    return 0


def _register(protocol: Protocol, port: int) -> bool:
    try:
        return portmap.set_mapping(SIMP_PROG, SIMP_VERSION, protocol, port)
    except RpcError:
        return False


def _start(server: RpcServer, protocol: Protocol, host: str, port: int, use_portmap: bool) -> bool:
    name = protocol.name.lower()
    try:
        if protocol is Protocol.UDP:
            bound = server.serve_udp(host, port)
        else:
            bound = server.serve_tcp(host, port)
    except OSError:
        print(f"cannot create {name} service.", file=sys.stderr)
        return False
    if use_portmap and not _register(protocol, bound):
        print(f"unable to register (SIMP_PROG, SIMP_VERSION, {name}).", file=sys.stderr)
        return False
    return True


def server_main(argv: Optional[Sequence[str]] = None) -> int:
    """Serve the add and subtract procedures over UDP and TCP."""
    parser = argparse.ArgumentParser(prog=_prog_name("simp_server"))
    parser.add_argument("--host", default="", help="address to bind")
    parser.add_argument("--udp-port", type=int, default=0)
    parser.add_argument("--tcp-port", type=int, default=0)
    parser.add_argument(
        "--delay", type=float, default=0.0, help="seconds to pause before each result"
    )
    parser.add_argument(
        "--exit-on-add", action="store_true", help="stop the service on the first add"
    )
    parser.add_argument(
        "--no-portmap", action="store_true", help="do not register with the port mapper"
    )
    args = parser.parse_args(argv)
    use_portmap = not args.no_portmap

    service = SimpService(delay=args.delay, exit_on_add=args.exit_on_add)
    server = service.build_server()

    if use_portmap:
        try:
            portmap.unset_mapping(SIMP_PROG, SIMP_VERSION)
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

    if args.exit_on_add:
        return 0
    print("svc_run returned", file=sys.stderr)
    return 1