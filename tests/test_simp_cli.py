import io
import socket
import threading
import time

import pytest

from rpclab.rpc import Protocol, RpcClient, RpcError, RpcServer, RpcTimeout
from rpclab.simp import SIMP_PROG, SIMP_VERSION, SimpClient, SimpService
from rpclab.simp_cli import client_main, probe_main, server_main

HOST = "127.0.0.1"


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((HOST, 0))
        return sock.getsockname()[1]


def _wait_for_tcp(port: int, timeout: float = 5.0) -> RpcClient:
    deadline = time.monotonic() + timeout
    while True:
        try:
            return RpcClient(HOST, port, SIMP_PROG, SIMP_VERSION, Protocol.TCP, 1.0)
        except RpcError:
            if time.monotonic() > deadline:
                raise
            time.sleep(0.05)


@pytest.fixture
def simp_server():
    log = io.StringIO()
    server = SimpService(out=log).build_server()
    udp = server.serve_udp(HOST, 0)
    tcp = server.serve_tcp(HOST, 0)
    yield {Protocol.UDP: udp, Protocol.TCP: tcp}, log
    server.shutdown()


@pytest.fixture
def empty_server():
    server = RpcServer(SIMP_PROG, SIMP_VERSION)
    udp = server.serve_udp(HOST, 0)
    tcp = server.serve_tcp(HOST, 0)
    yield {Protocol.UDP: udp, Protocol.TCP: tcp}
    server.shutdown()


def _flags(protocol, port):
    flags = ["--port", str(port), "--timeout", "5"]
    if protocol is Protocol.TCP:
        flags.append("--tcp")
    return flags


def test_client_usage_on_wrong_argument_count(capsys):
    assert client_main(["localhost", "1"]) == 0
    captured = capsys.readouterr()
    assert "Usage:" in captured.err
    assert captured.out == ""


@pytest.mark.parametrize("protocol", [Protocol.UDP, Protocol.TCP])
def test_client_prints_sum_and_difference(simp_server, capsys, protocol):
    ports, log = simp_server
    code = client_main(_flags(protocol, ports[protocol]) + [HOST, "3", "4"])
    assert code == 0
    assert capsys.readouterr().out == "3 + 4 = 7\n3 - 4 = -1\n"
    assert "Got request: adding 3, 4" in log.getvalue()
    assert "Got request: subtracting 3, 4" in log.getvalue()


def test_client_reads_numbers_like_atoi(simp_server, capsys):
    ports, log = simp_server
    code = client_main(_flags(Protocol.TCP, ports[Protocol.TCP]) + [HOST, "12abc", "x"])
    assert code == 0
    assert capsys.readouterr().out == "12 + 0 = 12\n12 - 0 = 12\n"
    assert "adding 12, 0" in log.getvalue()


def test_client_negative_operands_are_positional(simp_server, capsys):
    ports, log = simp_server
    assert client_main(_flags(Protocol.TCP, ports[Protocol.TCP]) + [HOST, "-5", "-6"]) == 0
    lines = capsys.readouterr().out.splitlines()
    assert lines[0].startswith("-5 + -6 = ")
    assert lines[1].startswith("-5 - -6 = ")
    assert "adding -5, -6" in log.getvalue()


def test_client_reports_failed_call(empty_server, capsys):
    code = client_main(_flags(Protocol.TCP, empty_server[Protocol.TCP]) + [HOST, "1", "2"])
    assert code == 0
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "Trouble calling remote procedure" in captured.err


def test_client_cannot_connect(capsys):
    port = _free_port()
    code = client_main(_flags(Protocol.TCP, port) + [HOST, "1", "2"])
    assert code == 1
    captured = capsys.readouterr()
    assert captured.err.startswith(f"{HOST}:")
    assert captured.out == ""


def test_probe_usage_without_host(capsys):
    assert probe_main([]) == 1
    assert "usage:" in capsys.readouterr().out


@pytest.mark.parametrize("protocol", [Protocol.UDP, Protocol.TCP])
def test_probe_calls_both_procedures(simp_server, capsys, protocol):
    ports, log = simp_server
    assert probe_main(_flags(protocol, ports[protocol]) + [HOST]) == 0
    assert log.getvalue().splitlines() == [
        "Got request: adding 0, 0",
        "Got request: subtracting 0, 0",
    ]
    assert capsys.readouterr().err == ""


def test_probe_reports_each_failed_call(empty_server, capsys):
    assert probe_main(_flags(Protocol.TCP, empty_server[Protocol.TCP]) + [HOST]) == 0
    assert capsys.readouterr().err.count("call failed") == 2


def test_server_main_stops_after_add_when_exit_on_add(capsys):
    port = _free_port()
    result = {}

    def run():
        result["code"] = server_main(
            ["--host", HOST, "--tcp-port", str(port), "--no-portmap", "--exit-on-add"]
        )

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    with SimpClient(_wait_for_tcp(port)) as simp:
        assert simp.sub(9, 4) == 5
        with pytest.raises(RpcTimeout):
            simp.add(1, 2)
    thread.join(10)
    assert not thread.is_alive()
    assert result["code"] == 0
    out = capsys.readouterr().out
    assert "Got request: subtracting 9, 4" in out
    assert "Got request: adding 1, 2" in out


def test_server_main_fails_when_port_is_taken(capsys):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
        blocker.bind((HOST, 0))
        blocker.listen()
        taken = blocker.getsockname()[1]
        code = server_main(["--host", HOST, "--tcp-port", str(taken), "--no-portmap"])
    assert code == 1
    assert "cannot create tcp service." in capsys.readouterr().err