import threading
import time

import pytest

from rpclab.rpc import (
    GarbageArguments,
    ProcedureUnavailable,
    Protocol,
    RpcClient,
    RpcError,
    RpcServer,
    RpcTimeout,
    SystemError_,
    decode_reply,
    encode_call,
)
from rpclab.xdr import Packer, Unpacker

PROG = 555555555
VERS = 1


def _echo(payload):
    return payload


def _double(payload):
    u = Unpacker(payload)
    value = u.unpack_int()
    u.done()
    p = Packer()
    p.pack_int(value * 2)
    return p.get_buffer()


def _boom(payload):
    raise RuntimeError("broken")


def _make_server():
    server = RpcServer(PROG, VERS)
    server.register(1, _echo)
    server.register(2, _double)
    server.register(3, _boom)
    return server


@pytest.fixture
def server():
    s = _make_server()
    yield s
    s.shutdown()


def _int(value):
    p = Packer()
    p.pack_int(value)
    return p.get_buffer()


def test_call_header_size_with_null_auth():
    assert len(encode_call(1, 2, 3, 4, b"")) == 40


def test_payload_is_appended():
    msg = encode_call(9, PROG, VERS, 1, b"abcd")
    assert msg.endswith(b"abcd")


def test_handle_message_round_trip():
    s = _make_server()
    reply = s.handle_message(encode_call(77, PROG, VERS, 2, _int(21)))
    assert Unpacker(decode_reply(reply, 77)).unpack_int() == 42


def test_null_procedure_returns_empty():
    s = _make_server()
    assert decode_reply(s.handle_message(encode_call(5, PROG, VERS, 0)), 5) == b""


def test_xid_mismatch():
    s = _make_server()
    reply = s.handle_message(encode_call(5, PROG, VERS, 1, b""))
    with pytest.raises(RpcError):
        decode_reply(reply, 6)


def test_unknown_procedure():
    s = _make_server()
    with pytest.raises(ProcedureUnavailable):
        decode_reply(s.handle_message(encode_call(1, PROG, VERS, 99)), 1)


def test_wrong_program():
    s = _make_server()
    with pytest.raises(RpcError):
        decode_reply(s.handle_message(encode_call(1, PROG + 1, VERS, 1)), 1)


def test_wrong_version():
    s = _make_server()
    with pytest.raises(RpcError, match="mismatch"):
        decode_reply(s.handle_message(encode_call(1, PROG, VERS + 1, 1)), 1)


def test_garbage_arguments():
    s = _make_server()
    with pytest.raises(GarbageArguments):
        decode_reply(s.handle_message(encode_call(1, PROG, VERS, 2, b"\x00")), 1)


def test_handler_failure_is_system_error():
    s = _make_server()
    with pytest.raises(SystemError_):
        decode_reply(s.handle_message(encode_call(1, PROG, VERS, 3)), 1)


def test_non_call_and_truncated_messages_are_ignored():
    s = _make_server()
    reply = s.handle_message(encode_call(1, PROG, VERS, 1))
    assert s.handle_message(reply) is None
    assert s.handle_message(b"\x00\x00") is None


def test_register_null_procedure_rejected():
    with pytest.raises(ValueError):
        RpcServer(PROG, VERS).register(0, _echo)


@pytest.mark.parametrize("protocol", [Protocol.UDP, Protocol.TCP])
def test_client_over_network(server, protocol):
    if protocol is Protocol.UDP:
        port = server.serve_udp("127.0.0.1", 0)
    else:
        port = server.serve_tcp("127.0.0.1", 0)
    with RpcClient("127.0.0.1", port, PROG, VERS, protocol, timeout=5) as client:
        client.ping()
        assert client.call(1, b"hello!!!") == b"hello!!!"
        assert Unpacker(client.call(2, _int(-4))).unpack_int() == -8
        with pytest.raises(ProcedureUnavailable):
            client.call(42)


def test_udp_timeout_and_retransmission():
    calls = []
    s = RpcServer(PROG, VERS)
    s.register(1, lambda payload: calls.append(payload))
    port = s.serve_udp("127.0.0.1", 0)
    try:
        client = RpcClient("127.0.0.1", port, PROG, VERS, timeout=0.5, retry=0.1)
        with client, pytest.raises(RpcTimeout):
            client.call(1, b"xxxx")
    finally:
        s.shutdown()
    assert len(calls) >= 2


def test_tcp_connect_refused():
    s = RpcServer(PROG, VERS)
    port = s.serve_tcp("127.0.0.1", 0)
    s.shutdown()
    with pytest.raises(RpcError):
        RpcClient("127.0.0.1", port, PROG, VERS, Protocol.TCP, timeout=1)


def test_serve_forever_until_shutdown():
    s = _make_server()
    thread = threading.Thread(target=s.serve_forever, args=("127.0.0.1", 0, 0))
    thread.start()
    deadline = time.monotonic() + 5
    while len(s.bound) < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    ports = dict(s.bound)
    with RpcClient("127.0.0.1", ports[Protocol.TCP], PROG, VERS, Protocol.TCP, timeout=5) as c:
        assert c.call(1, b"abcd") == b"abcd"
    s.shutdown()
    thread.join(5)
    assert not thread.is_alive()
    assert s.bound == {}