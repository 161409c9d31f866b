import socket

import pytest

from ftpproxy.core.address import Endpoint
from ftpproxy.core.parser import InvalidReplyError
from ftpproxy.core.connection import LineConnection
from ftpproxy.entities.ftp_session import FtpSession, handle_connection
from tests.fakes import FakeConnection, RecordingDataProxy

CLIENT_LOCAL = Endpoint("203.0.113.5", 21)
CLIENT_REMOTE = Endpoint("192.168.1.5", 40123)
SERVER_LOCAL = Endpoint("10.1.1.1", 51000)
SERVER_REMOTE = Endpoint("198.51.100.7", 21)


def make_session(replies=(), commands=(), data_proxy=None, **kwargs):
    client = FakeConnection(commands)
    server = FakeConnection(replies)
    session = FtpSession(
        client, server,
        CLIENT_LOCAL, CLIENT_REMOTE, SERVER_LOCAL, SERVER_REMOTE,
        data_proxy or RecordingDataProxy(),
        **kwargs
    )
    return session, client, server


def test_replies_and_commands_pass_through():
    session, client, server = make_session(
        replies=["220 Welcome", "331 Password required", "230 Logged in"],
        commands=["USER anonymous", "PASS guest"],
    )
    session.run()
    assert client.written == ["220 Welcome", "331 Password required", "230 Logged in"]
    assert server.written == ["USER anonymous", "PASS guest"]


def test_preliminary_reply_keeps_reading_replies():
    session, client, server = make_session(
        replies=["150-Opening data connection", "150 Transfer complete", "226 Closing data connection"],
        commands=["LIST"],
    )
    assert session.forward_replies()
    # Ambas respuestas se reenvían antes de leer un comando
    assert client.written == [
        "150-Opening data connection\r\n150 Transfer complete",
        "226 Closing data connection",
    ]
    assert server.written == []


def test_227_reply_is_rewritten():
    data_proxy = RecordingDataProxy(Endpoint("203.0.113.5", 50000))
    session, client, server = make_session(
        replies=["227 Entering Passive Mode (10,0,0,1,4,1)."],
        data_proxy=data_proxy,
    )
    session.run()
    assert client.written == ["227 Entering Passive Mode (203,0,113,5,195,80)"]
    assert data_proxy.calls == [("203.0.113.5", Endpoint("10.0.0.1", 1025))]


def test_229_reply_uses_control_connection_address():
    data_proxy = RecordingDataProxy(Endpoint("203.0.113.5", 50001))
    session, client, server = make_session(
        replies=["229 Entering (10.9.9.9) Extended Passive Mode (|||6446|)"],
        data_proxy=data_proxy,
    )
    session.run()
    assert data_proxy.calls == [("203.0.113.5", Endpoint("198.51.100.7", 6446))]
    assert client.written == ["229 Entering Extended Passive Mode (|||50001|)"]


def test_port_command_is_rewritten():
    data_proxy = RecordingDataProxy(Endpoint("10.1.1.1", 40000))
    session, client, server = make_session(
        replies=["220 Welcome", "200 PORT command successful"],
        commands=["PORT 192,168,1,5,200,100"],
        data_proxy=data_proxy,
    )
    session.run()
    assert server.written == ["PORT 10,1,1,1,156,64"]
    assert data_proxy.calls == [("10.1.1.1", Endpoint("192.168.1.5", 51300))]


def test_eprt_command_stays_eprt_by_default():
    data_proxy = RecordingDataProxy(Endpoint("10.1.1.1", 40000))
    session, client, server = make_session(
        replies=["220 Welcome", "200 EPRT command successful"],
        commands=["EPRT |1|192.168.1.5|51300|"],
        data_proxy=data_proxy,
    )
    session.run()
    assert server.written == ["EPRT |1|10.1.1.1|40000|"]
    assert data_proxy.calls == [("10.1.1.1", Endpoint("192.168.1.5", 51300))]


def test_eprt_command_downgraded_to_port_when_enabled():
    data_proxy = RecordingDataProxy(Endpoint("10.1.1.1", 40000))
    session, client, server = make_session(
        replies=["220 Welcome", "200 PORT command successful"],
        commands=["EPRT |1|192.168.1.5|51300|"],
        data_proxy=data_proxy,
        replace_eprt_with_port=True,
    )
    session.run()
    assert server.written == ["PORT 10,1,1,1,156,64"]


def test_ipv6_eprt_never_downgraded():
    data_proxy = RecordingDataProxy(Endpoint("2001:db8::10", 40000))
    session, client, server = make_session(
        replies=["220 Welcome", "200 EPRT command successful"],
        commands=["EPRT |2|2001:db8::5|51300|"],
        data_proxy=data_proxy,
        replace_eprt_with_port=True,
    )
    session.run()
    assert server.written == ["EPRT |2|2001:db8::10|40000|"]


def test_unrecognized_port_is_forwarded_unchanged():
    data_proxy = RecordingDataProxy()
    session, client, server = make_session(
        replies=["220 Welcome", "501 Syntax error"],
        commands=["PORT 192,168,1,5"],
        data_proxy=data_proxy,
    )
    session.run()
    assert server.written == ["PORT 192,168,1,5"]
    assert data_proxy.calls == []


def test_invalid_reply_terminates_session_without_rewrite():
    data_proxy = RecordingDataProxy()
    session, client, server = make_session(
        replies=["220 Welcome", "\xff\xfe binary junk", "227 Entering Passive Mode (10,0,0,1,4,1)"],
        commands=["NOOP"],
        data_proxy=data_proxy,
    )
    with pytest.raises(InvalidReplyError):
        session.run()
    assert client.written == ["220 Welcome"]
    assert data_proxy.calls == []


def test_client_close_ends_session():
    session, client, server = make_session(replies=["220 Welcome", "200 ok"], commands=[])
    session.run()
    assert client.written == ["220 Welcome"]
    assert server.written == []


def test_server_close_ends_session():
    session, client, server = make_session(replies=["220 Welcome"], commands=["NOOP", "QUIT"])
    session.run()
    assert server.written == ["NOOP"]


@pytest.mark.parametrize("command", [
    "EPRT |1|host|x|",
    "EPRT |1|192.168.1.5|51300",
    "eprt |3|192.168.1.5|51300|",
])
def test_unrecognized_eprt_is_forwarded_unchanged(command):
    data_proxy = RecordingDataProxy()
    session, client, server = make_session(
        replies=["220 Welcome", "501 Syntax error"],
        commands=[command],
        data_proxy=data_proxy,
    )
    session.run()
    assert server.written == [command]
    assert data_proxy.calls == []


@pytest.mark.parametrize("reply", [
    "227 Entering Passive Mode (10,0,0,1,4)",
    "227 Entering Passive Mode (10,0,0,300,4,1)",
    "229 Entering Extended Passive Mode (|||abc|)",
    "229 Entering Extended Passive Mode (|1|10.0.0.1|6446|)",
])
def test_unrecognized_passive_reply_is_forwarded_unchanged(reply):
    data_proxy = RecordingDataProxy()
    session, client, server = make_session(replies=[reply], data_proxy=data_proxy)
    session.run()
    assert client.written == [reply]
    assert data_proxy.calls == []


def test_bracketed_reply_closes_on_any_code_by_default():
    session, client, server = make_session(replies=["150-Opening", "200 unrelated", "150 done", "226 ok"])
    session.run()
    # El 200 cierra la respuesta y no es preliminar: se pasa a leer un comando
    assert client.written == ["150-Opening\r\n200 unrelated"]


def test_strict_replies_close_on_opening_code():
    session, client, server = make_session(
        replies=["150-Opening", "200 unrelated", "150 done", "226 ok"],
        strict_replies=True,
    )
    session.run()
    assert client.written == ["150-Opening\r\n200 unrelated\r\n150 done", "226 ok"]


def connection_pairs():
    """Dos socketpair: (lado proxy, lado cliente) y (lado proxy, lado servidor)."""
    pairs = [socket.socketpair(), socket.socketpair()]
    for sock in pairs[0] + pairs[1]:
        sock.settimeout(5)
    return pairs


def test_handle_connection_stops_data_proxies_on_client_close():
    (proxy_client, client_peer), (proxy_server, server_peer) = connection_pairs()
    data_proxy = RecordingDataProxy()
    try:
        server_peer.sendall(b"220 Welcome\r\n")
        client_peer.sendall(b"NOOP\r\n")
        client_peer.shutdown(socket.SHUT_WR)
        server_peer.sendall(b"200 NOOP ok\r\n")

        handle_connection(proxy_client, proxy_server, CLIENT_LOCAL, CLIENT_REMOTE,
                          SERVER_LOCAL, SERVER_REMOTE, data_proxy)

        assert data_proxy.stopped == 1
        assert server_peer.recv(100) == b"NOOP\r\n"
        assert LineConnection(client_peer).read_line() == "220 Welcome"
    finally:
        for sock in (proxy_client, client_peer, proxy_server, server_peer):
            sock.close()


def test_handle_connection_stops_data_proxies_on_protocol_error():
    (proxy_client, client_peer), (proxy_server, server_peer) = connection_pairs()
    data_proxy = RecordingDataProxy()
    try:
        server_peer.sendall(b"garbage\r\n")

        with pytest.raises(InvalidReplyError):
            handle_connection(proxy_client, proxy_server, CLIENT_LOCAL, CLIENT_REMOTE,
                              SERVER_LOCAL, SERVER_REMOTE, data_proxy)

        assert data_proxy.stopped == 1
    finally:
        for sock in (proxy_client, client_peer, proxy_server, server_peer):
            sock.close()
