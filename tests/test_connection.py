import pytest

from ftpproxy.core.connection import LineConnection, LineTooLongError
from ftpproxy.core.parser import FtpProtocolError


def test_read_lines_across_chunks(socket_pair):
    a, b = socket_pair
    conn = LineConnection(a, chunk_size=4)
    b.sendall(b"220 Hello\r\n230 Log")
    b.sendall(b"ged in\r\n")
    assert conn.read_line() == "220 Hello"
    assert conn.read_line() == "230 Logged in"


def test_bare_lf_terminator(socket_pair):
    a, b = socket_pair
    conn = LineConnection(a)
    b.sendall(b"NOOP\nQUIT\r\n")
    assert conn.read_line() == "NOOP"
    assert conn.read_line() == "QUIT"


def test_eof(socket_pair):
    a, b = socket_pair
    conn = LineConnection(a)
    b.sendall(b"221 Bye\r\ntrailing")
    b.close()
    assert conn.read_line() == "221 Bye"
    assert conn.read_line() == "trailing"
    assert conn.read_line() is None
    assert conn.read_line() is None


def test_latin1_bytes_round_trip(socket_pair):
    a, b = socket_pair
    conn_a = LineConnection(a)
    conn_b = LineConnection(b)
    b.sendall(b"RETR caf\xe9.txt\r\n")
    line = conn_a.read_line()
    assert line == "RETR caf\xe9.txt"
    conn_a.write_line(line)
    assert b.recv(100) == b"RETR caf\xe9.txt\r\n"
    conn_b.close()


def test_line_without_terminator_is_capped(socket_pair):
    a, b = socket_pair
    conn = LineConnection(a, chunk_size=8, max_line_length=32)
    b.sendall(b"2" * 100)
    with pytest.raises(LineTooLongError):
        conn.read_line()


def test_long_line_in_single_chunk_is_capped(socket_pair):
    a, b = socket_pair
    conn = LineConnection(a, max_line_length=32)
    b.sendall(b"2" * 40 + b"\r\n")
    with pytest.raises(FtpProtocolError):
        conn.read_line()


def test_line_at_limit_is_accepted(socket_pair):
    a, b = socket_pair
    conn = LineConnection(a, chunk_size=8, max_line_length=32)
    b.sendall(b"220 " + b"x" * 28 + b"\r\n")
    assert conn.read_line() == "220 " + "x" * 28
