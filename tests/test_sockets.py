"""Tests for kernel socket table decoding."""

import socket

import pytest

from pywitr.sockets import (
    describe_socket_state,
    is_public_bind,
    listening_inodes_for_port,
    parse_addr,
    parse_socket_line,
    parse_socket_table,
    read_listening_sockets,
    socket_state_for_port,
)


def encode_ipv4(address: str, port: int) -> str:
    """Encode like /proc/net/tcp: little-endian address, big-endian port."""
    return socket.inet_pton(socket.AF_INET, address)[::-1].hex().upper() + f":{port:04X}"


def encode_ipv6(address: str, port: int) -> str:
    """Encode like /proc/net/tcp6: each 32-bit word little-endian."""
    raw = socket.inet_pton(socket.AF_INET6, address)
    words = b"".join(raw[i : i + 4][::-1] for i in range(0, 16, 4))
    return words.hex().upper() + f":{port:04X}"


class TestParseAddr:
    """Tests for parse_addr."""

    def test_ipv4_loopback(self):
        assert parse_addr("0100007F:0050", False) == ("127.0.0.1", 80)

    def test_ipv4_any(self):
        assert parse_addr("00000000:1F90", False) == ("0.0.0.0", 8080)

    def test_ipv6_any(self):
        assert parse_addr("00000000000000000000000000000000:0050", True) == ("::", 80)

    def test_ipv6_loopback(self):
        assert parse_addr("00000000000000000000000001000000:0016", True) == ("::1", 22)

    @pytest.mark.parametrize("address", ["10.1.2.3", "192.168.0.254"])
    def test_ipv4_round_trip(self, address):
        assert parse_addr(encode_ipv4(address, 443), False) == (address, 443)

    @pytest.mark.parametrize("address", ["fe80::1", "2001:db8::8a2e:370:7334"])
    def test_ipv6_round_trip(self, address):
        assert parse_addr(encode_ipv6(address, 5432), True) == (address, 5432)

    @pytest.mark.parametrize("port", [0, 1, 65535])
    @pytest.mark.parametrize(
        ("encode", "address", "is_ipv6"),
        [(encode_ipv4, "192.0.2.7", False), (encode_ipv6, "2001:db8::7", True)],
    )
    def test_boundary_ports_round_trip(self, encode, address, is_ipv6, port):
        assert parse_addr(encode(address, port), is_ipv6) == (address, port)

    def test_missing_colon(self):
        """Test a field without separator decodes to nothing."""
        assert parse_addr("0100007F", False) == ("", 0)

    def test_non_hex_address_keeps_port(self):
        """Test the port still decodes when the address is garbage."""
        assert parse_addr("ZZZZZZZZ:0050", False) == ("", 80)

    def test_non_hex_port(self):
        assert parse_addr("0100007F:XYZ", False) == ("127.0.0.1", 0)

    def test_short_ipv4_address(self):
        assert parse_addr("7F:0050", False) == ("", 80)

    def test_short_ipv6_address_is_padded(self):
        assert parse_addr("00:0050", True) == ("::", 80)

    def test_empty_input(self):
        assert parse_addr("", True) == ("", 0)


class TestSocketTable:
    """Tests for socket table parsing."""

    HEADER = "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode"

    def test_parse_line(self):
        line = "   0: 0100007F:0CEA 00000000:0000 0A 00000000:00000000 00:00000000 00000000  1000        0 28990 1"
        entry = parse_socket_line(line, False)
        assert entry.address == "127.0.0.1"
        assert entry.port == 3306
        assert entry.inode == "28990"
        assert entry.state == "LISTEN"

    def test_parse_line_too_short(self):
        assert parse_socket_line("0: 0100007F:0CEA", False) is None

    def test_header_skipped(self):
        assert parse_socket_table(self.HEADER + "\n", False) == []

    def test_unknown_state(self):
        line = "   0: 0100007F:0CEA 00000000:0000 FF 0:0 0:0 0 0 0 1 1"
        assert parse_socket_line(line, False).state == "UNKNOWN"


class TestProcfsSockets:
    """Tests reading the fake procfs tables."""

    def test_listening_sockets_by_inode(self, fake_proc):
        fake_proc.add_listener("0100007F", 80, "111")
        fake_proc.add_listener("0100007F", 81, "222", state="06")
        sockets = read_listening_sockets(fake_proc.root)
        assert set(sockets) == {"111"}

    def test_inodes_for_port_includes_ipv6(self, fake_proc):
        fake_proc.add_listener("00000000", 8080, "111")
        fake_proc.add_listener("0" * 32, 8080, "222", ipv6=True)
        assert listening_inodes_for_port(8080, fake_proc.root) == {"111", "222"}

    def test_missing_tables(self, tmp_path):
        """Test unreadable tables degrade to no sockets."""
        assert listening_inodes_for_port(80, tmp_path) == set()

    def test_socket_state_prefers_listen(self, fake_proc):
        fake_proc.add_listener("0100007F", 80, "1", state="06")
        fake_proc.add_listener("0100007F", 80, "2", state="0A")
        assert socket_state_for_port(80, fake_proc.root).state == "LISTEN"

    def test_socket_state_time_wait(self, fake_proc):
        fake_proc.add_listener("0100007F", 80, "1", state="06")
        info = socket_state_for_port(80, fake_proc.root)
        assert info.state == "TIME_WAIT"
        assert "protocol-wait" in info.explanation

    def test_socket_state_none(self, fake_proc):
        assert socket_state_for_port(9, fake_proc.root) is None


class TestDescribeState:
    """Tests for describe_socket_state."""

    def test_close_wait(self):
        info = describe_socket_state("CLOSE_WAIT")
        assert info.explanation == "The remote end has closed the connection, but the local application hasn't responded."
        assert info.workaround

    def test_unknown_state_has_no_text(self):
        info = describe_socket_state("BOGUS")
        assert (info.explanation, info.workaround) == ("", "")


class TestPublicBind:
    """Tests for is_public_bind."""

    @pytest.mark.parametrize("addresses", [["0.0.0.0"], ["::"], ["10.0.0.5"], ["127.0.0.1", "192.168.1.2"]])
    def test_public(self, addresses):
        assert is_public_bind(addresses)

    @pytest.mark.parametrize("addresses", [[], ["127.0.0.1"], ["::1"], ["fe80::1"], ["::ffff:127.0.0.1"], ["", "garbage"]])
    def test_not_public(self, addresses):
        assert not is_public_bind(addresses)

    def test_ipv4_mapped_public(self):
        assert is_public_bind(["::ffff:10.0.0.5"])
