"""
Helpers for decoding the kernel TCP socket tables (/proc/net/tcp, /proc/net/tcp6).

Format:
  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode
  0: 0100007F:0CEA 00000000:0000 0A 00000000:00000000 00:00000000 00000000  1000        0 28990 1 ...

Addresses are little-endian per 32-bit word; ports are plain big-endian hex.
"""

import ipaddress
import logging
import socket
from pathlib import Path

from pywitr.models import ListeningSocket, SocketInfo

log = logging.getLogger(__name__)

TCP_STATES = {
    "01": "ESTABLISHED",
    "02": "SYN_SENT",
    "03": "SYN_RECV",
    "04": "FIN_WAIT1",
    "05": "FIN_WAIT2",
    "06": "TIME_WAIT",
    "07": "CLOSE",
    "08": "CLOSE_WAIT",
    "09": "LAST_ACK",
    "0A": "LISTEN",
    "0B": "CLOSING",
}

LISTEN_STATE = "0A"

# state -> (explanation, workaround)
SOCKET_STATE_HELP = {
    "LISTEN": (
        "The process is actively waiting for incoming connections.",
        "Stop or reconfigure the owning process to free the port.",
    ),
    "TIME_WAIT": (
        "The local OS is holding the port in a protocol-wait state to ensure all packets are received.",
        "Wait for the kernel timeout (usually up to 60s) or set SO_REUSEADDR on the new listener.",
    ),
    "CLOSE_WAIT": (
        "The remote end has closed the connection, but the local application hasn't responded.",
        "The application is not closing its sockets; restarting it releases the port.",
    ),
    "ESTABLISHED": (
        "An active connection is open on this port.",
        "Close the connection from either end to release it.",
    ),
    "FIN_WAIT1": (
        "The local end has closed the connection and is waiting for the remote end to acknowledge.",
        "Usually resolves on its own once the remote end responds.",
    ),
    "FIN_WAIT2": (
        "The local end has closed the connection and is waiting for the remote end to close too.",
        "Usually resolves on its own; a stuck remote peer keeps it until the kernel timeout.",
    ),
    "SYN_SENT": (
        "The local end is trying to open a connection.",
        "Check that the remote host is reachable.",
    ),
    "SYN_RECV": (
        "A connection request was received and is being set up.",
        "Usually transient; many of these may indicate a SYN flood.",
    ),
    "LAST_ACK": (
        "Both ends have closed and the local end awaits the final acknowledgement.",
        "Usually resolves on its own.",
    ),
    "CLOSING": (
        "Both ends are closing the connection simultaneously.",
        "Usually resolves on its own.",
    ),
    "CLOSE": (
        "The socket is closed.",
        "",
    ),
}


def _decode_port(port_hex: str) -> int:
    try:
        return int(port_hex, 16)
    except ValueError:
        return 0


def _decode_ipv4(addr_hex: str) -> str:
    try:
        raw = bytes.fromhex(addr_hex)
    except ValueError:
        return ""
    if len(raw) != 4:
        return ""
    return socket.inet_ntop(socket.AF_INET, raw[::-1])


def _decode_ipv6(addr_hex: str) -> str:
    try:
        raw = bytes.fromhex(addr_hex)
    except ValueError:
        return ""
    # Best effort for wrong-length fields
    raw = raw[:16].ljust(16, b"\x00")
    words = b"".join(raw[i : i + 4][::-1] for i in range(0, 16, 4))
    return socket.inet_ntop(socket.AF_INET6, words)


def parse_addr(raw: str, is_ipv6: bool) -> tuple[str, int]:
    """
    Decode an ``address:port`` field of a kernel socket table.

    Never raises: an undecodable address yields ``""`` while a valid port is
    still decoded independently.

    Args:
        raw: Hex field such as ``0100007F:0277``.
        is_ipv6: Whether the field comes from the IPv6 table.

    Returns:
        (address, port)
    """
    if ":" not in raw:
        return "", 0
    addr_hex, port_hex = raw.rsplit(":", 1)
    port = _decode_port(port_hex)
    if is_ipv6:
        return _decode_ipv6(addr_hex), port
    return _decode_ipv4(addr_hex), port


def parse_socket_line(line: str, is_ipv6: bool) -> ListeningSocket | None:
    """Parse a single data line of a socket table, or None if malformed."""
    parts = line.split()
    if len(parts) < 10 or ":" not in parts[1]:
        return None
    address, port = parse_addr(parts[1], is_ipv6)
    state = TCP_STATES.get(parts[3].upper(), "UNKNOWN")
    return ListeningSocket(address=address, port=port, inode=parts[9], state=state)


def parse_socket_table(text: str, is_ipv6: bool) -> list[ListeningSocket]:
    """Parse the full text of a socket table, skipping the header line."""
    sockets: list[ListeningSocket] = []
    for line in text.splitlines()[1:]:
        entry = parse_socket_line(line, is_ipv6)
        if entry is not None:
            sockets.append(entry)
    return sockets


def read_sockets(proc_root: Path = Path("/proc")) -> list[ListeningSocket]:
    """Read all TCP sockets from the IPv4 and IPv6 tables."""
    sockets: list[ListeningSocket] = []
    for name, is_ipv6 in (("tcp", False), ("tcp6", True)):
        path = proc_root / "net" / name
        try:
            text = path.read_text(encoding="utf-8", errors="ignore")
        except OSError as exc:
            log.debug("Failed to read %s: %s", path, exc)
            continue
        sockets.extend(parse_socket_table(text, is_ipv6))
    return sockets


def read_listening_sockets(proc_root: Path = Path("/proc")) -> dict[str, ListeningSocket]:
    """Map socket inode to LISTEN-state socket."""
    return {s.inode: s for s in read_sockets(proc_root) if s.state == "LISTEN"}


def listening_inodes_for_port(port: int, proc_root: Path = Path("/proc")) -> set[str]:
    """Inodes of LISTEN-state sockets bound to ``port``."""
    return {s.inode for s in read_sockets(proc_root) if s.state == "LISTEN" and s.port == port}


def describe_socket_state(state: str) -> SocketInfo:
    """Attach explanation and workaround text to a TCP state name."""
    explanation, workaround = SOCKET_STATE_HELP.get(state, ("", ""))
    return SocketInfo(state=state, explanation=explanation, workaround=workaround)


def socket_state_for_port(port: int, proc_root: Path = Path("/proc")) -> SocketInfo | None:
    """Describe the socket on ``port``, preferring a LISTEN entry."""
    matches = [s for s in read_sockets(proc_root) if s.port == port]
    if not matches:
        return None
    for entry in matches:
        if entry.state == "LISTEN":
            return describe_socket_state(entry.state)
    return describe_socket_state(matches[0].state)


def is_public_bind(addresses: tuple[str, ...] | list[str]) -> bool:
    """Check whether any bind address is reachable beyond loopback/link-local."""
    for addr in addresses:
        if not addr:
            continue
        try:
            ip = ipaddress.ip_address(addr.split("%", 1)[0])
        except ValueError:
            continue
        if ip.version == 6 and ip.ipv4_mapped is not None:
            ip = ip.ipv4_mapped
        if not (ip.is_loopback or ip.is_link_local):
            return True
    return False
