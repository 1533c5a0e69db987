"""Abstract networking interfaces: sockets, socket factories and name resolution.

Concrete network stacks implement these classes. All I/O operations are
coroutines.
"""

from __future__ import annotations

import abc
import enum
import ipaddress
from typing import Any

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
SocketAddress = tuple[Any, ...]

MAC_LENGTH = 6
BROADCAST_MAC = b"\xff" * MAC_LENGTH


class AddrType(enum.Enum):
    """The kind of host address a DNS lookup looks for."""

    IPV4 = "ipv4"
    """Look for ``A`` records only."""
    IPV6 = "ipv6"
    """Look for ``AAAA`` records only."""
    EITHER = "either"
    """Accept either an ``A`` or an ``AAAA`` record."""


def parse_mac(text: str) -> bytes:
    """Parse a MAC address written as six hex octets separated by ``:`` or ``-``."""
    separator = ":" if ":" in text else "-"
    parts = text.strip().split(separator)
    if len(parts) != MAC_LENGTH:
        raise ValueError(f"invalid MAC address: {text!r}")
    octets = bytearray()
    for part in parts:
        if len(part) != 2:
            raise ValueError(f"invalid MAC address: {text!r}")
        try:
            octets.append(int(part, 16))
        except ValueError:
            raise ValueError(f"invalid MAC address: {text!r}") from None
    return bytes(octets)


def format_mac(mac: bytes | bytearray | memoryview) -> str:
    """Format a six byte MAC address as lower case, colon separated hex."""
    octets = bytes(mac)
    if len(octets) != MAC_LENGTH:
        raise ValueError(f"a MAC address has {MAC_LENGTH} bytes, got {len(octets)}")
    return ":".join(f"{octet:02x}" for octet in octets)


class Readable(abc.ABC):
    """Something that can be waited on until data is available to read."""

    @abc.abstractmethod
    async def readable(self) -> None:
        """Wait until a read would not block."""


class UdpReceive(abc.ABC):
    """The datagram receiving side of a bound or connected UDP socket."""

    @abc.abstractmethod
    async def receive(self, bufsize: int) -> tuple[bytes, SocketAddress]:
        """Receive one datagram of at most ``bufsize`` bytes and its sender's address.

        A longer datagram is truncated to ``bufsize`` bytes.
        """


class UdpSend(abc.ABC):
    """The datagram sending side of a bound or connected UDP socket."""

    @abc.abstractmethod
    async def send(self, remote: SocketAddress, data: bytes) -> None:
        """Send ``data`` to ``remote``; a connected socket ignores ``remote``."""


class MulticastV4(abc.ABC):
    """IPv4 multicast group membership."""

    @abc.abstractmethod
    async def join_v4(
        self, multicast_addr: ipaddress.IPv4Address, interface: ipaddress.IPv4Address
    ) -> None:
        """Join an IPv4 multicast group on the interface with the given address."""

    @abc.abstractmethod
    async def leave_v4(
        self, multicast_addr: ipaddress.IPv4Address, interface: ipaddress.IPv4Address
    ) -> None:
        """Leave an IPv4 multicast group on the interface with the given address."""


class MulticastV6(abc.ABC):
    """IPv6 multicast group membership."""

    @abc.abstractmethod
    async def join_v6(self, multicast_addr: ipaddress.IPv6Address, interface: int) -> None:
        """Join an IPv6 multicast group on the interface with the given index."""

    @abc.abstractmethod
    async def leave_v6(self, multicast_addr: ipaddress.IPv6Address, interface: int) -> None:
        """Leave an IPv6 multicast group on the interface with the given index."""


class RawReceive(abc.ABC):
    """The frame receiving side of a raw socket."""

    @abc.abstractmethod
    async def receive(self, bufsize: int) -> tuple[bytes, bytes]:
        """Receive one datagram of at most ``bufsize`` bytes and the sender's MAC address."""


class RawSend(abc.ABC):
    """The frame sending side of a raw socket."""

    @abc.abstractmethod
    async def send(self, mac: bytes, data: bytes) -> None:
        """Send ``data`` to ``mac``; an all-``0xff`` address broadcasts."""


class RawSplit(abc.ABC):
    """A raw socket that splits into independent receiving and sending halves."""

    @abc.abstractmethod
    def split(self) -> tuple[RawReceive, RawSend]:
        """Return the ``(receive, send)`` halves of this socket."""


class RawBind(abc.ABC):
    """A factory of raw sockets."""

    @abc.abstractmethod
    async def bind(self) -> Any:
        """Create a raw socket; this usually needs administrator rights."""


class TcpSplit(abc.ABC):
    """A TCP socket that splits into independent reading and writing halves."""

    @abc.abstractmethod
    def split(self) -> tuple[Any, Any]:
        """Return the ``(read, write)`` halves of this socket."""


class TcpConnect(abc.ABC):
    """A factory of TCP connections to remote peers."""

    @abc.abstractmethod
    async def connect(self, remote: SocketAddress) -> Any:
        """Connect to ``remote`` and return the connected socket."""


class TcpAccept(abc.ABC):
    """Accepts incoming connections on a server-side TCP socket."""

    @abc.abstractmethod
    async def accept(self) -> tuple[SocketAddress, Any]:
        """Wait for a connection and return the peer's address and the socket."""


class TcpBind(abc.ABC):
    """A factory of server-side TCP acceptors."""

    @abc.abstractmethod
    async def bind(self, local: SocketAddress) -> TcpAccept:
        """Listen on ``local`` and return an acceptor for incoming connections."""


class UdpSplit(abc.ABC):
    """A UDP socket that splits into independent receiving and sending halves."""

    @abc.abstractmethod
    def split(self) -> tuple[UdpReceive, UdpSend]:
        """Return the ``(receive, send)`` halves of this socket."""


class UdpConnect(abc.ABC):
    """A factory of connected UDP sockets."""

    @abc.abstractmethod
    async def connect(self, local: SocketAddress, remote: SocketAddress) -> Any:
        """Bind to ``local``, connect to ``remote`` and return the socket."""


class UdpBind(abc.ABC):
    """A factory of bound UDP sockets."""

    @abc.abstractmethod
    async def bind(self, local: SocketAddress) -> Any:
        """Bind to ``local`` and return the socket."""


class Dns(abc.ABC):
    """Resolution of host names to addresses and back."""

    @abc.abstractmethod
    async def get_host_by_name(self, host: str, addr_type: AddrType) -> IPAddress:
        """Return the first address of ``host`` of the requested kind."""

    @abc.abstractmethod
    async def get_host_by_address(self, addr: IPAddress) -> str:
        """Return the host name of ``addr``."""