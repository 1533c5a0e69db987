"""A network stack backed by the operating system's sockets and asyncio."""

from __future__ import annotations

import asyncio
import errno
import ipaddress
import socket
from dataclasses import dataclass
from typing import Any

from .nal import (
    AddrType,
    Dns,
    IPAddress,
    MulticastV4,
    MulticastV6,
    RawBind,
    RawReceive,
    RawSend,
    RawSplit,
    Readable,
    SocketAddress,
    TcpAccept,
    TcpSplit,
    UdpReceive,
    UdpSend,
    UdpSplit,
)

ETH_P_IP = 0x0800
TCP_BACKLOG = 128
_MAX_RAW_SEND = 0xFFFF


def _socket_address(addr: SocketAddress) -> tuple[int, tuple[Any, ...]]:
    """Validate a numeric socket address; return its family and normalised form."""
    if len(addr) < 2:
        raise ValueError(f"a socket address needs a host and a port: {addr!r}")
    host, port, *rest = addr
    ip = ipaddress.ip_address(host)
    if not 0 <= int(port) <= 0xFFFF:
        raise ValueError(f"port out of range: {port}")
    if isinstance(ip, ipaddress.IPv4Address):
        if rest:
            raise ValueError(f"an IPv4 socket address has only a host and a port: {addr!r}")
        return socket.AF_INET, (str(ip), int(port))
    if len(rest) > 2:
        raise ValueError(f"invalid IPv6 socket address: {addr!r}")
    return socket.AF_INET6, (str(ip), int(port), *rest)


async def _wait_readable(sock: socket.socket) -> None:
    loop = asyncio.get_running_loop()
    ready = loop.create_future()
    fd = sock.fileno()

    def _on_ready() -> None:
        if not ready.done():
            ready.set_result(None)

    loop.add_reader(fd, _on_ready)
    try:
        await ready
    finally:
        loop.remove_reader(fd)


class _ClosingContext:
    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> Any:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class TcpSocket(_ClosingContext, Readable, TcpSplit):
    """A connected TCP stream; it serves as both of its own split halves."""

    def __init__(self, sock: socket.socket) -> None:
        sock.setblocking(False)
        self.sock = sock

    @property
    def local_address(self) -> SocketAddress:
        """The address this socket is bound to."""
        return self.sock.getsockname()

    async def read(self, size: int) -> bytes:
        """Read at most ``size`` bytes; empty bytes mean the peer closed the stream."""
        return await asyncio.get_running_loop().sock_recv(self.sock, size)

    async def write(self, data: bytes) -> int:
        """Write all of ``data`` and return its length."""
        await asyncio.get_running_loop().sock_sendall(self.sock, data)
        return len(data)

    async def flush(self) -> None:
        """Writes go straight to the kernel; fail only if the socket is already closed."""
        if self.sock.fileno() == -1:
            raise OSError(errno.EBADF, "socket is closed")

    async def readable(self) -> None:
        await _wait_readable(self.sock)

    def split(self) -> tuple[TcpSocket, TcpSocket]:
        return self, self

    def close(self) -> None:
        """Close the underlying socket."""
        self.sock.close()


class TcpAcceptor(_ClosingContext, TcpAccept):
    """A listening TCP socket."""

    def __init__(self, sock: socket.socket) -> None:
        sock.setblocking(False)
        self.sock = sock

    @property
    def local_address(self) -> SocketAddress:
        """The address this acceptor listens on."""
        return self.sock.getsockname()

    async def accept(self) -> tuple[SocketAddress, TcpSocket]:
        conn, _ = await asyncio.get_running_loop().sock_accept(self.sock)
        try:
            peer = conn.getpeername()
        except OSError:
            conn.close()
            raise
        return peer, TcpSocket(conn)

    def close(self) -> None:
        """Close the listening socket."""
        self.sock.close()


class UdpSocket(
    _ClosingContext, UdpReceive, UdpSend, MulticastV4, MulticastV6, Readable, UdpSplit
):
    """A bound or connected UDP socket; it serves as both of its own split halves."""

    def __init__(self, sock: socket.socket) -> None:
        sock.setblocking(False)
        self.sock = sock

    @property
    def local_address(self) -> SocketAddress:
        """The address this socket is bound to."""
        return self.sock.getsockname()

    def _peer(self) -> SocketAddress | None:
        try:
            return self.sock.getpeername()
        except OSError:
            return None

    async def receive(self, bufsize: int) -> tuple[bytes, SocketAddress]:
        loop = asyncio.get_running_loop()
        peer = self._peer()
        if peer is not None:
            return await loop.sock_recv(self.sock, bufsize), peer
        data, remote = await loop.sock_recvfrom(self.sock, bufsize)
        return data, remote

    async def send(self, remote: SocketAddress, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        if self._peer() is not None:
            await loop.sock_sendall(self.sock, data)
            return
        _, target = _socket_address(remote)
        view = memoryview(data)
        offset = 0
        while True:
            offset += await loop.sock_sendto(self.sock, view[offset:], target)
            if offset >= len(view):
                break

    def _membership_v4(
        self, option: int, multicast_addr: ipaddress.IPv4Address, interface: ipaddress.IPv4Address
    ) -> None:
        mreq = (
            ipaddress.IPv4Address(multicast_addr).packed
            + ipaddress.IPv4Address(interface).packed
        )
        self.sock.setsockopt(socket.IPPROTO_IP, option, mreq)

    def _membership_v6(
        self, option: int, multicast_addr: ipaddress.IPv6Address, interface: int
    ) -> None:
        mreq = ipaddress.IPv6Address(multicast_addr).packed + interface.to_bytes(
            4, "little" if socket.htonl(1) != 1 else "big"
        )
        self.sock.setsockopt(socket.IPPROTO_IPV6, option, mreq)

    async def join_v4(
        self, multicast_addr: ipaddress.IPv4Address, interface: ipaddress.IPv4Address
    ) -> None:
        self._membership_v4(socket.IP_ADD_MEMBERSHIP, multicast_addr, interface)

    async def leave_v4(
        self, multicast_addr: ipaddress.IPv4Address, interface: ipaddress.IPv4Address
    ) -> None:
        self._membership_v4(socket.IP_DROP_MEMBERSHIP, multicast_addr, interface)

    async def join_v6(self, multicast_addr: ipaddress.IPv6Address, interface: int) -> None:
        self._membership_v6(socket.IPV6_JOIN_GROUP, multicast_addr, interface)

    async def leave_v6(self, multicast_addr: ipaddress.IPv6Address, interface: int) -> None:
        self._membership_v6(socket.IPV6_LEAVE_GROUP, multicast_addr, interface)

    async def readable(self) -> None:
        await _wait_readable(self.sock)

    def split(self) -> tuple[UdpSocket, UdpSocket]:
        return self, self

    def close(self) -> None:
        """Close the underlying socket."""
        self.sock.close()


class RawSocket(_ClosingContext, RawReceive, RawSend, RawSplit, Readable):
    """A packet socket carrying IP datagrams on one network interface."""

    def __init__(self, sock: socket.socket, interface: int) -> None:
        sock.setblocking(False)
        self.sock = sock
        self.interface = interface

    async def receive(self, bufsize: int) -> tuple[bytes, bytes]:
        data, address = await asyncio.get_running_loop().sock_recvfrom(self.sock, bufsize)
        if not isinstance(address, tuple) or len(address) < 5:
            raise OSError(errno.EINVAL, "invalid argument")
        return data, bytes(address[4][:6])

    async def send(self, mac: bytes, data: bytes) -> None:
        ifname = socket.if_indextoname(self.interface)
        target = (ifname, ETH_P_IP, 0, 0, bytes(mac))
        length = min(len(data), _MAX_RAW_SEND)
        sent = await asyncio.get_running_loop().sock_sendto(self.sock, data[:length], target)
        if sent != len(data):
            raise OSError(errno.EMSGSIZE, f"sent {sent} of {len(data)} bytes")

    async def readable(self) -> None:
        await _wait_readable(self.sock)

    def split(self) -> tuple[RawSocket, RawSocket]:
        return self, self

    def close(self) -> None:
        """Close the underlying socket."""
        self.sock.close()


@dataclass(frozen=True)
class Interface(RawBind):
    """A network interface, by index, to open raw sockets on; 0 means any interface."""

    index: int = 0

    async def bind(self) -> RawSocket:
        family = getattr(socket, "AF_PACKET", None)
        if family is None:
            raise OSError(errno.EAFNOSUPPORT, "packet sockets are not supported here")
        sock = socket.socket(family, socket.SOCK_DGRAM, socket.htons(ETH_P_IP))
        try:
            if self.index:
                sock.bind((socket.if_indextoname(self.index), ETH_P_IP))
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            return RawSocket(sock, self.index)
        except BaseException:
            sock.close()
            raise


def dns_lookup_host(host: str, addr_type: AddrType) -> IPAddress:
    """Resolve ``host`` through the system resolver to its first address of the given kind."""
    families = {
        AddrType.IPV4: (socket.AF_INET,),
        AddrType.IPV6: (socket.AF_INET6,),
        AddrType.EITHER: (socket.AF_INET, socket.AF_INET6),
    }[addr_type]
    for family, _, _, _, sockaddr in socket.getaddrinfo(host, 0, type=socket.SOCK_STREAM):
        if family in families:
            return ipaddress.ip_address(str(sockaddr[0]).split("%", 1)[0])
    raise OSError(errno.EADDRNOTAVAIL, f"no {addr_type.value} address for {host!r}")


class Stack(Dns):
    """Creates TCP and UDP sockets and resolves names with the host's network stack."""

    async def tcp_connect(self, remote: SocketAddress) -> TcpSocket:
        """Connect to ``remote``."""
        family, target = _socket_address(remote)
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setblocking(False)
            await asyncio.get_running_loop().sock_connect(sock, target)
        except BaseException:
            sock.close()
            raise
        return TcpSocket(sock)

    async def tcp_bind(self, local: SocketAddress) -> TcpAcceptor:
        """Listen on ``local``."""
        family, target = _socket_address(local)
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if hasattr(socket, "SO_REUSEADDR") and socket.SO_REUSEADDR:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(target)
            sock.listen(TCP_BACKLOG)
        except BaseException:
            sock.close()
            raise
        return TcpAcceptor(sock)

    async def udp_connect(self, local: SocketAddress, remote: SocketAddress) -> UdpSocket:
        """Bind to ``local`` and connect to ``remote``."""
        family, bind_to = _socket_address(local)
        _, target = _socket_address(remote)
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind(bind_to)
            sock.setblocking(False)
            await asyncio.get_running_loop().sock_connect(sock, target)
        except BaseException:
            sock.close()
            raise
        return UdpSocket(sock)

    async def udp_bind(self, local: SocketAddress) -> UdpSocket:
        """Bind to ``local``, with broadcasting allowed."""
        family, bind_to = _socket_address(local)
        sock = socket.socket(family, socket.SOCK_DGRAM)
        try:
            sock.bind(bind_to)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        except BaseException:
            sock.close()
            raise
        return UdpSocket(sock)

    async def get_host_by_name(self, host: str, addr_type: AddrType) -> IPAddress:
        return await asyncio.to_thread(dns_lookup_host, host, addr_type)

    async def get_host_by_address(self, addr: IPAddress) -> str:
        raise OSError(errno.EOPNOTSUPP, "reverse lookups are not supported")