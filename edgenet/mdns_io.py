"""Running an mDNS responder and querier over UDP sockets."""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import os
from collections.abc import Callable
from typing import Any

from .buffers import BufferAccess
from .handlers import MdnsHandler, MdnsRequest
from .nal import SocketAddress
from .wire import InvalidMessage

logger = logging.getLogger(__name__)

PORT = 5353
"""The mDNS port."""

IP_BROADCAST_ADDR = ipaddress.IPv4Address("224.0.0.251")
"""The IPv4 mDNS multicast address."""

IPV6_BROADCAST_ADDR = ipaddress.IPv6Address("ff02::fb")
"""The IPv6 mDNS multicast address."""

DEFAULT_SOCKET: SocketAddress = ("::", PORT)
"""A socket address on the unspecified IPv6 address and the mDNS port."""


class MdnsIoError(Exception):
    """An error of the mDNS I/O layer that is neither a message nor a socket error."""

    default_message = "mDNS I/O error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class NoRecvBufError(MdnsIoError):
    """No receive buffer could be obtained."""

    default_message = "No recv buf available"


class NoSendBufError(MdnsIoError):
    """No send buffer could be obtained."""

    default_message = "No send buf available"


def _is_ipv4(remote: SocketAddress) -> bool:
    host = str(remote[0]).split("%", 1)[0]
    return isinstance(ipaddress.ip_address(host), ipaddress.IPv4Address)


async def bind(
    stack: Any,
    addr: SocketAddress = DEFAULT_SOCKET,
    ipv4_interface: ipaddress.IPv4Address | None = None,
    ipv6_interface: int | None = None,
) -> Any:
    """Bind a UDP socket for mDNS and join the mDNS multicast groups.

    ``stack`` is a UDP socket factory: either it has ``udp_bind`` or it is a
    ``UdpBind``. The IPv4 group is joined on the interface with the given
    address, the IPv6 group on the interface with the given index.
    """
    bind_socket = getattr(stack, "udp_bind", None) or stack.bind
    sock = await bind_socket(addr)
    try:
        if ipv4_interface is not None:
            await sock.join_v4(IP_BROADCAST_ADDR, ipaddress.IPv4Address(ipv4_interface))
        if ipv6_interface is not None:
            await sock.join_v6(IPV6_BROADCAST_ADDR, ipv6_interface)
    except BaseException:
        close = getattr(sock, "close", None)
        if close is not None:
            close()
        raise
    return sock


class Mdns:
    """An mDNS service: answers queries, broadcasts and sends queries via a handler.

    ``recv`` must support ``readable()`` and ``receive(bufsize)``, ``send``
    must support ``send(remote, data)``. ``rand(n)`` returns ``n`` random
    bytes. Setting ``broadcast_signal`` makes the service broadcast again.
    """

    def __init__(
        self,
        ipv4_interface: ipaddress.IPv4Address | None,
        ipv6_interface: int | None,
        recv: Any,
        send: Any,
        recv_buf: BufferAccess,
        send_buf: BufferAccess,
        rand: Callable[[int], bytes] = os.urandom,
        broadcast_signal: asyncio.Event | None = None,
    ) -> None:
        self.ipv4_interface = ipv4_interface
        self.ipv6_interface = ipv6_interface
        self._recv = recv
        self._send = send
        self._recv_buf = recv_buf
        self._send_buf = send_buf
        self._rand = rand
        self.broadcast_signal = broadcast_signal if broadcast_signal is not None else asyncio.Event()
        self._recv_lock = asyncio.Lock()
        self._send_lock = asyncio.Lock()

    async def run(self, handler: MdnsHandler) -> None:
        """Broadcast and answer with ``handler`` until an error stops it."""
        tasks = [
            asyncio.create_task(self._broadcast(handler)),
            asyncio.create_task(self._respond(handler)),
        ]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        next(iter(done)).result()

    async def query(self, q: Callable[[int], bytes]) -> None:
        """Multicast the query that ``q`` builds for a given buffer size.

        Nothing is sent when ``q`` returns empty bytes.
        """
        async with self._send_buf.get() as buf:
            if buf is None:
                raise NoSendBufError()
            async with self._send_lock:
                data = q(len(buf))
                if data:
                    await self._broadcast_once(data, ipv4=True, ipv6=True)

    async def _broadcast(self, handler: MdnsHandler) -> None:
        while True:
            async with self._send_buf.get() as buf:
                if buf is None:
                    raise NoSendBufError()
                async with self._send_lock:
                    reply = handler.handle(None, len(buf))
                    if reply is not None:
                        if reply.delay:
                            await self._delay()
                        await self._broadcast_once(reply.data, ipv4=True, ipv6=True)

            await self.broadcast_signal.wait()
            self.broadcast_signal.clear()

    async def _respond(self, handler: MdnsHandler) -> None:
        async with self._recv_lock:
            while True:
                await self._recv.readable()

                async with self._recv_buf.get() as recv_buf:
                    if recv_buf is None:
                        raise NoRecvBufError()
                    async with self._send_buf.get() as send_buf:
                        if send_buf is None:
                            raise NoSendBufError()

                        data, remote = await self._recv.receive(len(recv_buf))
                        logger.debug("Got mDNS query from %s", remote)

                        async with self._send_lock:
                            request = MdnsRequest(
                                data=bytes(data),
                                legacy=remote[1] != PORT,
                                multicast=True,
                            )
                            try:
                                reply = handler.handle(request, len(send_buf))
                            except InvalidMessage:
                                logger.warning("Got invalid message from %s, skipping", remote)
                                continue

                            if reply is not None:
                                if reply.delay:
                                    await self._delay()
                                logger.info("Replying to mDNS query from %s", remote)
                                ipv4 = _is_ipv4(remote)
                                await self._broadcast_once(reply.data, ipv4=ipv4, ipv6=not ipv4)

    async def _broadcast_once(self, data: bytes, *, ipv4: bool, ipv6: bool) -> None:
        targets: list[SocketAddress] = []
        if ipv4 and self.ipv4_interface is not None:
            targets.append((str(IP_BROADCAST_ADDR), PORT))
        if ipv6 and self.ipv6_interface is not None:
            targets.append((str(IPV6_BROADCAST_ADDR), PORT, 0, self.ipv6_interface))
        if not data:
            return
        for target in targets:
            logger.info("Broadcasting mDNS entry to %s", target)
            await self._send.send(target, data)

    async def _delay(self) -> None:
        # A random delay of 20 to 120 ms, as the spec asks for.
        random_byte = self._rand(1)[0]
        delay_ms = 20 + random_byte * 100 // 256
        await asyncio.sleep(delay_ms / 1000)