import asyncio
import ipaddress
import time
from contextlib import asynccontextmanager

import pytest

from edgenet.buffers import BufferAccess, VecBufAccess
from edgenet.handlers import HostAnswersMdnsHandler, MdnsHandler, MdnsReply
from edgenet.host import Host
from edgenet.mdns_io import (
    PORT,
    Mdns,
    MdnsIoError,
    NoRecvBufError,
    NoSendBufError,
    bind,
)
from edgenet.stack import Stack
from edgenet.wire import (
    InvalidMessage,
    MessageBuilder,
    NameSlice,
    Question,
    Rtype,
    ShortBuf,
    parse_message,
    set_header,
)

V4_TARGET = ("224.0.0.251", 5353)
V6_INTERFACE = 3
V6_TARGET = ("ff02::fb", 5353, 0, V6_INTERFACE)
V4_IFACE = ipaddress.IPv4Address("192.0.2.1")


class FakeRecv:
    def __init__(self):
        self.queue = []
        self.bufsizes = []

    def push(self, data, remote):
        self.queue.append((data, remote))

    async def readable(self):
        while not self.queue:
            await asyncio.sleep(0.001)

    async def receive(self, bufsize):
        self.bufsizes.append(bufsize)
        data, remote = self.queue.pop(0)
        return data[:bufsize], remote


class FakeSend:
    def __init__(self):
        self.sent = []

    async def send(self, remote, data):
        self.sent.append((remote, bytes(data)))


class NoBuffers(BufferAccess):
    @asynccontextmanager
    async def get(self):
        yield None


class RecordingHandler(MdnsHandler):
    def __init__(self, broadcast=None, replies=None, delay=False):
        self.requests = []
        self.broadcast = broadcast
        self.replies = list(replies or [])
        self.delay = delay

    def handle(self, request, buf_size):
        self.requests.append((request, buf_size))
        if request is None:
            return MdnsReply(self.broadcast, delay=self.delay) if self.broadcast else None
        item = self.replies.pop(0) if self.replies else None
        if isinstance(item, Exception):
            raise item
        return MdnsReply(item, delay=self.delay) if item else None


def make_mdns(ipv4=V4_IFACE, ipv6=V6_INTERFACE, rand=None, signal=None, send_buf=None):
    recv, send = FakeRecv(), FakeSend()
    kwargs = {}
    if rand is not None:
        kwargs["rand"] = rand
    mdns = Mdns(
        ipv4,
        ipv6,
        recv,
        send,
        VecBufAccess(1500),
        send_buf if send_buf is not None else VecBufAccess(1500),
        broadcast_signal=signal,
        **kwargs,
    )
    return mdns, recv, send


async def wait_until(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


async def stop(task):
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


def test_error_messages():
    assert str(NoSendBufError()) == "No send buf available"
    assert str(NoRecvBufError()) == "No recv buf available"
    assert isinstance(NoSendBufError(), MdnsIoError)


@pytest.mark.asyncio
async def test_query_sends_to_both_multicast_groups():
    mdns, _, send = make_mdns()
    await mdns.query(lambda size: b"query")
    assert send.sent == [(V4_TARGET, b"query"), (V6_TARGET, b"query")]


@pytest.mark.asyncio
async def test_query_only_on_configured_interfaces():
    mdns, _, send = make_mdns(ipv6=None)
    await mdns.query(lambda size: b"query")
    assert send.sent == [(V4_TARGET, b"query")]


@pytest.mark.asyncio
async def test_empty_query_sends_nothing():
    mdns, _, send = make_mdns()
    await mdns.query(lambda size: b"")
    assert send.sent == []


@pytest.mark.asyncio
async def test_query_gets_the_send_buffer_size():
    sizes = []
    mdns, _, _ = make_mdns(send_buf=VecBufAccess(512))
    await mdns.query(lambda size: sizes.append(size) or b"")
    assert sizes == [512]


@pytest.mark.asyncio
async def test_query_without_send_buffer_raises():
    mdns, _, _ = make_mdns(send_buf=NoBuffers())
    with pytest.raises(NoSendBufError):
        await mdns.query(lambda size: b"query")


@pytest.mark.asyncio
async def test_query_errors_propagate():
    mdns, _, send = make_mdns()

    def failing(size):
        raise ShortBuf()

    with pytest.raises(ShortBuf):
        await mdns.query(failing)
    assert send.sent == []


@pytest.mark.asyncio
async def test_run_broadcasts_on_start_and_on_signal():
    signal = asyncio.Event()
    mdns, _, send = make_mdns(signal=signal)
    handler = RecordingHandler(broadcast=b"announce")
    task = asyncio.create_task(mdns.run(handler))
    await wait_until(lambda: len(send.sent) == 2)
    assert send.sent == [(V4_TARGET, b"announce"), (V6_TARGET, b"announce")]
    signal.set()
    await wait_until(lambda: len(send.sent) == 4)
    await stop(task)
    assert [req for req, _ in handler.requests] == [None, None]


@pytest.mark.asyncio
async def test_run_replies_on_the_family_of_the_sender():
    mdns, recv, send = make_mdns()
    handler = RecordingHandler(replies=[b"answer-v4", b"answer-v6"])
    task = asyncio.create_task(mdns.run(handler))
    recv.push(b"q1", ("192.0.2.7", PORT))
    await wait_until(lambda: len(send.sent) == 1)
    recv.push(b"q2", ("fe80::1", PORT, 0, 0))
    await wait_until(lambda: len(send.sent) == 2)
    await stop(task)
    assert send.sent == [(V4_TARGET, b"answer-v4"), (V6_TARGET, b"answer-v6")]


@pytest.mark.asyncio
async def test_run_marks_legacy_requests_by_source_port():
    mdns, recv, send = make_mdns()
    handler = RecordingHandler()
    task = asyncio.create_task(mdns.run(handler))
    recv.push(b"standard", ("192.0.2.7", 5353))
    recv.push(b"legacy", ("192.0.2.7", 40000))
    await wait_until(lambda: len(handler.requests) == 3)
    await stop(task)
    incoming = [req for req, _ in handler.requests if req is not None]
    assert [(r.data, r.legacy, r.multicast) for r in incoming] == [
        (b"standard", False, True),
        (b"legacy", True, True),
    ]
    assert send.sent == []


@pytest.mark.asyncio
async def test_run_skips_invalid_messages():
    mdns, recv, send = make_mdns()
    handler = RecordingHandler(replies=[InvalidMessage("bad"), b"answer"])
    task = asyncio.create_task(mdns.run(handler))
    recv.push(b"garbage", ("192.0.2.7", PORT))
    recv.push(b"good", ("192.0.2.7", PORT))
    await wait_until(lambda: len(send.sent) == 1)
    await stop(task)
    assert send.sent == [(V4_TARGET, b"answer")]


@pytest.mark.asyncio
async def test_run_stops_on_other_message_errors():
    mdns, recv, _ = make_mdns()
    handler = RecordingHandler(replies=[ShortBuf()])
    recv.push(b"query", ("192.0.2.7", PORT))
    with pytest.raises(ShortBuf):
        await asyncio.wait_for(mdns.run(handler), timeout=2.0)


@pytest.mark.asyncio
async def test_run_without_send_buffer_raises():
    mdns, _, _ = make_mdns(send_buf=NoBuffers())
    with pytest.raises(NoSendBufError):
        await asyncio.wait_for(mdns.run(RecordingHandler()), timeout=2.0)


@pytest.mark.asyncio
async def test_delayed_reply_waits_and_uses_rand():
    calls = []

    def rand(n):
        calls.append(n)
        return b"\x00" * n

    mdns, _, send = make_mdns(rand=rand)
    handler = RecordingHandler(broadcast=b"announce", delay=True)
    start = time.monotonic()
    task = asyncio.create_task(mdns.run(handler))
    await wait_until(lambda: len(send.sent) == 2)
    elapsed = time.monotonic() - start
    await stop(task)
    assert calls == [1]
    assert elapsed >= 0.019


@pytest.mark.asyncio
async def test_host_answers_round_trip():
    mdns, recv, send = make_mdns()
    host = Host(hostname="myhost", ttl=120, ipv4=ipaddress.IPv4Address("192.0.2.10"))
    task = asyncio.create_task(mdns.run(HostAnswersMdnsHandler(host)))
    await wait_until(lambda: len(send.sent) == 2)

    builder = MessageBuilder(512)
    set_header(builder, 0, False)
    builder.push_question(Question(NameSlice(("myhost", "local")), Rtype.A))
    recv.push(builder.finish(), ("192.0.2.7", PORT))
    await wait_until(lambda: len(send.sent) == 3)
    await stop(task)

    target, reply = send.sent[-1]
    assert target == V4_TARGET
    message = parse_message(reply)
    assert message.header.qr
    assert [r.data.address for r in message.answers] == [ipaddress.IPv4Address("192.0.2.10")]


class FakeSocket:
    def __init__(self, fail_v4=False):
        self.joined = []
        self.closed = False
        self.fail_v4 = fail_v4

    async def join_v4(self, multicast_addr, interface):
        if self.fail_v4:
            raise OSError("join failed")
        self.joined.append(("v4", multicast_addr, interface))

    async def join_v6(self, multicast_addr, interface):
        self.joined.append(("v6", multicast_addr, interface))

    def close(self):
        self.closed = True


class FakeStack:
    def __init__(self, sock):
        self.sock = sock
        self.bound = []

    async def udp_bind(self, local):
        self.bound.append(local)
        return self.sock


@pytest.mark.asyncio
async def test_bind_joins_the_spec_multicast_groups():
    sock = FakeSocket()
    stack = FakeStack(sock)
    result = await bind(stack, ("::", 5353), V4_IFACE, V6_INTERFACE)
    assert result is sock
    assert stack.bound == [("::", 5353)]
    assert sock.joined == [
        ("v4", ipaddress.IPv4Address("224.0.0.251"), V4_IFACE),
        ("v6", ipaddress.IPv6Address("ff02::fb"), V6_INTERFACE),
    ]


@pytest.mark.asyncio
async def test_bind_closes_socket_when_join_fails():
    sock = FakeSocket(fail_v4=True)
    with pytest.raises(OSError):
        await bind(FakeStack(sock), ("0.0.0.0", PORT), V4_IFACE, None)
    assert sock.closed


@pytest.mark.asyncio
async def test_bind_with_real_stack_without_groups():
    sock = await bind(Stack(), ("127.0.0.1", 0))
    try:
        assert sock.local_address[0] == "127.0.0.1"
    finally:
        sock.close()