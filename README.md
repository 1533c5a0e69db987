# edgenet

Asyncio networking building blocks, a socket stack on top of the operating
system's sockets, and an mDNS (multicast DNS / DNS-SD) responder and querier.
It is a library; it has no command-line program.

## Modules

- `edgenet.nal` – abstract interfaces that network stacks implement:
  `TcpConnect`, `TcpBind`, `TcpAccept`, `TcpSplit`, `UdpBind`, `UdpConnect`,
  `UdpReceive`, `UdpSend`, `UdpSplit`, `MulticastV4`, `MulticastV6`,
  `Readable`, the raw socket interfaces `RawBind`, `RawReceive`, `RawSend`,
  `RawSplit`, and name resolution with `Dns` and `AddrType` (`IPV4`, `IPV6`,
  `EITHER`). The helpers `parse_mac` and `format_mac` convert between
  `"aa:bb:cc:dd:ee:ff"` (or `-`-separated) text and six bytes.
- `edgenet.stack` – `Stack`, built on asyncio and the operating system's
  sockets:
  - `tcp_connect(remote)` returns a `TcpSocket` with `read`, `write`,
    `flush`, `readable`, `split` and `close`.
  - `tcp_bind(local)` returns a `TcpAcceptor` whose `accept()` gives
    `(peer_address, TcpSocket)`.
  - `udp_bind(local)`, which allows broadcasting, and
    `udp_connect(local, remote)` both return a `UdpSocket`. It has
    `receive`, `send`, `join_v4`/`leave_v4`, `join_v6`/`leave_v6`,
    `readable`, `split` and `close`.
  - `get_host_by_name(host, addr_type)` resolves through the system resolver,
    as does the plain function `dns_lookup_host`.
    `get_host_by_address` always raises `OSError`, because reverse lookups
    are not supported.
  - `Interface(index).bind()` opens a `RawSocket` that carries IP datagrams.
    It needs packet sockets (`AF_PACKET`, i.e. Linux) and usually
    administrator rights.

  Socket addresses are tuples with a numeric host, such as
  `("192.168.0.10", 80)` or `("::", 5353)`. Every socket class is also a
  context manager that closes the socket on exit.
- `edgenet.buffers` – `BufferAccess`, and `VecBufAccess(size)`, whose
  `get()` is an async context manager. It hands out one zero-filled
  `bytearray` of `size` bytes to one holder at a time.
- `edgenet.wire` – a DNS message codec:
  - `parse_message` parses a message into a `Message` (with `header`,
    `questions`, `answers`, `authority` and `additional`) and accepts
    compressed names.
  - `MessageBuilder(capacity)` builds messages without name compression
    through `push_question`, `push_answer`, `push_additional` and `finish`.
    `set_header` marks a message as a query or as an authoritative response.
  - Names are `NameSlice` tuples of labels and compare case-insensitively
    with `name_eq`.
  - Record data types are `A`, `Aaaa`, `Ptr`, `Srv`, `Txt` and
    `UnknownData`.
  - There are `Question`, `Record` and `Header` classes, the enums `Rtype`,
    `Opcode` and `Rcode`, and the constant `DNS_SD_OWNER`.
- `edgenet.handlers` – mDNS message handlers and their data sources:
  - `HostAnswersMdnsHandler` answers peers' queries from a `HostAnswers`
    source. It echoes the questions back for legacy (non-5353 port) queries,
    and it adds A/AAAA/SRV/TXT records to the additional section when SRV
    records or service PTR records are involved. Called with no request, it
    produces a broadcast of all its records.
  - `PeerAnswersMdnsHandler` passes the answer and additional sections of
    incoming responses to a `PeerAnswers` object and never replies.
  - Handlers, `HostAnswers` and `HostQuestions` can be combined with
    `chain`. The argument is asked first, and in `ChainedHandler` the second
    handler is asked only when the first has no reply. `NoHandler`,
    `NoHostAnswers` and `NoHostQuestions` are empty starting points.
  - `HostQuestions.query(id, buf_size)` builds a query message, or empty
    bytes when there are no questions.
- `edgenet.host` – `Host` (hostname, ttl, ipv4, ipv6) answers for
  `<hostname>.local`. `Service` together with `ServiceAnswers(host, service)`
  adds the SRV, TXT and PTR records of a DNS-SD service, including its
  subtypes. An unspecified address (`0.0.0.0` or `::`) is not announced.
- `edgenet.mdns_io` – `bind(stack, addr, ipv4_interface, ipv6_interface)`
  opens a UDP socket and joins the mDNS groups `224.0.0.251` and `ff02::fb`.
  `Mdns` runs a handler: `run(handler)` answers queries and broadcasts,
  broadcasting again each time `broadcast_signal` (an `asyncio.Event`) is
  set. `query(q)` multicasts the message returned by `q(buf_size)`. When a
  reply asks for a delay, it waits 20 to 120 ms before sending. The constants
  are `PORT`, `IP_BROADCAST_ADDR`, `IPV6_BROADCAST_ADDR` and
  `DEFAULT_SOCKET`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example: announce a host and an HTTP service

```python
import asyncio
from ipaddress import IPv4Address

from edgenet.buffers import VecBufAccess
from edgenet.handlers import HostAnswersMdnsHandler
from edgenet.host import Host, Service, ServiceAnswers
from edgenet.mdns_io import Mdns, bind
from edgenet.stack import Stack


async def main():
    host = Host(hostname="demo", ipv4=IPv4Address("192.168.0.10"), ttl=60)
    service = Service(
        name="demo-web",
        service="_http",
        protocol="_tcp",
        port=8080,
        txt_kvs=[("path", "/")],
    )

    sock = await bind(
        Stack(),
        ("0.0.0.0", 5353),
        ipv4_interface=IPv4Address("0.0.0.0"),
        ipv6_interface=None,
    )
    with sock:
        mdns = Mdns(
            ipv4_interface=IPv4Address("0.0.0.0"),
            ipv6_interface=None,
            recv=sock,
            send=sock,
            recv_buf=VecBufAccess(1500),
            send_buf=VecBufAccess(1500),
        )
        # ServiceAnswers yields the host's records as well as the service's.
        await mdns.run(HostAnswersMdnsHandler(ServiceAnswers(host, service)))


asyncio.run(main())
```

## Example: ask for HTTP services

```python
from edgenet.handlers import HostQuestions, PeerAnswers, PeerAnswersMdnsHandler
from edgenet.wire import NameSlice, Question, Rtype


class HttpQuestions(HostQuestions):
    def visit(self):
        yield Question(NameSlice(("_http", "_tcp", "local")), Rtype.PTR)


class Printer(PeerAnswers):
    def answers(self, answers, additional):
        for record in [*answers, *additional]:
            print(record)


# With an Mdns instance set up as above:
#   running = asyncio.create_task(mdns.run(PeerAnswersMdnsHandler(Printer())))
#   await mdns.query(lambda size: HttpQuestions().query(0, size))
```

## Errors

- `edgenet.wire.MdnsError` covers problems with DNS messages. Its subclass
  `ShortBuf` means a message did not fit in the buffer, and `InvalidMessage`
  means a message could not be parsed. `Mdns.run` logs invalid incoming
  messages and skips them.
- Invalid names, labels, TXT entries or field values raise `ValueError` when
  the objects are constructed.
- `edgenet.mdns_io.MdnsIoError` and its subclasses `NoRecvBufError` and
  `NoSendBufError` are raised when a buffer cannot be obtained.
- Socket and resolver failures are raised as `OSError`.

## What it does not do

There is no command-line tool and no daemon: you run `Mdns` from your own
asyncio program. Answers from peers are not cached, and no record of
discovered services is kept beyond what your `PeerAnswers` implementation
stores. Outgoing messages are not name-compressed, and reverse DNS lookups
are not supported.