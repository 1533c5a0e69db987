"""DNS message wire format as used by mDNS: names, record data, parsing and building.

Messages are built without name compression. Compressed names are accepted
when parsing.
"""

from __future__ import annotations

import enum
import ipaddress
import struct
from dataclasses import dataclass, field
from typing import ClassVar, TypeVar

CLASS_IN = 1
HEADER_LEN = 12
MAX_LABEL_LEN = 63
MAX_NAME_LEN = 255
MAX_CHARACTER_STRING_LEN = 255

_E = TypeVar("_E", bound=enum.IntEnum)


class MdnsError(Exception):
    """An error while parsing or constructing an mDNS message."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else type(self).__name__


class ShortBuf(MdnsError):
    """The message does not fit into the available buffer."""


class InvalidMessage(MdnsError):
    """The data is not a well-formed DNS message."""


class Rtype(enum.IntEnum):
    """DNS resource record types."""

    A = 1
    NS = 2
    CNAME = 5
    SOA = 6
    PTR = 12
    TXT = 16
    AAAA = 28
    SRV = 33
    OPT = 41
    NSEC = 47
    ANY = 255


class Opcode(enum.IntEnum):
    """DNS message opcodes."""

    QUERY = 0
    IQUERY = 1
    STATUS = 2
    NOTIFY = 4
    UPDATE = 5


class Rcode(enum.IntEnum):
    """DNS response codes."""

    NOERROR = 0
    FORMERR = 1
    SERVFAIL = 2
    NXDOMAIN = 3
    NOTIMP = 4
    REFUSED = 5
    YXDOMAIN = 6
    YXRRSET = 7
    NXRRSET = 8
    NOTAUTH = 9
    NOTZONE = 10


def _known(enum_type: type[_E], value: int) -> _E | int:
    try:
        return enum_type(value)
    except ValueError:
        return value


def _rtype_str(rtype: int) -> str:
    known = _known(Rtype, rtype)
    return known.name if isinstance(known, Rtype) else f"TYPE{rtype}"


def _class_str(rclass: int) -> str:
    return "IN" if rclass == CLASS_IN else f"CLASS{rclass}"


def _encode_label(label: str) -> bytes:
    return label.encode("utf-8", "surrogateescape")


def _decode_label(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _pack(fmt: str, *values: int) -> bytes:
    try:
        return struct.pack(fmt, *values)
    except struct.error as err:
        raise ValueError(f"value out of range: {values}") from err


@dataclass(frozen=True)
class NameSlice:
    """A domain name made of text labels, without the trailing root label."""

    labels: tuple[str, ...]

    def __post_init__(self) -> None:
        if isinstance(self.labels, str):
            raise TypeError("labels must be a sequence of strings, not a string")
        labels = tuple(self.labels)
        total = 1
        for label in labels:
            size = len(_encode_label(label))
            if not 1 <= size <= MAX_LABEL_LEN:
                raise ValueError(f"invalid label length {size}: {label!r}")
            total += size + 1
        if total > MAX_NAME_LEN:
            raise ValueError(f"name is {total} bytes long, at most {MAX_NAME_LEN} allowed")
        object.__setattr__(self, "labels", labels)

    def __str__(self) -> str:
        return "".join(f"{label}." for label in self.labels)

    def name_eq(self, other: NameSlice) -> bool:
        """Compare with another name the DNS way: ASCII letters ignore case."""
        if len(self.labels) != len(other.labels):
            return False
        return all(
            _encode_label(mine).lower() == _encode_label(theirs).lower()
            for mine, theirs in zip(self.labels, other.labels)
        )

    def _compose(self) -> bytes:
        out = bytearray()
        for label in self.labels:
            raw = _encode_label(label)
            out.append(len(raw))
            out += raw
        out.append(0)
        return bytes(out)


DNS_SD_OWNER = NameSlice(("_services", "_dns-sd", "_udp", "local"))


@dataclass(frozen=True)
class Txt:
    """TXT record data made of key-value pairs; a value of ``None`` writes the bare key."""

    kvs: tuple[tuple[str, str | None], ...] = ()
    rtype: ClassVar[Rtype] = Rtype.TXT

    def __post_init__(self) -> None:
        kvs = tuple((key, value) for key, value in self.kvs)
        for entry in map(self._entry, kvs):
            if len(entry) > MAX_CHARACTER_STRING_LEN:
                raise ValueError(f"TXT entry is {len(entry)} bytes long, at most 255 allowed")
        object.__setattr__(self, "kvs", kvs)

    @staticmethod
    def _entry(kv: tuple[str, str | None]) -> bytes:
        key, value = kv
        raw = _encode_label(key)
        if value is not None:
            raw += b"=" + _encode_label(value)
        return raw

    def __str__(self) -> str:
        items = ", ".join(key if value is None else f"{key}={value}" for key, value in self.kvs)
        return f"Txt [{items}]"

    def _compose_rdata(self) -> bytes:
        if not self.kvs:
            return b"\x00"
        out = bytearray()
        for entry in map(self._entry, self.kvs):
            out.append(len(entry))
            out += entry
        return bytes(out)


@dataclass(frozen=True)
class A:
    """An IPv4 host address."""

    address: ipaddress.IPv4Address
    rtype: ClassVar[Rtype] = Rtype.A

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", ipaddress.IPv4Address(self.address))

    def __str__(self) -> str:
        return str(self.address)

    def _compose_rdata(self) -> bytes:
        return self.address.packed


@dataclass(frozen=True)
class Aaaa:
    """An IPv6 host address."""

    address: ipaddress.IPv6Address
    rtype: ClassVar[Rtype] = Rtype.AAAA

    def __post_init__(self) -> None:
        object.__setattr__(self, "address", ipaddress.IPv6Address(self.address))

    def __str__(self) -> str:
        return str(self.address)

    def _compose_rdata(self) -> bytes:
        return self.address.packed


@dataclass(frozen=True)
class Ptr:
    """A pointer to another domain name."""

    name: NameSlice
    rtype: ClassVar[Rtype] = Rtype.PTR

    def __str__(self) -> str:
        return str(self.name)

    def _compose_rdata(self) -> bytes:
        return self.name._compose()


@dataclass(frozen=True)
class Srv:
    """A service location: priority, weight, port and target host."""

    priority: int
    weight: int
    port: int
    target: NameSlice
    rtype: ClassVar[Rtype] = Rtype.SRV

    def __post_init__(self) -> None:
        _pack("!HHH", self.priority, self.weight, self.port)

    def __str__(self) -> str:
        return f"{self.priority} {self.weight} {self.port} {self.target}"

    def _compose_rdata(self) -> bytes:
        return _pack("!HHH", self.priority, self.weight, self.port) + self.target._compose()


@dataclass(frozen=True)
class UnknownData:
    """Record data of a type without a dedicated representation, kept as raw bytes."""

    rtype: int
    data: bytes

    def __str__(self) -> str:
        return f"\\# {len(self.data)} {self.data.hex()}".rstrip()

    def _compose_rdata(self) -> bytes:
        return bytes(self.data)


RecordData = Txt | A | Aaaa | Ptr | Srv | UnknownData


@dataclass(frozen=True)
class Question:
    """A question: the name asked about, the record type and the class."""

    qname: NameSlice
    qtype: Rtype | int
    qclass: int = CLASS_IN

    def __str__(self) -> str:
        return f"{self.qname} {_class_str(self.qclass)} {_rtype_str(self.qtype)}"

    def _compose(self) -> bytes:
        return self.qname._compose() + _pack("!HH", self.qtype, self.qclass)


@dataclass(frozen=True)
class Record:
    """A resource record: owner name, class, time to live in seconds and data."""

    owner: NameSlice
    rclass: int
    ttl: int
    data: RecordData

    @property
    def rtype(self) -> Rtype | int:
        """The record type, taken from the data."""
        return self.data.rtype

    def __str__(self) -> str:
        return (
            f"{self.owner} {self.ttl} {_class_str(self.rclass)} "
            f"{_rtype_str(self.rtype)} {self.data}"
        )

    def _compose(self) -> bytes:
        rdata = self.data._compose_rdata()
        fixed = _pack("!HHIH", self.rtype, self.rclass, self.ttl, len(rdata))
        return self.owner._compose() + fixed + rdata


@dataclass
class Header:
    """The fixed part of a DNS message header, without the section counts."""

    id: int = 0
    qr: bool = False
    opcode: Opcode | int = Opcode.QUERY
    aa: bool = False
    tc: bool = False
    rd: bool = False
    ra: bool = False
    ad: bool = False
    cd: bool = False
    rcode: Rcode | int = Rcode.NOERROR

    def _pack(self, counts: list[int]) -> bytes:
        if not 0 <= self.opcode <= 0xF or not 0 <= self.rcode <= 0xF:
            raise ValueError("opcode and rcode must fit in four bits")
        first = (
            (self.qr << 7) | (self.opcode << 3) | (self.aa << 2) | (self.tc << 1) | int(self.rd)
        )
        second = (self.ra << 7) | (self.ad << 5) | (self.cd << 4) | self.rcode
        return _pack("!HBBHHHH", self.id, first, second, *counts)

    @classmethod
    def _unpack(cls, raw: bytes) -> Header:
        ident, first, second = struct.unpack("!HBB", raw[:4])
        return cls(
            id=ident,
            qr=bool(first & 0x80),
            opcode=_known(Opcode, (first >> 3) & 0xF),
            aa=bool(first & 0x04),
            tc=bool(first & 0x02),
            rd=bool(first & 0x01),
            ra=bool(second & 0x80),
            ad=bool(second & 0x20),
            cd=bool(second & 0x10),
            rcode=_known(Rcode, second & 0xF),
        )


@dataclass
class Message:
    """A parsed DNS message."""

    header: Header
    questions: list[Question] = field(default_factory=list)
    answers: list[Record] = field(default_factory=list)
    authority: list[Record] = field(default_factory=list)
    additional: list[Record] = field(default_factory=list)


class _Parser:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.pos = 0

    def take(self, size: int) -> bytes:
        end = self.pos + size
        if end > len(self.data):
            raise InvalidMessage("unexpected end of message")
        chunk = self.data[self.pos:end]
        self.pos = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return struct.unpack("!H", self.take(2))[0]

    def u32(self) -> int:
        return struct.unpack("!I", self.take(4))[0]

    def name(self) -> NameSlice:
        data = self.data
        labels: list[str] = []
        pos = self.pos
        jumped = False
        visited: set[int] = set()
        wire_len = 1
        while True:
            if pos >= len(data):
                raise InvalidMessage("unexpected end of message in name")
            length = data[pos]
            if length & 0xC0 == 0xC0:
                if pos + 1 >= len(data):
                    raise InvalidMessage("unexpected end of message in name")
                target = ((length & 0x3F) << 8) | data[pos + 1]
                if not jumped:
                    self.pos = pos + 2
                    jumped = True
                if target in visited:
                    raise InvalidMessage("name compression loop")
                visited.add(target)
                pos = target
                continue
            if length & 0xC0:
                raise InvalidMessage("unsupported label type")
            if length == 0:
                if not jumped:
                    self.pos = pos + 1
                break
            raw = data[pos + 1:pos + 1 + length]
            if len(raw) < length:
                raise InvalidMessage("unexpected end of message in label")
            wire_len += length + 1
            if wire_len > MAX_NAME_LEN:
                raise InvalidMessage("name too long")
            labels.append(_decode_label(raw))
            pos += 1 + length
        return NameSlice(tuple(labels))

    def question(self) -> Question:
        qname = self.name()
        qtype = self.u16()
        qclass = self.u16()
        return Question(qname, _known(Rtype, qtype), qclass)

    def record(self) -> Record:
        owner = self.name()
        rtype = self.u16()
        rclass = self.u16()
        ttl = self.u32()
        rdlen = self.u16()
        end = self.pos + rdlen
        if end > len(self.data):
            raise InvalidMessage("record data runs past the end of the message")
        data = self._rdata(rtype, rdlen, end)
        if self.pos != end:
            raise InvalidMessage("record data length mismatch")
        return Record(owner, rclass, ttl, data)

    def _rdata(self, rtype: int, rdlen: int, end: int) -> RecordData:
        if rtype == Rtype.A:
            return A(ipaddress.IPv4Address(self.take(4)))
        if rtype == Rtype.AAAA:
            return Aaaa(ipaddress.IPv6Address(self.take(16)))
        if rtype == Rtype.PTR:
            return Ptr(self.name())
        if rtype == Rtype.SRV:
            priority, weight, port = self.u16(), self.u16(), self.u16()
            return Srv(priority, weight, port, self.name())
        if rtype == Rtype.TXT:
            return self._txt(end)
        return UnknownData(rtype, self.take(rdlen))

    def _txt(self, end: int) -> Txt:
        kvs: list[tuple[str, str | None]] = []
        while self.pos < end:
            entry = self.take(self.u8())
            if self.pos > end:
                raise InvalidMessage("TXT string runs past the record data")
            if not entry:
                continue
            key, sep, value = entry.partition(b"=")
            kvs.append((_decode_label(key), _decode_label(value) if sep else None))
        return Txt(tuple(kvs))


def parse_message(data: bytes | bytearray | memoryview) -> Message:
    """Parse a complete DNS message; raise ``InvalidMessage`` if it is malformed."""
    raw = bytes(data)
    if len(raw) < HEADER_LEN:
        raise InvalidMessage("message shorter than its header")
    parser = _Parser(raw)
    header = Header._unpack(parser.take(4))
    qdcount, ancount, nscount, arcount = (parser.u16() for _ in range(4))
    try:
        return Message(
            header=header,
            questions=[parser.question() for _ in range(qdcount)],
            answers=[parser.record() for _ in range(ancount)],
            authority=[parser.record() for _ in range(nscount)],
            additional=[parser.record() for _ in range(arcount)],
        )
    except ValueError as err:
        if isinstance(err, MdnsError):
            raise
        raise InvalidMessage(str(err)) from err


class _Section(enum.IntEnum):
    QUESTION = 0
    ANSWER = 1
    AUTHORITY = 2
    ADDITIONAL = 3


class MessageBuilder:
    """Builds a DNS message of at most ``capacity`` bytes, one section after another.

    A push that does not fit raises ``ShortBuf`` and leaves the message unchanged.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < HEADER_LEN:
            raise ShortBuf()
        self.capacity = capacity
        self.header = Header()
        self._body = bytearray()
        self._counts = [0, 0, 0, 0]
        self._section = _Section.QUESTION

    def __len__(self) -> int:
        return HEADER_LEN + len(self._body)

    def _push(self, section: _Section, data: bytes) -> None:
        if section < self._section:
            raise ValueError(
                f"cannot add to the {section.name.lower()} section "
                f"after the {self._section.name.lower()} section"
            )
        if self._counts[section] >= 0xFFFF:
            raise ShortBuf()
        if len(self) + len(data) > self.capacity:
            raise ShortBuf()
        self._body += data
        self._counts[section] += 1
        self._section = section

    def push_question(self, question: Question) -> None:
        """Append a question."""
        self._push(_Section.QUESTION, question._compose())

    def push_answer(self, record: Record) -> None:
        """Append a record to the answer section."""
        self._push(_Section.ANSWER, record._compose())

    def push_additional(self, record: Record) -> None:
        """Append a record to the additional section."""
        self._push(_Section.ADDITIONAL, record._compose())

    def finish(self) -> bytes:
        """Return the message bytes, header included."""
        return self.header._pack(self._counts) + bytes(self._body)


def set_header(builder: MessageBuilder, id: int, response: bool) -> None:
    """Make the builder's message a query, or an authoritative response."""
    builder.header = Header(
        id=id,
        qr=response,
        opcode=Opcode.QUERY,
        aa=response,
        rcode=Rcode.NOERROR,
    )