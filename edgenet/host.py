"""A host and its DNS-SD services as sources of mDNS answers."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterator
from dataclasses import dataclass, field

from .handlers import HostAnswers
from .wire import CLASS_IN, DNS_SD_OWNER, A, Aaaa, NameSlice, Ptr, Record, Srv, Txt

_UNSPECIFIED_V4 = ipaddress.IPv4Address("0.0.0.0")
_UNSPECIFIED_V6 = ipaddress.IPv6Address("::")


@dataclass(frozen=True, kw_only=True)
class Host(HostAnswers):
    """A host reachable as ``<hostname>.local``.

    An unspecified address is not announced.
    """

    hostname: str
    ttl: int
    ipv4: ipaddress.IPv4Address = _UNSPECIFIED_V4
    ipv6: ipaddress.IPv6Address = _UNSPECIFIED_V6

    def __post_init__(self) -> None:
        object.__setattr__(self, "ipv4", ipaddress.IPv4Address(self.ipv4))
        object.__setattr__(self, "ipv6", ipaddress.IPv6Address(self.ipv6))

    @property
    def name(self) -> NameSlice:
        """The host's ``.local`` name."""
        return NameSlice((self.hostname, "local"))

    def visit(self) -> Iterator[Record]:
        owner = self.name
        if not self.ipv4.is_unspecified:
            yield Record(owner, CLASS_IN, self.ttl, A(self.ipv4))
        if not self.ipv6.is_unspecified:
            yield Record(owner, CLASS_IN, self.ttl, Aaaa(self.ipv6))


@dataclass(frozen=True, kw_only=True)
class Service:
    """A DNS-SD service instance, e.g. ``service="_http"``, ``protocol="_tcp"``."""

    name: str
    service: str
    protocol: str
    port: int
    priority: int = 0
    weight: int = 0
    service_subtypes: tuple[str, ...] = ()
    txt_kvs: tuple[tuple[str, str], ...] = field(default=())

    def __post_init__(self) -> None:
        object.__setattr__(self, "service_subtypes", tuple(self.service_subtypes))
        object.__setattr__(self, "txt_kvs", tuple((k, v) for k, v in self.txt_kvs))

    def answers(self, host: Host) -> Iterator[Record]:
        """Yield the host's records followed by this service's records."""
        yield from host.visit()

        ttl = host.ttl
        owner = NameSlice((self.name, self.service, self.protocol, "local"))
        stype = NameSlice((self.service, self.protocol, "local"))

        yield Record(
            owner, CLASS_IN, ttl, Srv(self.priority, self.weight, self.port, host.name)
        )
        yield Record(owner, CLASS_IN, ttl, Txt(self.txt_kvs))
        yield Record(DNS_SD_OWNER, CLASS_IN, ttl, Ptr(stype))
        yield Record(stype, CLASS_IN, ttl, Ptr(owner))

        for subtype in self.service_subtypes:
            subtype_owner = NameSlice(
                (subtype, self.name, self.service, self.protocol, "local")
            )
            subtype_name = NameSlice((subtype, "_sub", self.service, self.protocol, "local"))
            yield Record(subtype_owner, CLASS_IN, ttl, Ptr(owner))
            yield Record(subtype_name, CLASS_IN, ttl, Ptr(subtype_owner))
            yield Record(DNS_SD_OWNER, CLASS_IN, ttl, Ptr(subtype_name))


class ServiceAnswers(HostAnswers):
    """The answers of a service together with those of the host it runs on."""

    def __init__(self, host: Host, service: Service) -> None:
        self.host = host
        self.service = service

    def visit(self) -> Iterator[Record]:
        return self.service.answers(self.host)