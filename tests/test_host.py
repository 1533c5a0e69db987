import ipaddress

import pytest

from edgenet.handlers import HostAnswersMdnsHandler, MdnsRequest, NoHostQuestions
from edgenet.host import Host, Service, ServiceAnswers
from edgenet.wire import (
    CLASS_IN,
    DNS_SD_OWNER,
    A,
    Aaaa,
    NameSlice,
    Ptr,
    Question,
    Rtype,
    Srv,
    Txt,
    parse_message,
)

V4 = ipaddress.IPv4Address("192.0.2.1")
V6 = ipaddress.IPv6Address("2001:db8::1")


def _host(**kwargs):
    return Host(hostname="foo", ttl=120, **kwargs)


def _service(**kwargs):
    return Service(name="web", service="_http", protocol="_tcp", port=8080, **kwargs)


def test_host_with_ipv4_only():
    records = list(_host(ipv4=V4).visit())
    assert len(records) == 1
    record = records[0]
    assert record.owner == NameSlice(("foo", "local"))
    assert record.rclass == CLASS_IN
    assert record.ttl == 120
    assert record.data == A(V4)


def test_host_with_both_addresses():
    records = list(_host(ipv4=V4, ipv6=V6).visit())
    assert [r.data for r in records] == [A(V4), Aaaa(V6)]


def test_host_without_addresses_has_no_answers():
    assert list(_host().visit()) == []


def test_host_accepts_address_strings():
    host = _host(ipv4="192.0.2.1")
    assert host.ipv4 == V4


def test_service_answers_layout():
    host = _host(ipv4=V4)
    records = list(_service(txt_kvs=[("path", "/")]).answers(host))
    owner = NameSlice(("web", "_http", "_tcp", "local"))
    stype = NameSlice(("_http", "_tcp", "local"))
    assert len(records) == 5
    assert records[0].data == A(V4)
    assert records[1].owner == owner
    assert records[1].data == Srv(0, 0, 8080, host.name)
    assert records[2].owner == owner
    assert records[2].data == Txt((("path", "/"),))
    assert records[3].owner == DNS_SD_OWNER
    assert records[3].data == Ptr(stype)
    assert records[4].owner == stype
    assert records[4].data == Ptr(owner)
    assert all(r.ttl == host.ttl for r in records)


def test_service_subtype_records():
    records = list(_service(service_subtypes=["_printer"]).answers(_host()))
    owner = NameSlice(("web", "_http", "_tcp", "local"))
    sub_owner = NameSlice(("_printer", "web", "_http", "_tcp", "local"))
    sub_name = NameSlice(("_printer", "_sub", "_http", "_tcp", "local"))
    assert len(records) == 7
    assert (records[4].owner, records[4].data) == (sub_owner, Ptr(owner))
    assert (records[5].owner, records[5].data) == (sub_name, Ptr(sub_owner))
    assert (records[6].owner, records[6].data) == (DNS_SD_OWNER, Ptr(sub_name))


def test_service_answers_visit_matches_service():
    host = _host(ipv4=V4, ipv6=V6)
    service = _service(service_subtypes=("_a", "_b"))
    assert list(ServiceAnswers(host, service).visit()) == list(service.answers(host))


def test_service_answers_round_trip_through_handler():
    host = _host(ipv4=V4)
    service = _service(txt_kvs=(("k", "v"),))
    answers = ServiceAnswers(host, service)
    reply = HostAnswersMdnsHandler(answers).handle(None, 1024)
    assert parse_message(reply.data).answers == list(answers.visit())


def test_service_browse_query():
    host = _host(ipv4=V4)
    service = _service()
    handler = HostAnswersMdnsHandler(ServiceAnswers(host, service))
    stype = NameSlice(("_http", "_tcp", "local"))

    class _Browse(NoHostQuestions):
        def visit(self):
            yield Question(stype, Rtype.PTR)

    reply = handler.handle(MdnsRequest(data=_Browse().query(0, 512)), 1024)
    message = parse_message(reply.data)
    assert [r.data for r in message.answers] == [
        Ptr(NameSlice(("web", "_http", "_tcp", "local")))
    ]
    kinds = [type(r.data) for r in message.additional]
    assert kinds == [A, Srv, Txt]


def test_service_rejects_out_of_range_port():
    with pytest.raises(ValueError):
        list(Service(name="web", service="_http", protocol="_tcp", port=70000).answers(_host()))