"""mDNS message handlers, and the answer and question providers they draw on."""

from __future__ import annotations

import abc
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from .wire import (
    DNS_SD_OWNER,
    A,
    Aaaa,
    MessageBuilder,
    Opcode,
    Ptr,
    Question,
    Rcode,
    Record,
    Srv,
    Txt,
    parse_message,
    set_header,
)

logger = logging.getLogger(__name__)

_ADDITIONAL_DATA = (A, Aaaa, Srv, Txt)


@dataclass(frozen=True)
class MdnsRequest:
    """An incoming mDNS message.

    ``legacy`` is set when the packet's source port is not the mDNS port;
    ``multicast`` when it arrived on the multicast address.
    """

    data: bytes
    legacy: bool = False
    multicast: bool = True


@dataclass(frozen=True)
class MdnsReply:
    """A message to send, and whether to wait a random delay before sending it."""

    data: bytes
    delay: bool = False


class MdnsHandler(abc.ABC):
    """Processes an incoming mDNS message and possibly prepares a reply.

    A request of ``None`` asks for a broadcast of everything the handler has.
    """

    @abc.abstractmethod
    def handle(self, request: MdnsRequest | None, buf_size: int) -> MdnsReply | None:
        """Return the reply to send, at most ``buf_size`` bytes long, or ``None``."""

    def chain(self, handler: MdnsHandler) -> ChainedHandler:
        """Chain with ``handler``, which is then asked first."""
        return ChainedHandler(handler, self)


class NoHandler(MdnsHandler):
    """A handler that never replies; a starting point for chains."""

    def handle(self, request: MdnsRequest | None, buf_size: int) -> MdnsReply | None:
        return None


class ChainedHandler(MdnsHandler):
    """Asks ``first``, and ``second`` only if ``first`` has no reply."""

    def __init__(self, first: MdnsHandler, second: MdnsHandler) -> None:
        self.first = first
        self.second = second

    def handle(self, request: MdnsRequest | None, buf_size: int) -> MdnsReply | None:
        reply = self.first.handle(request, buf_size)
        if reply is None:
            return self.second.handle(request, buf_size)
        return reply


class HostAnswers(abc.ABC):
    """An entity with records to answer mDNS queries with.

    It yields all of its records; choosing the ones relevant to a query is
    up to the caller.
    """

    @abc.abstractmethod
    def visit(self) -> Iterator[Record]:
        """Yield every record this entity answers with."""

    def chain(self, answers: HostAnswers) -> ChainedHostAnswers:
        """Chain with ``answers``, whose records then come first."""
        return ChainedHostAnswers(answers, self)


class NoHostAnswers(HostAnswers):
    """An entity without any answers; a starting point for chains."""

    def visit(self) -> Iterator[Record]:
        return iter(())


class ChainedHostAnswers(HostAnswers):
    """The records of ``first`` followed by those of ``second``."""

    def __init__(self, first: HostAnswers, second: HostAnswers) -> None:
        self.first = first
        self.second = second

    def visit(self) -> Iterator[Record]:
        yield from self.first.visit()
        yield from self.second.visit()


class HostQuestions(abc.ABC):
    """An entity with questions to put in outgoing mDNS queries."""

    @abc.abstractmethod
    def visit(self) -> Iterator[Question]:
        """Yield every question of this entity."""

    def chain(self, questions: HostQuestions) -> ChainedHostQuestions:
        """Chain with ``questions``, whose questions then come first."""
        return ChainedHostQuestions(questions, self)

    def query(self, id: int, buf_size: int) -> bytes:
        """Build a query message of at most ``buf_size`` bytes.

        Returns empty bytes when there are no questions.
        """
        builder = MessageBuilder(buf_size)
        set_header(builder, id, False)
        pushed = False
        for question in self.visit():
            builder.push_question(question)
            pushed = True
        return builder.finish() if pushed else b""


class NoHostQuestions(HostQuestions):
    """An entity without any questions; a starting point for chains."""

    def visit(self) -> Iterator[Question]:
        return iter(())


class ChainedHostQuestions(HostQuestions):
    """The questions of ``first`` followed by those of ``second``."""

    def __init__(self, first: HostQuestions, second: HostQuestions) -> None:
        self.first = first
        self.second = second

    def visit(self) -> Iterator[Question]:
        yield from self.first.visit()
        yield from self.second.visit()


class HostAnswersMdnsHandler(MdnsHandler):
    """Answers queries from peers with the records of a ``HostAnswers`` entity."""

    def __init__(self, answers: HostAnswers) -> None:
        self.answers = answers

    def handle(self, request: MdnsRequest | None, buf_size: int) -> MdnsReply | None:
        builder = MessageBuilder(buf_size)
        pushed = False

        if request is None:
            set_header(builder, 0, True)
            for answer in self.answers.visit():
                builder.push_answer(answer)
                pushed = True
        else:
            message = parse_message(request.data)
            header = message.header
            if header.opcode != Opcode.QUERY or header.rcode != Rcode.NOERROR or header.qr:
                return None

            if request.legacy:
                # Legacy queries get their questions echoed back.
                set_header(builder, header.id, True)
                for question in message.questions:
                    builder.push_question(question)
            else:
                set_header(builder, 0, True)

            additional_a = False
            additional_srv_txt = False

            for question in message.questions:
                for answer in self.answers.visit():
                    if isinstance(answer.data, Srv):
                        additional_a = True
                    if isinstance(answer.data, Ptr) and not answer.owner.name_eq(DNS_SD_OWNER):
                        # All SRV and TXT records go along; picking only the
                        # related ones is not worth the complexity.
                        additional_a = True
                        additional_srv_txt = True
                    if question.qname.name_eq(answer.owner):
                        logger.debug("Answering question [%s] with: [%s]", question, answer)
                        builder.push_answer(answer)
                        pushed = True

            if additional_a or additional_srv_txt:
                for answer in self.answers.visit():
                    if isinstance(answer.data, _ADDITIONAL_DATA):
                        logger.debug("Additional answer: [%s]", answer)
                        builder.push_additional(answer)
                        pushed = True

        return MdnsReply(builder.finish(), delay=False) if pushed else None


class PeerAnswers(abc.ABC):
    """Processes the records peers send in reply to our queries."""

    @abc.abstractmethod
    def answers(self, answers: Sequence[Record], additional: Sequence[Record]) -> None:
        """Process the answer and additional sections of a response."""


class PeerAnswersMdnsHandler(MdnsHandler):
    """Hands the records of incoming responses to a ``PeerAnswers`` entity.

    It never replies.
    """

    def __init__(self, answers: PeerAnswers) -> None:
        self.answers = answers

    def handle(self, request: MdnsRequest | None, buf_size: int) -> MdnsReply | None:
        if request is None or request.legacy:
            return None

        message = parse_message(request.data)
        header = message.header
        if header.opcode != Opcode.QUERY or header.rcode != Rcode.NOERROR or not header.qr:
            return None

        self.answers.answers(message.answers, message.additional)
        return None