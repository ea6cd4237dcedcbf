"""Tests for pushdispatch/queue/collapse.py"""

import threading

import pytest

from pushdispatch.models import Message
from pushdispatch.queue.collapse import OfferStatus, TopicCollapseTable

SUB = "sub_0123456789abcdef"


@pytest.fixture
def table():
    return TopicCollapseTable()


class TestOffer:
    def test_first_offer_accepted(self, table):
        result = table.offer(SUB, Message(b"1", topic="chat-42"))
        assert result.status == OfferStatus.ACCEPTED
        assert result.previous is None

    def test_same_topic_supersedes(self, table):
        first = Message(b"1", topic="chat-42")
        second = Message(b"2", topic="chat-42")
        table.offer(SUB, first)

        result = table.offer(SUB, second)

        assert result.status == OfferStatus.SUPERSEDED
        assert result.previous is first
        assert table.pending(SUB, "chat-42") is second
        assert not table.is_current(SUB, first)
        assert table.is_current(SUB, second)

    def test_last_offer_wins(self, table):
        messages = [Message(str(i).encode(), topic="score") for i in range(5)]
        for message in messages:
            table.offer(SUB, message)
        assert table.pending(SUB, "score") is messages[-1]
        assert len(table) == 1

    def test_untopiced_messages_never_collapse(self, table):
        a, b = Message(b"a"), Message(b"b")
        assert table.offer(SUB, a).status == OfferStatus.ACCEPTED
        assert table.offer(SUB, b).status == OfferStatus.ACCEPTED
        assert table.is_current(SUB, a)
        assert table.is_current(SUB, b)
        assert len(table) == 2

    def test_topics_scoped_per_subscription(self, table):
        table.offer(SUB, Message(b"1", topic="chat-42"))
        result = table.offer("sub_other", Message(b"2", topic="chat-42"))
        assert result.status == OfferStatus.ACCEPTED

    def test_reoffer_same_message_is_not_supersession(self, table):
        message = Message(b"1", topic="chat-42")
        table.offer(SUB, message)
        assert table.offer(SUB, message).status == OfferStatus.ACCEPTED


class TestComplete:
    def test_complete_removes_entry(self, table):
        message = Message(b"1", topic="chat-42")
        table.offer(SUB, message)
        assert table.complete(SUB, message) is True
        assert table.pending(SUB, "chat-42") is None
        assert len(table) == 0

    def test_complete_of_superseded_message_keeps_newer(self, table):
        old = Message(b"1", topic="chat-42")
        new = Message(b"2", topic="chat-42")
        table.offer(SUB, old)
        table.offer(SUB, new)

        assert table.complete(SUB, old) is False
        assert table.pending(SUB, "chat-42") is new


class TestConcurrency:
    def test_concurrent_offers_leave_exactly_one_pending(self):
        table = TopicCollapseTable(shards=4)
        messages = [Message(str(i).encode(), topic="race") for i in range(200)]
        superseded = []
        lock = threading.Lock()

        def worker(batch):
            for message in batch:
                result = table.offer(SUB, message)
                if result.previous is not None:
                    with lock:
                        superseded.append(result.previous.id)

        threads = [threading.Thread(target=worker, args=(messages[i::8],)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        pending = table.pending(SUB, "race")
        assert len(table) == 1
        # Every message but the survivor was reported superseded exactly once
        assert len(superseded) == len(messages) - 1
        assert len(set(superseded)) == len(superseded)
        assert pending.id not in superseded

    def test_invalid_shard_count(self):
        with pytest.raises(ValueError):
            TopicCollapseTable(shards=0)
