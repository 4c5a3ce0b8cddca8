import unittest
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from app.core.errors import ValidationFailed
from app.services.conversations import ConversationKey, aggregate_conversations, paginate

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

ME = str(uuid.uuid4())
SELLER = str(uuid.uuid4())
OTHER_BUYER = str(uuid.uuid4())
CAR = str(uuid.uuid4())
TRUCK = str(uuid.uuid4())

def msg(sender, recipient, listing=CAR, minutes=0, is_read=False, naive=False):
    created_at = BASE_TIME + timedelta(minutes=minutes)
    if naive:
        # SQLite devuelve fechas sin zona horaria
        created_at = created_at.replace(tzinfo=None)
    return SimpleNamespace(
        id=str(uuid.uuid4()),
        sender_id=sender,
        recipient_id=recipient,
        listing_id=listing,
        created_at=created_at,
        is_read=is_read,
        sender=None,
        recipient=None,
        listing=None,
    )

def newest_first(messages):
    return sorted(messages, key=lambda m: m.created_at.replace(tzinfo=timezone.utc), reverse=True)

class ConversationKeyTest(unittest.TestCase):

    def test_parse_full_key(self):
        key = ConversationKey.parse(f"{CAR}:{SELLER}")
        self.assertEqual(CAR, key.listing_id)
        self.assertEqual(SELLER, key.other_participant_id)
        self.assertEqual(f"{CAR}:{SELLER}", str(key))

    def test_parse_listing_only(self):
        key = ConversationKey.parse(CAR)
        self.assertIsNone(key.other_participant_id)
        self.assertEqual(CAR, str(key))

    def test_listing_only_rejected_when_participant_required(self):
        with self.assertRaises(ValidationFailed):
            ConversationKey.parse(CAR, require_participant=True)

    def test_invalid_keys(self):
        for raw in ["", "no-es-uuid", f"{CAR}:x", f"{CAR}:{SELLER}:{ME}"]:
            with self.subTest(raw=raw):
                with self.assertRaises(ValidationFailed) as ctx:
                    ConversationKey.parse(raw)
                self.assertEqual(["conversation_id"], ctx.exception.fields[0]["loc"])

    def test_key_for_message_is_relative_to_user(self):
        m = msg(ME, SELLER)
        self.assertEqual(ConversationKey(CAR, SELLER), ConversationKey.for_message(m, ME))
        self.assertEqual(ConversationKey(CAR, ME), ConversationKey.for_message(m, SELLER))

    def test_self_message_key(self):
        key = ConversationKey.for_message(msg(ME, ME), ME)
        self.assertEqual(ConversationKey(CAR, ME), key)
        self.assertTrue(key.is_self_for(ME))

class AggregateConversationsTest(unittest.TestCase):
    """Plegado de mensajes en conversaciones"""

    def test_one_conversation_per_listing_and_counterpart(self):
        messages = newest_first([
            msg(ME, SELLER, minutes=0),
            msg(SELLER, ME, minutes=1),
            msg(ME, SELLER, listing=TRUCK, minutes=2),
            msg(OTHER_BUYER, ME, minutes=3),
        ])

        conversations = aggregate_conversations(messages, ME)

        keys = [str(c.key) for c in conversations]
        self.assertEqual(3, len(keys))
        self.assertEqual(len(keys), len(set(keys)))
        self.assertEqual(f"{CAR}:{OTHER_BUYER}", keys[0])

    def test_last_message_is_the_newest(self):
        old = msg(ME, SELLER, minutes=0)
        new = msg(SELLER, ME, minutes=5)

        conversation = aggregate_conversations([new, old], ME)[0]

        self.assertIs(new, conversation.last_message)
        self.assertEqual(old.created_at, conversation.created_at)
        self.assertEqual(new.created_at, conversation.updated_at)

    def test_out_of_order_input_still_picks_newest(self):
        old = msg(ME, SELLER, minutes=0)
        new = msg(SELLER, ME, minutes=5)
        conversation = aggregate_conversations([old, new], ME)[0]
        self.assertIs(new, conversation.last_message)

    def test_tie_keeps_first_seen(self):
        first = msg(ME, SELLER, minutes=1)
        second = msg(SELLER, ME, minutes=1)
        conversation = aggregate_conversations([first, second], ME)[0]
        self.assertIs(first, conversation.last_message)

    def test_unread_counts_only_received_messages(self):
        messages = newest_first([
            msg(SELLER, ME, minutes=0),
            msg(SELLER, ME, minutes=1, is_read=True),
            msg(SELLER, ME, minutes=2),
            msg(ME, SELLER, minutes=3),
        ])

        mine = aggregate_conversations(messages, ME)[0]
        theirs = aggregate_conversations(messages, SELLER)[0]

        self.assertEqual(2, mine.unread_count)
        self.assertEqual(1, theirs.unread_count)

    def test_self_conversation(self):
        messages = newest_first([msg(ME, ME, minutes=0), msg(ME, ME, minutes=1, is_read=True)])

        conversation = aggregate_conversations(messages, ME)[0]

        self.assertTrue(conversation.is_self_conversation)
        self.assertEqual([ME], conversation.participants)
        self.assertEqual(ME, conversation.other_participant_id)
        self.assertEqual(1, conversation.unread_count)

    def test_messages_of_other_users_are_ignored(self):
        messages = [msg(SELLER, OTHER_BUYER), msg(ME, SELLER)]
        conversations = aggregate_conversations(messages, ME)
        self.assertEqual([f"{CAR}:{SELLER}"], [c.id for c in conversations])

    def test_archived_conversations_hidden_by_default(self):
        messages = newest_first([msg(ME, SELLER, minutes=0), msg(OTHER_BUYER, ME, minutes=1)])
        archived = {ConversationKey(CAR, SELLER)}

        visible = aggregate_conversations(messages, ME, archived_keys=archived)
        everything = aggregate_conversations(messages, ME, archived_keys=archived, include_archived=True)

        self.assertEqual([f"{CAR}:{OTHER_BUYER}"], [c.id for c in visible])
        self.assertEqual(2, len(everything))
        self.assertEqual(
            {f"{CAR}:{SELLER}": True, f"{CAR}:{OTHER_BUYER}": False},
            {c.id: c.is_archived for c in everything},
        )

    def test_sorted_by_last_message_with_mixed_timezones(self):
        messages = [
            msg(ME, SELLER, minutes=1, naive=True),
            msg(OTHER_BUYER, ME, minutes=10),
            msg(ME, SELLER, listing=TRUCK, minutes=5, naive=True),
        ]
        conversations = aggregate_conversations(messages, ME)
        self.assertEqual(
            [f"{CAR}:{OTHER_BUYER}", f"{TRUCK}:{SELLER}", f"{CAR}:{SELLER}"],
            [c.id for c in conversations],
        )

    def test_empty(self):
        self.assertEqual([], aggregate_conversations([], ME))

    def test_paginate(self):
        items = list(range(5))
        self.assertEqual([2, 3], paginate(items, 2, 2))
        self.assertEqual([], paginate(items, 10, 2))

if __name__ == "__main__":
    unittest.main()
