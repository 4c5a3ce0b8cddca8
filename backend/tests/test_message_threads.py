import unittest
import uuid
from datetime import datetime, timedelta, timezone

from messaging_testcase import MessagingTestCase

from app.core.errors import NotFound, ValidationFailed
from app.services.message_threads import ThreadLinker, build_message_threads

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

def message(id, parent=None, order=0, depth=0, minutes=0, **fields):
    return {
        "id": id,
        "parent_message_id": parent,
        "thread_order": order,
        "thread_depth": depth,
        "created_at": BASE_TIME + timedelta(minutes=minutes),
        **fields,
    }

class BuildMessageThreadsTest(unittest.TestCase):
    """Reconstrucción del árbol de respuestas a partir de una lista plana"""

    def test_root_with_two_replies(self):
        threads = build_message_threads([
            message("r", order=1),
            message("a", parent="r", order=2, depth=1),
            message("b", parent="r", order=3, depth=1),
        ])

        self.assertEqual(1, len(threads))
        root = threads[0]
        self.assertTrue(root["thread_root"])
        self.assertEqual(2, root["reply_count"])
        self.assertTrue(root["has_replies"])
        self.assertEqual(["a", "b"], [reply["id"] for reply in root["replies"]])
        self.assertEqual(0, root["replies"][0]["reply_count"])
        self.assertFalse(root["replies"][0]["has_replies"])

    def test_nested_replies_keep_depth(self):
        threads = build_message_threads([
            message("r", order=1),
            message("a", parent="r", order=2, depth=1),
            message("b", parent="a", order=3, depth=2),
        ])

        a = threads[0]["replies"][0]
        self.assertEqual(1, a["depth_level"])
        self.assertEqual(["b"], [reply["id"] for reply in a["replies"]])
        self.assertEqual(2, a["replies"][0]["depth_level"])
        self.assertFalse(a["replies"][0]["thread_root"])

    def test_roots_sorted_by_thread_order(self):
        threads = build_message_threads([
            message("tarde", order=5),
            message("temprano", order=2),
        ])
        self.assertEqual(["temprano", "tarde"], [t["id"] for t in threads])

    def test_equal_order_falls_back_to_created_at(self):
        threads = build_message_threads([
            message("r", order=1),
            message("segundo", parent="r", order=0, minutes=10),
            message("primero", parent="r", order=0, minutes=5),
        ])
        self.assertEqual(["primero", "segundo"], [m["id"] for m in threads[0]["replies"]])

    def test_orphan_reply_is_dropped(self):
        """Una respuesta cuyo padre no está en la lista no aparece como raíz"""
        threads = build_message_threads([
            message("r", order=1),
            message("huerfana", parent="no-cargado", order=2, depth=1),
        ])
        self.assertEqual(["r"], [t["id"] for t in threads])
        self.assertEqual(0, threads[0]["reply_count"])

    def test_empty_input(self):
        self.assertEqual([], build_message_threads([]))

    def test_input_is_not_mutated(self):
        flat = [message("r", order=1), message("a", parent="r", order=2, depth=1)]
        build_message_threads(flat)
        self.assertNotIn("replies", flat[0])

class ThreadLinkerTest(MessagingTestCase):
    """Asignación de thread_id, thread_depth y thread_order al crear mensajes"""

    def setUp(self):
        super().setUp()
        self.seller = self.create_user("Vendedor")
        self.buyer = self.create_user("Comprador")
        self.listing = self.create_listing(self.seller)
        self.linker = ThreadLinker(self.db)
        self.pair = (self.buyer.id, self.seller.id)

    def test_root_message_starts_its_own_thread(self):
        message_id = str(uuid.uuid4())
        position = self.linker.link(message_id, self.listing.id, *self.pair)

        self.assertEqual(message_id, position.thread_id)
        self.assertEqual(0, position.thread_depth)
        self.assertEqual(1, position.thread_order)
        self.assertIsNone(position.parent_message_id)

    def test_order_increases_per_listing(self):
        other_listing = self.create_listing(self.seller, title="Otro anuncio")

        orders = [self.linker.next_order(self.listing.id) for _ in range(3)]
        self.assertEqual([1, 2, 3], orders)
        self.assertEqual(1, self.linker.next_order(other_listing.id))

    def test_counter_seeds_from_existing_messages(self):
        self.create_message(self.buyer, self.seller, self.listing, thread_order=7)
        self.assertEqual(8, self.linker.next_order(self.listing.id))

    def test_reply_inherits_thread_and_increments_depth(self):
        root = self.create_message(self.buyer, self.seller, self.listing, thread_order=1)
        reply = self.create_message(
            self.seller, self.buyer, self.listing,
            parent_message_id=root.id, thread_id=root.id, thread_depth=1, thread_order=2,
        )

        position = self.linker.link(str(uuid.uuid4()), self.listing.id, *self.pair, parent_message_id=reply.id)

        self.assertEqual(root.id, position.thread_id)
        self.assertEqual(2, position.thread_depth)
        self.assertEqual(reply.id, position.parent_message_id)
        self.assertEqual(3, position.thread_order)

    def test_parent_without_thread_id_uses_its_own_id(self):
        root = self.create_message(self.buyer, self.seller, self.listing, thread_id=None)
        position = self.linker.link(str(uuid.uuid4()), self.listing.id, *self.pair, parent_message_id=root.id)
        self.assertEqual(root.id, position.thread_id)

    def test_missing_parent(self):
        with self.assertRaises(NotFound):
            self.linker.link(str(uuid.uuid4()), self.listing.id, *self.pair, parent_message_id=str(uuid.uuid4()))

    def test_parent_from_another_conversation(self):
        """Un tercero no puede colgar respuestas de mensajes ajenos"""
        outsider = self.create_user("Otro comprador")
        root = self.create_message(self.buyer, self.seller, self.listing)

        with self.assertRaises(NotFound):
            self.linker.link(
                str(uuid.uuid4()), self.listing.id, outsider.id, self.seller.id, parent_message_id=root.id
            )

    def test_hidden_parent(self):
        root = self.create_message(self.buyer, self.seller, self.listing, is_deleted=True)

        with self.assertRaises(NotFound):
            self.linker.link(str(uuid.uuid4()), self.listing.id, *self.pair, parent_message_id=root.id)

    def test_parent_from_another_listing(self):
        other_listing = self.create_listing(self.seller, title="Otro anuncio")
        root = self.create_message(self.buyer, self.seller, other_listing)

        with self.assertRaises(ValidationFailed):
            self.linker.link(str(uuid.uuid4()), self.listing.id, *self.pair, parent_message_id=root.id)

    def test_requested_thread_must_match_parent(self):
        root = self.create_message(self.buyer, self.seller, self.listing)

        with self.assertRaises(ValidationFailed):
            self.linker.link(
                str(uuid.uuid4()),
                self.listing.id,
                *self.pair,
                parent_message_id=root.id,
                requested_thread_id=str(uuid.uuid4()),
            )

    def test_root_cannot_join_existing_thread(self):
        with self.assertRaises(ValidationFailed):
            self.linker.link(str(uuid.uuid4()), self.listing.id, *self.pair, requested_thread_id=str(uuid.uuid4()))

if __name__ == "__main__":
    unittest.main()
