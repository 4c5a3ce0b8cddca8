import unittest
from unittest.mock import MagicMock, patch

from messaging_testcase import MessagingTestCase

from app.models.notification import InAppNotification
from app.tasks.notifications import build_message_notification, notify_new_message_task

class BuildNotificationTest(unittest.TestCase):

    def test_new_message(self):
        notification = build_message_notification(
            "destinatario", "mensaje", "anuncio:remitente", "Ana", "2019 Toyota Corolla", False
        )

        self.assertEqual("destinatario", notification.user_id)
        self.assertEqual("message", notification.type)
        self.assertEqual("Nuevo mensaje de Ana", notification.title)
        self.assertEqual("Mensaje sobre 2019 Toyota Corolla", notification.message)
        self.assertEqual("/messages?conversation=anuncio:remitente", notification.action_url)
        self.assertEqual("mensaje", notification.related_entity_id)
        self.assertEqual("message", notification.related_entity_type)

    def test_reply(self):
        notification = build_message_notification(
            "destinatario", "mensaje", "anuncio:remitente", "Ana", "Camioneta", True
        )
        self.assertEqual("reply", notification.type)
        self.assertEqual("Ana respondió a tu mensaje", notification.title)

class NotifyNewMessageTaskTest(MessagingTestCase):
    """Ejecución síncrona de la tarea Celery"""

    def setUp(self):
        super().setUp()
        self.recipient = self.create_user("Vendedor")

    def test_notification_is_stored(self):
        with patch("app.tasks.notifications.get_db_session", side_effect=self.SessionLocal):
            result = notify_new_message_task.apply(
                args=(self.recipient.id, "mensaje-1", "anuncio:remitente", "Ana", "2019 Toyota Corolla", False)
            )

        self.assertTrue(result.successful(), result.traceback)
        stored = self.db.query(InAppNotification).filter_by(user_id=self.recipient.id).one()
        self.assertEqual(result.get(), stored.id)
        self.assertEqual("Nuevo mensaje de Ana", stored.title)
        self.assertFalse(stored.is_read)

    def test_missing_sender_name(self):
        with patch("app.tasks.notifications.get_db_session", side_effect=self.SessionLocal):
            notify_new_message_task.apply(
                args=(self.recipient.id, "mensaje-1", "anuncio:remitente", None, "Camioneta", False)
            )

        stored = self.db.query(InAppNotification).one()
        self.assertEqual("Nuevo mensaje de un usuario", stored.title)

    def test_storage_failure_is_retried_then_fails(self):
        broken = MagicMock()
        broken.commit.side_effect = RuntimeError("base de datos caída")

        with patch("app.tasks.notifications.get_db_session", return_value=broken):
            result = notify_new_message_task.apply(
                args=(self.recipient.id, "mensaje-1", "anuncio:remitente", "Ana", "Camioneta", False)
            )

        self.assertTrue(result.failed())
        self.assertGreater(broken.rollback.call_count, 1)
        self.assertTrue(broken.close.called)

if __name__ == "__main__":
    unittest.main()
