# Importar todos los modelos para que Base.metadata conozca todas las tablas
from app.db.base_class import Base  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.listing import Listing  # noqa: F401
from app.models.message import Message  # noqa: F401
from app.models.conversation_setting import ConversationSetting  # noqa: F401
from app.models.message_hide import MessageHide  # noqa: F401
from app.models.thread_counter import ListingThreadCounter  # noqa: F401
from app.models.notification import InAppNotification  # noqa: F401
