import os

os.environ.setdefault("ENVIRONMENT", "testing")

import unittest
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api import deps
from app.core.security import create_access_token
from app.db.base import Base
from app.main import app
from app.models.listing import Listing
from app.models.message import Message
from app.models.user import User

class MessagingTestCase(unittest.TestCase):
    """
    Base para las pruebas: base de datos SQLite en memoria, compartida entre
    la sesión de la prueba y las sesiones de cada petición.
    """

    BASE_URL = "/api/v1"

    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        self.db = self.SessionLocal()

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[deps.get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.db.close()
        Base.metadata.drop_all(bind=self.engine)
        self.engine.dispose()

    # Datos de prueba

    def create_user(self, display_name: str = "Usuario de Prueba", is_active: bool = True) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=f"{uuid.uuid4().hex[:10]}@example.com",
            display_name=display_name,
            is_active=is_active,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def create_listing(self, owner: User, **fields) -> Listing:
        listing = Listing(
            id=str(uuid.uuid4()),
            user_id=owner.id,
            title=fields.pop("title", "Toyota Corolla 2019"),
            make=fields.pop("make", "Toyota"),
            model=fields.pop("model", "Corolla"),
            year=fields.pop("year", 2019),
            price=fields.pop("price", 15000.0),
            **fields,
        )
        self.db.add(listing)
        self.db.commit()
        return listing

    def create_message(
        self,
        sender: User,
        recipient: User,
        listing: Listing,
        text: str = "Hola",
        minutes_ago: int = 0,
        **fields,
    ) -> Message:
        """Inserta un mensaje directamente, sin pasar por la API."""
        message_id = str(uuid.uuid4())
        message = Message(
            id=message_id,
            listing_id=listing.id,
            sender_id=sender.id,
            recipient_id=recipient.id,
            message_text=text,
            thread_id=fields.pop("thread_id", message_id),
            created_at=datetime.now(timezone.utc) - timedelta(minutes=minutes_ago),
            **fields,
        )
        self.db.add(message)
        self.db.commit()
        return message

    def token_for(self, user: User) -> str:
        return create_access_token({"sub": user.id})

    def make_request(
        self,
        method: str,
        endpoint: str,
        user: Optional[User] = None,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ):
        """Realiza una petición a la API autenticada como `user`."""
        headers = {}
        if user is not None:
            headers["Authorization"] = f"Bearer {self.token_for(user)}"

        return self.client.request(
            method,
            f"{self.BASE_URL}{endpoint}",
            json=data,
            params=params,
            headers=headers,
        )
