"""
Push notifications to topic subscribers through Firebase Cloud Messaging.

Every send is a single attempt and leaves exactly one row in the
"notifications" collection recording the outcome.
"""
import logging
import os
from typing import List, Optional

import firebase_admin
from firebase_admin import credentials, messaging
from pymongo.errors import PyMongoError

from database import Store, as_aware, utcnow
from schemas import NotificationRecord

logger = logging.getLogger(__name__)

FIREBASE_CREDENTIALS = os.getenv("FIREBASE_CREDENTIALS")
NOTIFICATIONS = "notifications"
DEFAULT_TOPIC = "all_users"


class FirebaseMessenger:
    def __init__(self, credentials_path: Optional[str] = FIREBASE_CREDENTIALS):
        self.credentials_path = credentials_path
        self._app = None

    def _get_app(self):
        if self._app is None:
            try:
                self._app = firebase_admin.get_app()
            except ValueError:
                cred = credentials.Certificate(self.credentials_path) if self.credentials_path else None
                self._app = firebase_admin.initialize_app(cred)
        return self._app

    def send(self, title: str, body: str, topic: str, image_url: Optional[str] = None) -> str:
        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body, image=image_url),
            topic=topic,
        )
        return messaging.send(message, app=self._get_app())


class NotificationDispatcher:
    def __init__(self, store: Store, messenger):
        self.store = store
        self.messenger = messenger

    def send(self, title: str, body: str, image_url: Optional[str] = None, topic: str = DEFAULT_TOPIC) -> dict:
        record = {"title": title, "body": body, "imageUrl": image_url or None, "topic": topic}
        logger.info("Sending notification %r to topic %s", title, topic)
        try:
            message_id = self.messenger.send(title, body, topic, image_url or None)
        except Exception as e:
            logger.error("Error sending notification: %s", e)
            record.update(sentAt=utcnow(), successful=False, error=str(e) or type(e).__name__)
            try:
                self.store.create_document(NOTIFICATIONS, record)
            except PyMongoError:
                logger.exception("Failed to log notification failure")
            return {"status": "failed", "error": record["error"]}

        record.update(sentAt=utcnow(), successful=True)
        self.store.create_document(NOTIFICATIONS, record)
        return {"status": "sent", "messageId": message_id}

    def history(self, limit: Optional[int] = None) -> List[NotificationRecord]:
        docs = sorted(
            self.store.list_collection(NOTIFICATIONS),
            key=lambda d: as_aware(d.get("sentAt")),
            reverse=True,
        )
        if limit is not None:
            docs = docs[:limit]
        return [NotificationRecord(**d) for d in docs]
