"""
Online/offline presence records, one `user_status` document per user.
"""

from __future__ import annotations

import logging
from typing import Optional

from academic_chat.config import Settings
from academic_chat.db import DbClient, utc_now_iso
from academic_chat.errors import DocumentNotFoundError, StoreError
from academic_chat.models import UserStatus

logger = logging.getLogger(__name__)


class PresenceService:
    def __init__(self, db: DbClient, settings: Settings):
        self.db = db
        self.settings = settings

    @property
    def _collection(self) -> str:
        return self.settings.user_status_collection_id

    def set_user_status(
        self, user_id: str, username: str, is_online: bool
    ) -> Optional[UserStatus]:
        """Upsert the presence record. Failures are logged, never raised."""
        data = {
            "userId": user_id,
            "username": username,
            "isOnline": is_online,
            "lastSeen": utc_now_iso(),
        }
        try:
            try:
                doc = self.db.update_document(self._collection, user_id, data)
            except DocumentNotFoundError:
                doc = self.db.create_document(self._collection, data, document_id=user_id)
        except StoreError:
            logger.exception("Error updating presence for %s", user_id)
            return None
        return UserStatus.from_document(doc)

    def get_user_status(self, user_id: str) -> Optional[UserStatus]:
        try:
            doc = self.db.get_document(self._collection, user_id)
        except DocumentNotFoundError:
            return None
        except StoreError:
            logger.exception("Error fetching presence for %s", user_id)
            return None
        return UserStatus.from_document(doc)
