"""
Institutions users register against with a join code.
"""

from __future__ import annotations

import logging
from typing import Optional

from academic_chat.chat import ChatService
from academic_chat.config import Settings
from academic_chat.db import DbClient
from academic_chat.errors import ConflictError, ServiceError, StoreError, ValidationError
from academic_chat.models import Institution
from academic_chat.query import equal, order_asc

logger = logging.getLogger(__name__)


class InstitutionService:
    def __init__(self, db: DbClient, settings: Settings, chat: ChatService):
        self.db = db
        self.settings = settings
        self.chat = chat

    @property
    def _collection(self) -> str:
        return self.settings.institutions_collection_id

    def get_institution_by_code(self, code: str) -> Optional[Institution]:
        result = self.db.list_documents(self._collection, [equal("code", (code or "").strip())])
        if not result.documents:
            return None
        return Institution.from_document(result.documents[0])

    def list_institutions(self) -> list[Institution]:
        try:
            result = self.db.list_documents(self._collection, [order_asc("institutionName")])
        except StoreError:
            logger.exception("Error fetching institutions")
            return []
        institutions = []
        for doc in result.documents:
            try:
                institutions.append(Institution.from_document(doc))
            except ValueError:
                logger.warning("Skipping institution %s without a name", doc.get("$id"))
        return institutions

    def create_institution(self, name: str, code: str) -> Institution:
        name = (name or "").strip()
        code = (code or "").strip()
        if not name or not code:
            raise ValidationError("Institution name and code are required")
        try:
            if self.get_institution_by_code(code) is not None:
                raise ConflictError("An institution with this code already exists")
            doc = self.db.create_document(
                self._collection, {"institutionName": name, "code": code}
            )
        except StoreError:
            logger.exception("Create institution error")
            raise ServiceError("Failed to create institution")

        institution = Institution.from_document(doc)
        self.chat.create_announcement_group(institution.institution_id)
        logger.info("Created institution %s (%s)", institution.institution_id, code)
        return institution
