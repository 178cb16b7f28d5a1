"""
Error types shared by the store, the services and the HTTP layer.
"""

from __future__ import annotations


class StoreError(Exception):
    """Raised when the document store cannot complete an operation."""


class DocumentNotFoundError(StoreError):
    def __init__(self, collection: str, document_id: str):
        super().__init__(f"Document {document_id} not found in {collection}")
        self.collection = collection
        self.document_id = document_id


class ServiceError(Exception):
    """
    User-facing failure. `message` is safe to show to end users and is what
    the API returns as `detail`.
    """

    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class ValidationError(ServiceError):
    status_code = 422
