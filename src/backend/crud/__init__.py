"""
CRUD layer for database operations.

This package contains all data access logic isolated from business logic.
Repositories never commit; services own the transaction.
"""

from .base_repository import BaseCRUD
from .acknowledgment_crud import AcknowledgmentCRUD
from .activity_crud import RequestActivityCRUD
from .service_request_crud import ServiceRequestCRUD
from .user_crud import UserCRUD

__all__ = [
    "BaseCRUD",
    "AcknowledgmentCRUD",
    "RequestActivityCRUD",
    "ServiceRequestCRUD",
    "UserCRUD",
]
