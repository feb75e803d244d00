"""
User CRUD for the staff directory.
"""
from crud.base_repository import BaseCRUD
from db.models import User


class UserCRUD(BaseCRUD[User]):
    """Read access to users. Users are provisioned by the authentication collaborator."""

    model = User
