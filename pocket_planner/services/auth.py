"""
Authentication Provider Boundary

The ledger never authenticates anyone. It only asks "who is the
current user?" and refuses to build a session when the answer is None.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pocket_planner.errors import NotAuthenticated


class AuthProvider(ABC):
    """Supplies the id of the signed-in user."""

    @abstractmethod
    def current_user_id(self) -> Optional[str]:
        pass

    def require_user_id(self) -> str:
        user_id = self.current_user_id()
        if not user_id:
            raise NotAuthenticated("No signed-in user")
        return user_id


class StaticAuthProvider(AuthProvider):
    """Fixed user (or none). For local sessions and tests."""

    def __init__(self, user_id: Optional[str] = None):
        self._user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def sign_out(self) -> None:
        self._user_id = None
