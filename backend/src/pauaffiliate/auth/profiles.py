"""Read-only lookups against the profile store."""

from pauaffiliate.auth.models import UserAccount, UserRole
from pauaffiliate.storage.db import Database, db


class ProfileStore:
    """Resolves user ids to email, name and role."""

    def __init__(self, database: Database | None = None):
        self.db = database or db

    def get_user(self, user_id: str) -> UserAccount | None:
        """Get a user by id.

        Args:
            user_id: User ID

        Returns:
            UserAccount or None
        """
        if not user_id:
            return None

        with self.db.session() as session:
            return session.query(UserAccount).filter(UserAccount.id == user_id).first()

    def get_admins(self) -> list[UserAccount]:
        """Get every active admin account."""
        with self.db.session() as session:
            return session.query(UserAccount).filter(
                UserAccount.role == UserRole.ADMIN,
                UserAccount.is_active.is_(True),
            ).all()


# Singleton instance
profile_store = ProfileStore()
