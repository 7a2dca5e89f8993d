"""Identity resolution for password-less campus login.

A login is a (display name, credential) pair. The credential is either
a 10-digit phone/student number or the reserved admin credential. The
first login for a credential creates a profile whose id is derived from
the credential bytes, so the same credential always maps to the same
identity without a password store.
"""
import logging
from typing import List, Optional

from campus_connect.config import IdentitySettings
from campus_connect.errors import ConflictError, InputValidationError
from campus_connect.store import TableStore

from .schemas import Profile, SessionUser, UserRole

logger = logging.getLogger(__name__)

# Hex digits in a UUID (8-4-4-4-12)
_UUID_HEX_LENGTH = 32


def derive_identity_id(credential: str) -> str:
    """Derive a stable UUID-shaped id from a credential.

    Each character is hex-encoded, the digits are concatenated, truncated
    or right-padded with ``0`` to 32 digits and laid out as a UUID.

    Example:
        >>> derive_identity_id("9999999999")
        '39393939-3939-3939-3939-000000000000'
    """
    digits = "".join(format(ord(ch), "x") for ch in credential)
    digits = digits[:_UUID_HEX_LENGTH].ljust(_UUID_HEX_LENGTH, "0")
    return "-".join(
        (digits[0:8], digits[8:12], digits[12:16], digits[16:20], digits[20:32])
    )


class IdentityResolver:
    """Maps login credentials to profiles, creating them on first login."""

    def __init__(self, store: TableStore, settings: IdentitySettings) -> None:
        self._store = store
        self._settings = settings

    def is_admin_credential(self, credential: str) -> bool:
        return credential == self._settings.admin_credential

    def validate(self, name: str, credential: str) -> tuple:
        """Check login input before any store access.

        Returns:
            The stripped (name, credential) pair.

        Raises:
            InputValidationError: empty name/credential, or a non-admin
                credential that is not exactly N digits.
        """
        name = (name or "").strip()
        credential = (credential or "").strip()
        if not name:
            raise InputValidationError("Name is required")
        if not credential:
            raise InputValidationError("Phone number or student id is required")
        if self.is_admin_credential(credential):
            return name, credential
        digits = self._settings.credential_digits
        if len(credential) != digits or not credential.isdigit():
            raise InputValidationError(f"Credential must be exactly {digits} digits")
        return name, credential

    async def find_by_credential(self, credential: str) -> Optional[Profile]:
        rows = await self._store.run(
            self._store.query, "profiles", eq={"student_id": credential}, limit=1
        )
        return Profile(**rows[0]) if rows else None

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        row = await self._store.run(self._store.get, "profiles", user_id)
        return Profile(**row) if row else None

    async def resolve(self, name: str, credential: str) -> Profile:
        """Return the profile for *credential*, creating it if absent.

        An existing profile is returned unchanged even when *name* differs
        from the stored full name.

        Raises:
            InputValidationError: see ``validate``.
            ConflictError: the insert collided and no profile exists for
                this credential afterwards.
        """
        name, credential = self.validate(name, credential)
        existing = await self.find_by_credential(credential)
        if existing is not None:
            return existing

        role = UserRole.ADMIN if self.is_admin_credential(credential) else UserRole.STUDENT
        row = {
            "id": derive_identity_id(credential),
            "student_id": credential,
            "full_name": name,
            "avatar_url": self.avatar_for(name),
            "role": role.value,
        }
        try:
            created = (await self._store.run(self._store.insert, "profiles", [row]))[0]
        except ConflictError:
            # Another session created it first; use theirs.
            existing = await self.find_by_credential(credential)
            if existing is None:
                raise
            logger.info("[Identity] Lost creation race for %s, using existing profile", existing.id)
            return existing
        logger.info("[Identity] Created %s profile %s", role.value, created["id"])
        return Profile(**created)

    def session_for(self, profile: Profile, name: str) -> SessionUser:
        """Build the session record; the session shows the freshly typed name."""
        name = name.strip()
        return SessionUser(
            id=profile.id,
            name=name,
            credential=profile.student_id,
            avatarRef=self.avatar_for(name),
            isAdmin=profile.is_admin,
        )

    def avatar_for(self, name: str) -> str:
        return self._settings.avatar_url_template.format(name=name)

    async def list_profiles(self) -> List[Profile]:
        rows = await self._store.run(self._store.query, "profiles", order_by="full_name")
        return [Profile(**row) for row in rows]

    async def search(self, term: str, limit: int = 5) -> List[Profile]:
        """Case-insensitive substring search on full name (student directory)."""
        term = (term or "").strip()
        if not term:
            return []
        rows = await self._store.run(
            self._store.query,
            "profiles",
            ilike={"full_name": f"%{term}%"},
            order_by="full_name",
            limit=limit,
        )
        return [Profile(**row) for row in rows]
