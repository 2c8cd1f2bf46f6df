"""Best-effort resolution of shared contact identities."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import Contact
from .normalize import normalize_email, normalize_name, normalize_phone, normalize_zip
from .store import ContactStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Outcome of a contact lookup: either a contact id or the error that prevented it."""

    contact_id: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def or_none(self) -> Optional[str]:
        """Discard the error; identity linkage is optional for callers that use this."""

        return self.contact_id if self.ok else None


def contact_name_key(first_name: Optional[str], last_name: Optional[str]) -> Optional[str]:
    last = normalize_name(last_name)
    if not last:
        return None
    first = normalize_name(first_name) or ""
    return f"{last}|{first}"


class IdentityResolver:
    """Finds or creates a :class:`Contact` for a name and optional contact hints."""

    def __init__(self, store: ContactStore) -> None:
        self._store = store

    def try_resolve(
        self,
        tenant_id: str,
        first_name: Optional[str],
        last_name: Optional[str],
        *,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Resolution:
        """Look up or create a contact; never raises.

        Rows without a last name are not linked and resolve to an empty
        :class:`Resolution`.
        """

        name_key = contact_name_key(first_name, last_name)
        if name_key is None:
            return Resolution()

        normalized_email = normalize_email(email)
        normalized_phone = normalize_phone(phone) or None
        normalized_zip = normalize_zip(zip_code)
        try:
            existing = self._store.find_contact(
                tenant_id,
                email=normalized_email,
                phone=normalized_phone,
                name_key=name_key,
                zip_code=normalized_zip,
            )
            if existing is not None:
                return Resolution(contact_id=existing.id)
            contact_id = self._store.insert_contact(
                Contact(
                    tenant_id=tenant_id,
                    name_key=name_key,
                    first_name=first_name,
                    last_name=last_name,
                    zip_code=normalized_zip,
                    phone=normalized_phone,
                    email=normalized_email,
                )
            )
            LOGGER.debug("Created contact %s for %s", contact_id, name_key)
            return Resolution(contact_id=contact_id)
        except Exception as exc:
            LOGGER.warning("Failed to resolve contact for %s: %s", name_key, exc)
            return Resolution(error=exc)

    def resolve_contact(
        self,
        tenant_id: str,
        first_name: Optional[str],
        last_name: Optional[str],
        *,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Optional[str]:
        return self.try_resolve(
            tenant_id,
            first_name,
            last_name,
            zip_code=zip_code,
            phone=phone,
            email=email,
        ).or_none()


__all__ = ["IdentityResolver", "Resolution", "contact_name_key"]
