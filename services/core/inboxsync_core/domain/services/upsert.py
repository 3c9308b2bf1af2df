"""Idempotent upsert layer.

Every entity is keyed by its external id within its parent scope. Replaying
an event or re-running a backfill therefore converges on the same rows.

Rules:
1. Lookup by the uniqueness key; create on miss inside a SAVEPOINT
2. A concurrent duplicate insert (IntegrityError) re-queries and updates
3. Account, Chat, Attendee, Message and Attachment writes are partial patches:
   only the supplied keyword fields are written
4. Contact writes are a full overwrite: omitted fields become NULL
5. Chat.last_activity_at only moves forward
6. An attachment never holds both a blob reference and inline content

Usage:
    upserts = UpsertService(db=session)

    chat, created = upserts.upsert_chat(account.id, "chat_123", name="Alice")
    message, _ = upserts.upsert_message(account.id, "msg_1", is_read=True)
"""

from typing import Any, Callable, Optional, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inboxsync_core.domain.models import (
    Account,
    Attachment,
    Attendee,
    Chat,
    Contact,
    Message,
)


ModelT = TypeVar("ModelT")


# Every writable Contact column. Missing keys in a sighting are written as
# these defaults, never left at their previous value.
CONTACT_FIELDS: dict[str, Any] = {
    "full_name": None,
    "first_name": None,
    "last_name": None,
    "headline": None,
    "avatar_url": None,
    "profile_url": None,
    "member_urn": None,
    "occupation": None,
    "location": None,
    "network_distance": None,
    "is_connection": False,
    "pending_invitation": False,
    "enrichment_payload": None,
    "is_enriched": False,
    "last_interaction_at": None,
}

MESSAGE_DEFAULTS: dict[str, Any] = {
    "type": "text",
    "is_read": False,
    "is_outgoing": False,
}

BLOB_FIELDS = ("blob_key", "blob_url", "blob_uploaded_at")


class UpsertService:
    """Get-or-create-or-update for every mirrored entity."""

    def __init__(self, db: Session):
        """Initialize the upsert service.

        Args:
            db: SQLAlchemy database session. The service flushes, never commits.
        """
        self.db = db

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def find_account(
        self,
        external_account_id: str,
        provider: str,
        include_deleted: bool = False,
    ) -> Optional[Account]:
        query = self.db.query(Account).filter_by(
            external_account_id=external_account_id,
            provider=provider,
        )
        if not include_deleted:
            query = query.filter(Account.deleted_at.is_(None))
        return query.first()

    def find_chat(self, account_id: int, external_id: str) -> Optional[Chat]:
        return self.db.query(Chat).filter_by(
            account_id=account_id,
            external_id=external_id,
        ).first()

    def find_message(self, account_id: int, external_id: str) -> Optional[Message]:
        return self.db.query(Message).filter_by(
            account_id=account_id,
            external_id=external_id,
        ).first()

    # =========================================================================
    # UPSERTS
    # =========================================================================

    def upsert_account(
        self,
        external_account_id: str,
        provider: str,
        **fields: Any,
    ) -> tuple[Account, bool]:
        """Upsert an account by (external_account_id, provider). Partial patch."""
        return self._upsert(
            Account,
            key={"external_account_id": external_account_id, "provider": provider},
            create_values=fields,
            apply=lambda account: self._patch(account, fields),
        )

    def upsert_chat(
        self,
        account_id: int,
        external_id: str,
        **fields: Any,
    ) -> tuple[Chat, bool]:
        """Upsert a chat by (account, external_id).

        last_activity_at is monotonic: an older timestamp never replaces a
        newer one, so out-of-order events converge on the latest activity.
        """
        last_activity_at = fields.pop("last_activity_at", None)

        def apply(chat: Chat) -> None:
            self._patch(chat, fields)
            if last_activity_at is not None and (
                chat.last_activity_at is None or last_activity_at > chat.last_activity_at
            ):
                chat.last_activity_at = last_activity_at

        return self._upsert(
            Chat,
            key={"account_id": account_id, "external_id": external_id},
            create_values={**fields, "last_activity_at": last_activity_at},
            apply=apply,
        )

    def upsert_attendee(
        self,
        chat_id: int,
        external_participant_id: str,
        **fields: Any,
    ) -> tuple[Attendee, bool]:
        """Upsert a chat membership by (chat, participant id). Partial patch."""
        return self._upsert(
            Attendee,
            key={"chat_id": chat_id, "external_participant_id": external_participant_id},
            create_values=fields,
            apply=lambda attendee: self._patch(attendee, fields),
        )

    def upsert_contact(
        self,
        account_id: int,
        external_id: str,
        data: dict[str, Any],
    ) -> tuple[Contact, bool]:
        """Upsert a contact by (account, external_id). Full overwrite.

        Each sighting replaces every contact field; fields the sighting does
        not carry are reset rather than preserved.
        """
        unknown = set(data) - set(CONTACT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown contact fields: {sorted(unknown)}")

        values = {name: data.get(name, default) for name, default in CONTACT_FIELDS.items()}

        return self._upsert(
            Contact,
            key={"account_id": account_id, "external_id": external_id},
            create_values=values,
            apply=lambda contact: self._patch(contact, values),
        )

    def upsert_message(
        self,
        account_id: int,
        external_id: str,
        **fields: Any,
    ) -> tuple[Message, bool]:
        """Upsert a message by (account, external_id). Partial patch.

        A read-flag-only patch leaves content, sender and timestamps alone.
        """
        return self._upsert(
            Message,
            key={"account_id": account_id, "external_id": external_id},
            create_values={**MESSAGE_DEFAULTS, **fields},
            apply=lambda message: self._patch(message, fields),
        )

    def upsert_attachment(
        self,
        message_id: int,
        external_id: str,
        **fields: Any,
    ) -> tuple[Attachment, bool]:
        """Upsert an attachment by (message, external_id). Partial patch.

        Writing a blob reference clears inline content and vice versa.
        """
        if fields.get("blob_url") is not None or fields.get("blob_key") is not None:
            fields["inline_content"] = None
        elif fields.get("inline_content") is not None:
            for name in BLOB_FIELDS:
                fields[name] = None

        return self._upsert(
            Attachment,
            key={"message_id": message_id, "external_id": external_id},
            create_values=fields,
            apply=lambda attachment: self._patch(attachment, fields),
        )

    # =========================================================================
    # PRIVATE HELPERS
    # =========================================================================

    def _upsert(
        self,
        model: type[ModelT],
        key: dict[str, Any],
        create_values: dict[str, Any],
        apply: Callable[[ModelT], None],
    ) -> tuple[ModelT, bool]:
        """Create the row on miss, otherwise apply the update.

        Returns:
            Tuple of (row, is_created).
        """
        existing = self.db.query(model).filter_by(**key).first()
        if existing is None:
            row = model(**key, **create_values)
            try:
                with self.db.begin_nested():
                    self.db.add(row)
                    self.db.flush()
                return row, True
            except IntegrityError:
                # Another writer inserted the same key first; fall through to update
                existing = self.db.query(model).filter_by(**key).first()
                if existing is None:
                    raise

        apply(existing)
        self.db.flush()
        return existing, False

    @staticmethod
    def _patch(row: Any, fields: dict[str, Any]) -> None:
        for name, value in fields.items():
            if not hasattr(type(row), name):
                raise ValueError(f"{type(row).__name__} has no field {name!r}")
            setattr(row, name, value)


__all__ = [
    "CONTACT_FIELDS",
    "UpsertService",
]
