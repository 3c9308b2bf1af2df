"""Contact enrichment.

Resolves bare external identities into Contact data, preferring a detailed
provider profile lookup and falling back to whatever the caller already
knows inline. Enrichment is best-effort: lookup failures are logged and never
reach the caller.

The account owner is never stored as a Contact. Their own profile lives in
OwnerProfile and is refreshed at most once per rolling window.

Usage:
    resolver = ContactEnrichmentResolver(db, provider, enabled=True)

    contact = await resolver.upsert_contact_for_identity(
        account, "ACoAAB...", fallback={"full_name": "Alice"}
    )
    contact = resolver.upsert_contact_from_attendee(account, attendee)
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from inboxsync_core.domain.errors import EnrichmentFailure
from inboxsync_core.domain.models import Account, Contact, NetworkDistance, OwnerProfile
from inboxsync_core.domain.services.upsert import UpsertService
from inboxsync_core.providers.base import (
    ProviderAdapter,
    ProviderAttendee,
    ProviderProfile,
)

logger = logging.getLogger(__name__)


NETWORK_DISTANCE_MAP = {
    "FIRST_DEGREE": NetworkDistance.FIRST,
    "SECOND_DEGREE": NetworkDistance.SECOND,
    "THIRD_DEGREE": NetworkDistance.THIRD,
    "DISTANCE_1": NetworkDistance.FIRST,
    "DISTANCE_2": NetworkDistance.SECOND,
    "DISTANCE_3": NetworkDistance.THIRD,
    "OUT_OF_NETWORK": NetworkDistance.OUT_OF_NETWORK,
    "SELF": NetworkDistance.SELF,
    "FIRST": NetworkDistance.FIRST,
    "SECOND": NetworkDistance.SECOND,
    "THIRD": NetworkDistance.THIRD,
}

FALLBACK_FIELDS = ("full_name", "first_name", "last_name", "headline", "avatar_url", "profile_url")


def normalize_network_distance(value: Optional[str]) -> Optional[str]:
    """Map provider distance labels to NetworkDistance values."""
    if not value:
        return None
    return NETWORK_DISTANCE_MAP.get(value.upper())


def split_name(full_name: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Split a display name into (first, rest)."""
    parts = (full_name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def profile_to_contact(
    profile: ProviderProfile,
    fallback: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Map a detailed provider profile into Contact fields."""
    fallback = fallback or {}
    full_name = " ".join(
        part for part in (profile.first_name, profile.last_name) if part
    ) or fallback.get("full_name")

    distance = normalize_network_distance(profile.network_distance)
    current_job = next(
        (job for job in profile.work_experience if job.get("current")),
        None,
    )

    payload: dict[str, Any] = {}
    if profile.contact_info:
        payload.update(
            emails=profile.contact_info.get("emails"),
            phones=profile.contact_info.get("phones"),
            # The provider spells this key "adresses"
            addresses=profile.contact_info.get("adresses") or profile.contact_info.get("addresses"),
            websites=profile.websites,
            socials=profile.contact_info.get("socials"),
        )
    if profile.summary:
        payload["summary"] = profile.summary

    return {
        "full_name": full_name,
        "first_name": profile.first_name,
        "last_name": profile.last_name,
        "headline": profile.headline or fallback.get("headline"),
        "avatar_url": profile.avatar_url_large or profile.avatar_url or fallback.get("avatar_url"),
        "profile_url": profile.public_profile_url or fallback.get("profile_url"),
        "member_urn": profile.public_identifier or profile.external_id or None,
        "occupation": current_job.get("position") if current_job else None,
        "location": profile.location,
        "network_distance": distance,
        "is_connection": distance != NetworkDistance.OUT_OF_NETWORK,
        "enrichment_payload": payload or None,
        "is_enriched": True,
    }


def contact_from_attendee(attendee: ProviderAttendee) -> dict[str, Any]:
    """Map an attendee's inline fields into Contact fields. No network call."""
    first_name, last_name = split_name(attendee.name)
    distance = normalize_network_distance(attendee.network_distance)

    return {
        "full_name": attendee.name or None,
        "first_name": first_name,
        "last_name": last_name,
        "headline": attendee.headline,
        "avatar_url": attendee.avatar_url,
        "profile_url": attendee.profile_url,
        "member_urn": attendee.member_urn,
        "occupation": attendee.occupation,
        "location": attendee.location,
        "network_distance": distance,
        "is_connection": distance != NetworkDistance.OUT_OF_NETWORK,
        "pending_invitation": attendee.pending_invitation,
        "enrichment_payload": attendee.contact_info,
        "is_enriched": False,
    }


class ContactEnrichmentResolver:
    """Best-effort profile resolution for contacts and the account owner."""

    def __init__(
        self,
        db: Session,
        provider: ProviderAdapter,
        enabled: bool = True,
        owner_refresh_hours: int = 24,
    ):
        """Initialize the resolver.

        Args:
            db: SQLAlchemy database session.
            provider: Provider adapter used for profile lookups.
            enabled: When False, inline data is used without any lookup.
            owner_refresh_hours: Minimum hours between owner profile refreshes.
        """
        self.db = db
        self.provider = provider
        self.enabled = enabled
        self.owner_refresh_hours = owner_refresh_hours
        self.upserts = UpsertService(db)

    # =========================================================================
    # CONTACTS
    # =========================================================================

    async def resolve_profile(
        self,
        identity: str,
        provider_account_id: str,
        fallback: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Resolve an identity into Contact fields.

        Returns the inline fallback (is_enriched=False) when enrichment is
        disabled or the lookup fails.
        """
        fallback_data = {
            name: value
            for name, value in (fallback or {}).items()
            if name in FALLBACK_FIELDS
        }
        if fallback_data.get("full_name") and not fallback_data.get("first_name"):
            first_name, last_name = split_name(fallback_data["full_name"])
            fallback_data.update(first_name=first_name, last_name=last_name)

        if not self.enabled:
            return {**fallback_data, "is_enriched": False}

        try:
            profile = await self.provider.get_profile(identity, provider_account_id)
        except Exception as e:
            failure = EnrichmentFailure(identity, e)
            logger.warning(f"{failure}; using inline data")
            return {**fallback_data, "is_enriched": False}

        return profile_to_contact(profile, fallback_data)

    async def upsert_contact_for_identity(
        self,
        account: Account,
        identity: str,
        fallback: Optional[dict[str, Any]] = None,
    ) -> Contact:
        """Resolve and upsert the Contact for a bare identity."""
        data = await self.resolve_profile(identity, account.external_account_id, fallback)
        data["last_interaction_at"] = datetime.utcnow()

        contact, created = self.upserts.upsert_contact(account.id, identity, data)
        if created:
            logger.debug(f"Created contact {identity} for account {account.id}")
        return contact

    def upsert_contact_from_attendee(
        self,
        account: Account,
        attendee: ProviderAttendee,
    ) -> Contact:
        """Upsert the Contact for an attendee using its inline fields."""
        data = contact_from_attendee(attendee)
        data["last_interaction_at"] = datetime.utcnow()

        contact, _ = self.upserts.upsert_contact(account.id, attendee.external_id, data)
        return contact

    # =========================================================================
    # OWNER PROFILE
    # =========================================================================

    def needs_owner_refresh(
        self,
        synced_at: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> bool:
        if synced_at is None:
            return True
        now = now or datetime.utcnow()
        return now - synced_at >= timedelta(hours=self.owner_refresh_hours)

    async def refresh_owner_profile(self, account: Account) -> Optional[OwnerProfile]:
        """Refresh the owner's own profile if the last attempt is stale.

        Failed attempts count towards the refresh window too, so an
        unreachable profile is retried at most once per window. Failures are
        logged and swallowed.

        Returns:
            The OwnerProfile row, or None if this attempt failed.
        """
        owner_profile = self.db.query(OwnerProfile).filter_by(account_id=account.id).first()
        if owner_profile is not None and not self.needs_owner_refresh(
            owner_profile.refresh_attempted_at or owner_profile.synced_at
        ):
            logger.debug(f"Owner profile for account {account.id} recently refreshed, skipping")
            return owner_profile

        if owner_profile is None:
            owner_profile = OwnerProfile(account_id=account.id)
            self.db.add(owner_profile)
        owner_profile.refresh_attempted_at = datetime.utcnow()

        try:
            profile = await self.provider.get_own_profile(account.external_account_id)
        except Exception as e:
            self.db.flush()
            logger.error(f"Failed to refresh owner profile for account {account.id}: {e}")
            return None

        owner_profile.provider_id = profile.external_id or None
        owner_profile.full_name = " ".join(
            part for part in (profile.first_name, profile.last_name) if part
        ) or None
        owner_profile.headline = profile.headline
        owner_profile.avatar_url = profile.avatar_url_large or profile.avatar_url
        owner_profile.profile_url = profile.public_profile_url
        owner_profile.raw_profile = profile.raw_data
        owner_profile.synced_at = datetime.utcnow()

        if profile.external_id and not account.owner_provider_id:
            account.owner_provider_id = profile.external_id

        self.db.flush()
        logger.info(f"Refreshed owner profile for account {account.id}")
        return owner_profile
