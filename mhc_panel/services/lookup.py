"""
Person lookup (home page search box).

Resolves a username or a blob of pasted profile text to a person, optionally
refreshes Statbate data, and returns everything the lookup view shows.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from ..clients import StatbateClient, normalize_member_info, normalize_model_info
from ..errors import ValidationError
from .interactions import InteractionService
from .persons import Person, PersonRole, PersonService
from .snapshots import SnapshotService

logger = logging.getLogger(__name__)

USERNAME_TOKEN = re.compile(r"\b[a-zA-Z0-9_]+\b")
STATBATE_SITE = "chaturbate"


def extract_usernames(text: str) -> list[str]:
    """Candidate usernames in order of appearance, de-duplicated case-insensitively."""
    seen: set[str] = set()
    names: list[str] = []
    for token in USERNAME_TOKEN.findall(text or ""):
        if len(token) <= 2 or token.lower() in seen:
            continue
        seen.add(token.lower())
        names.append(token)
    return names


class LookupService:
    def __init__(
        self,
        persons: PersonService,
        snapshots: SnapshotService,
        interactions: InteractionService,
        statbate: StatbateClient | None = None,
    ) -> None:
        self.persons = persons
        self.snapshots = snapshots
        self.interactions = interactions
        self.statbate = statbate

    async def lookup(
        self,
        username: str | None = None,
        role: str | None = None,
        pasted_text: str | None = None,
        include_statbate: bool = False,
    ) -> dict[str, Any]:
        """Resolve a person and gather the lookup view.

        Raises:
            ValidationError: Neither username nor pasted text, or nothing usable in them
        """
        if not username and not pasted_text:
            raise ValidationError("username or pastedText required")

        extracted = extract_usernames(pasted_text) if pasted_text else []
        if username:
            extracted = [username] + [name for name in extracted if name.lower() != username.lower()]
        if not extracted:
            raise ValidationError("No valid usernames found")

        primary = extracted[0]
        person = await self.persons.find_or_create(primary, role=role or PersonRole.UNKNOWN.value)

        if pasted_text and username:
            await self.interactions.create(
                person_id=person.id,
                type="PROFILE_PASTE",
                source="manual",
                content=pasted_text,
            )

        latest_snapshot = None
        delta = None
        statbate_api_url = None
        if include_statbate and self.statbate is not None:
            person, latest_snapshot, delta, statbate_api_url = await self._refresh_statbate(
                self.statbate, person, primary, role
            )

        if latest_snapshot is None:
            stored = await self.snapshots.get_latest(person.id)
            latest_snapshot = stored.to_dict() if stored else None

        interactions = await self.interactions.list_for_person(person.id, limit=20)
        latest_interaction = interactions[0] if interactions else None

        return {
            "person": person.to_dict(),
            "latestSnapshot": latest_snapshot,
            "delta": delta,
            "interactions": [item.to_dict() for item in interactions],
            "latestInteraction": latest_interaction.to_dict() if latest_interaction else None,
            "extractedUsernames": extracted,
            "statbateApiUrl": statbate_api_url,
        }

    async def _refresh_statbate(
        self, statbate: StatbateClient, person: Person, username: str, role: str | None
    ) -> tuple[Person, dict[str, Any] | None, dict[str, float] | None, str | None]:
        """Try model info then member info; the first hit wins."""
        name = username.lower()
        effective_role = role or person.role
        api_url = None

        if effective_role in (PersonRole.MODEL.value, PersonRole.UNKNOWN.value, PersonRole.BOTH.value):
            api_url = f"{statbate.base_url}/model/{STATBATE_SITE}/{name}/info?timezone=UTC"
            try:
                model = await statbate.get_model_info(STATBATE_SITE, name)
            except httpx.HTTPError as e:
                logger.debug("Model info unavailable", extra={"username": name, "error": str(e)})
                model = None
            if model and model.get("data"):
                data = model["data"]
                snapshot = await self.snapshots.create(
                    person.id, "statbate_model", data, normalize_model_info(data)
                )
                updated = await self.persons.update(
                    person.id,
                    rid=data.get("rid"),
                    role=None if role else PersonRole.MODEL.value,
                )
                delta = await self.snapshots.get_delta(person.id, "statbate_model")
                return updated or person, snapshot.to_dict(), delta, api_url

        if effective_role in (PersonRole.VIEWER.value, PersonRole.UNKNOWN.value, PersonRole.BOTH.value):
            api_url = f"{statbate.base_url}/members/{STATBATE_SITE}/{name}/info?timezone=UTC"
            try:
                member = await statbate.get_member_info(STATBATE_SITE, name)
            except httpx.HTTPError as e:
                logger.debug("Member info unavailable", extra={"username": name, "error": str(e)})
                member = None
            if member and member.get("data"):
                data = member["data"]
                snapshot = await self.snapshots.create(
                    person.id, "statbate_member", data, normalize_member_info(data)
                )
                updated = await self.persons.update(
                    person.id,
                    did=data.get("did"),
                    role=None if role else PersonRole.VIEWER.value,
                )
                delta = await self.snapshots.get_delta(person.id, "statbate_member")
                return updated or person, snapshot.to_dict(), delta, api_url

        logger.warning("No Statbate data found", extra={"username": name})
        return person, None, None, api_url
