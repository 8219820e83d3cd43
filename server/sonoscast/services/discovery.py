"""Household, group and player discovery across every household of an account."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..errors import GroupFetchFailed, HouseholdFetchFailed, NoHouseholds, NotAuthenticated
from ..models import ALL_GROUPS_LABEL, WILDCARD, Household, SpeakerOption, Topology
from .gateway import SonosCastClient

logger = logging.getLogger(__name__)


def option_name(kind: str, item: dict[str, Any], household_label: str = "") -> str:
    """Display name for a group or player.

    Falls back to "<kind> <last 8 chars of id>" when the remote has no name.
    """
    name = item.get("name") or f"{kind} {item['id'][-8:]}"
    return f"{name}{household_label}"


def _as_dict(body: Any) -> dict[str, Any]:
    return body if isinstance(body, dict) else {}


def household_label(index: int, household_count: int) -> str:
    """Suffix like ' (Household 2)', only added when there is more than one household."""
    if household_count > 1:
        return f" (Household {index + 1})"
    return ""


class ResourceAggregator:
    """Merges groups and players of all households into display-ready lists."""

    def __init__(self, client: SonosCastClient):
        self.client = client

    async def get_households(self, access_token: str) -> list[Household]:
        response = await self.client.request(
            "GET",
            "api/v2/sonos/households",
            token=access_token,
            failure=HouseholdFetchFailed,
        )
        logger.info(f"Households response status: {response.status}")
        data = _as_dict(response.parsed_body)
        return [Household(**h) for h in data.get("households") or []]

    async def _fetch_household(
        self, access_token: str, household: Household, index: int, household_count: int
    ) -> Topology:
        response = await self.client.request(
            "GET",
            f"api/v2/sonos/households/{household.id}/groups",
            token=access_token,
            failure=GroupFetchFailed,
            household_id=household.id,
        )
        data = _as_dict(response.parsed_body)
        label = household_label(index, household_count)
        return Topology(
            groups=[
                SpeakerOption(id=g["id"], name=option_name("Group", g, label))
                for g in data.get("groups") or []
            ],
            players=[
                SpeakerOption(id=p["id"], name=option_name("Player", p, label))
                for p in data.get("players") or []
            ],
        )

    async def discover(self, access_token: str | None) -> Topology:
        """Fetch households, then all their groups and players concurrently.

        Any failing household aborts the whole discovery. Results are merged in
        household discovery order regardless of which fetch finished first.
        """
        if not access_token:
            logger.info("No access token available for discovery")
            raise NotAuthenticated("Please authenticate first.")

        households = await self.get_households(access_token)
        if not households:
            logger.info("No households found for the user")
            raise NoHouseholds("No Sonos households found for the authenticated user.")

        # Wait for every household before looking at any result
        results = await asyncio.gather(
            *(
                self._fetch_household(access_token, household, index, len(households))
                for index, household in enumerate(households)
            ),
            return_exceptions=True,
        )
        for household, result in zip(households, results):
            if isinstance(result, BaseException):
                logger.error(f"Group discovery failed for household {household.id}: {result}")
                raise result

        topology = Topology(
            groups=[g for r in results for g in r.groups],
            players=[p for r in results for p in r.players],
        )
        logger.info(
            f"Discovery complete: {len(households)} households, "
            f"{len(topology.groups)} groups, {len(topology.players)} players"
        )
        return topology

    async def group_options(self, access_token: str | None) -> list[SpeakerOption]:
        """Groups for a target picker, led by the "All Groups" wildcard choice."""
        topology = await self.discover(access_token)
        return [SpeakerOption(id=WILDCARD, name=ALL_GROUPS_LABEL), *topology.groups]

    async def player_options(self, access_token: str | None) -> list[SpeakerOption]:
        topology = await self.discover(access_token)
        return topology.players
