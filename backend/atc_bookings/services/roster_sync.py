"""Import an organization's roster from the VATSIM Core API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from .vatsim import RosterMember, VatsimError, VatsimRosterClient

logger = logging.getLogger(__name__)

# Local subdivision codes that VATSIM knows under a different identifier.
SUBDIVISION_CODE_MAP = {
    "CZE": "CZCH",
    "LVA": "LATVIA",
}


@dataclass(frozen=True, slots=True)
class RosterSyncResult:
    added: int
    existing: int
    total: int


def vatsim_subdivision_code(subdivision: str) -> str:
    return SUBDIVISION_CODE_MAP.get(subdivision.upper(), subdivision.upper())


async def fetch_roster(
    client: VatsimRosterClient, division: str, subdivision: Optional[str]
) -> list[RosterMember]:
    """Return the roster for ``subdivision`` or, without one, the whole division.

    A failing subdivision listing falls back to the division listing filtered
    by ``subdivision_id``; a failing division listing propagates.
    """

    if not subdivision:
        return await client.fetch_division(division)

    code = vatsim_subdivision_code(subdivision)
    try:
        return await client.fetch_subdivision(code)
    except VatsimError:
        logger.warning(
            "Subdivision roster for %s failed; falling back to division %s", code, division
        )

    members = await client.fetch_division(division)
    return [
        member
        for member in members
        if member.subdivision_id and member.subdivision_id.upper() in {code, subdivision.upper()}
    ]


def _distinct_cids(members: Iterable[RosterMember]) -> list[str]:
    seen: dict[str, None] = {}
    for member in members:
        seen.setdefault(member.cid, None)
    return list(seen)


async def sync_roster(
    db: AsyncSession,
    organization_id: int,
    division: str,
    subdivision: Optional[str],
    client: VatsimRosterClient,
) -> RosterSyncResult:
    """Insert every fetched cid missing from ``organization_id`` as a ``member``.

    Existing memberships are counted and left untouched, so repeated runs are
    idempotent. Nothing is written unless the full roster was fetched.
    """

    logger.info(
        "Roster sync started for organization_id=%s division=%s subdivision=%s",
        organization_id,
        division,
        subdivision,
    )
    cids = _distinct_cids(await fetch_roster(client, division, subdivision))

    result = await db.execute(
        select(models.OrgMember.cid).where(models.OrgMember.organization_id == organization_id)
    )
    known = set(result.scalars().all())

    missing = [cid for cid in cids if cid not in known]
    for cid in missing:
        db.add(
            models.OrgMember(
                cid=cid,
                organization_id=organization_id,
                role=models.OrgRole.member.value,
            )
        )
    await db.flush()
    await db.commit()

    outcome = RosterSyncResult(added=len(missing), existing=len(cids) - len(missing), total=len(cids))
    logger.info(
        "Roster synced for organization_id=%s: %d added, %d existing, %d total",
        organization_id,
        outcome.added,
        outcome.existing,
        outcome.total,
    )
    return outcome
