"""
Removes uploaded objects that no database row points at.

An upload followed by a failed insert is normally undone on the spot, but the
compensating delete can itself fail (expired token, network). This sweep is the
backstop. Objects younger than the grace period are left alone so an upload
whose row insert is still in flight is never removed.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from app.logger import get_logger
from app.services.backend_client import BoundClient
from app.services.repository import Repository

logger = get_logger("StorageSweeper")

GRACE_PERIOD = timedelta(hours=1)
PAGE_SIZE = 100
# PostgREST caps responses at its max-rows setting (1000 by default)
REFERENCE_PAGE_SIZE = 1000


@dataclass(frozen=True)
class SweepTarget:
    bucket: str
    prefix: str
    table: str
    column: str


SWEEP_TARGETS = [
    SweepTarget(bucket="resumes", prefix="", table="applications", column="resume"),
    SweepTarget(bucket="company-logo", prefix="logos", table="companies", column="logo_url"),
]


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def list_objects(client: BoundClient, target: SweepTarget) -> List[dict]:
    bucket = client.storage(target.bucket)
    objects: List[dict] = []
    offset = 0
    while True:
        page = bucket.list(prefix=target.prefix, limit=PAGE_SIZE, offset=offset)
        objects.extend(page)
        if len(page) < PAGE_SIZE:
            return objects
        offset += PAGE_SIZE


def referenced_urls(client: BoundClient, target: SweepTarget) -> Set[str]:
    urls: Set[str] = set()
    offset = 0
    while True:
        rows = (
            client.table(target.table)
            .select(f"id,{target.column}")
            .order("id")
            .limit(REFERENCE_PAGE_SIZE)
            .offset(offset)
            .execute()
        ) or []
        # The server may cap a page below the requested size; only an empty page ends the scan
        if not rows:
            return urls
        urls.update(row[target.column] for row in rows if row.get(target.column))
        offset += len(rows)


def find_orphans(client: BoundClient, target: SweepTarget, now: Optional[datetime] = None) -> List[str]:
    now = now or datetime.now(timezone.utc)
    bucket = client.storage(target.bucket)
    referenced = referenced_urls(client, target)

    orphans = []
    for obj in list_objects(client, target):
        name = obj.get("name")
        # Folders come back with a null id
        if not name or obj.get("id") is None:
            continue
        path = f"{target.prefix}/{name}" if target.prefix else name
        if bucket.public_url(path) in referenced:
            continue
        created = _parse_timestamp(obj.get("created_at"))
        if created is None or now - created < GRACE_PERIOD:
            continue
        orphans.append(path)
    return orphans


def sweep_target(client: BoundClient, target: SweepTarget, now: Optional[datetime] = None) -> List[str]:
    orphans = find_orphans(client, target, now)
    if orphans:
        client.storage(target.bucket).remove(orphans)
        logger.info(f"[SWEEP] Removed {len(orphans)} orphaned objects from {target.bucket}")
    else:
        logger.info(f"[SWEEP] No orphaned objects in {target.bucket}")
    return orphans


class StorageSweeper(Repository):
    name = "StorageSweeper"

    async def sweep(self, targets: List[SweepTarget] = SWEEP_TARGETS, now: Optional[datetime] = None) -> Dict[str, List[str]]:
        removed = {}
        for target in targets:
            removed[target.bucket] = await self._run(f"sweeping {target.bucket}", sweep_target, target, now)
        return removed
