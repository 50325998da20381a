"""Orphaned artifact detection.

A failed catalog write leaves published objects under ``videos/{id}/`` with
no matching row. This sweep finds those prefixes and optionally deletes them.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from video_ingest.core.storage import Storage
from video_ingest.modules.ingestion.models import video_prefix
from video_ingest.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)

VIDEOS_PREFIX = "videos/"


@dataclass
class OrphanReport:
    """Objects grouped by the video id they belong to."""
    orphans: dict[uuid.UUID, list[str]] = field(default_factory=dict)
    unrecognized_keys: list[str] = field(default_factory=list)
    deleted_keys: list[str] = field(default_factory=list)
    failed_keys: list[str] = field(default_factory=list)

    @property
    def orphaned_key_count(self) -> int:
        return sum(len(keys) for keys in self.orphans.values())


def group_keys_by_video(keys: Iterable[str]) -> tuple[dict[uuid.UUID, list[str]], list[str]]:
    """Split storage keys into ``{video_id: keys}`` and keys outside the layout."""
    grouped: dict[uuid.UUID, list[str]] = {}
    unrecognized = []
    for key in keys:
        parts = key.split("/", 2)
        if len(parts) < 3 or parts[0] + "/" != VIDEOS_PREFIX:
            unrecognized.append(key)
            continue
        try:
            video_id = uuid.UUID(parts[1])
        except ValueError:
            unrecognized.append(key)
            continue
        grouped.setdefault(video_id, []).append(key)
    return grouped, unrecognized


async def find_orphaned_artifacts(
    storage: Storage,
    repository: VideoRepository,
    *,
    delete: bool = False,
) -> OrphanReport:
    """List object prefixes without a catalog row, deleting them if asked.

    Args:
        storage: Storage holding published artifacts
        repository: Catalog repository
        delete: Remove orphaned objects instead of only reporting them

    Returns:
        OrphanReport
    """
    grouped, unrecognized = group_keys_by_video(storage.list_files(VIDEOS_PREFIX))
    known = await repository.existing_ids(grouped.keys())

    report = OrphanReport(unrecognized_keys=unrecognized)
    for video_id, keys in grouped.items():
        if video_id not in known:
            report.orphans[video_id] = sorted(keys)

    if report.orphans:
        logger.warning(
            "Found %d orphaned objects under %d prefixes",
            report.orphaned_key_count,
            len(report.orphans),
        )

    if delete:
        for video_id, keys in report.orphans.items():
            for key in keys:
                if storage.delete(key):
                    report.deleted_keys.append(key)
                else:
                    report.failed_keys.append(key)
            logger.info("Deleted orphaned prefix %s/", video_prefix(video_id))

    return report


def describe(report: OrphanReport, limit: Optional[int] = None) -> list[str]:
    """Human-readable summary lines for a report."""
    lines = []
    for index, (video_id, keys) in enumerate(sorted(report.orphans.items(), key=lambda i: str(i[0]))):
        if limit is not None and index >= limit:
            lines.append(f"... and {len(report.orphans) - limit} more")
            break
        lines.append(f"{video_prefix(video_id)}/ ({len(keys)} objects)")
    return lines
