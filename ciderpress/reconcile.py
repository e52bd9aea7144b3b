"""Work out which Voice Memos recordings still need copying."""
from typing import Iterable, Optional, Sequence, Set

from .models import MigrationPlan, OriginRecording, PreMigrationStats, format_timestamp


def plan(origin: Iterable[OriginRecording], existing_ids: Set[int]) -> MigrationPlan:
    """Origin recordings whose origin_id is not in the destination, in origin order."""
    return MigrationPlan(tuple(r for r in origin if r.origin_id not in existing_ids))


def summarize(origin: Sequence[OriginRecording], existing_ids: Set[int],
              destination: dict, migration_plan: Optional[MigrationPlan] = None) -> PreMigrationStats:
    """
    Counts shown before a run.

    ``destination`` is the dict returned by ``CiderDB.destination_summary``.
    """
    migration_plan = migration_plan if migration_plan is not None else plan(origin, existing_ids)
    origin_latest = max((r.created_at for r in origin), default=None)
    return PreMigrationStats(
        origin_total_files=len(origin),
        origin_total_size_bytes=sum(r.file_size for r in origin),
        origin_most_recent_date=format_timestamp(origin_latest),
        destination_total_files=destination.get("total", 0),
        destination_most_recent_date=format_timestamp(destination.get("most_recent")),
        files_to_migrate=len(migration_plan),
        transcribed_count=destination.get("transcribed", 0),
        not_transcribed_count=destination.get("not_transcribed", 0),
    )
