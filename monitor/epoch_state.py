"""
Per-record rules of the API Helper epoch state machine.

A record is RUNNING from the moment an epoch is first monitored for a
validator until it is finalized to PASS or FAIL. Terminal records are never
touched again; every function here is a no-op on them.
"""

from datetime import datetime, timedelta
from typing import Optional

from interfaces.types import EpochMetadata, EpochRecord, EpochStatus, HelperState

DEFAULT_EPOCH_DURATION_SECONDS = 4 * 60 * 60


def _rounded_seconds(delta: timedelta) -> int:
    """Whole seconds, half rounding up."""
    millis = delta // timedelta(milliseconds=1)
    return (millis + 500) // 1000


def accrue_inactive_time(record: EpochRecord, until: datetime) -> bool:
    """
    Add the time spent INACTIVE since the last state change up to `until`
    and move the state change mark to `until`.

    Returns False when the record is not eligible (terminal, or never
    stamped), True otherwise.
    """
    if not record.is_running or record.last_state_change_timestamp is None:
        return False

    if record.last_helper_state is HelperState.INACTIVE:
        inactive_seconds = _rounded_seconds(until - record.last_state_change_timestamp)
        if inactive_seconds > 0:
            record.total_inactive_seconds += inactive_seconds
    record.last_state_change_timestamp = until
    return True


def finalize_record(
    record: EpochRecord, fail_threshold_seconds: int, until: Optional[datetime]
) -> bool:
    """
    Close a RUNNING record as PASS or FAIL.

    Inactive time is accrued up to `until` first; when `until` is None the
    accumulated total is judged as is. Returns True if the record changed.
    """
    if not record.is_running:
        return False

    if until is not None:
        accrue_inactive_time(record, until)

    if record.total_inactive_seconds >= fail_threshold_seconds:
        record.status = EpochStatus.FAIL
    else:
        record.status = EpochStatus.PASS

    record.last_helper_state = None
    record.last_state_change_timestamp = None
    return True


def estimate_epoch_end(
    epoch_metadata: Optional[EpochMetadata], avg_block_time_seconds: int
) -> Optional[datetime]:
    """Epoch start plus session length worth of blocks, if the start is known."""
    if epoch_metadata is None or epoch_metadata.start_time is None:
        return None
    if not epoch_metadata.session_length:
        return epoch_metadata.start_time + timedelta(seconds=DEFAULT_EPOCH_DURATION_SECONDS)
    return epoch_metadata.start_time + timedelta(
        seconds=epoch_metadata.session_length * avg_block_time_seconds
    )


def apply_liveness_observation(
    record: EpochRecord, is_active_now: bool, now: datetime
) -> bool:
    """
    Fold one liveness sample into a RUNNING record.

    Returns True when the record accrued time or changed state, i.e. when it
    needs to be persisted. Sustained activity only refreshes the timestamp.
    """
    if not record.is_running:
        return False

    was_active = record.last_helper_state is HelperState.ACTIVE
    if was_active and is_active_now:
        record.last_state_change_timestamp = now
        return False

    accrue_inactive_time(record, now)
    if record.last_state_change_timestamp is None:
        record.last_state_change_timestamp = now
    record.last_helper_state = HelperState.from_membership(is_active_now)
    return True
