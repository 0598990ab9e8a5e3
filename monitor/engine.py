import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional, Set

from fiber.logging_utils import get_logger

from interfaces.protocols import EPOCH_UNAVAILABLE, ChainStatusProvider
from interfaces.types import (
    EpochMetadata,
    EpochRecord,
    GlobalConstants,
    HelperState,
    JSONSerializable,
    PhraseData,
    PhraseMetadata,
    ValidatorRecord,
    format_timestamp,
    utc_now,
)
from monitor.document_storage import StorageError
from monitor.epoch_state import (
    apply_liveness_observation,
    estimate_epoch_end,
    finalize_record,
)
from monitor.phrase import PhraseCalendar
from monitor.phrase_store import PhraseStore

logger = get_logger(__name__)


@dataclass
class MonitorCheckpoint:
    """Last chain position the engine acted on. Empty means first run."""

    last_known_network_epoch: Optional[int] = None
    last_known_phrase_number: Optional[int] = None


@dataclass
class CycleSummary(JSONSerializable):
    success: bool
    timestamp: datetime = field(default_factory=utc_now)
    message: Optional[str] = None
    current_epoch: Optional[int] = None
    current_phrase: Optional[int] = None
    phrase_start_epoch: Optional[int] = None
    phrase_end_epoch: Optional[int] = None
    active_validators_count: int = 0
    phrase_transitioned: bool = False
    epoch_transitioned: bool = False
    uptime_data_changed: bool = False

    def to_response(self) -> Dict:
        response = {
            "success": self.success,
            "currentEpoch": self.current_epoch,
            "currentPhrase": self.current_phrase,
            "phraseStartEpoch": self.phrase_start_epoch,
            "phraseEndEpoch": self.phrase_end_epoch,
            "activeValidatorsCount": self.active_validators_count,
            "phraseTransitioned": self.phrase_transitioned,
            "epochTransitioned": self.epoch_transitioned,
            "uptimeDataChanged": self.uptime_data_changed,
            "timestamp": format_timestamp(self.timestamp),
        }
        if self.message:
            response["message"] = self.message
        return response


@dataclass
class CycleResult:
    summary: CycleSummary
    checkpoint: MonitorCheckpoint


@dataclass
class _PhraseWorkingSet:
    """Current phrase documents loaded for one cycle, with dirty flags."""

    phrase_number: int
    metadata: PhraseMetadata
    data: PhraseData
    metadata_dirty: bool = False
    data_dirty: bool = False


def _short(address: str) -> str:
    return address[:8]


class EpochMonitorEngine:
    """
    Reconciles validator API Helper liveness with the stored phrase documents.

    Each call to `run_cycle` observes the chain once, finalizes epochs that
    have ended, opens the current epoch and folds the liveness sample into
    the running records. The checkpoint is passed in and handed back so the
    caller owns the engine's memory between cycles.
    """

    def __init__(
        self,
        chain: ChainStatusProvider,
        store: PhraseStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.chain = chain
        self.store = store
        self.clock = clock

    async def run_cycle(self, checkpoint: MonitorCheckpoint) -> CycleResult:
        now = self.clock()
        logger.info("[run-monitor] Starting monitoring cycle...")
        try:
            result = await self._run_cycle(checkpoint, now)
        except StorageError as e:
            logger.error(f"[run-monitor] Storage unavailable, cycle aborted: {e}")
            return CycleResult(
                CycleSummary(
                    success=False, timestamp=now, message=f"Storage unavailable: {e}"
                ),
                checkpoint,
            )
        logger.info("[run-monitor] Monitoring cycle completed")
        return result

    async def _run_cycle(
        self, checkpoint: MonitorCheckpoint, now: datetime
    ) -> CycleResult:
        current_epoch, active_validators = await asyncio.gather(
            self.chain.get_current_epoch(), self.chain.get_active_validators()
        )
        if current_epoch == EPOCH_UNAVAILABLE or current_epoch < 0:
            logger.warning("Failed to get network epoch, cycle postponed")
            return CycleResult(
                CycleSummary(
                    success=False, timestamp=now, message="Failed to get network epoch"
                ),
                checkpoint,
            )
        if active_validators is None:
            logger.warning("Failed to get active validators, cycle postponed")
            return CycleResult(
                CycleSummary(
                    success=False,
                    timestamp=now,
                    message="Failed to get active validators",
                ),
                checkpoint,
            )

        constants = await self.store.load_constants()
        calendar = PhraseCalendar.from_constants(constants)
        current_phrase = calendar.phrase_number_for_epoch(current_epoch)

        if current_phrase < 1:
            logger.info(
                f"Network epoch {current_epoch} is before the first phrase "
                f"(starts at {constants.first_phrase_start_epoch}), waiting"
            )
            return CycleResult(
                CycleSummary(
                    success=True,
                    timestamp=now,
                    message="Epoch before first phrase",
                    current_epoch=current_epoch,
                    current_phrase=current_phrase,
                    active_validators_count=len(active_validators),
                ),
                MonitorCheckpoint(
                    last_known_network_epoch=current_epoch,
                    last_known_phrase_number=checkpoint.last_known_phrase_number,
                ),
            )

        previous_phrase = checkpoint.last_known_phrase_number
        phrase_transitioned = previous_phrase != current_phrase
        if phrase_transitioned:
            logger.info(f"--- New phrase detected ({previous_phrase} -> {current_phrase}) ---")
            if previous_phrase is not None and previous_phrase >= 1:
                await self.finalize_previous_phrase(previous_phrase, constants)

        working = await self._load_working_set(current_phrase, calendar)

        last_known_epoch = checkpoint.last_known_network_epoch
        live_epochs: Set[int] = set()
        if last_known_epoch is not None and last_known_epoch != current_epoch:
            live_epochs = set(range(last_known_epoch, current_epoch))

        if self.backfill_stuck_epochs(working, current_epoch, live_epochs, constants):
            working.data_dirty = True

        epoch_transitioned = False
        if last_known_epoch is None or last_known_epoch != current_epoch:
            for finished_epoch in sorted(live_epochs):
                if calendar.phrase_number_for_epoch(finished_epoch) != current_phrase:
                    continue
                if self.end_epoch(working, finished_epoch, now, constants):
                    working.data_dirty = True
            await self.start_epoch(
                working, current_epoch, calendar, active_validators, now
            )
            epoch_transitioned = True

        uptime_data_changed = self.check_uptime(
            working, current_epoch, active_validators, now
        )
        if uptime_data_changed:
            working.data_dirty = True

        await self._flush(working)

        return CycleResult(
            CycleSummary(
                success=True,
                timestamp=now,
                current_epoch=current_epoch,
                current_phrase=current_phrase,
                phrase_start_epoch=calendar.start_epoch_for_phrase(current_phrase),
                phrase_end_epoch=calendar.end_epoch_for_phrase(current_phrase),
                active_validators_count=len(active_validators),
                phrase_transitioned=phrase_transitioned,
                epoch_transitioned=epoch_transitioned,
                uptime_data_changed=uptime_data_changed,
            ),
            MonitorCheckpoint(
                last_known_network_epoch=current_epoch,
                last_known_phrase_number=current_phrase,
            ),
        )

    async def _load_working_set(
        self, phrase_number: int, calendar: PhraseCalendar
    ) -> _PhraseWorkingSet:
        metadata, data = await asyncio.gather(
            self.store.load_metadata(phrase_number),
            self.store.load_phrase_data(phrase_number),
        )
        metadata_dirty = False
        if metadata is None or metadata.phrase_number != phrase_number:
            logger.info(f"Initializing metadata for phrase {phrase_number}")
            metadata = PhraseMetadata(
                phrase_number=phrase_number,
                phrase_start_epoch=calendar.start_epoch_for_phrase(phrase_number),
                phrase_end_epoch=calendar.end_epoch_for_phrase(phrase_number),
                phrase_start_time=metadata.phrase_start_time if metadata else None,
            )
            metadata_dirty = True
        return _PhraseWorkingSet(
            phrase_number=phrase_number,
            metadata=metadata,
            data=data if data is not None else PhraseData(),
            metadata_dirty=metadata_dirty,
        )

    async def _flush(self, working: _PhraseWorkingSet) -> None:
        if working.metadata_dirty:
            await self.store.save_metadata(working.metadata)
            logger.info(f"[SAVE] Metadata for phrase {working.phrase_number} saved")
        if working.data_dirty:
            await self.store.save_phrase_data(working.phrase_number, working.data)
            logger.info(f"[SAVE] Data for phrase {working.phrase_number} saved")

    def _force_finalize(
        self,
        records: Iterable,
        metadata: Optional[PhraseMetadata],
        constants: GlobalConstants,
        tag: str,
    ) -> int:
        """Finalize records using the estimated end of their epoch."""
        finalized = 0
        for address, epoch, record in records:
            epoch_metadata = metadata.epochs.get(epoch) if metadata else None
            estimated_end = estimate_epoch_end(
                epoch_metadata, constants.avg_block_time_seconds
            )
            if finalize_record(
                record, constants.epoch_fail_threshold_seconds, estimated_end
            ):
                finalized += 1
                logger.info(
                    f"[{tag}] Epoch {epoch} for {_short(address)}: "
                    f"{record.status.name} ({record.total_inactive_seconds}s inactive)"
                )
        return finalized

    async def finalize_previous_phrase(
        self, phrase_number: int, constants: GlobalConstants
    ) -> int:
        """Close every RUNNING record left in a phrase that is no longer current."""
        logger.info(f"[PHRASE-END] Finalizing RUNNING epochs of phrase {phrase_number}")
        data, metadata = await asyncio.gather(
            self.store.load_phrase_data(phrase_number),
            self.store.load_metadata(phrase_number),
        )
        if data is None or not data.validators:
            logger.info(f"[PHRASE-END] No data for phrase {phrase_number}")
            return 0

        finalized = self._force_finalize(
            list(data.running_records()), metadata, constants, "PHRASE-END"
        )
        if finalized:
            await self.store.save_phrase_data(phrase_number, data)
            logger.info(
                f"[PHRASE-END] {finalized} epochs finalized in phrase {phrase_number}"
            )
        else:
            logger.info(f"[PHRASE-END] No RUNNING epochs in phrase {phrase_number}")
        return finalized

    def backfill_stuck_epochs(
        self,
        working: _PhraseWorkingSet,
        current_epoch: int,
        live_epochs: Set[int],
        constants: GlobalConstants,
    ) -> bool:
        """
        Finalize RUNNING records of past epochs that no transition will close.
        Epochs in `live_epochs` are left for the live epoch-end pass.
        """
        stuck = [
            (address, epoch, record)
            for address, epoch, record in working.data.running_records()
            if epoch < current_epoch and epoch not in live_epochs
        ]
        if not stuck:
            logger.debug("[BACKFILL] No stuck epochs")
            return False
        finalized = self._force_finalize(stuck, working.metadata, constants, "BACKFILL")
        logger.info(f"[BACKFILL] {finalized} stuck epochs finalized")
        return finalized > 0

    def end_epoch(
        self,
        working: _PhraseWorkingSet,
        finished_epoch: int,
        now: datetime,
        constants: GlobalConstants,
    ) -> bool:
        """Finalize every RUNNING record of an epoch that just ended."""
        logger.info(
            f"--- End of epoch {finished_epoch} (phrase {working.phrase_number}) ---"
        )
        modified = False
        for address, validator in working.data.validators.items():
            record = validator.epochs.get(finished_epoch)
            if record is None:
                continue
            if finalize_record(record, constants.epoch_fail_threshold_seconds, now):
                modified = True
                logger.info(
                    f"Validator {address}, phrase {working.phrase_number}, "
                    f"epoch {finished_epoch}: {record.status.name} "
                    f"({record.total_inactive_seconds}s inactive)"
                )
        return modified

    async def start_epoch(
        self,
        working: _PhraseWorkingSet,
        new_epoch: int,
        calendar: PhraseCalendar,
        active_validators: Set[str],
        now: datetime,
    ) -> None:
        """Record the epoch's chain details and open a RUNNING record per validator."""
        logger.info(
            f"--- Start of epoch {new_epoch} (phrase {working.phrase_number}) ---"
        )
        details = await self.chain.get_first_block_of_epoch_details(new_epoch)
        if details.epoch_start_time is not None:
            if new_epoch == calendar.start_epoch_for_phrase(working.phrase_number):
                working.metadata.phrase_start_time = details.epoch_start_time
            working.metadata.epochs[new_epoch] = EpochMetadata(
                start_time=details.epoch_start_time,
                first_block=details.first_block,
                session_length=details.session_length,
            )
            working.metadata_dirty = True
        else:
            logger.warning(f"Could not get start time or block details for epoch {new_epoch}")

        known_validators = set(working.data.validators) | set(active_validators)
        for address in sorted(known_validators):
            validator = working.data.validators.setdefault(address, ValidatorRecord())
            if new_epoch in validator.epochs:
                # Existing records are kept as they are, terminal or not
                continue
            validator.epochs[new_epoch] = EpochRecord.start_running(
                HelperState.from_membership(address in active_validators), now
            )
        working.data_dirty = True

    def check_uptime(
        self,
        working: _PhraseWorkingSet,
        current_epoch: int,
        active_validators: Set[str],
        now: datetime,
    ) -> bool:
        logger.info(
            f"[UPTIME] Checking epoch {current_epoch}, "
            f"{len(active_validators)} active validators reported"
        )
        data_changed = False
        known_validators = set(working.data.validators) | set(active_validators)
        for address in sorted(known_validators):
            record = working.data.get_epoch(address, current_epoch)
            if record is None or not record.is_running:
                continue

            is_active_now = address in active_validators
            was_active = record.last_helper_state is HelperState.ACTIVE
            if was_active != is_active_now:
                logger.info(
                    f"[UPTIME] Validator {_short(address)}: "
                    f"{'ACTIVE -> INACTIVE' if was_active else 'INACTIVE -> ACTIVE'}"
                )
            if apply_liveness_observation(record, is_active_now, now):
                data_changed = True
        return data_changed
