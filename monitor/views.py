import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from fiber.logging_utils import get_logger

from interfaces.protocols import ChainStatusProvider
from interfaces.types import (
    EpochStatus,
    HelperState,
    PhraseData,
    PhraseMetadata,
    ValidatorRecord,
    format_timestamp,
    utc_now,
)
from monitor.phrase import PhraseCalendar
from monitor.phrase_store import PhraseStore, metadata_path, phrase_data_path

logger = get_logger(__name__)

# Root-level state fields written by earlier revisions, newest first
ROOT_STATE_KEYS = ("lastApiHelperState", "apiHelperState")
CHECK_INTERVAL_MINUTES = 1


class NotFoundError(Exception):
    """The requested document or address is not stored."""


class UpstreamUnavailableError(Exception):
    """The chain could not be queried."""


def _format(value: Optional[datetime]) -> Optional[str]:
    return format_timestamp(value) if value else None


def current_helper_state(record: ValidatorRecord) -> Optional[str]:
    """
    Best known API Helper state of a validator: the root-level field, then
    the legacy root field, then the most recent epoch that recorded one.
    """
    for key in ROOT_STATE_KEYS:
        if record.extra.get(key):
            return record.extra[key]
    for epoch in sorted(record.epochs, reverse=True):
        state = record.epochs[epoch].last_helper_state
        if state is not None:
            return state.value
    return None


def count_statuses(record: ValidatorRecord) -> Dict[EpochStatus, int]:
    counts = {status: 0 for status in EpochStatus}
    for epoch_record in record.epochs.values():
        counts[epoch_record.status] += 1
    return counts


class ReadViews:
    """Read-only projections over the stored phrase documents."""

    def __init__(
        self,
        store: PhraseStore,
        chain: Optional[ChainStatusProvider] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.chain = chain
        self.clock = clock

    async def _load_phrase(self, phrase_number: int):
        return await asyncio.gather(
            self.store.load_metadata(phrase_number),
            self.store.load_phrase_data(phrase_number),
        )

    async def dashboard(self) -> Dict:
        constants = await self.store.load_constants()
        current_phrase = await self.store.latest_phrase_number()
        if current_phrase is None:
            raise NotFoundError("Dashboard data not found")

        metadata, phrase_data = await self._load_phrase(current_phrase)
        if metadata is None or phrase_data is None:
            raise NotFoundError("Dashboard data not found")

        validators = []
        for address, record in sorted(phrase_data.validators.items()):
            counts = count_statuses(record)
            state = current_helper_state(record)
            last_change = record.extra.get("lastApiHelperStateChangeTimestamp")
            if last_change is None:
                running = [
                    epoch_record
                    for _, epoch_record in sorted(record.epochs.items(), reverse=True)
                    if epoch_record.last_state_change_timestamp is not None
                ]
                if running:
                    last_change = _format(running[0].last_state_change_timestamp)
            validators.append(
                {
                    "address": address,
                    "passCount": counts[EpochStatus.PASS],
                    "failCount": counts[EpochStatus.FAIL],
                    "runningCount": counts[EpochStatus.RUNNING],
                    "totalEpochs": len(record.epochs),
                    "lastApiHelperState": state,
                    "isApiHelperActive": (
                        None if state is None else state == HelperState.ACTIVE.value
                    ),
                    "lastApiHelperStateChangeTimestamp": last_change,
                }
            )

        return {
            "currentPhrase": current_phrase,
            "phraseStartEpoch": metadata.phrase_start_epoch,
            "phraseEndEpoch": metadata.phrase_end_epoch,
            "phraseStartTime": _format(metadata.phrase_start_time),
            "constants": constants.to_dict(),
            "validators": validators,
            "totalValidators": len(validators),
            "timestamp": format_timestamp(self.clock()),
        }

    @staticmethod
    def _week_of(epoch: int, phrase_start_epoch: int, week_epochs: int) -> Optional[int]:
        offset = epoch - phrase_start_epoch
        if offset < 0 or offset >= 2 * week_epochs:
            return None
        return offset // week_epochs

    def _ongoing_cycle(
        self, phrase_number: int, metadata: PhraseMetadata, data: PhraseData, week_epochs: int
    ) -> Dict:
        weeks = [{"zeroFails": 0, "withFails": 0} for _ in range(2)]
        for record in data.validators.values():
            fails = [0, 0]
            for epoch, epoch_record in record.epochs.items():
                week = self._week_of(epoch, metadata.phrase_start_epoch, week_epochs)
                if week is not None and epoch_record.status is EpochStatus.FAIL:
                    fails[week] += 1
            for week, fail_count in enumerate(fails):
                weeks[week]["withFails" if fail_count else "zeroFails"] += 1
        return {
            "phraseNumber": phrase_number,
            "week1": weeks[0],
            "week2": weeks[1],
            "totalValidators": len(data.validators),
        }

    def _completed_cycle(
        self, phrase_number: int, metadata: PhraseMetadata, data: PhraseData, week_epochs: int
    ) -> Dict:
        full_pass = [0, 0]
        for record in data.validators.values():
            passes = [0, 0]
            for epoch, epoch_record in record.epochs.items():
                week = self._week_of(epoch, metadata.phrase_start_epoch, week_epochs)
                if week is not None and epoch_record.status is EpochStatus.PASS:
                    passes[week] += 1
            for week, pass_count in enumerate(passes):
                if pass_count == week_epochs:
                    full_pass[week] += 1
        return {
            "phraseNumber": phrase_number,
            "week1FullPass": full_pass[0],
            "week2FullPass": full_pass[1],
            "totalValidators": len(data.validators),
        }

    async def recap(self) -> Dict:
        constants, latest_phrase, phrase_numbers = await asyncio.gather(
            self.store.load_constants(),
            self.store.latest_phrase_number(),
            self.store.list_phrase_data_phrases(),
        )
        week_epochs = constants.recap_week_epochs

        loaded = await asyncio.gather(*(self._load_phrase(n) for n in phrase_numbers))

        completed_cycles: List[Dict] = []
        ongoing_cycle = None
        for phrase_number, (metadata, data) in zip(phrase_numbers, loaded):
            if metadata is None or data is None:
                logger.debug(f"Skipping phrase {phrase_number} in recap, documents missing")
                continue
            if phrase_number == latest_phrase:
                ongoing_cycle = self._ongoing_cycle(phrase_number, metadata, data, week_epochs)
            else:
                completed_cycles.append(
                    self._completed_cycle(phrase_number, metadata, data, week_epochs)
                )

        completed_cycles.sort(key=lambda cycle: cycle["phraseNumber"], reverse=True)
        return {
            "completedCycles": completed_cycles,
            "ongoingCycle": ongoing_cycle,
            "constants": constants.to_dict(),
            "timestamp": format_timestamp(self.clock()),
        }

    async def validator_detail(self, address: str, phrase: Optional[int] = None) -> Dict:
        constants, latest_phrase, phrase_numbers = await asyncio.gather(
            self.store.load_constants(),
            self.store.latest_phrase_number(),
            self.store.list_phrase_data_phrases(),
        )
        all_data = await asyncio.gather(
            *(self.store.load_phrase_data(n) for n in phrase_numbers)
        )
        data_by_phrase = dict(zip(phrase_numbers, all_data))

        phrase_history = []
        for phrase_number in sorted(phrase_numbers, reverse=True):
            data = data_by_phrase[phrase_number]
            if data is None or address not in data.validators:
                continue
            counts = count_statuses(data.validators[address])
            phrase_history.append(
                {
                    "phraseNumber": phrase_number,
                    "passCount": counts[EpochStatus.PASS],
                    "failCount": counts[EpochStatus.FAIL],
                    "otherCount": counts[EpochStatus.RUNNING] + counts[EpochStatus.NO_DATA],
                    "totalEpochs": len(data.validators[address].epochs),
                }
            )
        if not phrase_history:
            raise NotFoundError(f"Validator {address} not found")

        target_phrase = phrase or latest_phrase or phrase_history[0]["phraseNumber"]
        metadata = await self.store.load_metadata(target_phrase)
        calendar = PhraseCalendar.from_constants(constants)
        start_epoch = (
            metadata.phrase_start_epoch if metadata else calendar.start_epoch_for_phrase(target_phrase)
        )
        end_epoch = (
            metadata.phrase_end_epoch if metadata else calendar.end_epoch_for_phrase(target_phrase)
        )

        target_data = data_by_phrase.get(target_phrase) or PhraseData()
        observed = set(metadata.epochs) if metadata else set()
        for record in target_data.validators.values():
            observed.update(record.epochs)
        last_epoch = min(end_epoch, max(observed)) if observed else start_epoch - 1

        validator = target_data.validators.get(address, ValidatorRecord())
        epochs = []
        for epoch in range(start_epoch, last_epoch + 1):
            epoch_record = validator.epochs.get(epoch)
            epoch_metadata = metadata.epochs.get(epoch) if metadata else None
            epochs.append(
                {
                    "epoch": epoch,
                    "status": (
                        epoch_record.status.value if epoch_record else EpochStatus.NO_DATA.value
                    ),
                    "totalApiHelperInactiveSeconds": (
                        epoch_record.total_inactive_seconds if epoch_record else 0
                    ),
                    "lastApiHelperState": (
                        epoch_record.last_helper_state.value
                        if epoch_record and epoch_record.last_helper_state
                        else None
                    ),
                    "startTime": _format(epoch_metadata.start_time) if epoch_metadata else None,
                }
            )

        return {
            "address": address,
            "currentPhrase": target_phrase,
            "phraseStartEpoch": start_epoch,
            "phraseEndEpoch": end_epoch,
            "phraseStartTime": _format(metadata.phrase_start_time) if metadata else None,
            "lastApiHelperState": current_helper_state(validator),
            "epochs": epochs,
            "phraseHistory": phrase_history,
            "constants": constants.to_dict(),
            "timestamp": format_timestamp(self.clock()),
        }

    async def raw_metadata(self, phrase_number: int) -> Dict:
        metadata = await self.store.store.read_json(metadata_path(phrase_number))
        if metadata is None:
            raise NotFoundError(f"Metadata not found for phrase {phrase_number}")
        return metadata

    async def raw_phrase_data(self, phrase_number: int) -> Dict:
        data = await self.store.store.read_json(phrase_data_path(phrase_number))
        if data is None:
            raise NotFoundError(f"Phrase data not found for phrase {phrase_number}")
        return data

    async def data_latest(self) -> Dict:
        constants, current_phrase = await asyncio.gather(
            self.store.load_constants(), self.store.latest_phrase_number()
        )
        metadata = phrase_data = None
        if current_phrase is not None:
            metadata, phrase_data = await asyncio.gather(
                self.store.store.read_json(metadata_path(current_phrase)),
                self.store.store.read_json(phrase_data_path(current_phrase)),
            )
        return {
            "currentPhrase": current_phrase,
            "constants": constants.to_dict(),
            "metadata": metadata,
            "phrasedata": phrase_data,
            "timestamp": format_timestamp(self.clock()),
        }

    async def network_status(self) -> Dict:
        if self.chain is None:
            raise UpstreamUnavailableError("Chain client not configured")
        constants, progress = await asyncio.gather(
            self.store.load_constants(), self.chain.get_session_progress()
        )
        if progress is None:
            raise UpstreamUnavailableError("Failed to get session progress")

        blocks_in_epoch = progress.session_length
        current_block_in_epoch = progress.session_progress
        remaining_blocks = max(0, blocks_in_epoch - current_block_in_epoch)
        percentage = (
            current_block_in_epoch / blocks_in_epoch * 100 if blocks_in_epoch > 0 else 0
        )
        eta_seconds = remaining_blocks * constants.avg_block_time_seconds
        now = self.clock()

        return {
            "webServerEpochProgress": {
                "currentEpochSystem": progress.current_index,
                "blocksInEpoch": blocks_in_epoch,
                "currentBlockInEpoch": current_block_in_epoch,
                "remainingBlocksInEpoch": remaining_blocks,
                "percentageCompleted": percentage,
                "nextEpochETASec": eta_seconds,
                "estimatedEpochCompletionTime": format_timestamp(
                    now + timedelta(seconds=eta_seconds)
                ),
                "currentAbsoluteBlock": progress.current_block,
                "error": None,
            },
            "checkIntervalMinutes": CHECK_INTERVAL_MINUTES,
            "epochManagementIntervalMinutes": CHECK_INTERVAL_MINUTES,
            "timestamp": format_timestamp(now),
        }
