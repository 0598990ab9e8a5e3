from typing import Dict, Optional, Any
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from fiber.logging_utils import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format as ISO-8601 UTC with milliseconds and a trailing Z."""
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring unparseable timestamp: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_int(value, default: Optional[int] = None) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class JSONSerializable:
    def to_dict(self):
        return asdict(self)


class EpochStatus(str, Enum):
    RUNNING = "BERJALAN"
    PASS = "PASS_API_HELPER"
    FAIL = "FAIL_API_HELPER"
    NO_DATA = "NO_DATA"

    @classmethod
    def _missing_(cls, value):
        # Older dashboard revisions wrote the running state with a suffix
        if value == "BERJALAN_API_HELPER":
            return cls.RUNNING
        return None

    @property
    def is_terminal(self) -> bool:
        return self is not EpochStatus.RUNNING


class HelperState(str, Enum):
    ACTIVE = "AKTIF_API"
    INACTIVE = "TIDAK_AKTIF_API"

    @classmethod
    def from_membership(cls, is_active: bool) -> "HelperState":
        return cls.ACTIVE if is_active else cls.INACTIVE


@dataclass
class GlobalConstants(JSONSerializable):
    first_phrase_start_epoch: int = 5450
    phrase_duration_epochs: int = 84
    avg_block_time_seconds: int = 6
    epoch_fail_threshold_seconds: int = 2 * 60 * 60
    recap_week_epochs: int = 42

    # attribute name -> stored key
    KEYS = {
        "first_phrase_start_epoch": "FIRST_EVER_PHRASE_START_EPOCH",
        "phrase_duration_epochs": "PHRASE_DURATION_EPOCHS",
        "avg_block_time_seconds": "AVG_BLOCK_TIME_SECONDS",
        "epoch_fail_threshold_seconds": "EPOCH_FAIL_THRESHOLD_SECONDS",
        "recap_week_epochs": "RECAP_WEEK_EPOCHS",
    }

    def __post_init__(self):
        if self.phrase_duration_epochs <= 0:
            raise ValueError(
                f"Phrase duration must be positive, got {self.phrase_duration_epochs}"
            )
        if self.avg_block_time_seconds <= 0:
            raise ValueError(
                f"Average block time must be positive, got {self.avg_block_time_seconds}"
            )

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "GlobalConstants":
        """
        Build constants from the stored document. Absent, non-positive or
        non-numeric values fall back to the defaults.
        """
        defaults = cls()
        if not isinstance(data, dict):
            return defaults
        values = {}
        for attribute, key in cls.KEYS.items():
            value = _as_int(data.get(key))
            values[attribute] = (
                value if value and value > 0 else getattr(defaults, attribute)
            )
        return cls(**values)

    def to_dict(self) -> Dict[str, int]:
        return {key: getattr(self, attribute) for attribute, key in self.KEYS.items()}


@dataclass
class EpochRecord(JSONSerializable):
    """One validator's API Helper record for one epoch."""

    status: EpochStatus
    total_inactive_seconds: int = 0
    first_monitored_timestamp: Optional[datetime] = None
    last_helper_state: Optional[HelperState] = None
    last_state_change_timestamp: Optional[datetime] = None

    @classmethod
    def start_running(cls, state: HelperState, now: datetime) -> "EpochRecord":
        return cls(
            status=EpochStatus.RUNNING,
            total_inactive_seconds=0,
            first_monitored_timestamp=now,
            last_helper_state=state,
            last_state_change_timestamp=now,
        )

    @property
    def is_running(self) -> bool:
        return self.status is EpochStatus.RUNNING

    @classmethod
    def from_dict(cls, data: Dict) -> "EpochRecord":
        try:
            status = EpochStatus(data.get("status"))
        except ValueError:
            logger.warning(f"Unknown epoch status {data.get('status')!r}, using NO_DATA")
            status = EpochStatus.NO_DATA

        last_state = None
        if data.get("lastApiHelperState"):
            try:
                last_state = HelperState(data["lastApiHelperState"])
            except ValueError:
                logger.warning(
                    f"Unknown helper state {data['lastApiHelperState']!r}, ignoring"
                )

        return cls(
            status=status,
            total_inactive_seconds=max(
                0, _as_int(data.get("totalApiHelperInactiveSeconds"), 0)
            ),
            first_monitored_timestamp=parse_timestamp(
                data.get("firstMonitoredTimestamp")
            ),
            last_helper_state=last_state,
            last_state_change_timestamp=parse_timestamp(
                data.get("lastApiHelperStateChangeTimestamp")
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "totalApiHelperInactiveSeconds": self.total_inactive_seconds,
        }
        if self.last_helper_state is not None:
            data["lastApiHelperState"] = self.last_helper_state.value
        if self.last_state_change_timestamp is not None:
            data["lastApiHelperStateChangeTimestamp"] = format_timestamp(
                self.last_state_change_timestamp
            )
        if self.first_monitored_timestamp is not None:
            data["firstMonitoredTimestamp"] = format_timestamp(
                self.first_monitored_timestamp
            )
        return data


@dataclass
class ValidatorRecord(JSONSerializable):
    epochs: Dict[int, EpochRecord] = field(default_factory=dict)
    # Root-level keys written by other revisions, kept untouched
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict) -> "ValidatorRecord":
        if not isinstance(data, dict):
            return cls()
        epochs = {}
        for epoch_key, epoch_data in (data.get("epochs") or {}).items():
            epoch = _as_int(epoch_key)
            if epoch is None or not isinstance(epoch_data, dict):
                logger.warning(f"Skipping malformed epoch entry {epoch_key!r}")
                continue
            epochs[epoch] = EpochRecord.from_dict(epoch_data)
        extra = {key: value for key, value in data.items() if key != "epochs"}
        return cls(epochs=epochs, extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extra)
        data["epochs"] = {
            str(epoch): record.to_dict() for epoch, record in sorted(self.epochs.items())
        }
        return data


@dataclass
class PhraseData(JSONSerializable):
    """All validator records of one phrase, keyed by address."""

    validators: Dict[str, ValidatorRecord] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "PhraseData":
        if not isinstance(data, dict):
            return cls()
        return cls(
            validators={
                address: ValidatorRecord.from_dict(record)
                for address, record in data.items()
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return {address: record.to_dict() for address, record in self.validators.items()}

    def get_epoch(self, address: str, epoch: int) -> Optional[EpochRecord]:
        record = self.validators.get(address)
        if record is None:
            return None
        return record.epochs.get(epoch)

    def running_records(self):
        """Yield (address, epoch, record) for every RUNNING epoch record."""
        for address, validator in self.validators.items():
            for epoch, record in sorted(validator.epochs.items()):
                if record.is_running:
                    yield address, epoch, record


@dataclass
class EpochMetadata(JSONSerializable):
    start_time: Optional[datetime] = None
    first_block: Optional[int] = None
    session_length: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict) -> "EpochMetadata":
        return cls(
            start_time=parse_timestamp(data.get("startTime")),
            first_block=_as_int(data.get("firstBlock")),
            session_length=_as_int(data.get("sessionLength")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startTime": format_timestamp(self.start_time) if self.start_time else None,
            "firstBlock": self.first_block,
            "sessionLength": self.session_length,
        }


@dataclass
class PhraseMetadata(JSONSerializable):
    phrase_number: int
    phrase_start_epoch: int
    phrase_end_epoch: int
    phrase_start_time: Optional[datetime] = None
    epochs: Dict[int, EpochMetadata] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> Optional["PhraseMetadata"]:
        if not isinstance(data, dict) or _as_int(data.get("phraseNumber")) is None:
            return None
        epochs = {}
        for epoch_key, epoch_data in (data.get("epochs") or {}).items():
            epoch = _as_int(epoch_key)
            if epoch is not None and isinstance(epoch_data, dict):
                epochs[epoch] = EpochMetadata.from_dict(epoch_data)
        return cls(
            phrase_number=_as_int(data.get("phraseNumber")),
            phrase_start_epoch=_as_int(data.get("phraseStartEpoch"), -1),
            phrase_end_epoch=_as_int(data.get("phraseEndEpoch"), -1),
            phrase_start_time=parse_timestamp(data.get("phraseStartTime")),
            epochs=epochs,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phraseNumber": self.phrase_number,
            "phraseStartEpoch": self.phrase_start_epoch,
            "phraseEndEpoch": self.phrase_end_epoch,
            "phraseStartTime": (
                format_timestamp(self.phrase_start_time)
                if self.phrase_start_time
                else None
            ),
            "epochs": {
                str(epoch): meta.to_dict() for epoch, meta in sorted(self.epochs.items())
            },
        }


@dataclass
class EpochDetails(JSONSerializable):
    """First-block details of an epoch as reported by the chain."""

    first_block: Optional[int] = None
    session_length: Optional[int] = None
    epoch_start_time: Optional[datetime] = None


@dataclass
class SessionProgress(JSONSerializable):
    current_index: int
    session_length: int
    session_progress: int
    current_block: int
