from datetime import datetime, timedelta, timezone

import pytest

from db.document_database import DocumentDatabase
from interfaces.protocols import EPOCH_UNAVAILABLE
from interfaces.types import EpochDetails, SessionProgress
from monitor.document_storage import DocumentStorage
from monitor.phrase_store import PhraseStore

T0 = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=T0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeChain:
    """In-memory chain whose epoch, validator set and epoch start times are set by tests."""

    def __init__(self, clock, epoch=5450, validators=("hmAlice",)):
        self.clock = clock
        self.epoch = epoch
        self.validators = set(validators) if validators is not None else None
        self.epoch_start_times = {}
        self.session_length = 2400
        self.closed = False

    async def get_current_epoch(self):
        return self.epoch

    async def get_active_validators(self):
        return set(self.validators) if self.validators is not None else None

    async def get_first_block_of_epoch_details(self, epoch):
        start_time = self.epoch_start_times.setdefault(epoch, self.clock())
        return EpochDetails(
            first_block=1000 + epoch * self.session_length,
            session_length=self.session_length,
            epoch_start_time=start_time,
        )

    async def get_session_progress(self):
        if self.epoch == EPOCH_UNAVAILABLE:
            return None
        return SessionProgress(
            current_index=self.epoch,
            session_length=self.session_length,
            session_progress=600,
            current_block=1000 + self.epoch * self.session_length + 600,
        )

    async def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain(clock):
    return FakeChain(clock)


@pytest.fixture
def storage(tmp_path):
    return DocumentStorage(backend=DocumentDatabase(db_path=str(tmp_path / "documents.db")))


@pytest.fixture
def phrase_store(storage):
    return PhraseStore(storage)
