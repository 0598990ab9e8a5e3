import unittest
from datetime import datetime, timedelta, timezone

from interfaces.types import EpochMetadata, EpochRecord, EpochStatus, HelperState
from monitor.epoch_state import (
    accrue_inactive_time,
    apply_liveness_observation,
    estimate_epoch_end,
    finalize_record,
)

T0 = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
THRESHOLD = 7200


def at(seconds):
    return T0 + timedelta(seconds=seconds)


class TestAccrual(unittest.TestCase):

    def test_inactive_time_accrues(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, T0)
        self.assertTrue(accrue_inactive_time(record, at(90)))
        self.assertEqual(record.total_inactive_seconds, 90)
        self.assertEqual(record.last_state_change_timestamp, at(90))

    def test_active_time_does_not_accrue(self):
        record = EpochRecord.start_running(HelperState.ACTIVE, T0)
        accrue_inactive_time(record, at(500))
        self.assertEqual(record.total_inactive_seconds, 0)

    def test_backwards_clock_adds_nothing(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, at(100))
        accrue_inactive_time(record, at(40))
        self.assertEqual(record.total_inactive_seconds, 0)

    def test_half_seconds_round_up(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, T0)
        accrue_inactive_time(record, T0 + timedelta(milliseconds=2500))
        self.assertEqual(record.total_inactive_seconds, 3)

    def test_terminal_record_is_not_touched(self):
        record = EpochRecord(status=EpochStatus.PASS, total_inactive_seconds=12)
        self.assertFalse(accrue_inactive_time(record, at(100)))
        self.assertEqual(record.total_inactive_seconds, 12)


class TestFinalize(unittest.TestCase):

    def test_threshold_is_inclusive(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, T0)
        self.assertTrue(finalize_record(record, THRESHOLD, at(THRESHOLD)))
        self.assertEqual(record.status, EpochStatus.FAIL)
        self.assertEqual(record.total_inactive_seconds, THRESHOLD)

    def test_below_threshold_passes(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, T0)
        finalize_record(record, THRESHOLD, at(THRESHOLD - 1))
        self.assertEqual(record.status, EpochStatus.PASS)

    def test_running_fields_are_dropped(self):
        record = EpochRecord.start_running(HelperState.ACTIVE, T0)
        finalize_record(record, THRESHOLD, at(10))
        self.assertIsNone(record.last_helper_state)
        self.assertIsNone(record.last_state_change_timestamp)
        self.assertNotIn("lastApiHelperState", record.to_dict())

    def test_unknown_end_judges_accumulated_total(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, T0)
        record.total_inactive_seconds = 8000
        finalize_record(record, THRESHOLD, None)
        self.assertEqual(record.status, EpochStatus.FAIL)
        self.assertEqual(record.total_inactive_seconds, 8000)

    def test_terminal_record_is_immutable(self):
        record = EpochRecord(status=EpochStatus.FAIL, total_inactive_seconds=9000)
        self.assertFalse(finalize_record(record, THRESHOLD, at(100)))
        self.assertEqual(record.status, EpochStatus.FAIL)
        self.assertEqual(record.total_inactive_seconds, 9000)


class TestEstimateEpochEnd(unittest.TestCase):

    def test_uses_session_length(self):
        metadata = EpochMetadata(start_time=T0, first_block=10, session_length=100)
        self.assertEqual(estimate_epoch_end(metadata, 6), at(600))

    def test_defaults_to_four_hours(self):
        metadata = EpochMetadata(start_time=T0)
        self.assertEqual(estimate_epoch_end(metadata, 6), at(4 * 60 * 60))

    def test_default_ignores_uneven_block_time(self):
        metadata = EpochMetadata(start_time=T0, first_block=10)
        self.assertEqual(estimate_epoch_end(metadata, 7), at(4 * 60 * 60))

    def test_unknown_start(self):
        self.assertIsNone(estimate_epoch_end(None, 6))
        self.assertIsNone(estimate_epoch_end(EpochMetadata(), 6))


class TestLivenessObservation(unittest.TestCase):

    def test_sustained_activity_only_refreshes(self):
        record = EpochRecord.start_running(HelperState.ACTIVE, T0)
        self.assertFalse(apply_liveness_observation(record, True, at(60)))
        self.assertEqual(record.last_state_change_timestamp, at(60))
        self.assertEqual(record.total_inactive_seconds, 0)

    def test_flapping(self):
        record = EpochRecord.start_running(HelperState.ACTIVE, T0)
        self.assertTrue(apply_liveness_observation(record, False, at(0)))
        apply_liveness_observation(record, True, at(1800))
        apply_liveness_observation(record, False, at(3600))
        apply_liveness_observation(record, True, at(5400))
        self.assertEqual(record.total_inactive_seconds, 3600)
        self.assertEqual(record.last_helper_state, HelperState.ACTIVE)

    def test_sustained_inactivity_accrues(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, T0)
        self.assertTrue(apply_liveness_observation(record, False, at(60)))
        self.assertTrue(apply_liveness_observation(record, False, at(120)))
        self.assertEqual(record.total_inactive_seconds, 120)

    def test_total_never_decreases(self):
        record = EpochRecord.start_running(HelperState.INACTIVE, T0)
        previous = 0
        for seconds, active in [(30, False), (20, True), (90, False), (400, False)]:
            apply_liveness_observation(record, active, at(seconds))
            self.assertGreaterEqual(record.total_inactive_seconds, previous)
            previous = record.total_inactive_seconds


if __name__ == "__main__":
    unittest.main()
