import unittest

from interfaces.types import GlobalConstants
from monitor.phrase import (
    PHRASE_NOT_STARTED,
    PhraseCalendar,
    end_epoch_for_phrase,
    phrase_number_for_epoch,
    start_epoch_for_phrase,
)


class TestPhraseArithmetic(unittest.TestCase):

    def setUp(self):
        self.calendar = PhraseCalendar.from_constants(GlobalConstants())

    def test_epochs_before_first_phrase(self):
        self.assertEqual(self.calendar.phrase_number_for_epoch(0), PHRASE_NOT_STARTED)
        self.assertEqual(self.calendar.phrase_number_for_epoch(5449), PHRASE_NOT_STARTED)

    def test_phrase_boundaries(self):
        self.assertEqual(self.calendar.phrase_number_for_epoch(5450), 1)
        self.assertEqual(self.calendar.phrase_number_for_epoch(5533), 1)
        self.assertEqual(self.calendar.phrase_number_for_epoch(5534), 2)
        self.assertEqual(self.calendar.start_epoch_for_phrase(2), 5534)
        self.assertEqual(self.calendar.end_epoch_for_phrase(2), 5617)

    def test_invalid_phrase_numbers(self):
        for phrase in (0, -3):
            self.assertEqual(start_epoch_for_phrase(phrase, 5450, 84), -1)
            self.assertEqual(end_epoch_for_phrase(phrase, 5450, 84), -1)
            self.assertFalse(self.calendar.is_epoch_in_phrase(5450, phrase))

    def test_round_trip(self):
        for epoch in range(5450, 5450 + 84 * 5):
            phrase = phrase_number_for_epoch(epoch, 5450, 84)
            self.assertLessEqual(start_epoch_for_phrase(phrase, 5450, 84), epoch)
            self.assertLessEqual(epoch, end_epoch_for_phrase(phrase, 5450, 84))
            self.assertTrue(self.calendar.is_epoch_in_phrase(epoch, phrase))

    def test_custom_constants(self):
        calendar = PhraseCalendar(first_phrase_start_epoch=100, phrase_duration_epochs=10)
        self.assertEqual(calendar.phrase_number_for_epoch(119), 2)
        self.assertEqual(calendar.start_epoch_for_phrase(3), 120)
        self.assertEqual(calendar.end_epoch_for_phrase(3), 129)
        self.assertFalse(calendar.is_epoch_in_phrase(130, 3))


if __name__ == "__main__":
    unittest.main()
