"""Mapping between chain epochs and phrases (fixed windows of epochs)."""

from dataclasses import dataclass

from interfaces.types import GlobalConstants

# Phrase number reported for epochs before tracking started
PHRASE_NOT_STARTED = 0


def phrase_number_for_epoch(
    epoch: int, first_phrase_start_epoch: int, phrase_duration_epochs: int
) -> int:
    if epoch < first_phrase_start_epoch:
        return PHRASE_NOT_STARTED
    return (epoch - first_phrase_start_epoch) // phrase_duration_epochs + 1


def start_epoch_for_phrase(
    phrase_number: int, first_phrase_start_epoch: int, phrase_duration_epochs: int
) -> int:
    if phrase_number < 1:
        return -1
    return first_phrase_start_epoch + (phrase_number - 1) * phrase_duration_epochs


def end_epoch_for_phrase(
    phrase_number: int, first_phrase_start_epoch: int, phrase_duration_epochs: int
) -> int:
    if phrase_number < 1:
        return -1
    return (
        start_epoch_for_phrase(
            phrase_number, first_phrase_start_epoch, phrase_duration_epochs
        )
        + phrase_duration_epochs
        - 1
    )


@dataclass(frozen=True)
class PhraseCalendar:
    first_phrase_start_epoch: int
    phrase_duration_epochs: int

    @classmethod
    def from_constants(cls, constants: GlobalConstants) -> "PhraseCalendar":
        return cls(
            first_phrase_start_epoch=constants.first_phrase_start_epoch,
            phrase_duration_epochs=constants.phrase_duration_epochs,
        )

    def phrase_number_for_epoch(self, epoch: int) -> int:
        return phrase_number_for_epoch(
            epoch, self.first_phrase_start_epoch, self.phrase_duration_epochs
        )

    def start_epoch_for_phrase(self, phrase_number: int) -> int:
        return start_epoch_for_phrase(
            phrase_number, self.first_phrase_start_epoch, self.phrase_duration_epochs
        )

    def end_epoch_for_phrase(self, phrase_number: int) -> int:
        return end_epoch_for_phrase(
            phrase_number, self.first_phrase_start_epoch, self.phrase_duration_epochs
        )

    def is_epoch_in_phrase(self, epoch: int, phrase_number: int) -> bool:
        if phrase_number < 1:
            return False
        return (
            self.start_epoch_for_phrase(phrase_number)
            <= epoch
            <= self.end_epoch_for_phrase(phrase_number)
        )
