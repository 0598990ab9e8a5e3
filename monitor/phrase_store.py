import re
from typing import List, Optional

from fiber.logging_utils import get_logger

from interfaces.protocols import DocumentStore
from interfaces.types import GlobalConstants, PhraseData, PhraseMetadata
from monitor.document_storage import StorageError

logger = get_logger(__name__)

CONSTANTS_PATH = "data/config/global_constants.json"
METADATA_PREFIX = "data/metadata/"
PHRASE_DATA_PREFIX = "data/phrasedata/"

METADATA_PATTERN = re.compile(r"phrase_(\d+)_metadata\.json$")
PHRASE_DATA_PATTERN = re.compile(r"api_helper_phrase_(\d+)_data\.json$")


def metadata_path(phrase_number: int) -> str:
    return f"{METADATA_PREFIX}phrase_{phrase_number}_metadata.json"


def phrase_data_path(phrase_number: int) -> str:
    return f"{PHRASE_DATA_PREFIX}api_helper_phrase_{phrase_number}_data.json"


def _require_object(path: str, data):
    """Reject stored documents that parsed but are not JSON objects."""
    if data is not None and not isinstance(data, dict):
        logger.error(f"Stored document at {path} is not a JSON object")
        raise StorageError(f"Stored document at {path} is not a JSON object")
    return data


class PhraseStore:
    """Typed access to the constants, phrase metadata and phrase data documents."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def load_constants(self) -> GlobalConstants:
        data = await self.store.read_json(CONSTANTS_PATH)
        if data is None:
            logger.debug("Global constants not stored, using defaults")
        return GlobalConstants.from_dict(data)

    async def load_raw_constants(self) -> Optional[dict]:
        return await self.store.read_json(CONSTANTS_PATH)

    async def save_constants(self, constants: GlobalConstants) -> None:
        await self.store.write_json(CONSTANTS_PATH, constants.to_dict())

    async def load_metadata(self, phrase_number: int) -> Optional[PhraseMetadata]:
        path = metadata_path(phrase_number)
        return PhraseMetadata.from_dict(_require_object(path, await self.store.read_json(path)))

    async def save_metadata(self, metadata: PhraseMetadata) -> None:
        await self.store.write_json(
            metadata_path(metadata.phrase_number), metadata.to_dict()
        )

    async def load_phrase_data(self, phrase_number: int) -> Optional[PhraseData]:
        path = phrase_data_path(phrase_number)
        data = _require_object(path, await self.store.read_json(path))
        if data is None:
            return None
        return PhraseData.from_dict(data)

    async def save_phrase_data(self, phrase_number: int, data: PhraseData) -> None:
        await self.store.write_json(phrase_data_path(phrase_number), data.to_dict())

    async def _list_phrase_numbers(self, prefix: str, pattern) -> List[int]:
        numbers = set()
        for blob in await self.store.list_blobs(prefix):
            match = pattern.search(blob.get("pathname", ""))
            if match:
                numbers.add(int(match.group(1)))
        return sorted(numbers)

    async def list_metadata_phrases(self) -> List[int]:
        return await self._list_phrase_numbers(METADATA_PREFIX, METADATA_PATTERN)

    async def list_phrase_data_phrases(self) -> List[int]:
        return await self._list_phrase_numbers(PHRASE_DATA_PREFIX, PHRASE_DATA_PATTERN)

    async def latest_phrase_number(self) -> Optional[int]:
        """Highest phrase number among stored metadata documents."""
        phrases = [n for n in await self.list_metadata_phrases() if n >= 1]
        return phrases[-1] if phrases else None
