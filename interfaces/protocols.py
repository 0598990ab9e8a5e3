from typing import Any, Dict, List, Optional, Protocol, Set

from interfaces.types import EpochDetails, SessionProgress

EPOCH_UNAVAILABLE = -1


class ChainStatusProvider(Protocol):
    """Read access to the chain state the monitor depends on."""

    async def get_current_epoch(self) -> int:
        """Current session index, or EPOCH_UNAVAILABLE on failure."""
        ...

    async def get_active_validators(self) -> Optional[Set[str]]:
        """Active validator addresses, or None on failure."""
        ...

    async def get_first_block_of_epoch_details(self, epoch: int) -> EpochDetails:
        ...

    async def get_session_progress(self) -> Optional[SessionProgress]:
        ...

    async def close(self) -> None:
        ...


class DocumentStore(Protocol):
    """Whole-document JSON storage keyed by path."""

    async def read_json(self, path: str) -> Optional[Any]:
        ...

    async def write_json(self, path: str, data: Any) -> None:
        ...

    async def list_blobs(self, prefix: str) -> List[Dict[str, Any]]:
        """Entries carry at least a `pathname` key."""
        ...

    async def close(self) -> None:
        ...
