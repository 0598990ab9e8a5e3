import asyncio
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Set

from fiber.logging_utils import get_logger
from substrateinterface import SubstrateInterface

from interfaces.protocols import EPOCH_UNAVAILABLE, ChainStatusProvider
from interfaces.types import EpochDetails, SessionProgress
from monitor.scale import decode_uint

if TYPE_CHECKING:
    from monitor.config import Config

logger = get_logger(__name__)


def calculate_first_block(
    target_epoch: int,
    current_epoch: int,
    current_block: int,
    session_progress: int,
    session_length: int,
) -> Optional[int]:
    """
    First block of `target_epoch`, counted back from the current block.
    Future epochs have no first block yet.
    """
    if target_epoch > current_epoch:
        logger.debug(f"Target epoch {target_epoch} is in the future")
        return None
    epochs_back = current_epoch - target_epoch
    return max(1, current_block - session_progress - epochs_back * session_length)


def timestamp_from_millis(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class SubstrateChainClient:
    """
    Chain status over a persistent websocket connection.

    substrate-interface is synchronous, so every call runs in a worker
    thread bounded by the configured timeout. A failed call drops the
    connection; the next call reconnects.
    """

    def __init__(
        self,
        url: str,
        ss58_format: int = 5234,
        timeout_seconds: float = 30,
        default_session_length: int = 2400,
    ):
        self.url = url
        self.ss58_format = ss58_format
        self.timeout_seconds = timeout_seconds
        self.default_session_length = default_session_length
        self.substrate: Optional[SubstrateInterface] = None
        # The websocket connection is not safe for concurrent use
        self._lock = threading.Lock()

    def _connect(self) -> SubstrateInterface:
        if self.substrate is None:
            logger.info(f"Connecting to chain at {self.url}")
            self.substrate = SubstrateInterface(
                url=self.url, ss58_format=self.ss58_format
            )
        return self.substrate

    def _reset(self) -> None:
        if self.substrate is not None:
            try:
                self.substrate.close()
            except Exception as e:
                logger.debug(f"Error closing chain connection: {e}")
            self.substrate = None

    async def _call(self, description: str, func, *args):
        """Run a blocking chain call; None on error or timeout."""

        def run():
            with self._lock:
                return func(self._connect(), *args)

        try:
            return await asyncio.wait_for(
                asyncio.to_thread(run), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.error(f"Chain call '{description}' timed out after {self.timeout_seconds}s")
        except Exception as e:
            logger.error(f"Chain call '{description}' failed: {e}")
        self._reset()
        return None

    async def get_current_epoch(self) -> int:
        result = await self._call(
            "session index", lambda s: s.query("Session", "CurrentIndex").value
        )
        return int(result) if result is not None else EPOCH_UNAVAILABLE

    async def get_active_validators(self) -> Optional[Set[str]]:
        result = await self._call(
            "validators", lambda s: s.query("Session", "Validators").value
        )
        if result is None:
            return None
        return set(str(address) for address in result)

    def _session_length(self, substrate: SubstrateInterface) -> int:
        try:
            response = substrate.rpc_request(
                "state_call", ["SessionApi_session_length", "0x"]
            )
            length = decode_uint(response.get("result"), 4)
        except Exception as e:
            logger.debug(f"Session length runtime call unavailable: {e}")
            length = None
        return length or self.default_session_length

    def _read_progress(self, substrate: SubstrateInterface) -> SessionProgress:
        current_index = int(substrate.query("Session", "CurrentIndex").value)
        session_length = self._session_length(substrate)
        current_block = int(substrate.get_block_header()["header"]["number"])
        return SessionProgress(
            current_index=current_index,
            session_length=session_length,
            session_progress=current_block % session_length,
            current_block=current_block,
        )

    async def get_session_progress(self) -> Optional[SessionProgress]:
        return await self._call("session progress", self._read_progress)

    def _read_epoch_details(
        self, substrate: SubstrateInterface, target_epoch: int
    ) -> EpochDetails:
        progress = self._read_progress(substrate)
        first_block = calculate_first_block(
            target_epoch,
            progress.current_index,
            progress.current_block,
            progress.session_progress,
            progress.session_length,
        )
        epoch_start_time = None
        if first_block:
            block_hash = substrate.get_block_hash(first_block)
            if block_hash:
                now_ms = substrate.query("Timestamp", "Now", block_hash=block_hash).value
                epoch_start_time = timestamp_from_millis(now_ms)
        return EpochDetails(
            first_block=first_block,
            session_length=progress.session_length,
            epoch_start_time=epoch_start_time,
        )

    async def get_first_block_of_epoch_details(self, epoch: int) -> EpochDetails:
        details = await self._call(
            f"epoch {epoch} details", self._read_epoch_details, epoch
        )
        return details or EpochDetails()

    async def close(self) -> None:
        self._reset()


def create_chain_client(config: "Config") -> ChainStatusProvider:
    if config.CHAIN_BACKEND == "substrate":
        return SubstrateChainClient(
            url=config.CHAIN_WS_URL,
            ss58_format=config.SS58_FORMAT,
            timeout_seconds=config.CHAIN_TIMEOUT_SECONDS,
            default_session_length=config.DEFAULT_SESSION_LENGTH,
        )
    if config.CHAIN_BACKEND != "http":
        logger.warning(f"Unknown CHAIN_BACKEND {config.CHAIN_BACKEND!r}, using http")

    from monitor.rpc_client import HttpRpcChainClient

    return HttpRpcChainClient(
        url=config.CHAIN_RPC_URL,
        ss58_format=config.SS58_FORMAT,
        timeout_seconds=config.CHAIN_TIMEOUT_SECONDS,
        default_session_length=config.DEFAULT_SESSION_LENGTH,
    )
