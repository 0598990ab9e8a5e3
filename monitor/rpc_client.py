from typing import Any, List, Optional, Set

import httpx
from fiber.logging_utils import get_logger

from interfaces.protocols import EPOCH_UNAVAILABLE
from interfaces.types import EpochDetails, SessionProgress
from monitor.chain_client import calculate_first_block, timestamp_from_millis
from monitor.scale import decode_account_list, decode_uint, storage_key

logger = get_logger(__name__)

SESSION_CURRENT_INDEX_KEY = storage_key("Session", "CurrentIndex")
SESSION_VALIDATORS_KEY = storage_key("Session", "Validators")
TIMESTAMP_NOW_KEY = storage_key("Timestamp", "Now")


class HttpRpcChainClient:
    """Chain status over stateless JSON-RPC HTTP requests."""

    def __init__(
        self,
        url: str,
        ss58_format: int = 5234,
        timeout_seconds: float = 30,
        default_session_length: int = 2400,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.ss58_format = ss58_format
        self.default_session_length = default_session_length
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._request_id = 0

    async def rpc_call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Return the call's result, or None on any transport or RPC error."""
        self._request_id += 1
        try:
            response = await self.client.post(
                self.url,
                headers={"Content-Type": "application/json"},
                json={
                    "jsonrpc": "2.0",
                    "id": self._request_id,
                    "method": method,
                    "params": params or [],
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            logger.error(f"RPC call {method} timed out")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"RPC call {method} failed: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"RPC call {method} returned a non-object response")
            return None
        error = data.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else error
            logger.error(f"RPC error from {method}: {message}")
            return None
        return data.get("result")

    async def get_current_epoch(self) -> int:
        result = await self.rpc_call("state_getStorage", [SESSION_CURRENT_INDEX_KEY])
        epoch = decode_uint(result, 4)
        return epoch if epoch is not None else EPOCH_UNAVAILABLE

    async def get_active_validators(self) -> Optional[Set[str]]:
        result = await self.rpc_call("state_getStorage", [SESSION_VALIDATORS_KEY])
        if result is None:
            return None
        validators = decode_account_list(result, self.ss58_format)
        if validators is None:
            logger.error("Could not decode validator set")
            return None
        return set(validators)

    async def get_session_length(self) -> int:
        result = await self.rpc_call("state_call", ["SessionApi_session_length", "0x"])
        return decode_uint(result, 4) or self.default_session_length

    async def get_current_block(self) -> Optional[int]:
        header = await self.rpc_call("chain_getHeader")
        if not header or "number" not in header:
            return None
        return int(header["number"], 16)

    async def get_session_progress(self) -> Optional[SessionProgress]:
        current_index = await self.get_current_epoch()
        if current_index == EPOCH_UNAVAILABLE:
            return None
        session_length = await self.get_session_length()
        current_block = await self.get_current_block()
        if current_block is None:
            return None
        return SessionProgress(
            current_index=current_index,
            session_length=session_length,
            session_progress=current_block % session_length,
            current_block=current_block,
        )

    async def get_block_timestamp(self, block_number: int):
        block_hash = await self.rpc_call("chain_getBlockHash", [block_number])
        if not block_hash:
            return None
        result = await self.rpc_call("state_getStorage", [TIMESTAMP_NOW_KEY, block_hash])
        return timestamp_from_millis(decode_uint(result, 8))

    async def get_first_block_of_epoch_details(self, epoch: int) -> EpochDetails:
        progress = await self.get_session_progress()
        if progress is None:
            return EpochDetails()

        first_block = calculate_first_block(
            epoch,
            progress.current_index,
            progress.current_block,
            progress.session_progress,
            progress.session_length,
        )
        epoch_start_time = None
        if first_block:
            epoch_start_time = await self.get_block_timestamp(first_block)
        return EpochDetails(
            first_block=first_block,
            session_length=progress.session_length,
            epoch_start_time=epoch_start_time,
        )

    async def close(self) -> None:
        await self.client.aclose()
