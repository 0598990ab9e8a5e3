import httpx
import pytest

from interfaces.protocols import EPOCH_UNAVAILABLE
from monitor.rpc_client import HttpRpcChainClient

RPC_URL = "https://rpc.test/"


def rpc_client(handler):
    return HttpRpcChainClient(
        RPC_URL, client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )


def responding(payload):
    def handler(request):
        return httpx.Response(200, json=payload)

    return handler


class TestRpcCall:
    @pytest.mark.asyncio
    async def test_result_is_returned(self):
        client = rpc_client(responding({"jsonrpc": "2.0", "id": 1, "result": "0x2a000000"}))

        assert await client.rpc_call("state_getStorage") == "0x2a000000"
        assert await client.get_current_epoch() == 42

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [["0x2a000000"], "0x2a000000", 42, None])
    async def test_non_object_response_is_unavailable(self, payload):
        client = rpc_client(responding(payload))

        assert await client.rpc_call("state_getStorage") is None
        assert await client.get_current_epoch() == EPOCH_UNAVAILABLE
        assert await client.get_active_validators() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", ["boom", {"code": -32000, "message": "boom"}, ["boom"]]
    )
    async def test_error_field_is_unavailable(self, error):
        client = rpc_client(responding({"jsonrpc": "2.0", "id": 1, "error": error}))

        assert await client.rpc_call("state_getStorage") is None
        assert await client.get_current_epoch() == EPOCH_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_http_error_is_unavailable(self):
        client = rpc_client(lambda request: httpx.Response(503, text="unavailable"))

        assert await client.rpc_call("chain_getHeader") is None
        assert await client.get_session_progress() is None

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = rpc_client(handler)

        assert await client.get_current_epoch() == EPOCH_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_request_body(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})

        client = rpc_client(handler)
        await client.rpc_call("chain_getBlockHash", [7])

        body = requests[0].read()
        assert b'"method":"chain_getBlockHash"' in body.replace(b" ", b"")
        assert b'"params":[7]' in body.replace(b" ", b"")
