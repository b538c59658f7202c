import json

import httpx
import pytest
from eth_abi import encode

from streamscan.adapters.registry_rpc import GET_ALL_SCHEMAS, SCHEMA_ID_TO_NAME, RpcSchemaRegistry
from streamscan.adapters.rpc_httpx import HttpxRPC, parse_log
from streamscan.domain.results import NotFound, Ok, TransientError
from streamscan.domain.schema_fields import compute_schema_id

URL = "https://rpc.test"
TX = "0x" + "ab" * 32
SENDER = "0x52908400098527886e0f7030069857d2e4169ee7"


def _rpc(handler, **kw):
    kw.setdefault("backoff_s", 0)
    return HttpxRPC(URL, transport=httpx.MockTransport(handler), **kw)


def _result(value):
    def handler(request):
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": value})
    return handler


def _rpc_log(block, index, topics=("0x" + "11" * 32,)):
    return {
        "address": "0xC1d833a80469854a7450Dd187224b2ceE5ecE264",
        "topics": list(topics),
        "data": "0x",
        "blockNumber": hex(block),
        "transactionHash": TX.upper().replace("0X", "0x"),
        "logIndex": hex(index),
    }


@pytest.mark.asyncio
async def test_latest_block():
    rpc = _rpc(_result("0x2710"))
    assert await rpc.latest_block() == Ok(10_000)
    await rpc.aclose()


@pytest.mark.asyncio
async def test_get_logs_sends_filter_and_parses():
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": [_rpc_log(1500, 3)]})

    rpc = _rpc(handler)
    t0 = "0x" + "AA" * 32
    resp = await rpc.get_logs("0xregistry", 1000, 2000, [t0])
    await rpc.aclose()

    flt = seen[0]["params"][0]
    assert seen[0]["method"] == "eth_getLogs"
    assert flt["fromBlock"] == "0x3e8" and flt["toBlock"] == "0x7d0"
    assert flt["topics"] == [[t0.lower()]]
    assert isinstance(resp, Ok)
    (entry,) = resp.value
    assert entry.block_number == 1500 and entry.log_index == 3
    assert entry.tx_hash == TX
    assert entry.address == "0xc1d833a80469854a7450dd187224b2cee5ece264"


@pytest.mark.asyncio
async def test_get_logs_without_topics_has_no_filter_key():
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body["params"][0])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": []})

    rpc = _rpc(handler)
    assert await rpc.get_logs("0xregistry", 1, 2) == Ok([])
    await rpc.aclose()
    assert "topics" not in seen[0]


@pytest.mark.asyncio
async def test_block_timestamp_in_ms_and_missing_block():
    rpc = _rpc(_result({"timestamp": "0x64"}))
    assert await rpc.get_block_timestamp(5) == Ok(100_000)
    await rpc.aclose()

    rpc = _rpc(_result(None))
    assert isinstance(await rpc.get_block_timestamp(5), NotFound)
    await rpc.aclose()


@pytest.mark.asyncio
async def test_sender_is_checksummed():
    rpc = _rpc(_result({"from": SENDER}))
    resp = await rpc.get_transaction_sender(TX)
    await rpc.aclose()
    assert resp == Ok("0x52908400098527886E0F7030069857D2E4169EE7")


@pytest.mark.asyncio
async def test_rpc_error_is_transient():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "limit"}})

    rpc = _rpc(handler)
    resp = await rpc.latest_block()
    await rpc.aclose()
    assert isinstance(resp, TransientError)
    assert "-32005" in resp.error


@pytest.mark.asyncio
async def test_http_500_and_transport_error_are_transient():
    rpc = _rpc(lambda request: httpx.Response(500, text="oops"))
    assert isinstance(await rpc.latest_block(), TransientError)
    await rpc.aclose()

    def broken(request):
        raise httpx.ConnectError("refused", request=request)

    rpc = _rpc(broken)
    resp = await rpc.get_logs("0xregistry", 1, 2)
    await rpc.aclose()
    assert isinstance(resp, TransientError) and "ConnectError" in resp.error


@pytest.mark.asyncio
async def test_malformed_result_is_transient():
    rpc = _rpc(_result({"no_timestamp": 1}))
    resp = await rpc.get_block_timestamp(5)
    await rpc.aclose()
    assert isinstance(resp, TransientError) and "malformed" in resp.error


@pytest.mark.asyncio
async def test_429_is_retried():
    attempts = []

    def handler(request):
        attempts.append(1)
        if len(attempts) < 3:
            return httpx.Response(429, headers={"Retry-After": "0"})
        return _result("0x1")(request)

    rpc = _rpc(handler, max_retries=3)
    assert await rpc.latest_block() == Ok(1)
    await rpc.aclose()
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_429_exhausts_retries():
    attempts = []

    def handler(request):
        attempts.append(1)
        return httpx.Response(429)

    rpc = _rpc(handler, max_retries=2)
    resp = await rpc.latest_block()
    await rpc.aclose()
    assert isinstance(resp, TransientError) and "retries exhausted" in resp.error
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_non_object_body_is_transient():
    rpc = _rpc(lambda request: httpx.Response(200, json=["overloaded"]))
    resp = await rpc.latest_block()
    await rpc.aclose()
    assert isinstance(resp, TransientError) and "unexpected response body" in resp.error


@pytest.mark.asyncio
async def test_log_with_null_field_skips_only_its_chunk():
    from streamscan.application.fetching import fetch_logs
    from streamscan.domain.models import BlockRange

    def handler(request):
        body = json.loads(request.content)
        flt = body["params"][0]
        rl = _rpc_log(int(flt["fromBlock"], 16), 0)
        if flt["fromBlock"] == "0x1":
            rl["address"] = None
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": [rl]})

    rpc = _rpc(handler)
    report = await fetch_logs(rpc, "0xregistry", [BlockRange(1, 10), BlockRange(11, 20)])
    await rpc.aclose()
    assert report.fetched == 1
    assert list(report.skipped) == [BlockRange(1, 10)]
    assert "malformed" in report.skipped[BlockRange(1, 10)]
    assert [e.block_number for e in report.logs] == [11]


def test_parse_log_without_topics():
    raw = _rpc_log(7, 0, topics=())
    raw["data"] = None
    entry = parse_log(raw)
    assert entry.topics == () and entry.topic0 is None
    assert entry.data_hex == "0x"


# ---------- registry over eth_call --------------------------------------------

def _call_handler(answers):
    def handler(request):
        body = json.loads(request.content)
        data = body["params"][0]["data"]
        result = answers[data[:10]]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})
    return handler


@pytest.mark.asyncio
async def test_registry_lists_schema_strings():
    schemas = ["uint64 timestamp, string message", "bool flag"]
    rpc = _rpc(_call_handler({GET_ALL_SCHEMAS: "0x" + encode(["string[]"], [schemas]).hex()}))
    resp = await RpcSchemaRegistry(rpc).list_known_schema_strings("0xregistry")
    await rpc.aclose()
    assert resp == Ok(schemas)


@pytest.mark.asyncio
async def test_registry_resolves_name_and_empty_name():
    sid = compute_schema_id("bool flag")
    seen = []

    def handler(request):
        body = json.loads(request.content)
        seen.append(body["params"][0]["data"])
        return _call_handler({SCHEMA_ID_TO_NAME: "0x" + encode(["string"], ["flags"]).hex()})(request)

    rpc = _rpc(handler)
    reg = RpcSchemaRegistry(rpc)
    assert await reg.resolve_schema_name("0xregistry", sid) == Ok("flags")
    assert seen[0] == SCHEMA_ID_TO_NAME + sid[2:]
    await rpc.aclose()

    rpc = _rpc(_call_handler({SCHEMA_ID_TO_NAME: "0x" + encode(["string"], [""]).hex()}))
    assert isinstance(await RpcSchemaRegistry(rpc).resolve_schema_name("0xregistry", sid), NotFound)
    await rpc.aclose()


@pytest.mark.asyncio
async def test_registry_empty_and_garbage_returns():
    rpc = _rpc(_call_handler({GET_ALL_SCHEMAS: "0x"}))
    assert isinstance(await RpcSchemaRegistry(rpc).list_known_schema_strings("0xregistry"), NotFound)
    await rpc.aclose()

    rpc = _rpc(_call_handler({GET_ALL_SCHEMAS: "0x1234"}))
    assert isinstance(await RpcSchemaRegistry(rpc).list_known_schema_strings("0xregistry"), TransientError)
    await rpc.aclose()
