import json
from pathlib import Path

import httpx
import pytest

from databox.clients.etherscan import fetch_abi
from databox.decoding.abi import describe_event, get_event_signature, get_events_from_abi, make_registry_from_abi
from databox.errors import NotFoundError, ValidationError

from conftest import DOWNLOAD_T0, UPLOAD_T0

ABI_PATH = Path(__file__).parent / "abi" / "databox_registry_abi.json"


def test_make_registry_from_abi():
    assert ABI_PATH.is_file()
    registry = make_registry_from_abi(ABI_PATH)
    events = get_events_from_abi(ABI_PATH)
    assert len(events) == 3  # ABI defines 3 events and one function
    assert len(registry) == len(events)
    assert UPLOAD_T0 in registry
    assert DOWNLOAD_T0 in registry


def test_get_event_signature():
    events = get_events_from_abi(ABI_PATH)
    assert get_event_signature(events["OwnershipTransferred"]) == "OwnershipTransferred(address,address)"


def test_describe_event():
    text = describe_event(get_events_from_abi(ABI_PATH)["OwnershipTransferred"])
    assert "Signature: OwnershipTransferred(address,address)" in text
    assert "- newOwner: address (indexed)" in text


def test_anonymous_events_are_skipped():
    abi = [{"anonymous": True, "inputs": [], "name": "Anon", "type": "event"}]
    assert make_registry_from_abi(abi) == {}


def test_malformed_abi_raises_validation_error():
    with pytest.raises(ValidationError):
        get_events_from_abi("not json")
    with pytest.raises(ValidationError):
        get_events_from_abi([{"type": "event", "name": "X", "inputs": [{"indexed": False}]}])


@pytest.mark.asyncio
async def test_fetch_abi_from_etherscan():
    abi = json.loads(ABI_PATH.read_text())
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json={"status": "1", "message": "OK", "result": json.dumps(abi)})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        result = await fetch_abi("0xabc", "sepolia", api_key="k", client=client)

    assert result == abi
    assert seen["chainid"] == "11155111"
    assert seen["action"] == "getabi"


@pytest.mark.asyncio
async def test_fetch_abi_unverified_contract():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Contract source code not verified"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(NotFoundError):
            await fetch_abi("0xabc", client=client)


@pytest.mark.asyncio
async def test_fetch_abi_unknown_network():
    with pytest.raises(ValidationError):
        await fetch_abi("0xabc", "nowhere")
