import pytest
from eth_abi import encode

from databox.core.models import LogEvent
from databox.decoding.decoder import decode_batch, decode_event, decode_log
from databox.decoding.registries import make_liquidations_registry, make_marketplace_registry
from databox.decoding.registry_builder import event_schema_from_signature, make_registry
from databox.errors import DecodeError

from conftest import AAVE_POOL, LIQUIDATION_T0, UPLOAD_T0, USDC, WETH, address_topic


@pytest.fixture
def transfer_schema():
    return event_schema_from_signature(
        "Transfer(address indexed from, address indexed to, uint256 value)"
    )


def _transfer_log(schema, *, topics=None, data=None) -> LogEvent:
    return LogEvent(
        block_number=1,
        block_timestamp=1000,
        address="0xtoken",
        topics=topics or (schema.topic0, address_topic(WETH), address_topic(USDC)),
        data=data if data is not None else "0x" + encode(["uint256"], [100]).hex(),
        tx_hash="0xtx",
        log_index=7,
    )


def test_decode_log_indexed_and_data_fields(transfer_schema) -> None:
    record = decode_log(_transfer_log(transfer_schema), transfer_schema)

    assert record.event == "Transfer"
    assert record.values == {"from": WETH, "to": USDC, "value": 100}
    assert list(record.values) == ["from", "to", "value"]
    assert record.tx_hash == "0xtx"
    assert record.log_index == 7


def test_decode_log_topic_count_mismatch(transfer_schema) -> None:
    log = _transfer_log(transfer_schema, topics=(transfer_schema.topic0, address_topic(WETH)))

    with pytest.raises(DecodeError) as exc:
        decode_log(log, transfer_schema)

    assert exc.value.tx_hash == "0xtx"
    assert exc.value.log_index == 7


def test_decode_log_malformed_hex(transfer_schema) -> None:
    with pytest.raises(DecodeError, match="malformed data hex"):
        decode_log(_transfer_log(transfer_schema, data="0xzz"), transfer_schema)


def test_decode_log_truncated_data(transfer_schema) -> None:
    with pytest.raises(DecodeError, match="ABI decode failed"):
        decode_log(_transfer_log(transfer_schema, data="0x" + "00" * 16), transfer_schema)


def test_decode_log_wrong_topic0(transfer_schema) -> None:
    with pytest.raises(DecodeError, match="topic0"):
        decode_log(_transfer_log(transfer_schema, topics=("0x" + "ab" * 32,)), transfer_schema)


def test_decode_liquidation_fixture_values() -> None:
    registry = make_liquidations_registry()
    data = encode(["uint256", "uint256", "address", "bool"], [10**24, 5 * 10**18, "0x" + "33" * 20, True])
    log = LogEvent(
        block_number=100,
        block_timestamp=1234,
        address=AAVE_POOL,
        topics=(LIQUIDATION_T0, address_topic(WETH), address_topic(USDC), address_topic("0x" + "22" * 20)),
        data="0x" + data.hex(),
        tx_hash="0xliq",
        log_index=0,
    )

    record = decode_event(log, registry)

    assert record.values == {
        "collateralAsset": WETH,
        "debtAsset": USDC,
        "user": "0x" + "22" * 20,
        "debtToCover": 10**24,
        "liquidatedCollateralAmount": 5 * 10**18,
        "liquidator": "0x" + "33" * 20,
        "receiveAToken": True,
    }


def test_indexed_string_decodes_to_topic_hash() -> None:
    schema = event_schema_from_signature("Named(string indexed label, uint8 flag)")
    topic = "0x" + "ab" * 32
    log = LogEvent(1, 1, "0xc", (schema.topic0, topic), "0x" + encode(["uint8"], [3]).hex(), "0xt", 0)

    assert decode_log(log, schema).values == {"label": topic, "flag": 3}


def test_indexed_topics_ignore_padding_bytes(transfer_schema) -> None:
    dirty_from = "0x" + "ff" * 12 + WETH[2:]
    log = _transfer_log(transfer_schema, topics=(transfer_schema.topic0, dirty_from, address_topic(USDC)))

    assert decode_log(log, transfer_schema).values["from"] == WETH


def test_indexed_static_values_truncate_to_width() -> None:
    schema = event_schema_from_signature("Flags(uint16 indexed code, int8 indexed delta, bytes4 indexed tag)")
    topics = (
        schema.topic0,
        "0x" + "ee" * 30 + "0102",
        "0x" + "00" * 31 + "ff",
        "0x" + "deadbeef" + "77" * 28,
    )
    log = LogEvent(1, 1, "0xc", topics, "0x", "0xt", 0)

    assert decode_log(log, schema).values == {"code": 0x0102, "delta": -1, "tag": "0xdeadbeef"}


def test_indexed_bool_reads_last_byte() -> None:
    schema = event_schema_from_signature("Toggled(bool indexed enabled)")
    log = LogEvent(1, 1, "0xc", (schema.topic0, "0x" + "aa" * 31 + "01"), "0x", "0xt", 0)

    assert decode_log(log, schema).values == {"enabled": True}


def test_decode_event_unknown_topic() -> None:
    registry = make_registry("Ping(uint256 n)")
    log = LogEvent(1, 1, "0xc", ("0x" + "99" * 32,), "0x", "0xt", 2)

    with pytest.raises(DecodeError, match="no schema registered"):
        decode_event(log, registry)


def test_decode_batch_isolates_failures(upload_log) -> None:
    logs = [upload_log(block=10, log_index=i, piece_cid=f"cid{i}") for i in range(5)]
    broken = logs[2]
    logs[2] = LogEvent(
        block_number=broken.block_number,
        block_timestamp=broken.block_timestamp,
        address=broken.address,
        topics=broken.topics,
        data=broken.data[: len(broken.data) // 2],
        tx_hash=broken.tx_hash,
        log_index=broken.log_index,
    )

    result = decode_batch(logs, make_marketplace_registry())

    assert len(result.records) == 4
    assert [r.values["pieceCid"] for r in result.records] == ["cid0", "cid1", "cid3", "cid4"]
    assert len(result.errors) == 1
    assert result.errors[0].log_index == 2


def test_decode_batch_logs_warning(upload_log, caplog) -> None:
    bad = LogEvent(10, 1, upload_log().address, (UPLOAD_T0,), "0x00", "0xbad", 4)

    with caplog.at_level("WARNING", logger="databox"):
        decode_batch([bad], make_marketplace_registry())

    assert "0xbad#4" in caplog.text
