"""Tests for raw log normalization.

Covers exact integer decoding, address lower-casing, both log encodings
(web3 bytes and JSON-RPC hex strings) and rejection of malformed or
unstorable logs.
"""

import pytest
from eth_abi import encode as abi_encode
from fakes import OWNER_A, OWNER_B, as_json_rpc, registration_log, transfer_log

from asset_registry.services.blockchain.chain_reader import EventKind
from asset_registry.services.blockchain.normalizer import (
    MAX_STORABLE_INT,
    RegistrationRecord,
    TransferRecord,
    event_kind_of,
    normalize,
)
from asset_registry.services.exceptions import MalformedEvent, ValueOverflow


class TestRegistration:
    def test_large_asset_id_keeps_exact_precision(self):
        """Asset ids beyond 53 bits decode exactly and the owner is lower-cased."""
        record = normalize(registration_log(123456789012345, OWNER_A, block_number=103))

        assert isinstance(record, RegistrationRecord)
        assert record.asset_id == 123456789012345
        assert record.owner == OWNER_A.lower()
        assert record.block_number == 103

    def test_decodes_description_and_timestamp(self):
        record = normalize(
            registration_log(7, OWNER_A, description="Vintage guitar", timestamp=1_712_345_678)
        )

        assert record.description == "Vintage guitar"
        assert record.event_timestamp == 1_712_345_678
        assert record.kind is EventKind.REGISTRATION

    def test_tx_hash_is_lower_case_hex(self):
        record = normalize(registration_log(7, OWNER_A, block_number=5, log_index=2))

        assert record.tx_hash.startswith("0x")
        assert len(record.tx_hash) == 66
        assert record.tx_hash == record.tx_hash.lower()
        assert record.log_index == 2

    def test_block_timestamp_passed_through(self):
        record = normalize(registration_log(7, OWNER_A), block_timestamp=1_700_000_123)

        assert record.block_timestamp == 1_700_000_123

    def test_json_rpc_encoding_matches_bytes_encoding(self):
        """eth_subscribe payloads (hex strings) normalize to the same record."""
        raw = registration_log(42, OWNER_A, description="Bike", block_number=0x1F4, log_index=3)

        assert normalize(as_json_rpc(raw)) == normalize(raw)

    def test_unicode_description(self):
        record = normalize(registration_log(1, OWNER_A, description="Ölgemälde 🎨"))

        assert record.description == "Ölgemälde 🎨"


class TestTransfer:
    def test_decodes_both_addresses(self):
        record = normalize(transfer_log(7, OWNER_A, OWNER_B, timestamp=1_700_000_500))

        assert isinstance(record, TransferRecord)
        assert record.asset_id == 7
        assert record.previous_owner == OWNER_A.lower()
        assert record.new_owner == OWNER_B.lower()
        assert record.event_timestamp == 1_700_000_500
        assert record.kind is EventKind.TRANSFER

    def test_json_rpc_encoding(self):
        raw = transfer_log(7, OWNER_A, OWNER_B, block_number=104, log_index=1)

        record = normalize(as_json_rpc(raw))

        assert record.block_number == 104
        assert record.log_index == 1
        assert record.new_owner == OWNER_B.lower()

    def test_position_orders_by_block_then_log_index(self):
        first = normalize(transfer_log(1, OWNER_A, OWNER_B, block_number=10, log_index=5))
        second = normalize(transfer_log(1, OWNER_B, OWNER_A, block_number=11, log_index=0))

        assert first.position < second.position


class TestOverflow:
    def test_asset_id_above_bigint_rejected(self):
        with pytest.raises(ValueOverflow) as exc_info:
            normalize(registration_log(MAX_STORABLE_INT + 1, OWNER_A))

        assert exc_info.value.field == "asset_id"
        assert exc_info.value.value == MAX_STORABLE_INT + 1

    def test_asset_id_at_bigint_limit_accepted(self):
        record = normalize(registration_log(MAX_STORABLE_INT, OWNER_A))

        assert record.asset_id == MAX_STORABLE_INT

    def test_timestamp_above_bigint_rejected(self):
        with pytest.raises(ValueOverflow) as exc_info:
            normalize(transfer_log(1, OWNER_A, OWNER_B, timestamp=2**255))

        assert exc_info.value.field == "event_timestamp"


class TestMalformed:
    def test_missing_topics(self):
        raw = registration_log(1, OWNER_A)
        raw["topics"] = []

        with pytest.raises(MalformedEvent):
            normalize(raw)

    def test_unknown_event_signature(self):
        raw = registration_log(1, OWNER_A)
        raw["topics"][0] = bytes(32)

        with pytest.raises(MalformedEvent, match="Unknown event signature"):
            normalize(raw)

    def test_wrong_topic_count(self):
        raw = transfer_log(1, OWNER_A, OWNER_B)
        raw["topics"] = raw["topics"][:3]

        with pytest.raises(MalformedEvent, match="expects 4 topics"):
            normalize(raw)

    def test_truncated_data(self):
        raw = registration_log(1, OWNER_A)
        raw["data"] = raw["data"][:40]

        with pytest.raises(MalformedEvent, match="Cannot decode"):
            normalize(raw)

    def test_wrong_data_layout(self):
        """A registration carrying only a uint256 payload cannot be decoded."""
        raw = registration_log(1, OWNER_A)
        raw["data"] = abi_encode(["uint256"], [1])

        with pytest.raises(MalformedEvent):
            normalize(raw)

    def test_missing_block_number(self):
        raw = registration_log(1, OWNER_A)
        del raw["blockNumber"]

        with pytest.raises(MalformedEvent, match="blockNumber"):
            normalize(raw)

    def test_missing_transaction_hash(self):
        raw = transfer_log(1, OWNER_A, OWNER_B)
        raw["transactionHash"] = None

        with pytest.raises(MalformedEvent, match="transactionHash"):
            normalize(raw)

    def test_invalid_hex_string(self):
        raw = as_json_rpc(registration_log(1, OWNER_A))
        raw["data"] = "0xnot-hex"

        with pytest.raises(MalformedEvent, match="not valid hex"):
            normalize(raw)

    @pytest.mark.parametrize("suffix", ["f", "_ff", "-1"])
    def test_odd_length_or_signed_hex_data(self, suffix):
        raw = as_json_rpc(registration_log(7, OWNER_A, block_number=3))
        raw["data"] += suffix

        with pytest.raises(MalformedEvent, match="not valid hex"):
            normalize(raw)

    def test_odd_length_transaction_hash(self):
        raw = as_json_rpc(registration_log(7, OWNER_A))
        raw["transactionHash"] = raw["transactionHash"][:-1]

        with pytest.raises(MalformedEvent, match="transactionHash"):
            normalize(raw)

    def test_address_topic_wrong_length(self):
        raw = registration_log(1, OWNER_A)
        raw["topics"][2] = bytes.fromhex(OWNER_A[2:])

        with pytest.raises(MalformedEvent, match="32 bytes"):
            normalize(raw)


def test_event_kind_of_identifies_both_events():
    assert event_kind_of(registration_log(1, OWNER_A)) is EventKind.REGISTRATION
    assert event_kind_of(transfer_log(1, OWNER_A, OWNER_B)) is EventKind.TRANSFER
