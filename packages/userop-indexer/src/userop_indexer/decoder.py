#!/usr/bin/env python3
"""Decoding of EntryPoint UserOperationEvent logs.

The event is declared as::

    event UserOperationEvent(
        bytes32 indexed userOpHash,
        address indexed sender,
        address indexed paymaster,
        uint256 nonce,
        bool success,
        uint256 actualGasCost,
        uint256 actualGasUsed
    );

so a well-formed log carries four topics (signature hash plus the three
indexed fields) and four 32-byte words of data. Decoding is pure: the
envelope shape is validated first and fields are only extracted once the
shape is known to be right.
"""

from web3 import Web3

from .errors import (
    MissingBlockNumber,
    PayloadLengthMismatch,
    TopicCountMismatch,
    TopicLengthMismatch,
)
from .models import LogEnvelope, UserOperationEvent

USER_OPERATION_EVENT_SIGNATURE = (
    "UserOperationEvent(bytes32,address,address,uint256,bool,uint256,uint256)"
)
USER_OPERATION_EVENT_TOPIC: bytes = bytes(Web3.keccak(text=USER_OPERATION_EVENT_SIGNATURE))

# EntryPoint v0.7, same address on every chain it is deployed to
ENTRY_POINT_V07_ADDRESS = "0x0000000071727De22E5E9d8BAf0edAc6f37da032"

WORD_SIZE = 32
EXPECTED_TOPIC_COUNT = 4
EXPECTED_DATA_LENGTH = 4 * WORD_SIZE


def _word(data: bytes, index: int) -> bytes:
    return data[index * WORD_SIZE:(index + 1) * WORD_SIZE]


def _uint256(word: bytes) -> int:
    return int.from_bytes(word, byteorder="big")


def _address(topic: bytes) -> str:
    # Addresses are left-padded to 32 bytes; the low 20 bytes hold the address
    return Web3.to_checksum_address(topic[-20:])


def validate_envelope(envelope: LogEnvelope) -> None:
    """Check that a log has the UserOperationEvent shape.

    Raises:
        TopicCountMismatch: If the log does not carry exactly four topics
        TopicLengthMismatch: If any topic is not exactly 32 bytes
        PayloadLengthMismatch: If the data payload is not exactly 128 bytes
        MissingBlockNumber: If the log has no block number
    """
    if len(envelope.topics) != EXPECTED_TOPIC_COUNT:
        raise TopicCountMismatch(EXPECTED_TOPIC_COUNT, len(envelope.topics))
    for index, topic in enumerate(envelope.topics):
        if len(topic) != WORD_SIZE:
            raise TopicLengthMismatch(index, WORD_SIZE, len(topic))
    if len(envelope.data) != EXPECTED_DATA_LENGTH:
        raise PayloadLengthMismatch(EXPECTED_DATA_LENGTH, len(envelope.data))
    if envelope.block_number is None:
        raise MissingBlockNumber()


def decode_user_operation_event(envelope: LogEnvelope) -> tuple[UserOperationEvent, int]:
    """Decode a raw log into a UserOperationEvent and its block number.

    Args:
        envelope: The raw log

    Returns:
        Tuple of (decoded event, block number the log was emitted in)

    Raises:
        TopicCountMismatch: If the log does not carry exactly four topics
        TopicLengthMismatch: If any topic is not exactly 32 bytes
        PayloadLengthMismatch: If the data payload is not exactly 128 bytes
        MissingBlockNumber: If the log has no block number
    """
    validate_envelope(envelope)

    topics = envelope.topics
    data = envelope.data

    event = UserOperationEvent(
        user_op_hash="0x" + topics[1].hex(),
        sender=_address(topics[2]),
        paymaster=_address(topics[3]),
        nonce=_uint256(_word(data, 0)),
        # bool is a full word; only the low byte carries the value
        success=_word(data, 1)[-1] != 0,
        actual_gas_cost=_uint256(_word(data, 2)),
        actual_gas_used=_uint256(_word(data, 3)),
    )

    return event, envelope.block_number
