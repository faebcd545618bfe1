"""Canonical order hashing.

Orders are hashed as EIP-712 typed data. The 32-byte hash primitive is
injected: production deployments pass Keccak-256, the default is the
standard library's SHA3-256.
"""

import hashlib
from typing import Any, Callable, Optional

from packages.protocol_config import ProtocolConfig, get_protocol_config
from packages.schemas.order import CanonicalOrder, Order, canonicalize

HashFunction = Callable[[bytes], bytes]

DOMAIN_FIELDS = [
    ("name", "string"),
    ("version", "string"),
]

# Field order is part of the hash
ORDER_FIELDS = [
    ("amountS", "uint", "amount_s"),
    ("amountB", "uint", "amount_b"),
    ("feeAmount", "uint", "fee_amount"),
    ("validSince", "uint", "valid_since"),
    ("validUntil", "uint", "valid_until"),
    ("owner", "address", "owner"),
    ("tokenS", "address", "token_s"),
    ("tokenB", "address", "token_b"),
    ("dualAuthAddr", "address", "dual_auth_addr"),
    ("broker", "address", "broker"),
    ("orderInterceptor", "address", "order_interceptor"),
    ("wallet", "address", "wallet"),
    ("tokenRecipient", "address", "token_recipient"),
    ("feeToken", "address", "fee_token"),
    ("walletSplitPercentage", "uint16", "wallet_split_percentage"),
    ("tokenSFeePercentage", "uint16", "token_s_fee_percentage"),
    ("tokenBFeePercentage", "uint16", "token_b_fee_percentage"),
    ("allOrNone", "bool", "all_or_none"),
    ("tokenTypeS", "uint8", "token_type_s"),
    ("tokenTypeB", "uint8", "token_type_b"),
    ("tokenTypeFee", "uint8", "token_type_fee"),
    ("trancheS", "bytes32", "tranche_s"),
    ("trancheB", "bytes32", "tranche_b"),
    ("transferDataS", "bytes", "transfer_data_s"),
]


def sha3_256(data: bytes) -> bytes:
    return hashlib.sha3_256(data).digest()


def _hex_to_bytes(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def encode_type(name: str, fields: list[tuple[str, str]]) -> str:
    """Type string, e.g. `Order(uint256 amountS,...)`."""
    return f"{name}(" + ",".join(f"{field_type} {field_name}" for field_name, field_type in fields) + ")"


def to_typed_data(order: Order, config: Optional[ProtocolConfig] = None) -> dict[str, Any]:
    """Build the typed-data document for an order.

    Args:
        order: Order to describe
        config: Protocol configuration (domain name and version)

    Returns:
        Dict with types, primaryType, domain and message
    """
    config = config or get_protocol_config()
    canonical = canonicalize(order)

    message: dict[str, Any] = {}
    for field_name, _, attribute in ORDER_FIELDS:
        value = getattr(canonical, attribute)
        message[field_name] = int(value) if isinstance(value, int) and not isinstance(value, bool) else value

    return {
        "types": {
            "EIP712Domain": [{"name": n, "type": t} for n, t in DOMAIN_FIELDS],
            "Order": [{"name": n, "type": t} for n, t, _ in ORDER_FIELDS],
        },
        "primaryType": "Order",
        "domain": {
            "name": config.eip712_domain_name,
            "version": config.eip712_domain_version,
        },
        "message": message,
    }


class OrderHasher:
    """Computes canonical order hashes."""

    def __init__(
        self,
        hash_function: Optional[HashFunction] = None,
        config: Optional[ProtocolConfig] = None,
    ):
        self.hash_function = hash_function or sha3_256
        self.config = config or get_protocol_config()

    def encode_value(self, field_type: str, value: Any) -> bytes:
        """Encode one field as a 32-byte word."""
        if field_type.startswith("uint"):
            bits = int(field_type[4:] or 256)
            number = int(value)
            if number < 0 or number >= 1 << bits:
                raise ValueError(f"value {number} does not fit in {field_type}")
            return number.to_bytes(32, "big")
        if field_type == "bool":
            return (1 if value else 0).to_bytes(32, "big")
        if field_type == "address":
            raw = _hex_to_bytes(value)
            if len(raw) != 20:
                raise ValueError(f"invalid address {value!r}")
            return raw.rjust(32, b"\x00")
        if field_type == "bytes32":
            raw = _hex_to_bytes(value)
            if len(raw) > 32:
                raise ValueError(f"invalid bytes32 {value!r}")
            return raw.rjust(32, b"\x00")
        if field_type == "bytes":
            return self.hash_function(_hex_to_bytes(value))
        if field_type == "string":
            return self.hash_function(value.encode("utf-8"))
        raise ValueError(f"unsupported field type {field_type}")

    def domain_separator(self) -> bytes:
        type_hash = self.hash_function(encode_type("EIP712Domain", DOMAIN_FIELDS).encode())
        return self.hash_function(
            type_hash
            + self.encode_value("string", self.config.eip712_domain_name)
            + self.encode_value("string", self.config.eip712_domain_version)
        )

    def struct_hash(self, canonical: CanonicalOrder) -> bytes:
        fields = [(name, field_type) for name, field_type, _ in ORDER_FIELDS]
        encoded = self.hash_function(encode_type("Order", fields).encode())
        for _, field_type, attribute in ORDER_FIELDS:
            encoded += self.encode_value(field_type, getattr(canonical, attribute))
        return self.hash_function(encoded)

    def hash_order(self, order: Order) -> bytes:
        """Hash an order without modifying it."""
        struct_hash = self.struct_hash(canonicalize(order))
        return self.hash_function(b"\x19\x01" + self.domain_separator() + struct_hash)
