from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

from web3 import Web3

from .constants import STATUS_EXECUTED, STATUS_PENDING, TERMINAL_STATUSES, ZERO_ADDRESS
from .errors import InvalidIntent


def is_native_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


def parse_amount(raw_amount: str | int | Decimal, decimals: int) -> Tuple[Decimal, int]:
    """Convert a human amount into ``(Decimal, base units)``.

    Rejects non-numeric, non-positive and over-precise amounts.
    """
    try:
        amount_dec = raw_amount if isinstance(raw_amount, Decimal) else Decimal(str(raw_amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidIntent("Amount must be a numeric value.") from exc
    if not amount_dec.is_finite():
        raise InvalidIntent("Amount must be a numeric value.")
    if amount_dec <= 0:
        raise InvalidIntent("Amount must be greater than zero.")
    exponent = amount_dec.normalize().as_tuple().exponent
    if isinstance(exponent, int) and -exponent > decimals:
        raise InvalidIntent(f"Amount has more than {decimals} decimal places.")
    base_units = int((amount_dec * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))
    if base_units <= 0:
        raise InvalidIntent("Amount too small after converting to base units.")
    return amount_dec, base_units


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or epoch seconds into an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Account:
    address: str

    @classmethod
    def from_address(cls, address: str) -> "Account":
        if not Web3.is_address(address):
            raise ValueError(f"Not a valid account address: {address!r}")
        return cls(address=Web3.to_checksum_address(address))


def normalize_account(raw: Any) -> Optional[Account]:
    """Collapse the shapes wallets hand back (str, list, object) into one :class:`Account`.

    The first account wins when a list is given. Returns ``None`` for empty input.
    """
    if raw is None:
        return None
    if isinstance(raw, Account):
        return raw
    if isinstance(raw, str):
        return Account.from_address(raw) if raw else None
    if isinstance(raw, (list, tuple)):
        return normalize_account(raw[0]) if raw else None
    if isinstance(raw, Mapping):
        return normalize_account(raw.get("address"))
    address = getattr(raw, "address", None)
    if address is not None:
        return normalize_account(address)
    raise ValueError(f"Unsupported account shape: {type(raw).__name__}")


@dataclass(frozen=True)
class BridgeToken:
    name: str
    symbol: str
    decimals: int
    address: str
    chain_id: int
    tags: Tuple[str, ...] = ()
    logo_uri: Optional[str] = None
    network: Optional[str] = None

    @property
    def is_native(self) -> bool:
        return is_native_address(self.address)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "BridgeToken":
        return cls(
            name=str(payload.get("name", "")),
            symbol=str(payload["symbol"]),
            decimals=int(payload["decimals"]),
            address=str(payload["address"]),
            chain_id=int(payload["chainId"]),
            tags=tuple(payload.get("tags") or ()),
            logo_uri=payload.get("logoURI"),
            network=payload.get("network"),
        )


@dataclass(frozen=True)
class TokenPair:
    from_token: BridgeToken
    to_token: BridgeToken

    def contains_symbol(self, symbol: str) -> bool:
        return symbol in (self.from_token.symbol, self.to_token.symbol)

    def token_on(self, chain_id: int) -> Optional[BridgeToken]:
        if self.from_token.chain_id == chain_id:
            return self.from_token
        if self.to_token.chain_id == chain_id:
            return self.to_token
        return None


@dataclass(frozen=True)
class BridgeIntent:
    from_chain_id: int
    to_chain_id: int
    token: BridgeToken
    amount: str
    receiver: str

    def validate(self) -> None:
        if self.from_chain_id == self.to_chain_id:
            raise InvalidIntent("Source and destination chains must differ.")
        if self.token.chain_id != self.from_chain_id:
            raise InvalidIntent(
                f"Token {self.token.symbol} lives on chain {self.token.chain_id}, "
                f"not the source chain {self.from_chain_id}."
            )
        if not Web3.is_address(self.receiver):
            raise InvalidIntent("Receiver address is invalid.")
        parse_amount(self.amount, self.token.decimals)

    @property
    def amount_wei(self) -> int:
        return parse_amount(self.amount, self.token.decimals)[1]

    @property
    def is_native(self) -> bool:
        return self.token.is_native


@dataclass(frozen=True)
class ApprovalState:
    required: bool = False
    in_flight: bool = False
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class BridgeTransaction:
    id: str
    message_id: str
    source_chain_id: int
    target_chain_id: int
    source_tx_hash: str
    token_address: str
    amount: str
    status: str
    created_at: datetime
    updated_at: datetime
    source_timestamp: Optional[datetime] = None
    target_tx_hash: Optional[str] = None
    target_timestamp: Optional[datetime] = None
    user_address: Optional[str] = None
    token_symbol: Optional[str] = None
    token_decimals: Optional[int] = None
    encoded_data: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    @property
    def is_executed(self) -> bool:
        return self.status == STATUS_EXECUTED

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "BridgeTransaction":
        try:
            created_at = parse_timestamp(payload["createdAt"])
            updated_at = parse_timestamp(payload.get("updatedAt")) or created_at
            decimals = payload.get("tokenDecimals")
            return cls(
                id=str(payload["id"]),
                message_id=str(payload["messageId"]),
                source_chain_id=int(payload["sourceChainId"]),
                target_chain_id=int(payload["targetChainId"]),
                source_tx_hash=str(payload["sourceTxHash"]),
                token_address=str(payload["tokenAddress"]),
                amount=str(payload["amount"]),
                status=str(payload["status"]).lower(),
                created_at=created_at,  # type: ignore[arg-type]
                updated_at=updated_at,  # type: ignore[arg-type]
                source_timestamp=parse_timestamp(payload.get("sourceTimestamp")),
                target_tx_hash=payload.get("targetTxHash"),
                target_timestamp=parse_timestamp(payload.get("targetTimestamp")),
                user_address=payload.get("userAddress"),
                token_symbol=payload.get("tokenSymbol"),
                token_decimals=int(decimals) if decimals is not None else None,
                encoded_data=payload.get("encodedData"),
                raw=dict(payload),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Malformed bridge transaction payload: {exc}") from exc


@dataclass(frozen=True)
class BridgeEstimate:
    token_address: str
    network_id: int
    amount: Decimal
    estimated_amount: Decimal
    fee: Decimal
    fee_percentage: Decimal
    is_supported: bool

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "BridgeEstimate":
        return cls(
            token_address=str(payload["tokenAddress"]),
            network_id=int(payload["networkId"]),
            amount=Decimal(str(payload["amount"])),
            estimated_amount=Decimal(str(payload["estimatedAmount"])),
            fee=Decimal(str(payload["fee"])),
            fee_percentage=Decimal(str(payload["feePercentage"])),
            is_supported=bool(payload["isSupported"]),
        )


@dataclass(frozen=True)
class BridgeResult:
    transaction_hash: str
    transaction_explorer: Optional[str] = None
    approval_tx_hash: Optional[str] = None
    approval_tx_explorer: Optional[str] = None
    bridge_transaction: Optional[BridgeTransaction] = None
    tracking_warning: Optional[str] = None
