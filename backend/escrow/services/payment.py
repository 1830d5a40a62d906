"""Payment instrument generation: UPI payment request payload and its QR code."""
import io
from decimal import Decimal, InvalidOperation
from typing import Union
from urllib.parse import quote, unquote, urlsplit

import segno
from pydantic import BaseModel

from escrow.config import settings
from escrow.errors import ErrorCode, InvalidAmount, InvalidInput, InvalidPayeeFormat

UPI_SCHEME = "upi"
UPI_ACTION = "pay"
_CENT = Decimal("0.01")


class PaymentRequest(BaseModel):
    """Fields recoverable from a payment request payload."""

    payee_identifier: str
    amount: Decimal
    currency: str
    transaction_id: str


def validate_payee(payee_identifier: str) -> str:
    """Format check only; liveness against a payment network is out of scope."""
    value = (payee_identifier or "").strip()
    handle, sep, provider = value.partition("@")
    if not sep or not handle or not provider or "@" in provider:
        raise InvalidPayeeFormat(
            f"Invalid UPI ID {payee_identifier!r}, expected something like name@bank"
        )
    if any(ch.isspace() for ch in value):
        raise InvalidPayeeFormat(f"UPI ID must not contain whitespace: {payee_identifier!r}")
    return value


def validate_amount(amount: Union[Decimal, int, float, str]) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Amount is not a number: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount!r}")
    if value != value.quantize(_CENT):
        raise InvalidAmount(f"Amount has more than two decimal places: {amount!r}")
    return value


def format_amount(amount: Decimal) -> str:
    """Whole amounts without decimals ("500"), others with two ("12.50")."""
    value = Decimal(amount)
    if value == value.to_integral_value():
        return f"{value.to_integral_value():f}"
    return f"{value.quantize(_CENT):f}"


class PaymentInstrumentGenerator:
    """Builds deterministic payment request payloads and renders them as QR codes."""

    def __init__(
        self,
        currency: str = None,
        memo_prefix: str = None,
        qr_scale: int = None,
        qr_border: int = None,
    ):
        self.currency = currency or settings.currency
        self.memo_prefix = memo_prefix or settings.memo_prefix
        self.qr_scale = qr_scale or settings.qr_scale
        self.qr_border = settings.qr_border if qr_border is None else qr_border

    def memo_for(self, transaction_id: str) -> str:
        return f"{self.memo_prefix}-{transaction_id}"

    def build_payload(
        self,
        payee_identifier: str,
        amount: Union[Decimal, int, float, str],
        transaction_id: str,
        currency: str = None,
    ) -> str:
        """
        Build the payment request URI.

        Example:
            upi://pay?pa=helper@bank&am=500&cu=INR&tn=SVIP-TXN20240115-042917
        """
        payee = validate_payee(payee_identifier)
        value = validate_amount(amount)
        if not transaction_id:
            raise InvalidInput("Transaction id is required for the payment memo")
        params = [
            ("pa", quote(payee, safe="@.-_")),
            ("am", format_amount(value)),
            ("cu", quote(currency or self.currency, safe="")),
            ("tn", quote(self.memo_for(transaction_id), safe="-_.")),
        ]
        query = "&".join(f"{key}={val}" for key, val in params)
        return f"{UPI_SCHEME}://{UPI_ACTION}?{query}"

    def parse_payload(self, payload: str) -> PaymentRequest:
        """Recover payee, amount, currency and transaction id from a payload."""
        parts = urlsplit(payload)
        if parts.scheme != UPI_SCHEME or parts.netloc != UPI_ACTION:
            raise InvalidInput(f"Not a UPI payment request: {payload!r}", ErrorCode.INVALID_PAYLOAD)
        # parse_qsl would turn '+' into spaces; values are percent-encoded instead
        fields = {}
        for pair in parts.query.split("&"):
            key, sep, val = pair.partition("=")
            if not sep:
                raise InvalidInput(f"Malformed payment request field {pair!r}", ErrorCode.INVALID_PAYLOAD)
            fields[key] = unquote(val)
        missing = [key for key in ("pa", "am", "cu", "tn") if key not in fields]
        if missing:
            raise InvalidInput(f"Payment request is missing {', '.join(missing)}", ErrorCode.INVALID_PAYLOAD)

        prefix = f"{self.memo_prefix}-"
        memo = fields["tn"]
        if not memo.startswith(prefix):
            raise InvalidInput(f"Payment memo {memo!r} does not reference a transaction", ErrorCode.INVALID_PAYLOAD)

        return PaymentRequest(
            payee_identifier=validate_payee(fields["pa"]),
            amount=validate_amount(fields["am"]),
            currency=fields["cu"],
            transaction_id=memo[len(prefix):],
        )

    def encode(self, request: PaymentRequest) -> str:
        return self.build_payload(
            request.payee_identifier,
            request.amount,
            request.transaction_id,
            currency=request.currency,
        )

    def render_png(self, payload: str) -> bytes:
        """QR code image of the exact payload string."""
        qr = segno.make(payload, error="m", micro=False)
        buffer = io.BytesIO()
        qr.save(buffer, kind="png", scale=self.qr_scale, border=self.qr_border)
        return buffer.getvalue()

    def render_data_uri(self, payload: str) -> str:
        qr = segno.make(payload, error="m", micro=False)
        return qr.png_data_uri(scale=self.qr_scale, border=self.qr_border)


def build_payment_payload(payee_identifier: str, amount, transaction_id: str, currency: str = None) -> str:
    return PaymentInstrumentGenerator().build_payload(payee_identifier, amount, transaction_id, currency)


def parse_payment_payload(payload: str) -> PaymentRequest:
    return PaymentInstrumentGenerator().parse_payload(payload)
