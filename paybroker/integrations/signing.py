"""
Signature codec for provider requests and notifications.

Each provider gets exactly one fixed ``SigningRule`` per message type. The
same rule object is used on the sign path and the verify path, so the two
can never disagree on ordering, encoding or empty-value handling.

Rules:
- VNPay: every ``vnp_*`` field except the hash fields, form-encoded
  (space becomes ``+``), sorted by encoded key, HMAC-SHA512, uppercase hex.
- MoMo: declared field order, raw values, HMAC-SHA256, lowercase hex.
- payOS: declared (create) or sorted (webhook) fields, raw values, nulls
  rendered empty, HMAC-SHA256, lowercase hex.
"""
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, FrozenSet, Mapping, Optional, Tuple
from urllib.parse import quote_plus

from paybroker.core.exceptions import MalformedPayloadError

_NULL_MARKERS = ("null", "undefined")


@dataclass(frozen=True)
class SigningRule:
    """
    Canonicalization and digest policy for one provider message type.

    Attributes:
        name: Rule name, used in logs
        algorithm: hashlib name of the HMAC digest (sha256/sha512)
        fields: Declared field order; ``None`` signs every field, sorted
        percent_encode: Form-encode keys and values before joining
        empty_as_absent: Drop fields whose value is the empty string
        null_as_empty: Render missing/null fields as empty instead of dropping
        uppercase: Emit the hex digest in uppercase
        exclude: Fields never signed (the digest fields themselves)
        key_prefix: When set, only fields with this prefix are signed
    """

    name: str
    algorithm: str = "sha256"
    fields: Optional[Tuple[str, ...]] = None
    percent_encode: bool = False
    empty_as_absent: bool = False
    null_as_empty: bool = False
    uppercase: bool = False
    exclude: FrozenSet[str] = frozenset()
    key_prefix: Optional[str] = None


VNPAY_RULE = SigningRule(
    name="vnpay",
    algorithm="sha512",
    percent_encode=True,
    uppercase=True,
    exclude=frozenset({"vnp_SecureHash", "vnp_SecureHashType"}),
    key_prefix="vnp_",
)

MOMO_CREATE_RULE = SigningRule(
    name="momo_create",
    fields=(
        "accessKey",
        "amount",
        "extraData",
        "ipnUrl",
        "orderId",
        "orderInfo",
        "partnerCode",
        "redirectUrl",
        "requestId",
        "requestType",
    ),
    null_as_empty=True,
)

MOMO_NOTIFY_RULE = SigningRule(
    name="momo_notify",
    fields=(
        "accessKey",
        "amount",
        "extraData",
        "message",
        "orderId",
        "orderInfo",
        "orderType",
        "partnerCode",
        "payType",
        "requestId",
        "responseTime",
        "resultCode",
        "transId",
    ),
    null_as_empty=True,
)

PAYOS_CREATE_RULE = SigningRule(
    name="payos_create",
    fields=("amount", "cancelUrl", "description", "orderCode", "returnUrl"),
    null_as_empty=True,
)

PAYOS_WEBHOOK_RULE = SigningRule(
    name="payos_webhook",
    null_as_empty=True,
    exclude=frozenset({"signature"}),
)


def _render(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return str(value)


class SignatureCodec:
    """Pure canonicalize/sign/verify functions bound to one rule."""

    def __init__(self, rule: SigningRule):
        self.rule = rule

    def _keys(self, params: Mapping[str, Any]) -> Tuple[str, ...]:
        if self.rule.fields is not None:
            return self.rule.fields
        prefix = self.rule.key_prefix
        return tuple(
            key
            for key in params
            if key not in self.rule.exclude and (prefix is None or key.startswith(prefix))
        )

    def canonicalize(self, params: Mapping[str, Any]) -> bytes:
        """
        Turn a parameter mapping into the exact bytes the provider signs.

        Args:
            params: Field name to value; non-string values are rendered

        Returns:
            bytes: ``key=value`` pairs joined with ``&``, UTF-8 encoded
        """
        rule = self.rule
        pairs = []
        for key in self._keys(params):
            value = _render(params.get(key))
            if rule.null_as_empty and (value is None or value in _NULL_MARKERS):
                value = ""
            if value is None:
                continue
            if value == "" and rule.empty_as_absent:
                continue
            if rule.percent_encode:
                pairs.append((quote_plus(key, safe=""), quote_plus(value, safe="")))
            else:
                pairs.append((key, value))

        if rule.fields is None:
            pairs.sort(key=lambda pair: pair[0])

        return "&".join(f"{key}={value}" for key, value in pairs).encode("utf-8")

    def sign(self, canonical: bytes, secret: str) -> str:
        """Keyed digest of canonical bytes, hex-encoded in the rule's case."""
        digest = hmac.new(
            secret.encode("utf-8"), canonical, getattr(hashlib, self.rule.algorithm)
        ).hexdigest()
        return digest.upper() if self.rule.uppercase else digest

    def sign_params(self, params: Mapping[str, Any], secret: str) -> str:
        return self.sign(self.canonicalize(params), secret)

    def verify(self, params: Mapping[str, Any], supplied: Optional[str], secret: str) -> bool:
        """
        Recompute the digest and compare it with the supplied one.

        Comparison is case-insensitive and constant-time.
        """
        if not supplied or not isinstance(supplied, str):
            return False
        expected = self.sign_params(params, secret)
        return hmac.compare_digest(
            expected.lower().encode("utf-8"), supplied.strip().lower().encode("utf-8")
        )


VNPAY_CODEC = SignatureCodec(VNPAY_RULE)
MOMO_CREATE_CODEC = SignatureCodec(MOMO_CREATE_RULE)
MOMO_NOTIFY_CODEC = SignatureCodec(MOMO_NOTIFY_RULE)
PAYOS_CREATE_CODEC = SignatureCodec(PAYOS_CREATE_RULE)
PAYOS_WEBHOOK_CODEC = SignatureCodec(PAYOS_WEBHOOK_RULE)


def to_provider_amount(amount: int, scale: int = 1) -> int:
    """Convert a base-unit amount into the provider's wire unit."""
    return int(amount) * scale


def from_provider_amount(raw: Any, scale: int = 1) -> int:
    """
    Convert a provider wire amount back into base units.

    Raises:
        MalformedPayloadError: If the value is not an integer multiple of scale
    """
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise MalformedPayloadError(f"Amount {raw!r} is not an integer")
    if value % scale:
        raise MalformedPayloadError(f"Amount {raw!r} is not a multiple of {scale}")
    return value // scale
