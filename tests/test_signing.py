"""
Unit tests for the signature codec.

Digests below were computed independently with
``printf %s "<canonical>" | openssl dgst -sha512/-sha256 -hmac <secret>``.
"""
import pytest

from paybroker.core.exceptions import MalformedPayloadError
from paybroker.integrations.signing import (
    MOMO_CREATE_CODEC,
    MOMO_NOTIFY_CODEC,
    PAYOS_CREATE_CODEC,
    PAYOS_WEBHOOK_CODEC,
    VNPAY_CODEC,
    SignatureCodec,
    SigningRule,
    from_provider_amount,
    to_provider_amount,
)

VNPAY_PARAMS = {
    "vnp_Version": "2.1.0",
    "vnp_Command": "pay",
    "vnp_TmnCode": "TESTTMN1",
    "vnp_Amount": "15000000",
    "vnp_CurrCode": "VND",
    "vnp_TxnRef": "BKB1_1760844600000_AB12",
    "vnp_OrderInfo": "Thanh toan booking B1",
    "vnp_OrderType": "other",
    "vnp_Locale": "vn",
    "vnp_ReturnUrl": "https://shop.example/return",
    "vnp_IpAddr": "127.0.0.1",
    "vnp_CreateDate": "20261019103000",
}
VNPAY_CANONICAL = (
    "vnp_Amount=15000000&vnp_Command=pay&vnp_CreateDate=20261019103000&vnp_CurrCode=VND"
    "&vnp_IpAddr=127.0.0.1&vnp_Locale=vn&vnp_OrderInfo=Thanh+toan+booking+B1"
    "&vnp_OrderType=other&vnp_ReturnUrl=https%3A%2F%2Fshop.example%2Freturn"
    "&vnp_TmnCode=TESTTMN1&vnp_TxnRef=BKB1_1760844600000_AB12&vnp_Version=2.1.0"
)
VNPAY_HASH = (
    "68625DA8B7AC18B1AE4B608B458775D9CD34D713E0A6C91F007257386065C9F0"
    "F40A142D56AA24FC72BD249A564F7BA82C750C9B00DCF41596C02E7A7A0ADF8B"
)

MOMO_SECRET = "K951B6PE1waDMi640xX08PD3vg6EkVlz"
MOMO_NOTIFY_PARAMS = {
    "partnerCode": "MOMO",
    "orderId": "BKB1_1760844600000_AB12",
    "requestId": "BKB1_1760844600000_AB12",
    "amount": 150000,
    "orderInfo": "Thanh toan booking B1",
    "orderType": "momo_wallet",
    "transId": 4088878653,
    "resultCode": 0,
    "message": "Successful.",
    "payType": "qr",
    "responseTime": 1760844700000,
    "extraData": "",
    "accessKey": "F8BBA842ECF85",
}
MOMO_CANONICAL = (
    "accessKey=F8BBA842ECF85&amount=150000&extraData=&message=Successful."
    "&orderId=BKB1_1760844600000_AB12&orderInfo=Thanh toan booking B1&orderType=momo_wallet"
    "&partnerCode=MOMO&payType=qr&requestId=BKB1_1760844600000_AB12"
    "&responseTime=1760844700000&resultCode=0&transId=4088878653"
)
MOMO_SIGNATURE = "6cc6b03af2576b361db6c5e0d3681241cc648fd0aa530721935a986a36670ebb"

PAYOS_KEY = "1a54716c8f0efb2744fb28b6e38b25da7f67a925d98bc1c18bd8faaecadd7675"
PAYOS_DATA = {
    "orderCode": 123456789012345,
    "amount": 150000,
    "description": "Booking 123456789012345",
    "accountNumber": "12345678",
    "reference": "TF230204212323",
    "transactionDateTime": "2026-10-19 10:31:00",
    "currency": "VND",
    "paymentLinkId": "124c33293c43417ab7879e14c8d9eb18",
    "code": "00",
    "desc": "success",
    "counterAccountName": None,
}
PAYOS_CANONICAL = (
    "accountNumber=12345678&amount=150000&code=00&counterAccountName=&currency=VND"
    "&desc=success&description=Booking 123456789012345&orderCode=123456789012345"
    "&paymentLinkId=124c33293c43417ab7879e14c8d9eb18&reference=TF230204212323"
    "&transactionDateTime=2026-10-19 10:31:00"
)
PAYOS_SIGNATURE = "0e900c35b7d567cb0668549ce17c192a16119d97d7894546d1e0867f7912a28c"


class TestVNPaySigning:
    """VNPay: form-encoded, sorted, HMAC-SHA512, uppercase."""

    @pytest.mark.unit
    def test_canonical_form_matches_reference_vector(self) -> None:
        assert VNPAY_CODEC.canonicalize(VNPAY_PARAMS) == VNPAY_CANONICAL.encode("utf-8")

    @pytest.mark.unit
    def test_sign_matches_reference_vector(self) -> None:
        assert VNPAY_CODEC.sign_params(VNPAY_PARAMS, "SECRETKEY123") == VNPAY_HASH

    @pytest.mark.unit
    def test_spaces_are_plus_never_percent_20(self) -> None:
        canonical = VNPAY_CODEC.canonicalize({"vnp_OrderInfo": "a b c"})
        assert canonical == b"vnp_OrderInfo=a+b+c"
        assert b"%20" not in VNPAY_CODEC.canonicalize(VNPAY_PARAMS)

    @pytest.mark.unit
    def test_hash_fields_and_foreign_keys_are_not_signed(self) -> None:
        params = dict(VNPAY_PARAMS)
        params["vnp_SecureHash"] = VNPAY_HASH
        params["vnp_SecureHashType"] = "HmacSHA512"
        params["utm_source"] = "newsletter"
        assert VNPAY_CODEC.canonicalize(params) == VNPAY_CANONICAL.encode("utf-8")

    @pytest.mark.unit
    def test_verify_is_case_insensitive(self) -> None:
        params = dict(VNPAY_PARAMS, vnp_SecureHash=VNPAY_HASH)
        assert VNPAY_CODEC.verify(params, VNPAY_HASH, "SECRETKEY123")
        assert VNPAY_CODEC.verify(params, VNPAY_HASH.lower(), "SECRETKEY123")

    @pytest.mark.unit
    def test_tampered_hash_is_rejected(self) -> None:
        tampered = ("0" if VNPAY_HASH[0] != "0" else "1") + VNPAY_HASH[1:]
        assert not VNPAY_CODEC.verify(VNPAY_PARAMS, tampered, "SECRETKEY123")

    @pytest.mark.unit
    def test_wrong_secret_is_rejected(self) -> None:
        assert not VNPAY_CODEC.verify(VNPAY_PARAMS, VNPAY_HASH, "OTHERSECRET")

    @pytest.mark.unit
    def test_missing_or_non_string_digest_is_rejected(self) -> None:
        assert not VNPAY_CODEC.verify(VNPAY_PARAMS, None, "SECRETKEY123")
        assert not VNPAY_CODEC.verify(VNPAY_PARAMS, "", "SECRETKEY123")

    @pytest.mark.unit
    def test_every_signed_field_changes_the_digest(self) -> None:
        original = VNPAY_CODEC.sign_params(VNPAY_PARAMS, "SECRETKEY123")
        for key in VNPAY_PARAMS:
            mutated = dict(VNPAY_PARAMS, **{key: VNPAY_PARAMS[key] + "x"})
            assert VNPAY_CODEC.sign_params(mutated, "SECRETKEY123") != original, key


class TestMoMoSigning:
    """MoMo: declared order, raw values, HMAC-SHA256, lowercase."""

    @pytest.mark.unit
    def test_notify_canonical_form_matches_reference_vector(self) -> None:
        assert MOMO_NOTIFY_CODEC.canonicalize(MOMO_NOTIFY_PARAMS) == MOMO_CANONICAL.encode("utf-8")

    @pytest.mark.unit
    def test_notify_signature_matches_reference_vector(self) -> None:
        assert MOMO_NOTIFY_CODEC.sign_params(MOMO_NOTIFY_PARAMS, MOMO_SECRET) == MOMO_SIGNATURE

    @pytest.mark.unit
    def test_undeclared_fields_are_ignored(self) -> None:
        params = dict(MOMO_NOTIFY_PARAMS, signature=MOMO_SIGNATURE, lang="vi")
        assert MOMO_NOTIFY_CODEC.verify(params, MOMO_SIGNATURE, MOMO_SECRET)

    @pytest.mark.unit
    def test_empty_extra_data_is_kept(self) -> None:
        assert b"&extraData=&" in MOMO_NOTIFY_CODEC.canonicalize(MOMO_NOTIFY_PARAMS)

    @pytest.mark.unit
    def test_missing_declared_field_renders_empty(self) -> None:
        params = {key: value for key, value in MOMO_NOTIFY_PARAMS.items() if key != "extraData"}
        assert MOMO_NOTIFY_CODEC.canonicalize(params) == MOMO_CANONICAL.encode("utf-8")

    @pytest.mark.unit
    def test_create_rule_uses_declared_order(self) -> None:
        canonical = MOMO_CREATE_CODEC.canonicalize(
            {
                "requestType": "captureWallet",
                "accessKey": "AK",
                "amount": 1000,
                "extraData": "",
                "ipnUrl": "https://api/ipn",
                "orderId": "R1",
                "orderInfo": "info",
                "partnerCode": "MOMO",
                "redirectUrl": "https://api/return",
                "requestId": "R1",
            }
        )
        assert canonical == (
            b"accessKey=AK&amount=1000&extraData=&ipnUrl=https://api/ipn&orderId=R1"
            b"&orderInfo=info&partnerCode=MOMO&redirectUrl=https://api/return"
            b"&requestId=R1&requestType=captureWallet"
        )

    @pytest.mark.unit
    def test_changed_result_code_breaks_signature(self) -> None:
        params = dict(MOMO_NOTIFY_PARAMS, resultCode=1006)
        assert not MOMO_NOTIFY_CODEC.verify(params, MOMO_SIGNATURE, MOMO_SECRET)


class TestPayOSSigning:
    """payOS: sorted data keys, nulls rendered empty, HMAC-SHA256."""

    @pytest.mark.unit
    def test_webhook_canonical_form_matches_reference_vector(self) -> None:
        assert PAYOS_WEBHOOK_CODEC.canonicalize(PAYOS_DATA) == PAYOS_CANONICAL.encode("utf-8")

    @pytest.mark.unit
    def test_webhook_signature_matches_reference_vector(self) -> None:
        assert PAYOS_WEBHOOK_CODEC.sign_params(PAYOS_DATA, PAYOS_KEY) == PAYOS_SIGNATURE

    @pytest.mark.unit
    @pytest.mark.parametrize("null_marker", [None, "null", "undefined"])
    def test_null_markers_render_empty(self, null_marker: object) -> None:
        data = dict(PAYOS_DATA, counterAccountName=null_marker)
        assert PAYOS_WEBHOOK_CODEC.verify(data, PAYOS_SIGNATURE, PAYOS_KEY)

    @pytest.mark.unit
    def test_nested_values_are_compact_json(self) -> None:
        canonical = PAYOS_WEBHOOK_CODEC.canonicalize({"items": [{"name": "Room", "quantity": 1}]})
        assert canonical == b'items=[{"name":"Room","quantity":1}]'

    @pytest.mark.unit
    def test_create_signature_covers_declared_fields_only(self) -> None:
        payload = {
            "orderCode": 123456789012345,
            "amount": 150000,
            "description": "Booking 123456789012345",
            "cancelUrl": "https://shop.example/cancel",
            "returnUrl": "https://shop.example/return",
        }
        canonical = PAYOS_CREATE_CODEC.canonicalize(dict(payload, buyerName="Nguyen Van A"))
        assert canonical == (
            b"amount=150000&cancelUrl=https://shop.example/cancel"
            b"&description=Booking 123456789012345&orderCode=123456789012345"
            b"&returnUrl=https://shop.example/return"
        )


class TestSigningRules:
    @pytest.mark.unit
    def test_empty_as_absent_drops_empty_values(self) -> None:
        codec = SignatureCodec(SigningRule(name="test", empty_as_absent=True))
        assert codec.canonicalize({"b": "", "a": "1", "c": None}) == b"a=1"

    @pytest.mark.unit
    def test_default_rule_keeps_empty_and_drops_null(self) -> None:
        codec = SignatureCodec(SigningRule(name="test"))
        assert codec.canonicalize({"b": "", "a": "1", "c": None}) == b"a=1&b="

    @pytest.mark.unit
    def test_booleans_render_lowercase(self) -> None:
        codec = SignatureCodec(SigningRule(name="test"))
        assert codec.canonicalize({"autoCapture": True}) == b"autoCapture=true"

    @pytest.mark.unit
    def test_round_trip(self) -> None:
        cases = (
            (VNPAY_CODEC, {"vnp_A": "1", "vnp_B": "hello world", "vnp_C": "x&y=z"}),
            (PAYOS_WEBHOOK_CODEC, {"a": "1", "b": "hello world", "c": "x&y=z"}),
        )
        for codec, params in cases:
            digest = codec.sign_params(params, "secret")
            assert codec.verify(params, digest, "secret")


class TestAmountScaling:
    @pytest.mark.unit
    def test_vnpay_scale_round_trip(self) -> None:
        assert to_provider_amount(150000, 100) == 15000000
        assert from_provider_amount("15000000", 100) == 150000

    @pytest.mark.unit
    def test_unscaled_amounts_accept_ints_and_strings(self) -> None:
        assert from_provider_amount(150000) == 150000
        assert from_provider_amount(" 150000 ") == 150000

    @pytest.mark.unit
    def test_fractional_minor_units_are_malformed(self) -> None:
        with pytest.raises(MalformedPayloadError):
            from_provider_amount("15000050", 100)

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", [None, "abc", "1.5", ""])
    def test_non_integer_amounts_are_malformed(self, raw: object) -> None:
        with pytest.raises(MalformedPayloadError):
            from_provider_amount(raw)
