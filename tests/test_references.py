"""
Unit tests for provider reference generation and sanitizing.
"""
import re

import pytest

from paybroker.core.exceptions import ValidationError
from paybroker.core.references import (
    SUFFIX_ALPHABET,
    generate_reference,
    monotonic_millis,
    sanitize_reference,
)
from paybroker.core.types import ReferencePolicy

VNPAY_POLICY = ReferencePolicy(max_length=100)
MOMO_POLICY = ReferencePolicy(max_length=50)
PAYOS_POLICY = ReferencePolicy(max_length=15, numeric=True)

TAIL = re.compile(rf"_\d{{13}}_[{SUFFIX_ALPHABET}]{{4}}$")


class TestGenerateReference:
    @pytest.mark.unit
    def test_reference_combines_booking_timestamp_and_suffix(self) -> None:
        reference = generate_reference("B1", VNPAY_POLICY)
        assert reference.startswith("BKB1_")
        assert TAIL.search(reference)

    @pytest.mark.unit
    def test_disallowed_characters_are_removed_from_booking_id(self) -> None:
        reference = generate_reference("booking #42/ä", VNPAY_POLICY)
        assert reference.startswith("BKbooking42_")
        assert re.fullmatch(r"[A-Za-z0-9_-]+", reference)

    @pytest.mark.unit
    def test_long_booking_ids_are_cut_but_tail_survives(self) -> None:
        reference = generate_reference("X" * 200, MOMO_POLICY)
        assert len(reference) == 50
        assert reference.startswith("BKXXX")
        assert TAIL.search(reference)

    @pytest.mark.unit
    def test_references_are_unique_within_a_process(self) -> None:
        references = {generate_reference("B1", MOMO_POLICY) for _ in range(500)}
        assert len(references) == 500

    @pytest.mark.unit
    def test_numeric_policy_yields_fifteen_digit_order_code(self) -> None:
        reference = generate_reference("B1", PAYOS_POLICY)
        assert re.fullmatch(r"1\d{14}", reference)
        assert int(reference) < 2**53

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "millis,time_part",
        [
            (17 * 10**8 + 5, "00000005"),
            (10**8 - 1, "99999999"),
            (1760844600123, "44600123"),
        ],
    )
    def test_numeric_policy_keeps_last_eight_timestamp_digits(
        self, millis: int, time_part: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The time part wraps every 10**8 ms and stays zero-padded."""
        monkeypatch.setattr("paybroker.core.references.monotonic_millis", lambda: millis)

        reference = generate_reference("B1", PAYOS_POLICY)

        assert len(reference) == 15
        assert reference[0] == "1"
        assert reference[1:9] == time_part
        assert reference[9:].isdigit()

    @pytest.mark.unit
    def test_monotonic_millis_never_repeats(self) -> None:
        values = [monotonic_millis() for _ in range(1000)]
        assert values == sorted(values)
        assert len(set(values)) == len(values)


class TestSanitizeReference:
    @pytest.mark.unit
    def test_sanitize_is_idempotent(self) -> None:
        for policy in (VNPAY_POLICY, MOMO_POLICY, PAYOS_POLICY):
            reference = generate_reference("B-1", policy)
            assert sanitize_reference(reference, policy) == reference
            assert sanitize_reference(sanitize_reference(reference, policy), policy) == reference

    @pytest.mark.unit
    def test_sanitize_strips_and_truncates(self) -> None:
        assert sanitize_reference("REF B1.x", VNPAY_POLICY) == "REFB1x"
        assert sanitize_reference("A" * 80, MOMO_POLICY) == "A" * 50

    @pytest.mark.unit
    def test_numeric_sanitize_keeps_trailing_digits(self) -> None:
        assert sanitize_reference("order-0001234", PAYOS_POLICY) == "1234"
        assert sanitize_reference("9" * 20, PAYOS_POLICY) == "9" * 15

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["", "###", "   "])
    def test_unusable_reference_is_rejected(self, raw: str) -> None:
        with pytest.raises(ValidationError):
            sanitize_reference(raw, VNPAY_POLICY)

    @pytest.mark.unit
    def test_numeric_reference_without_digits_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            sanitize_reference("ABC", PAYOS_POLICY)
