"""Tests for the purpose/policy table and the code generator."""

from collections import Counter

import pytest

from credential_engine.core.errors import InvalidLength, UnknownPurpose
from credential_engine.core.generator import generate_code
from credential_engine.core.policies import Policy, VerificationPurpose, policy_for


# ── Policy registry ──────────────────────────────────────

@pytest.mark.parametrize(
    ("purpose", "length", "expiry", "attempts"),
    [
        (VerificationPurpose.PASSWORD_RESET, 6, 10, 5),
        (VerificationPurpose.EMAIL_VERIFICATION, 6, 15, 3),
        (VerificationPurpose.TWO_FACTOR_AUTH, 6, 5, 3),
        (VerificationPurpose.ACCOUNT_VERIFICATION, 8, 30, 5),
    ],
)
def test_policy_table(purpose, length, expiry, attempts):
    policy = policy_for(purpose)
    assert policy == Policy(code_length=length, expiry_minutes=expiry, max_attempts=attempts)


def test_every_purpose_has_a_policy():
    for purpose in VerificationPurpose:
        assert isinstance(purpose.policy, Policy)


def test_policy_for_accepts_purpose_name():
    assert policy_for("ACCOUNT_VERIFICATION").code_length == 8


def test_policy_for_unknown_purpose():
    with pytest.raises(UnknownPurpose):
        policy_for("PHONE_VERIFICATION")


def test_purpose_round_trips_through_its_value():
    assert VerificationPurpose("TWO_FACTOR_AUTH") is VerificationPurpose.TWO_FACTOR_AUTH
    assert VerificationPurpose.TWO_FACTOR_AUTH == "TWO_FACTOR_AUTH"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"code_length": 3, "expiry_minutes": 5, "max_attempts": 3},
        {"code_length": 11, "expiry_minutes": 5, "max_attempts": 3},
        {"code_length": 6, "expiry_minutes": 0, "max_attempts": 3},
        {"code_length": 6, "expiry_minutes": 5, "max_attempts": 0},
    ],
)
def test_policy_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        Policy(**kwargs)


# ── Code generator ───────────────────────────────────────

@pytest.mark.parametrize("purpose", list(VerificationPurpose))
def test_generated_code_matches_policy_length(purpose):
    length = purpose.policy.code_length
    for _ in range(200):
        code = generate_code(length)
        assert len(code) == length
        assert code.isdigit()
        assert code[0] != "0"


@pytest.mark.parametrize("length", [4, 10])
def test_generated_code_bounds(length):
    for _ in range(200):
        value = int(generate_code(length))
        assert 10 ** (length - 1) <= value <= 10**length - 1


@pytest.mark.parametrize("length", [0, 3, 11, -1])
def test_generate_rejects_out_of_range_length(length):
    with pytest.raises(InvalidLength):
        generate_code(length)


def test_generated_codes_are_spread_out():
    samples = [generate_code(4) for _ in range(9000)]

    # Not constant and not a monotonic sequence.
    assert len(set(samples)) > 3000
    values = [int(s) for s in samples]
    assert values != sorted(values)

    # Leading digit is uniform over 1..9 (expected 1000 each).
    leading = Counter(s[0] for s in samples)
    assert set(leading) == set("123456789")
    for count in leading.values():
        assert 800 < count < 1200

    # Last digit is uniform over 0..9 (expected 900 each).
    trailing = Counter(s[-1] for s in samples)
    assert set(trailing) == set("0123456789")
    for count in trailing.values():
        assert 700 < count < 1100
