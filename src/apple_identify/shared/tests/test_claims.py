#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

# src/apple_identify/shared/tests/test_claims.py
import base64
import json
from datetime import timedelta

import pytest

from apple_identify.shared.claims import (
    ClaimsDecodeError,
    ClaimsViolation,
    decode_claims,
    leeway_seconds,
    validate_claims,
)
from apple_identify.shared.models import AppleClaims

NOW = 1_700_000_000
DAY = 24 * 60 * 60


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _unsigned(payload: bytes) -> str:
    header = _b64(json.dumps({"alg": "RS256"}).encode())
    return f"{header}.{_b64(payload)}.{_b64(b'sig')}"


def _claims(**fields) -> AppleClaims:
    base = {"iss": "https://appleid.apple.com", "sub": "user-1", "aud": "com.example.signin"}
    base.update(fields)
    return AppleClaims.model_validate(base)


# Tests for `decode_claims`
def test_decode_claims(sign_token, claims_factory):
    claims = decode_claims(sign_token(claims_factory(nonce="n-1", email_verified=True)))
    assert claims.sub == "001234.0a1b2c3d4e5f.0987"
    assert claims.aud == "com.example.signin"
    assert claims.nonce == "n-1"
    assert claims.email == "chris@cprince.com"
    assert claims.email_verified == "true"


def test_decode_claims_ignores_unknown_fields(sign_token, claims_factory):
    claims = decode_claims(sign_token(claims_factory(auth_time=NOW, real_user_status=2)))
    assert not hasattr(claims, "auth_time")


@pytest.mark.parametrize("missing", ["iss", "sub", "aud"])
def test_decode_claims_missing_required(sign_token, claims_factory, missing):
    claims = claims_factory()
    del claims[missing]
    with pytest.raises(ClaimsDecodeError):
        decode_claims(sign_token(claims))


def test_decode_claims_optional_fields_absent(sign_token, claims_factory):
    claims = decode_claims(sign_token(claims_factory(exp=None, iat=None, email=None, email_verified=None)))
    assert claims.exp is None
    assert claims.iat is None
    assert claims.email is None


@pytest.mark.parametrize("payload", [b"not json", b"[1, 2, 3]", b'{"iss": 1, "sub": "a", "aud": "b"}'])
def test_decode_claims_malformed_payload(payload):
    with pytest.raises(ClaimsDecodeError):
        decode_claims(_unsigned(payload))


def test_decode_claims_not_a_token():
    with pytest.raises(ClaimsDecodeError):
        decode_claims("definitely.not-a.token!")


# Tests for `validate_claims`
def test_validate_claims_success():
    assert validate_claims(_claims(exp=NOW + 60, iat=NOW - 1, nbf=NOW - 1), now=NOW) is None


def test_validate_claims_without_time_claims():
    assert validate_claims(_claims(), now=NOW) is None


def test_validate_claims_expired():
    assert validate_claims(_claims(exp=NOW - 1), now=NOW) is ClaimsViolation.EXPIRED


def test_validate_claims_expiry_boundary():
    # Still valid at the very instant exp + leeway == now.
    assert validate_claims(_claims(exp=NOW - 10), leeway=10, now=NOW) is None
    assert validate_claims(_claims(exp=NOW - 11), leeway=10, now=NOW) is ClaimsViolation.EXPIRED


def test_validate_claims_expired_within_day_leeway():
    claims = _claims(exp=NOW - 12 * 60 * 60)
    assert validate_claims(claims, now=NOW) is ClaimsViolation.EXPIRED
    assert validate_claims(claims, leeway=DAY, now=NOW) is None
    assert validate_claims(claims, leeway=timedelta(days=1), now=NOW) is None


def test_validate_claims_not_yet_valid():
    assert validate_claims(_claims(nbf=NOW + 30), now=NOW) is ClaimsViolation.NOT_YET_VALID
    assert validate_claims(_claims(nbf=NOW + 30), leeway=30, now=NOW) is None


def test_validate_claims_issued_in_future():
    assert validate_claims(_claims(iat=NOW + 30), now=NOW) is ClaimsViolation.ISSUED_IN_FUTURE
    assert validate_claims(_claims(iat=NOW + 30), leeway=60, now=NOW) is None


def test_validate_claims_reports_first_violation_in_order():
    claims = _claims(exp=NOW - 1, nbf=NOW + 100, iat=NOW + 100)
    assert validate_claims(claims, now=NOW) is ClaimsViolation.EXPIRED
    claims = _claims(exp=NOW + 100, nbf=NOW + 100, iat=NOW + 100)
    assert validate_claims(claims, now=NOW) is ClaimsViolation.NOT_YET_VALID


def test_leeway_seconds():
    assert leeway_seconds(None) == 0
    assert leeway_seconds(5) == 5
    assert leeway_seconds(timedelta(hours=1)) == 3600
    with pytest.raises(ValueError):
        leeway_seconds(-1)
