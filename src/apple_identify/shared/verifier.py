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

"""
Verification of Sign in with Apple identity tokens.

The steps run strictly in order and stop at the first failure:
fetch key set, select key, convert key, verify signature, decode claims,
check issuer, check audience, check time claims.

Callers are expected to have matched the token type (``X-token-type``)
before calling in here.

Nonces are not checked against the authorization request; a token carrying
a ``nonce`` is not thereby protected against replay.
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from apple_identify.shared.models import AppleClaims
from apple_identify.shared.jwt_utils import get_unverified_header, verify_signature
from apple_identify.shared.apple_keys import (
    AppleKeySetFetcher,
    KeyConversionError,
    KeyFetchError,
    NoKeysAvailable,
    convert_key,
    select_key,
)
from apple_identify.shared.claims import (
    APPLE_ISSUER,
    ClaimsDecodeError,
    Leeway,
    decode_claims,
    leeway_seconds,
    validate_claims,
)

logger = logging.getLogger(__name__)

NO_KEYS_AVAILABLE = "no_keys_available"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    KEY_FETCH_FAILED = "key_fetch_failed"
    KEY_CONVERSION_FAILED = "key_conversion_failed"
    SIGNATURE_INVALID = "signature_invalid"
    CLAIMS_DECODE_FAILED = "claims_decode_failed"
    BAD_ISSUER = "bad_issuer"
    BAD_AUDIENCE = "bad_audience"
    CLAIMS_INVALID = "claims_invalid"


class VerificationOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    reason: Optional[str] = None
    claims: Optional[AppleClaims] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def __str__(self) -> str:
        return f"{self.kind.value}({self.reason})" if self.reason else self.kind.value


def _failure(kind: OutcomeKind, reason: Optional[str] = None) -> VerificationOutcome:
    outcome = VerificationOutcome(kind=kind, reason=reason)
    logger.warning(f"Apple token verification failed: {outcome}")
    return outcome


async def verify_token(
    token: str,
    client_id: str,
    leeway: Optional[Leeway] = 0,
    *,
    fetcher: Optional[AppleKeySetFetcher] = None,
    timeout: Optional[float] = None,
    clock: Callable[[], float] = time.time,
) -> VerificationOutcome:
    """
    Verifies an Apple identity token and returns the outcome. Never raises
    for a bad token or an unreachable key endpoint; a negative leeway is a
    configuration error and raises ValueError.

    Args:
        token: The raw identity token (compact JWS).
        client_id: The expected 'aud' claim, the developer's Apple client_id.
        leeway: Tolerance in seconds (or a timedelta) applied to exp, nbf and iat.
        fetcher: Key set source; a default AppleKeySetFetcher when omitted.
        timeout: Deadline in seconds for the key set fetch.
        clock: Returns the current Unix time; injectable for tests.
    """
    slack = leeway_seconds(leeway)
    fetcher = fetcher or AppleKeySetFetcher()

    try:
        key_set = await fetcher.fetch_key_set(timeout=timeout)
    except KeyFetchError as e:
        logger.warning(f"Apple key set fetch failed: {e}")
        return _failure(OutcomeKind.KEY_FETCH_FAILED, e.reason)

    header = get_unverified_header(token)
    try:
        record = select_key(key_set, header.get("kid"))
    except NoKeysAvailable:
        return _failure(OutcomeKind.KEY_FETCH_FAILED, NO_KEYS_AVAILABLE)

    try:
        public_key = convert_key(record)
    except KeyConversionError as e:
        # Unreadable key material is an issuer-side anomaly.
        logger.error(f"Could not convert Apple public key {record.key_id!r}: {e}")
        return _failure(OutcomeKind.KEY_CONVERSION_FAILED)

    if not verify_signature(token, public_key):
        return _failure(OutcomeKind.SIGNATURE_INVALID)

    try:
        claims = decode_claims(token)
    except ClaimsDecodeError as e:
        return _failure(OutcomeKind.CLAIMS_DECODE_FAILED, str(e))

    if claims.iss != APPLE_ISSUER:
        return _failure(OutcomeKind.BAD_ISSUER, claims.iss)

    if claims.aud != client_id:
        return _failure(OutcomeKind.BAD_AUDIENCE, claims.aud)

    violation = validate_claims(claims, leeway=slack, now=clock())
    if violation is not None:
        return _failure(OutcomeKind.CLAIMS_INVALID, violation.value)

    logger.info(f"Apple token verified for subject {claims.sub}")
    return VerificationOutcome(kind=OutcomeKind.SUCCESS, claims=claims)
