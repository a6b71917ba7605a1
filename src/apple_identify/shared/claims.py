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

import json
import logging
import time
from datetime import timedelta
from enum import Enum
from typing import Optional, Union

from pydantic import ValidationError

from apple_identify.shared.models import AppleClaims
from apple_identify.shared.jwt_utils import split_token

logger = logging.getLogger(__name__)

APPLE_ISSUER = "https://appleid.apple.com"

Leeway = Union[int, float, timedelta]


class ClaimsDecodeError(Exception):
    pass


class ClaimsViolation(str, Enum):
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    ISSUED_IN_FUTURE = "issued_in_future"


def leeway_seconds(leeway: Optional[Leeway]) -> float:
    if leeway is None:
        return 0.0
    seconds = leeway.total_seconds() if isinstance(leeway, timedelta) else float(leeway)
    if seconds < 0:
        raise ValueError("leeway must not be negative")
    return seconds


def decode_claims(token: str) -> AppleClaims:
    """Decodes the payload segment. Does not check the signature."""
    try:
        payload = split_token(token).payload
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise ClaimsDecodeError(f"Unreadable claims payload: {e}") from e
    if not isinstance(data, dict):
        raise ClaimsDecodeError("Claims payload is not a JSON object")
    try:
        return AppleClaims.model_validate(data)
    except ValidationError as e:
        raise ClaimsDecodeError(f"Invalid claims: {e}") from e


def validate_claims(
    claims: AppleClaims,
    leeway: Optional[Leeway] = 0,
    now: Optional[float] = None,
) -> Optional[ClaimsViolation]:
    """
    Checks the time based claims and returns the first violation, or None.

    Checks run in a fixed order: exp, nbf, iat. The same leeway widens every
    check. Apple reuses identity tokens for up to a day, so callers that
    accept re-sent tokens pass a leeway of that order.
    """
    slack = leeway_seconds(leeway)
    current = time.time() if now is None else now

    if claims.exp is not None and claims.exp + slack < current:
        logger.debug(f"exp {claims.exp} + {slack} < now {current}")
        return ClaimsViolation.EXPIRED

    if claims.nbf is not None and claims.nbf > current + slack:
        logger.debug(f"nbf {claims.nbf} > now {current} + {slack}")
        return ClaimsViolation.NOT_YET_VALID

    if claims.iat is not None and claims.iat > current + slack:
        logger.debug(f"iat {claims.iat} > now {current} + {slack}")
        return ClaimsViolation.ISSUED_IN_FUTURE

    return None
