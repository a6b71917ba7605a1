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

import base64
import binascii
import json
import logging
import re
import time
from typing import Mapping, Any, Dict, NamedTuple

from jose.backends.base import Key

logger = logging.getLogger(__name__)

# The only signature scheme Apple uses for identity tokens.
SUPPORTED_ALGORITHM = "RS256"

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_-]*$")


class IdentityException(Exception):
    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"[{status_code}] {detail}")


class TokenSegments(NamedTuple):
    header: Dict[str, Any]
    payload: bytes
    signing_input: bytes
    signature: bytes


def check_token_expiration(decoded_jwt: Mapping[str, Any], threshold: int = 300):
    current_time = time.time()
    expire_time = decoded_jwt.get("exp")
    if expire_time is None:
        raise IdentityException(status_code=401, detail="Token does not have an expiration claim")
    if current_time > int(expire_time) - threshold:
        raise IdentityException(
            status_code=401, detail="Token expired or nearing expiration."
        )


def base64url_decode_strict(segment: str) -> bytes:
    """
    Decodes an unpadded base64url string.

    Unlike ``base64.urlsafe_b64decode`` this rejects characters outside the
    url-safe alphabet instead of silently dropping them.
    """
    if not isinstance(segment, str) or not _BASE64URL_RE.match(segment):
        raise ValueError("Segment is not base64url encoded")
    if len(segment) % 4 == 1:
        raise ValueError("Segment has an impossible base64url length")
    # Calculate missing padding
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except binascii.Error as e:
        raise ValueError(f"Segment is not base64url encoded: {e}") from e


def split_token(token: str) -> TokenSegments:
    """
    Parses a compact JWS (header.payload.signature).

    Raises ValueError when the token does not have exactly three non-empty
    base64url segments or when the header is not a JSON object.
    """
    if not isinstance(token, str):
        raise ValueError("Token must be a string")
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError(f"Invalid Token Format: expected 3 segments, got {len(parts)}")
    if not all(parts):
        raise ValueError("Invalid Token Format: empty segment")

    header_b64, payload_b64, signature_b64 = parts
    header_bytes = base64url_decode_strict(header_b64)
    payload = base64url_decode_strict(payload_b64)
    signature = base64url_decode_strict(signature_b64)

    try:
        header = json.loads(header_bytes)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Token header is not valid JSON: {e}") from e
    if not isinstance(header, dict):
        raise ValueError("Token header is not a JSON object")

    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    return TokenSegments(header, payload, signing_input, signature)


def get_unverified_header(token: str) -> Dict[str, Any]:
    """Returns the token header without verifying anything, or {} if unreadable."""
    try:
        return split_token(token).header
    except ValueError as e:
        logger.debug(f"Could not read token header: {e}")
        return {}


def verify_signature(token: str, public_key: Key) -> bool:
    """
    Checks the token structure and its RS256 signature against ``public_key``.

    Fails closed: every problem, structural or cryptographic, yields False.
    """
    try:
        segments = split_token(token)
    except ValueError as e:
        logger.info(f"Rejecting malformed token: {e}")
        return False

    alg = segments.header.get("alg")
    if alg != SUPPORTED_ALGORITHM:
        logger.info(f"Rejecting token signed with unsupported algorithm {alg!r}")
        return False

    try:
        return bool(public_key.verify(segments.signing_input, segments.signature))
    except (ValueError, TypeError) as e:
        logger.warning(f"Signature check raised: {e}")
        return False
