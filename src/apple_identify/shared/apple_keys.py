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

import asyncio
import logging
from typing import Optional

import httpx
from jose import jwk
from jose.backends.base import Key
from jose.exceptions import JWKError
from pydantic import ValidationError

from apple_identify.shared.models import KeyRecord, KeySet
from apple_identify.shared.jwt_utils import SUPPORTED_ALGORITHM, base64url_decode_strict

logger = logging.getLogger(__name__)

APPLE_KEYS_URL = "https://appleid.apple.com/auth/keys"
DEFAULT_FETCH_TIMEOUT = 10.0


class KeyFetchError(Exception):
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    BAD_STATUS = "bad_status"
    BODY_READ = "body_read"
    BODY_DECODE = "body_decode"

    def __init__(self, reason: str, detail: str = "", status_code: Optional[int] = None):
        self.reason = reason
        self.detail = detail
        self.status_code = status_code
        message = f"{reason}: {detail}" if detail else reason
        super().__init__(message)


class NoKeysAvailable(Exception):
    pass


class KeyConversionError(Exception):
    pass


class AppleKeySetFetcher:
    """
    Fetches Apple's public signing keys.

    Every call goes to the network. Keys rotate, so caching them is left to
    whoever wraps this class.
    """

    def __init__(
        self,
        url: str = APPLE_KEYS_URL,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            url: The key set endpoint.
            timeout: Default deadline in seconds for one fetch (connect + read).
            transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def fetch_key_set(self, timeout: Optional[float] = None) -> KeySet:
        deadline = self.timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self._fetch(deadline), timeout=deadline)
        except asyncio.TimeoutError as e:
            raise KeyFetchError(KeyFetchError.TIMEOUT, f"no key set within {deadline}s") from e

    async def _fetch(self, timeout: float) -> KeySet:
        logger.debug(f"Fetching Apple key set from {self.url}")
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            try:
                async with client.stream("GET", self.url) as response:
                    if not response.is_success:
                        raise KeyFetchError(
                            KeyFetchError.BAD_STATUS,
                            f"HTTP {response.status_code}",
                            status_code=response.status_code,
                        )
                    try:
                        body = await response.aread()
                    except httpx.TimeoutException:
                        raise
                    except httpx.HTTPError as e:
                        raise KeyFetchError(KeyFetchError.BODY_READ, str(e)) from e
            except httpx.TimeoutException as e:
                raise KeyFetchError(KeyFetchError.TIMEOUT, str(e)) from e
            except httpx.HTTPError as e:
                raise KeyFetchError(KeyFetchError.TRANSPORT, str(e)) from e

        try:
            key_set = KeySet.model_validate_json(body)
        except ValidationError as e:
            raise KeyFetchError(KeyFetchError.BODY_DECODE, str(e)) from e
        logger.debug(f"Fetched {len(key_set.keys)} Apple public key(s)")
        return key_set


def select_key(key_set: KeySet, kid: Optional[str] = None) -> KeyRecord:
    """
    Picks the key a token should be checked against.

    The record whose ``kid`` matches the token header wins. Without a header
    ``kid``, or when nothing matches, the first published key is used and the
    signature check has the final say.
    """
    if not key_set.keys:
        raise NoKeysAvailable("Apple key set is empty")
    if kid:
        for record in key_set.keys:
            if record.key_id == kid:
                return record
        logger.info(f"No Apple key with kid {kid!r}, falling back to the first key")
    return key_set.keys[0]


def _decode_component(name: str, value: Optional[str]) -> int:
    if not value:
        raise KeyConversionError(f"Key record has no '{name}' component")
    try:
        raw = base64url_decode_strict(value)
    except ValueError as e:
        raise KeyConversionError(f"Key component '{name}' is not base64url: {e}") from e
    number = int.from_bytes(raw, "big")
    if number == 0:
        raise KeyConversionError(f"Key component '{name}' is zero")
    return number


def convert_key(record: KeyRecord) -> Key:
    """Builds an RS256 public key from a key record's modulus and exponent."""
    if record.key_type != "RSA":
        raise KeyConversionError(f"Unsupported key type {record.key_type!r}")
    if record.algorithm and record.algorithm != SUPPORTED_ALGORITHM:
        raise KeyConversionError(f"Unsupported key algorithm {record.algorithm!r}")

    _decode_component("n", record.modulus)
    _decode_component("e", record.exponent)

    try:
        return jwk.construct(
            {"kty": "RSA", "n": record.modulus, "e": record.exponent},
            algorithm=SUPPORTED_ALGORITHM,
        )
    except (JWKError, ValueError, TypeError) as e:
        raise KeyConversionError(f"Could not build RSA public key: {e}") from e
