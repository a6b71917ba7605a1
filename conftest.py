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

# conftest.py
import json
import time
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwt
from jose.utils import long_to_base64

CLIENT_ID = "com.example.signin"
APPLE_ISSUER = "https://appleid.apple.com"


def _new_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _to_pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def jwk_for(private_key, kid: Optional[str] = "APPLEKEY1") -> Dict[str, str]:
    numbers = private_key.public_key().public_numbers()
    record = {
        "kty": "RSA",
        "use": "sig",
        "alg": "RS256",
        "n": long_to_base64(numbers.n).decode("ascii"),
        "e": long_to_base64(numbers.e).decode("ascii"),
    }
    if kid is not None:
        record["kid"] = kid
    return record


@pytest.fixture(scope="session")
def apple_private_key():
    return _new_private_key()


@pytest.fixture(scope="session")
def stranger_private_key():
    return _new_private_key()


@pytest.fixture
def apple_jwk(apple_private_key) -> Dict[str, str]:
    return jwk_for(apple_private_key)


@pytest.fixture
def claims_factory() -> Callable[..., Dict[str, Any]]:
    def make(**overrides) -> Dict[str, Any]:
        now = int(time.time())
        claims = {
            "iss": APPLE_ISSUER,
            "aud": CLIENT_ID,
            "sub": "001234.0a1b2c3d4e5f.0987",
            "iat": now,
            "exp": now + 600,
            "email": "chris@cprince.com",
            "email_verified": "true",
        }
        claims.update(overrides)
        return {k: v for k, v in claims.items() if v is not None}

    return make


@pytest.fixture
def sign_token(apple_private_key, claims_factory) -> Callable[..., str]:
    """Signs Apple-like identity tokens; pass ``key`` to sign with another key."""

    def sign(claims: Optional[Dict[str, Any]] = None, key=None, kid: Optional[str] = "APPLEKEY1") -> str:
        headers = {"kid": kid} if kid is not None else None
        return jwt.encode(
            claims if claims is not None else claims_factory(),
            _to_pem(key or apple_private_key),
            algorithm="RS256",
            headers=headers,
        )

    return sign


@pytest.fixture
def keys_transport() -> Callable[..., httpx.MockTransport]:
    """Builds a MockTransport answering the key set endpoint and recording requests."""

    def build(keys: Optional[List[Dict[str, str]]] = None, status_code: int = 200, body: Optional[bytes] = None):
        requests: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            content = body if body is not None else json.dumps({"keys": keys or []}).encode()
            return httpx.Response(status_code, content=content)

        transport = httpx.MockTransport(handler)
        transport.requests = requests
        return transport

    return build


@pytest.fixture
def client_id() -> str:
    return CLIENT_ID


@pytest.fixture
def make_jwk() -> Callable[..., Dict[str, str]]:
    return jwk_for
