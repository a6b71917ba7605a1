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
# File: examples/fastapi_apple_signin.py

"""
Example: FastAPI with Sign in with Apple

This example protects a FastAPI application with Apple identity tokens.

Clients send:
- `X-token-type: AppleSignInToken`
- `access_token: <identity token from ASAuthorizationAppleIDCredential>`
- optionally `X-account-details: {"firstName": ..., "lastName": ..., "fullName": ..., "email": ...}`

It uses:
- `starlette_session.backends.CookieBackend` to keep the identity in a
  signed cookie between requests.
- An in-memory token cache so a re-sent token is not verified twice.
- The FastAPI dependency tools (`get_current_user`, `require_auth`).
"""

import os
import secrets
import uvicorn
import logging
from typing import Optional

try:
    from fastapi import FastAPI, Depends
    from starlette_session import SessionMiddleware
    from starlette_session.backends import CookieBackend
except ImportError:
    print("Failed to import FastAPI or Starlette-Session.")
    print("Please install with: pip install 'apple-identify-middleware[fastapi]'")
    exit(1)

from apple_identify.shared.models import UserIdentity
from apple_identify.shared.cache import InMemoryTokenCache
from apple_identify.shared.validators import (
    SessionPersistenceValidator,
    AppleSignInTokenValidator,
)
from apple_identify.fastapi_middleware.fastapi_identify import IdentifyMiddleware
from apple_identify.fastapi_middleware.tools import get_current_user, require_auth

logger = logging.getLogger(__name__)

# --- Configuration ---
# Used to sign the session cookie. In production, load this from a secret manager.
APP_SECRET_KEY = os.environ.get("APP_SECRET_KEY", secrets.token_urlsafe(32))

# Your Services ID or bundle identifier, the 'aud' of Apple's identity tokens.
APPLE_CLIENT_ID = os.environ.get("APPLE_CLIENT_ID", "com.example.app")

# Apple creates a new identity token at most once a day per user,
# so accept tokens for a day past their 'exp'.
TOKEN_EXPIRY_LEEWAY = 24 * 60 * 60


def profile_delegate(user: UserIdentity) -> None:
    if not user.display_name and user.email:
        user.display_name = user.email.split("@")[0]


validators = [
    # 1. Reuse an identity already stored in the session cookie.
    SessionPersistenceValidator(expiration_threshold=300, leeway=TOKEN_EXPIRY_LEEWAY),

    # 2. Otherwise verify the Apple identity token.
    AppleSignInTokenValidator(
        client_id=APPLE_CLIENT_ID,
        token_expiry_leeway=TOKEN_EXPIRY_LEEWAY,
        token_cache=InMemoryTokenCache(),
        token_time_to_live=600,
        profile_delegate=profile_delegate,
    ),
]

app = FastAPI()

# Starlette runs the middleware added last first: the session must wrap the identify middleware.
app.add_middleware(IdentifyMiddleware, validators=validators)
app.add_middleware(
    SessionMiddleware,
    backend=CookieBackend(secret_key=APP_SECRET_KEY),
    secret_key=APP_SECRET_KEY,
    https_only=True,
    max_age=None, # Let the identity's 'exp' control validity
)


@app.get("/secure-endpoint")
async def get_secure_data(user: UserIdentity = Depends(require_auth)):
    return {
        "message": f"This is secure data for {user.display_name or user.id}",
        "provider": user.provider,
        "emails": user.emails,
        "session_expires": user.exp,
    }


@app.get("/optional-endpoint")
async def get_optional_data(user: Optional[UserIdentity] = Depends(get_current_user)):
    if user:
        return {"message": f"Hello, {user.display_name or user.id}! Here is your personalized data."}
    return {"message": "Hello, guest! Here is the public data."}


@app.get("/")
async def public_endpoint():
    return {"message": "This is a public endpoint"}


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger.info(f"Starting FastAPI server for Apple client_id {APPLE_CLIENT_ID}...")
    if APPLE_CLIENT_ID == "com.example.app":
        logger.warning("Using placeholder client_id. Set APPLE_CLIENT_ID to accept real tokens.")
    uvicorn.run(app, host="0.0.0.0", port=8000)
