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
import logging
from abc import ABC, abstractmethod
from typing import Optional, Callable, Any

from apple_identify.shared.models import UserIdentity
from apple_identify.shared.jwt_utils import check_token_expiration, IdentityException
from apple_identify.shared.apple_keys import AppleKeySetFetcher, DEFAULT_FETCH_TIMEOUT
from apple_identify.shared.cache import TokenCache
from apple_identify.shared.claims import Leeway, leeway_seconds
from apple_identify.shared.identity import parse_account_details, resolve_identity
from apple_identify.shared.verifier import verify_token

logger = logging.getLogger(__name__)

APPLE_SIGN_IN_PROVIDER = "AppleSignInToken"

# Called with each freshly verified identity; may update it in place.
ProfileDelegate = Callable[[UserIdentity], None]


class IdentityValidator(ABC):
    """
    Abstract base class for identity validators.
    """

    @abstractmethod
    # Use 'Any' for request to support any Starlette-like request without hard dependencies
    async def validate(self, request: Any) -> Optional[UserIdentity]:
        """
        Validate the request for user authentication.
        Args:
            request: The incoming web framework request object.
        Returns:
            The identity, or None when this validator does not handle the request.
        Raises:
            IdentityException: The request carries credentials for this validator but they are invalid.
        """
        pass


class SessionPersistenceValidator(IdentityValidator):
    def __init__(self, expiration_threshold: int = 300, leeway: Leeway = 0):
        """
        Args:
            expiration_threshold: Seconds before 'exp' at which a session identity is dropped.
            leeway: The leeway the token validators accept past 'exp'; pass the same
                value so identities admitted under it survive in the session.
        """
        self.expiration_threshold = expiration_threshold
        self.leeway = leeway_seconds(leeway)

    async def validate(self, request: Any) -> Optional[UserIdentity]:
        session = getattr(request, "session", {})
        user_identity_data = session.get("user")

        if user_identity_data and isinstance(user_identity_data, dict):
            try:
                user_identity = UserIdentity(**user_identity_data)
                check_token_expiration(
                    user_identity.model_dump(), self.expiration_threshold - self.leeway
                )
                return user_identity
            except IdentityException as e:
                logger.info(f"Dropping session identity: {e.detail}")
                session.pop("user", None)
            except (TypeError, ValueError) as e:
                logger.warning(f"Could not parse UserIdentity from session: {e}")
                session.pop("user", None)
        return None


class AppleSignInTokenValidator(IdentityValidator):
    """
    Authenticates requests carrying a Sign in with Apple identity token.

    The client marks the request with ``X-token-type: AppleSignInToken``, puts
    the identity token in the ``access_token`` header and may add an
    ``X-account-details`` JSON header with the name fields Apple only hands
    to the app at first sign in.
    """

    name = APPLE_SIGN_IN_PROVIDER

    def __init__(
        self,
        client_id: str,
        token_expiry_leeway: Leeway = 0,
        token_cache: Optional[TokenCache] = None,
        token_time_to_live: Optional[float] = None,
        profile_delegate: Optional[ProfileDelegate] = None,
        fetcher: Optional[AppleKeySetFetcher] = None,
        timeout: float = DEFAULT_FETCH_TIMEOUT,
        token_type_header: str = "X-token-type",
        token_header: str = "access_token",
        account_details_header: str = "X-account-details",
    ):
        """
        Args:
            client_id: The developer's Apple client_id, the expected 'aud' claim.
            token_expiry_leeway: Tolerance for exp/nbf/iat in seconds or as a timedelta.
                Apple rate-limits identity token creation, so clients may re-send a
                token for up to a day; use a leeway of that order to accept them.
            token_cache: Where verified identities are kept between requests.
            token_time_to_live: Seconds a cached identity stays valid; None keeps it until evicted.
            profile_delegate: Hook to enrich the identity after verification.
            fetcher: Source of Apple's public keys.
            timeout: Deadline in seconds for fetching the keys.
        """
        if not client_id:
            raise ValueError("client_id cannot be empty.")
        self.client_id = client_id
        self.leeway = leeway_seconds(token_expiry_leeway)
        self.token_cache = token_cache
        self.token_time_to_live = token_time_to_live
        self.profile_delegate = profile_delegate
        self.fetcher = fetcher or AppleKeySetFetcher(timeout=timeout)
        self.timeout = timeout
        self.token_type_header = token_type_header
        self.token_header = token_header
        self.account_details_header = account_details_header

    async def validate(self, request: Any) -> Optional[UserIdentity]:
        token_type = request.headers.get(self.token_type_header)
        if token_type != self.name:
            return None

        token = request.headers.get(self.token_header)
        if not token:
            logger.info(f"{self.name} request without '{self.token_header}' header")
            raise IdentityException(401, "Missing access token")

        if self.token_cache is not None:
            cached = self.token_cache.get(token)
            if cached is not None:
                logger.debug(f"Using cached identity for {cached.id}")
                # The cache never holds the bearer token; the request supplies it.
                cached.token = token
                return cached

        account_details = parse_account_details(request.headers.get(self.account_details_header))

        outcome = await verify_token(
            token,
            self.client_id,
            self.leeway,
            fetcher=self.fetcher,
            timeout=self.timeout,
        )
        if not outcome.ok:
            logger.warning(f"Failed token verification: {outcome}")
            raise IdentityException(401, "Authentication failed")

        user_identity = resolve_identity(outcome.claims, account_details, self.name, token=token)

        if self.profile_delegate is not None:
            self.profile_delegate(user_identity)

        if self.token_cache is not None:
            self.token_cache.put(token, user_identity, ttl=self.token_time_to_live)

        logger.info(f"{self.name} validation succeeded for {user_identity.id}")
        return user_identity
