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

import hashlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from pydantic import ValidationError

from apple_identify.shared.models import UserIdentity

logger = logging.getLogger(__name__)


def token_cache_key(token: str) -> str:
    """Cache keys are token digests so raw bearer tokens never sit in a cache.

    Stored identities drop their ``token`` field for the same reason.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCache(ABC):
    """
    Abstract store of verified identities, keyed by the token they came from.
    """

    @abstractmethod
    def get(self, token: str) -> Optional[UserIdentity]:
        """Returns the cached identity for ``token``, or None if absent or stale."""
        pass

    @abstractmethod
    def put(self, token: str, identity: UserIdentity, ttl: Optional[float] = None) -> None:
        """
        Stores ``identity`` for ``token``, replacing any previous entry.
        Args:
            ttl: Seconds the entry stays valid; None keeps it until evicted.
        """
        pass


class InMemoryTokenCache(TokenCache):
    def __init__(self, max_entries: int = 10000, clock: Callable[[], float] = time.monotonic):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive.")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[UserIdentity, Optional[float]]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, token: str) -> Optional[UserIdentity]:
        key = token_cache_key(token)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            identity, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                # Stale entries are replaced on the next successful verification.
                return None
            return identity.model_copy(deep=True)

    def put(self, token: str, identity: UserIdentity, ttl: Optional[float] = None) -> None:
        key = token_cache_key(token)
        expires_at = self._clock() + ttl if ttl is not None else None
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (
                identity.model_copy(update={"token": None}, deep=True),
                expires_at,
            )
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisTokenCache(TokenCache):
    """
    Shares verified identities between processes through Redis.

    Args:
        client: A ``redis.Redis`` client.
        prefix: Namespace prepended to every key.
    """

    def __init__(self, client, prefix: str = "apple-identify:token:"):
        self.client = client
        self.prefix = prefix

    def _key(self, token: str) -> str:
        return f"{self.prefix}{token_cache_key(token)}"

    def get(self, token: str) -> Optional[UserIdentity]:
        data = self.client.get(self._key(token))
        if data is None:
            return None
        try:
            return UserIdentity.model_validate_json(data)
        except ValidationError as e:
            logger.warning(f"Dropping unreadable cached identity: {e}")
            self.client.delete(self._key(token))
            return None

    def put(self, token: str, identity: UserIdentity, ttl: Optional[float] = None) -> None:
        expire = max(1, int(ttl)) if ttl is not None else None
        self.client.set(self._key(token), identity.model_dump_json(exclude={"token"}), ex=expire)
