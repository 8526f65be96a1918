"""
User directory service.

Resolves an authenticated identity to the profile fields shown to the
other party of a call (display name and avatar). Three backends:
in-memory (tests and demos), SQL (``users`` table) and HTTP (an external
user service, cached).
"""
import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Optional

import aiohttp
from aiohttp import ClientSession, ClientTimeout, ClientError
from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..models.user import UserAccount
from ..utils.retry import async_retry, RetryConfig

logger = logging.getLogger(__name__)


class UserRecord(BaseModel):
    """Profile of a platform user."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    name: str
    avatar: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class UserDirectory(ABC):
    """Identity -> profile lookup."""

    async def initialize(self) -> None:
        pass

    async def cleanup(self) -> None:
        pass

    @abstractmethod
    async def lookup(self, identity: str) -> Optional[UserRecord]:
        """
        Look up a user by identity.

        Returns:
            UserRecord or None if the identity is unknown
        """
        pass

    async def exists(self, identity: str) -> bool:
        return await self.lookup(identity) is not None


class InMemoryUserDirectory(UserDirectory):

    def __init__(self, users: Optional[Iterable[UserRecord]] = None):
        self._users: Dict[str, UserRecord] = {}
        for user in users or ():
            self.add(user)

    def add(self, user: UserRecord) -> None:
        self._users[user.id] = user

    async def lookup(self, identity: str) -> Optional[UserRecord]:
        return self._users.get(identity)


class SqlUserDirectory(UserDirectory):
    """Reads profiles from the local ``users`` table."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def lookup(self, identity: str) -> Optional[UserRecord]:
        async with self.session_factory() as db:
            account = await db.get(UserAccount, identity)
            if account is None:
                return None
            return UserRecord(
                id=account.id,
                name=account.name,
                avatar=account.avatar,
                email=account.email,
                role=account.role
            )

    async def upsert(self, user: UserRecord) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                await db.merge(UserAccount(
                    id=user.id,
                    name=user.name,
                    avatar=user.avatar,
                    email=user.email,
                    role=user.role
                ))


class HttpUserDirectory(UserDirectory):
    """
    Looks users up in an external user service.

    ``GET {base_url}/users/{identity}`` returning the profile as JSON; 404
    means unknown. Hits and misses are cached for ``cache_ttl`` seconds.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        cache_ttl: int = 300,
        cache_size: int = 10000
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session: Optional[ClientSession] = None
        self.cache: TTLCache = TTLCache(maxsize=cache_size, ttl=cache_ttl)

    async def initialize(self) -> None:
        connector = aiohttp.TCPConnector(
            limit=20,
            limit_per_host=10,
            ttl_dns_cache=300
        )
        self.session = ClientSession(
            timeout=ClientTimeout(total=self.timeout),
            connector=connector,
            headers={
                "User-Agent": "CallHub/1.0",
                "Accept": "application/json"
            }
        )
        logger.info(f"✓ HTTP user directory initialized (endpoint: {self.base_url})")

    async def cleanup(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def lookup(self, identity: str) -> Optional[UserRecord]:
        if identity in self.cache:
            return self.cache[identity]

        user = await self._fetch(identity)
        self.cache[identity] = user
        return user

    @async_retry(RetryConfig(
        max_attempts=3,
        initial_delay=0.2,
        max_delay=2.0,
        retry_on_exceptions=(ClientError,)
    ))
    async def _fetch(self, identity: str) -> Optional[UserRecord]:
        if self.session is None:
            await self.initialize()

        async with self.session.get(f"{self.base_url}/users/{identity}") as response:
            if response.status == 404:
                return None
            response.raise_for_status()
            data = await response.json()

        # Some user services wrap the profile in a "user" envelope
        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            data = data["user"]
        data = dict(data)
        data["id"] = str(data.get("id", identity))
        return UserRecord(**data)


__all__ = [
    'UserRecord',
    'UserDirectory',
    'InMemoryUserDirectory',
    'SqlUserDirectory',
    'HttpUserDirectory',
]
