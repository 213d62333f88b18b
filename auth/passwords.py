"""
auth/passwords.py -- Argon2id password hashing.

Argon2id is memory-hard, which makes offline brute force of an exfiltrated
users table expensive on GPUs and ASICs. Default cost parameters: 64 MiB
memory, time cost 3, parallelism 1. The salt is embedded in the PHC output
string, so a single column stores everything needed to verify.

Failure semantics:
  VerifyMismatchError        -> False (wrong password)
  InvalidHashError and any other argon2 error -> InternalError. A corrupt hash
  in the store is an operational fault, not a wrong password, and must not be
  silently reported as "invalid credentials".

Worker pool:
  Hashing is the dominant per-request cost. The *_async variants run on a
  dedicated ThreadPoolExecutor so an event loop keeps serving other requests
  while a hash is computed. argon2-cffi releases the GIL inside the C
  implementation, so threads give real parallelism here.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import Argon2Error, InvalidHashError, VerifyMismatchError

from auth.errors import InternalError
from core.config import Settings

logger = logging.getLogger("focipedia.auth.passwords")


class PasswordHasher:
    """Argon2id hasher with a private worker pool for async callers.

    Usage:
        hasher = PasswordHasher.from_settings(get_settings())
        digest = await hasher.hash_async("Passw0rd!")
        ok = await hasher.verify_async(digest, "Passw0rd!")
        hasher.shutdown()
    """

    def __init__(
        self,
        memory_cost: int = 65536,
        time_cost: int = 3,
        parallelism: int = 1,
        max_workers: int = 4,
    ) -> None:
        self._hasher = _Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=32,
            salt_len=16,
            type=Type.ID,
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="argon2")

    @classmethod
    def from_settings(cls, settings: Settings) -> PasswordHasher:
        return cls(
            memory_cost=settings.argon2_memory_cost,
            time_cost=settings.argon2_time_cost,
            parallelism=settings.argon2_parallelism,
            max_workers=settings.password_hash_workers,
        )

    # ------------------------------------------------------------------
    # Synchronous API
    # ------------------------------------------------------------------

    def hash(self, password: str) -> str:
        """Return an Argon2id PHC string for password."""
        try:
            return self._hasher.hash(password)
        except Argon2Error as e:
            logger.error("Password hashing failed: %s", e)
            raise InternalError("Password hashing failed") from e

    def verify(self, password_hash: str, password: str) -> bool:
        """Return True if password matches password_hash.

        The comparison itself is constant-time inside argon2. Raises
        InternalError when password_hash is not a parseable Argon2 hash.
        """
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except InvalidHashError as e:
            logger.error("Stored password hash is malformed")
            raise InternalError("Password verification failed") from e
        except Argon2Error as e:
            logger.error("Password verification failed: %s", e)
            raise InternalError("Password verification failed") from e

    def needs_rehash(self, password_hash: str) -> bool:
        """True when password_hash was produced with different cost parameters."""
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHashError as e:
            raise InternalError("Password verification failed") from e

    # ------------------------------------------------------------------
    # Worker-pool API
    # ------------------------------------------------------------------

    async def hash_async(self, password: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.hash, password)

    async def verify_async(self, password_hash: str, password: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.verify, password_hash, password)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
