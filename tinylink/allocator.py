"""Short code allocation.

The allocator hands out a valid, currently unused code for a new link: either
the caller's requested code after validation, or a random one.

Flow Diagram — allocate()
=========================
::
    ┌──────────────┐
    │ requested?   │
    └──────┬───────┘
    ┌──────┴───────────────┐
    │ YES                  │ NO
    ▼                      ▼
┌──────────────┐   ┌──────────────┐
│ validate     │   │ draw random  │◄─┐
│ format       │   │ 6-char code  │  │ collision,
└──────┬───────┘   └──────┬───────┘  │ attempts left
       ▼                  ▼          │
┌──────────────┐   ┌──────────────┐  │
│ exists in    │   │ exists in    ├──┘
│ store?       │   │ store?       │
└──────┬───────┘   └──────┬───────┘
       ▼                  ▼
   code or             code or
   CodeConflict        AllocationExhausted

Key Behaviours
===============
- The existence check only avoids obviously doomed inserts. Two callers can
  both pass it for the same code; the store's primary key decides the winner.
- Random codes are drawn uniformly from the 62 alphanumeric characters.
- Codes are case-sensitive and never normalised.
"""

import logging
import re
from typing import TYPE_CHECKING

from nanoid import generate
from prometheus_client import Counter

from tinylink.exceptions import AllocationExhausted, CodeConflict, InvalidCodeFormat

if TYPE_CHECKING:
    from tinylink.store import LinkStore

__all__ = [
    "CODE_ALPHABET",
    "RESERVED_CODES",
    "CodeAllocator",
    "generate_code",
    "validate_code",
]

CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
CODE_PATTERN = re.compile(r"[A-Za-z0-9]{6,8}")
MIN_CODE_LENGTH = 6
MAX_CODE_LENGTH = 8
DEFAULT_CODE_LENGTH = 6
DEFAULT_MAX_ATTEMPTS = 10

# Path segments owned by other routes; a link stored under one of these could
# never be reached through GET /{code}.
RESERVED_CODES = frozenset({"api", "code", "healthz", "health", "metrics", "docs", "redoc"})

CODE_COLLISIONS_TOTAL = Counter(
    "tinylink_code_collisions_total",
    "Random code draws that hit an existing code",
)


def validate_code(code: str) -> bool:
    return CODE_PATTERN.fullmatch(code) is not None


def generate_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(CODE_ALPHABET, length)


class CodeAllocator:
    """Produces codes for new links.

    Args:
        store: Link store used for existence checks.
        length: Length of generated codes.
        max_attempts: Random draws allowed before giving up.
        logger: Logger (or adapter) for allocation events.
    """

    def __init__(
        self,
        store: "LinkStore",
        *,
        length: int = DEFAULT_CODE_LENGTH,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        if not MIN_CODE_LENGTH <= length <= MAX_CODE_LENGTH:
            raise ValueError(f"Generated code length must be between 6 and 8, got {length}")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self._store = store
        self._length = length
        self._max_attempts = max_attempts
        self._logger = logger or logging.getLogger("tinylink")

    async def allocate(self, requested: str | None = None) -> str:
        """Return a code for a new link.

        Args:
            requested: Caller-supplied code. Surrounding whitespace is trimmed;
                an empty result means "generate one".

        Returns:
            str: A code that was unused at the time of the check.

        Raises:
            InvalidCodeFormat: Requested code is malformed or reserved.
            CodeConflict: Requested code is already taken.
            AllocationExhausted: Every random draw collided.
            StorageError: The existence check failed.
        """
        code = requested.strip() if requested else ""
        if code:
            return await self._claim_requested(code)
        return await self._draw_random()

    async def _claim_requested(self, code: str) -> str:
        if not validate_code(code):
            raise InvalidCodeFormat(code=code)
        if code in RESERVED_CODES:
            raise InvalidCodeFormat(f"Code '{code}' is reserved", code=code)
        if await self._store.exists(code):
            self._logger.info(f"Requested code already taken: {code}")
            raise CodeConflict(code=code)
        return code

    async def _draw_random(self) -> str:
        for attempt in range(1, self._max_attempts + 1):
            candidate = generate_code(self._length)
            if not await self._store.exists(candidate):
                return candidate
            CODE_COLLISIONS_TOTAL.inc()
            self._logger.debug(f"Random code collision on attempt {attempt}: {candidate}")

        self._logger.error(f"Code allocation exhausted after {self._max_attempts} attempts")
        raise AllocationExhausted()
