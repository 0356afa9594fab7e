"""
Short-TTL memoization in front of the content generator.

Entries are keyed by ``(instruction, content_type)``. The cache is a pure
performance layer: it starts empty, is never persisted, and a miss behaves
exactly like a hit apart from the generator's own nondeterminism.
"""

import logging
import threading
import time
from typing import Callable, Dict, Tuple

from .errors import GeneratorInvalidResponse
from .generator import ContentGenerator

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str]


class GenerationCache:
    """
    TTL cache around a ``ContentGenerator``.

    The lock only guards the map. It is not held while the generator runs,
    so concurrent misses for the same key may each call upstream.

    Attributes:
        generator (ContentGenerator): Engine called on a miss
        ttl_seconds (float): How long a stored result stays valid
        clock (Callable[[], float]): Monotonic time source, injectable for tests
    """

    def __init__(self, generator: ContentGenerator, ttl_seconds: float = 3600.0,
                 clock: Callable[[], float] = time.monotonic):
        self.generator = generator
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.lock = threading.Lock()
        # {(instruction, content_type): (content, expires_at)}
        self._entries: Dict[CacheKey, Tuple[str, float]] = {}

    def get_or_generate(self, instruction: str, content_type: str) -> str:
        """
        Return cached content for the key, generating and storing it on a miss.

        Raises:
            UpstreamGenerationError: Propagated from the generator; nothing is cached
        """
        key = (instruction, content_type)
        with self.lock:
            entry = self._entries.get(key)
            if entry is not None:
                content, expires_at = entry
                if self.clock() < expires_at:
                    logger.debug("Cache hit for: %s", instruction[:50])
                    return content
                del self._entries[key]

        logger.debug("Cache miss for: %s", instruction[:50])
        content = self.generator.generate(instruction, content_type)
        if not content or not content.strip():
            raise GeneratorInvalidResponse("No content generated.")

        with self.lock:
            self._entries[key] = (content, self.clock() + self.ttl_seconds)
        return content

    def sweep(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self.clock()
        with self.lock:
            expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def clear(self):
        with self.lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)
