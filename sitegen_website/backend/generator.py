"""
Narrow interface to the external content generator.

The store only ever asks one question of the engine: "turn this
instruction and content-type hint into markup". Concrete engines subclass
``ContentGenerator``; ``GuardedGenerator`` wraps any of them with a timeout,
error translation and output cleanup.
"""

import logging
import re
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional

from .errors import (
    GenerationTimeout,
    GeneratorInvalidResponse,
    GeneratorUnavailable,
    UpstreamGenerationError,
)

logger = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```[a-zA-Z]*\s*")
_TRAILING_FENCE = re.compile(r"\s*```$")


def clean_markup(text: Optional[str]) -> str:
    """
    Strip markdown code fences the engine sometimes wraps its HTML in.

    Raises:
        GeneratorInvalidResponse: If nothing is left after cleanup
    """
    if not text:
        raise GeneratorInvalidResponse("No content generated.")
    cleaned = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", text.strip())).strip()
    if not cleaned:
        raise GeneratorInvalidResponse("No content generated.")
    return cleaned


class ContentGenerator(ABC):
    """Turns an instruction plus a content-type hint into generated markup."""

    @abstractmethod
    def generate(self, instruction: str, content_type: str) -> str:
        """
        Return generated markup.

        Implementations raise one of the ``UpstreamGenerationError`` subtypes
        (unavailable, rate limited, safety blocked, invalid response).
        """


class UnconfiguredGenerator(ContentGenerator):
    """Stand-in used until a real engine is wired in; every call fails as unavailable."""

    def generate(self, instruction: str, content_type: str) -> str:
        raise GeneratorUnavailable("No content generator is configured")


class GuardedGenerator(ContentGenerator):
    """
    Wraps a generator so a call is timeout-bounded and fails only with store errors.

    The wrapped call runs on a worker thread; if it does not finish within
    ``timeout_seconds`` the caller gets ``GenerationTimeout`` and is released
    while the worker is left to finish (or cancelled if it never started).
    """

    def __init__(self, inner: ContentGenerator, timeout_seconds: float, max_workers: int = 8):
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="generator")

    def generate(self, instruction: str, content_type: str) -> str:
        future = self.executor.submit(self.inner.generate, instruction, content_type)
        try:
            raw = future.result(timeout=self.timeout_seconds)
        except FutureTimeout:
            future.cancel()
            logger.warning("Generation timed out after %.1fs (type=%s)", self.timeout_seconds, content_type)
            raise GenerationTimeout(f"Generation timed out after {self.timeout_seconds:g} seconds")
        except UpstreamGenerationError as e:
            logger.warning("Generator failed (%s): %s", e.kind, e)
            raise
        except Exception as e:
            logger.error("Unexpected generator error: %s", e)
            raise GeneratorUnavailable(f"Content generator failed: {e}") from e
        return clean_markup(raw)

    def shutdown(self):
        self.executor.shutdown(wait=False, cancel_futures=True)
