# utils/common.py
"""Common utilities: path management, timeouts and text helpers"""
import asyncio
import os
import re
from typing import Awaitable, List, TypeVar

# ⚠️ DO NOT import settings at module level - causes circular import with config.py

T = TypeVar("T")

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


# ============= Path Management =============

def get_project_root() -> str:
    """Returns the absolute path to the project's root directory."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def get_log_file_path() -> str:
    """Creates the log directory if it doesn't exist and returns the full log file path."""
    project_root = get_project_root()
    log_dir = os.path.join(project_root, 'log')

    if not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    return os.path.join(log_dir, 'rag_system.log')


# ============= Text Utilities =============

def tokenize(text: str) -> List[str]:
    """Lowercase word tokens used by both the keyword index and keyword queries."""
    return _TOKEN_RE.findall((text or "").lower())


def make_snippet(content: str, length: int) -> str:
    return content[:length] + "..." if len(content) > length else content


def estimate_tokens(text: str) -> int:
    """Rough token estimate (~4 characters per token)."""
    return len(text or "") // 4


# ============= Async Utilities =============

async def call_with_timeout(awaitable: Awaitable[T], timeout: float, error_factory) -> T:
    """
    Await with a deadline.

    On expiry the awaitable is cancelled and error_factory(message) is raised,
    so every provider call surfaces as a typed error instead of TimeoutError.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise error_factory(f"Operation timed out after {timeout} seconds") from e
