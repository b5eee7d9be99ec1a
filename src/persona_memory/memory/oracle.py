"""
Chat model calls with overload retry.

Both the completion call and the summarization calls go through
``invoke_with_retry``. Only the provider's "overloaded" status (HTTP 529) is
retried, with exponential backoff; every other failure is terminal for that
call and surfaces as an ``OracleError``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

OVERLOADED_STATUS = 529


class OracleError(Exception):
    """A chat model call failed or returned an unusable reply."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP status carried by a provider exception, if any."""
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def response_text(response: Any) -> str:
    """Plain text of a chat model reply (string or content-block list)."""
    content = getattr(response, "content", response)
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        content = "".join(parts)
    return str(content or "").strip()


async def invoke_with_retry(
    llm,
    messages: list,
    max_retries: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: Optional[logging.Logger] = None,
) -> str:
    """
    Call ``llm.ainvoke(messages)`` and return the reply text.

    Retry delays are ``base_delay * 2**n`` for n = 1..max_retries
    (2s, 4s, 8s with the default base delay).

    Raises:
        OracleError: no model configured, a non-retryable failure, retries
            exhausted, or an empty reply.
    """
    log = logger or logging.getLogger(__name__)
    if llm is None:
        raise OracleError("No chat model configured")

    retries = 0
    while True:
        try:
            response = await llm.ainvoke(messages)
        except Exception as e:
            status = status_code_of(e)
            if status == OVERLOADED_STATUS and retries < max_retries:
                retries += 1
                delay = base_delay * 2**retries
                log.info(
                    "Model overloaded (HTTP 529), retrying in %.1fs (%d/%d)",
                    delay,
                    retries,
                    max_retries,
                )
                await sleep(delay)
                continue
            log.warning("Model call failed (status=%s): %s", status, e)
            raise OracleError(f"Model call failed: {e}", status) from e

        text = response_text(response)
        if not text:
            raise OracleError("Model returned an empty reply")
        return text
