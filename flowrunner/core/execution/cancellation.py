"""
Cancellation Tokens

One-shot, idempotent cancellation broadcast. The scheduler checks the token
before each dispatch; handlers check it through NodeExecutionInput.checkpoint().
Child tokens (e.g. a node deadline) are cancelled with their parent but can
also be cancelled on their own without affecting it.
"""

import asyncio
import logging
from typing import List, Optional

from flowrunner.core.errors import CancellationError, CancelReason

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cancellation signal shared by everything running for one execution."""

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._reason: Optional[CancelReason] = None
        self._children: List["CancellationToken"] = []
        self._parent = parent

        if parent is not None:
            parent._children.append(self)
            if parent.is_cancelled:
                self.cancel(parent.reason)

    @property
    def is_cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[CancelReason]:
        return self._reason

    def cancel(self, reason: CancelReason = CancelReason.USER) -> bool:
        """
        Fire the token and every child token.

        Returns:
            False if the token was already cancelled (the first reason sticks)
        """
        if self._reason is not None:
            return False
        self._reason = reason
        self._event.set()
        for child in list(self._children):
            child.cancel(reason)
        return True

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def detach(self) -> None:
        """Stop receiving the parent's cancellation (child tokens only)."""
        if self._parent is not None and self in self._parent._children:
            self._parent._children.remove(self)
        self._parent = None

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise CancellationError(self._reason)

    async def wait(self) -> CancelReason:
        await self._event.wait()
        return self._reason

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep, waking early if the token fires.

        Returns:
            True if the sleep was interrupted by cancellation
        """
        if self.is_cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def __repr__(self) -> str:
        state = self._reason.value if self._reason else "active"
        return f"<CancellationToken {state}>"
