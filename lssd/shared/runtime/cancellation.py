"""
Cancellation tree for asyncio runtimes.

A CancelToken fires once. Firing a token fires every descendant derived
from it with child(); a child may also be fired on its own without
affecting its parent. release() detaches a token from its parent so
finished work does not accumulate under long-lived roots.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional


class CancelToken:
    def __init__(self, name: str = "root", parent: Optional["CancelToken"] = None):
        self.name = name
        self._parent = parent
        self._children: List[CancelToken] = []
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    # --------------------------------------------------

    def child(self, name: Optional[str] = None) -> "CancelToken":
        """
        Derive a subordinate token. A child of a fired token starts fired.
        """
        token = CancelToken(name or f"{self.name}/child", parent=self)
        if self.cancelled:
            token.cancel(self._reason)
        else:
            self._children.append(token)
        return token

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        children, self._children = self._children, []
        for child in children:
            child.cancel(reason)

    def release(self) -> None:
        """
        Detach from the parent. Safe to call more than once.
        """
        parent, self._parent = self._parent, None
        if parent is not None:
            try:
                parent._children.remove(self)
            except ValueError:
                pass

    async def wait(self) -> None:
        await self._event.wait()

    # --------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def child_count(self) -> int:
        return len(self._children)

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"<CancelToken {self.name} {state} children={len(self._children)}>"
