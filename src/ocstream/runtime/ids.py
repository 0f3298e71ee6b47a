"""Locally generated event ids."""

from __future__ import annotations

import secrets
import time


class MessageIdGenerator:
    """
    Produces ids like msg_1718000000000_9f2c41ab for optimistic events.

    Scoped to its owner; there is no global counter.
    """

    def __init__(self, prefix: str = "msg"):
        self.prefix = prefix

    def next_id(self) -> str:
        return f"{self.prefix}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"
