"""Idempotency keys for OAuth and withdrawal attempts."""

from __future__ import annotations

import uuid
from collections.abc import Callable

IdGenerator = Callable[[], str]


def generate_idempotency_key() -> str:
    """
    Return a fresh random token for one attempt.

    uuid4 draws from os.urandom, so two independent calls never collide in
    practice. The function holds no state; concurrent flows cannot interfere.
    """
    return str(uuid.uuid4())
