"""Identifier generation for simulation instances."""

from __future__ import annotations

import time
from uuid import uuid4


def new_simulation_id() -> str:
    """Generate a unique, roughly time-ordered simulation identifier."""
    return f"sim_{int(time.time() * 1000)}_{uuid4().hex[:9]}"
