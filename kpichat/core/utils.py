"""
Small shared utilities.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Generator, Iterable


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def dedupe(values: Iterable[str]) -> list[str]:
    """Drop repeated values, keeping first-seen order."""
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


def loose_key(value: object) -> str:
    """Lower-case *value* and remove all whitespace (for tolerant matching)."""
    return "".join(str(value if value is not None else "").lower().split())
