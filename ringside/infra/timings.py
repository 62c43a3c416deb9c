# ringside/infra/timings.py
from __future__ import annotations
import gzip
import os
import statistics
import time
from typing import Dict, List

import orjson
from loguru import logger

TIMINGS_DUMP = os.environ.get("TIMINGS_DUMP", "")

# one list per kind; single-threaded event loop, no locks
_TIMINGS: Dict[str, List[float]] = {}


def perf_ts() -> float:
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    lst = _TIMINGS.get(kind)
    if lst is None:
        lst = []
        _TIMINGS[kind] = lst
    lst.append(float(value))


class timeit:
    """async usage:
        async with timeit("paymentsession.get"):
            await fn()
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = perf_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, perf_ts() - self._t0)


def _mean_std(values: list[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return (
        statistics.mean(values),
        statistics.stdev(values) if len(values) > 1 else 0.0
    )


def aggregates() -> List[Dict[str, float]]:
    out = []
    for kind, vals in sorted(_TIMINGS.items()):
        mean, std = _mean_std(vals)
        out.append({
            "kind": kind,
            "n": len(vals),
            "mean": mean,
            "std": std,
            "max": max(vals) if vals else 0.0,
        })
    return out


def reset() -> None:
    _TIMINGS.clear()


def dump_ndjson(path: str | None = None) -> int:
    """Append one NDJSON line per kind to `path` (gzipped for *.gz).

    Returns the number of lines written; clears the collected timings.
    """
    path = TIMINGS_DUMP if path is None else path
    if not path or not _TIMINGS:
        return 0
    rows = aggregates()
    raw = b"".join(orjson.dumps(r) + b"\n" for r in rows)
    opener = gzip.open if path.endswith(".gz") else open
    try:
        with opener(path, "ab") as f:
            f.write(raw)
    finally:
        reset()
    logger.info("dumped {} timing aggregates to {}", len(rows), path)
    return len(rows)
