from __future__ import annotations

import os


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = (os.getenv(name) or "").strip()
    if raw:
        try:
            return max(minimum, int(raw))
        except ValueError:
            pass
    return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if raw:
        try:
            v = float(raw)
            if v > 0:
                return v
        except ValueError:
            pass
    return default


def duckdb_threads() -> int:
    return _env_int("RF_DUCKDB_THREADS", max(1, int(os.cpu_count() or 1)))


def tile_size() -> int:
    return _env_int("RF_TILE_SIZE", 256)


def agg_batch_rows() -> int:
    return _env_int("RF_AGG_BATCH_ROWS", 64)


def download_timeout_s() -> float:
    return _env_float("RF_DOWNLOAD_TIMEOUT_S", 30.0)


def memory_budget_bytes() -> int:
    """
    Memory used to judge whether a raster request is oversized.

    Defaults to physical memory where the platform reports it.
    """
    return _env_int("RF_MEMORY_BUDGET_BYTES", _physical_memory(), minimum=1)


def _physical_memory() -> int:
    try:
        return int(os.sysconf("SC_PAGE_SIZE")) * int(os.sysconf("SC_PHYS_PAGES"))
    except (AttributeError, OSError, ValueError):
        # Not available on every platform; assume a modest 4 GiB.
        return 4 * 1024**3
