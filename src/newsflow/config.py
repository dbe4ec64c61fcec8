"""
Environment-driven defaults.

Environment Variables:
    NEWSFLOW_BATCHSIZE=1000   # rows of the primary matrix scored per batch
    NEWSFLOW_WORKERS=4        # threads used to score batches (1 = sequential)
"""

from __future__ import annotations

import os

DEFAULT_BATCHSIZE = int(os.environ.get("NEWSFLOW_BATCHSIZE", "1000"))
DEFAULT_WORKERS = min(int(os.environ.get("NEWSFLOW_WORKERS", "4")), 64)

# Minimum batches before a thread pool is used
MIN_BATCHES_FOR_PARALLEL = 2

# Batches in flight per worker; the scheduler is only advanced as results are collected
MAX_PENDING_PER_WORKER = 2

# Seconds per date unit
SECONDS_PER_UNIT = {
    "days": 86400.0,
    "hours": 3600.0,
    "minutes": 60.0,
    "seconds": 1.0,
}
