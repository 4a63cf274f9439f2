# config.py
import os

# ======= Time budget (seconds) =======
TIME_LIMIT_SEC     = float(os.getenv("SP_TIME_LIMIT_SEC", "3"))
TIME_LIMIT_MIN_SEC = float(os.getenv("SP_TIME_LIMIT_MIN_SEC", "1"))
TIME_LIMIT_MAX_SEC = float(os.getenv("SP_TIME_LIMIT_MAX_SEC", "60"))

# ======= Search cadence =======
# Node entries between progress messages / cooperative yields.
YIELD_EVERY = int(os.getenv("SP_YIELD_EVERY", "400"))

# ======= Worker =======
# "process" spawns a child per solve; "thread" keeps the search in-process.
WORKER_ISOLATION  = os.getenv("SP_WORKER_ISOLATION", "process").strip().lower()
WORKER_GRACE_SEC  = float(os.getenv("SP_WORKER_GRACE_SEC", "5"))
WORKER_POLL_SEC   = float(os.getenv("SP_WORKER_POLL_SEC", "0.1"))
# Upper bound on how long a blocking `wait` request holds its HTTP thread.
WAIT_TIMEOUT_SEC  = float(os.getenv("SP_WAIT_TIMEOUT_SEC", str(TIME_LIMIT_MAX_SEC + WORKER_GRACE_SEC)))

# ======= Randomization =======
# Unset means "derive from the clock"; set it to replay a specific run.
_seed_raw = os.getenv("SP_SEED", "").strip()
SEED = int(_seed_raw) if _seed_raw else None

# ======= Logging =======
LOG_LEVEL = os.getenv("SP_LOG_LEVEL", "INFO").strip().upper()


class CFG:
    TIME_LIMIT_SEC     = TIME_LIMIT_SEC
    TIME_LIMIT_MIN_SEC = TIME_LIMIT_MIN_SEC
    TIME_LIMIT_MAX_SEC = TIME_LIMIT_MAX_SEC

    YIELD_EVERY = YIELD_EVERY

    WORKER_ISOLATION = WORKER_ISOLATION
    WORKER_GRACE_SEC = WORKER_GRACE_SEC
    WORKER_POLL_SEC  = WORKER_POLL_SEC
    WAIT_TIMEOUT_SEC = WAIT_TIMEOUT_SEC

    SEED = SEED

    LOG_LEVEL = LOG_LEVEL


def clamp_time_limit(seconds) -> float:
    """Clamp a requested budget into ``[TIME_LIMIT_MIN_SEC, TIME_LIMIT_MAX_SEC]``."""
    try:
        value = float(seconds)
    except (TypeError, ValueError):
        value = float(CFG.TIME_LIMIT_SEC)
    if value != value:  # NaN
        value = float(CFG.TIME_LIMIT_SEC)
    return max(float(CFG.TIME_LIMIT_MIN_SEC), min(float(CFG.TIME_LIMIT_MAX_SEC), value))


__all__ = ["CFG", "clamp_time_limit"]
