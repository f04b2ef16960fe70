"""
Run identifiers: ``r-YYYYMMDD-hhmmss-xxxx``.

Run ids name the per-run events file, so anything that builds a path from
one checks it first.
"""

import random
import re
import string
from datetime import datetime

RUN_ID = re.compile(r"^r-\d{8}-\d{6}-[a-z0-9]{4}$")


def new_run_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=4))
    return f"r-{datetime.now():%Y%m%d-%H%M%S}-{suffix}"


def is_valid_run_id(run_id: str) -> bool:
    return bool(RUN_ID.match(run_id or ""))


def check_run_id(run_id: str) -> str:
    """Return the id unchanged, or raise ValueError for anything malformed."""
    if not is_valid_run_id(run_id):
        raise ValueError(f"Invalid run id: {run_id!r}")
    return run_id
