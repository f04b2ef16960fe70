"""
Post-apply smoke check against the derived app host.
"""

import time
from typing import Any, Dict, List, Optional, Union
import logging

import requests

logger = logging.getLogger(__name__)


class SmokeCheckResult:
    """Result of a smoke check."""

    def __init__(self, success: bool, message: str, details: Optional[Dict[str, Any]] = None):
        self.success = success
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "details": self.details}


def app_url(app_host: str, scheme: str = "https") -> str:
    return f"{scheme}://{app_host}"


def run_smoke_check(
    base_url: str,
    path: str = "/",
    expect: Union[int, List[int]] = 200,
    retries: int = 12,
    delay: float = 5,
    timeout: float = 10,
) -> SmokeCheckResult:
    """
    Probe a deployed stack until it answers with an expected status.

    Args:
        base_url: Base URL, normally https://<app_host>
        path: Path to request
        expect: Accepted status code(s)
        retries: Maximum attempts
        delay: Seconds between attempts
        timeout: Per-request timeout in seconds

    Returns:
        SmokeCheckResult; a failed check is reported, never rolled back
    """
    expected = [expect] if isinstance(expect, int) else list(expect)
    url = f"{base_url.rstrip('/')}{path}"
    last_error = None

    logger.info(f"Smoke checking {url} (expecting {expected})")
    for attempt in range(max(1, retries)):
        try:
            response = requests.get(url, timeout=timeout)
            if response.status_code in expected:
                logger.info(f"{url} answered {response.status_code}")
                return SmokeCheckResult(True, f"{url} answered {response.status_code}", {
                    "url": url, "status": response.status_code, "attempts": attempt + 1,
                })
            last_error = f"Expected status {expected}, got {response.status_code}"
        except requests.exceptions.RequestException as e:
            last_error = f"Request failed: {e}"

        if attempt < retries - 1:
            logger.debug(f"Attempt {attempt + 1} failed, retrying in {delay}s...")
            time.sleep(delay)

    logger.error(f"{url} failed: {last_error}")
    return SmokeCheckResult(False, f"Smoke check failed for {url}: {last_error}", {
        "url": url, "error": last_error, "attempts": max(1, retries),
    })
