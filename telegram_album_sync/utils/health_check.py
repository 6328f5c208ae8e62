"""
Pre-flight checks run before a sync touches any media.
"""
import logging
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

import requests

from telegram_album_sync.uploader.telegram_client import Endpoint, TelegramClient

logger = logging.getLogger(__name__)


class HealthCheckResult:
    """Result of a health check."""

    def __init__(self, name: str, passed: bool, message: str, severity: str = "error"):
        """
        Initialize health check result.

        Args:
            name: Name of the check
            passed: Whether the check passed
            message: Human-readable message
            severity: "error" or "warning"
        """
        self.name = name
        self.passed = passed
        self.message = message
        self.severity = severity

    @property
    def is_blocking(self) -> bool:
        """A failed error-severity check stops the run."""
        return not self.passed and self.severity == "error"


class HealthChecker:
    """Performs health checks before a sync run."""

    def __init__(self, client: Optional[TelegramClient], state_dir: Path,
                 scratch_dir: Optional[Path] = None, min_free_gb: float = 1.0):
        """
        Initialize health checker.

        Args:
            client: Client bound to the main bot token; None skips the proxy check
            state_dir: Directory the ledgers are written to
            scratch_dir: Directory converted artifacts are written to
            min_free_gb: Warn when less disk space than this is free in the scratch directory
        """
        self.client = client
        self.state_dir = Path(state_dir)
        self.scratch_dir = Path(scratch_dir) if scratch_dir else None
        self.min_free_gb = min_free_gb
        self.results: List[HealthCheckResult] = []

    def check_all(self) -> Tuple[bool, List[HealthCheckResult]]:
        """
        Run all health checks.

        Returns:
            Tuple of (no blocking failure, list of results)
        """
        self.results = []

        self.check_write_permissions(self.state_dir, "State Directory")
        if self.scratch_dir is not None:
            self.check_write_permissions(self.scratch_dir, "Scratch Directory")
            self.check_disk_space()
        if self.client is not None:
            self.check_proxy_endpoint()

        all_passed = not any(r.is_blocking for r in self.results)
        return all_passed, self.results

    def check_write_permissions(self, directory: Path, name: str) -> None:
        """Check that a directory exists (or can be created) and is writable."""
        try:
            directory.mkdir(parents=True, exist_ok=True)
            test_file = directory / '.health_check_test'
            test_file.write_text('test')
            test_file.unlink()

            self.results.append(HealthCheckResult(name, True, f"Can write to {directory}"))
        except OSError as e:
            self.results.append(HealthCheckResult(name, False, f"Cannot write to {directory}: {e}"))

    def check_disk_space(self) -> None:
        """Warn when the scratch directory is low on space."""
        try:
            free_gb = shutil.disk_usage(self.scratch_dir).free / (1024 ** 3)
        except OSError as e:
            self.results.append(HealthCheckResult(
                "Disk Space", False, f"Could not check disk space: {e}", severity="warning"
            ))
            return

        if free_gb < self.min_free_gb:
            self.results.append(HealthCheckResult(
                "Disk Space", False,
                f"Low disk space: {free_gb:.1f} GB available",
                severity="warning"
            ))
        else:
            self.results.append(HealthCheckResult("Disk Space", True, f"{free_gb:.1f} GB available"))

    def check_proxy_endpoint(self) -> None:
        """Call getMe on the local Bot API server."""
        url = self.client.config.proxy_api_url
        try:
            response = self.client.get_me(endpoint=Endpoint.PROXY)
        except requests.RequestException as e:
            self.results.append(HealthCheckResult(
                "Bot API Proxy", False, f"API server not reachable at {url}: {e}"
            ))
            return

        if response.ok:
            username = response.payload.get('result', {}).get('username', 'unknown')
            self.results.append(HealthCheckResult(
                "Bot API Proxy", True, f"API server at {url} answered as @{username}"
            ))
        else:
            self.results.append(HealthCheckResult(
                "Bot API Proxy", False, f"API server at {url} not available ({response})"
            ))

    def log_results(self) -> None:
        """Log health check results."""
        for result in self.results:
            if result.passed:
                logger.info(f"✓ PASS: {result.name} - {result.message}")
            elif result.severity == "warning":
                logger.warning(f"⚠️  WARN: {result.name} - {result.message}")
            else:
                logger.error(f"✗ FAIL: {result.name} - {result.message}")
