"""Headless Chromium process started and owned by the reporter."""
from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Sequence

from playwright.sync_api import sync_playwright

from ..errors import BrowserError
from . import BrowserInstance

logger = logging.getLogger(__name__)

CHROME_FLAGS = (
    "--headless",
    "--disable-gpu",
    "--no-sandbox",
    "--remote-debugging-port=0",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-background-networking",
    "--disable-extensions",
    "--hide-scrollbars",
    "--mute-audio",
    "--disable-dev-shm-usage",
)

STARTUP_TIMEOUT = 30.0


def _ensure_playwright_browsers_path() -> None:
    env_var = "PLAYWRIGHT_BROWSERS_PATH"
    if os.environ.get(env_var):
        return
    candidates = []
    if hasattr(sys, "_MEIPASS"):
        candidates.append(Path(getattr(sys, "_MEIPASS")) / "playwright-browsers")
    candidates.append(Path.cwd() / "playwright-browsers")
    candidates.append(Path(__file__).resolve().parents[2] / "playwright-browsers")
    for candidate in candidates:
        if candidate.exists():
            os.environ[env_var] = str(candidate)
            break


def bundled_chromium() -> str:
    """Path of the Chromium build installed by ``playwright install chromium``."""

    _ensure_playwright_browsers_path()
    with sync_playwright() as playwright:
        path = playwright.chromium.executable_path
    if not path or not Path(path).exists():
        raise BrowserError("Playwright Chromium is not installed. Run 'playwright install chromium'.")
    return path


class LocalBrowserInstance(BrowserInstance):
    """Spawns Chromium with remote debugging on a random port."""

    def __init__(
        self,
        executable: Optional[Path | str] = None,
        skip_tls: bool = False,
        blocked_urls: Sequence[str] = (),
        startup_timeout: float = STARTUP_TIMEOUT,
    ) -> None:
        super().__init__(ignore_https_errors=skip_tls, blocked_urls=blocked_urls)
        self._executable = str(executable) if executable else bundled_chromium()
        self._home = Path(tempfile.mkdtemp(prefix="dashboard-reporter-chrome-"))
        self._process: Optional[subprocess.Popen] = None
        self._endpoint = ""
        try:
            self._start(skip_tls, startup_timeout)
        except Exception:
            self.close()
            raise

    def _command(self, skip_tls: bool) -> List[str]:
        command = [self._executable, *CHROME_FLAGS, f"--user-data-dir={self._home}"]
        if skip_tls:
            command.append("--ignore-certificate-errors")
        command.append("about:blank")
        return command

    def _start(self, skip_tls: bool, startup_timeout: float) -> None:
        env = dict(os.environ)
        env.update(
            XDG_CONFIG_HOME=str(self._home),
            XDG_CACHE_HOME=str(self._home),
            CHROME_LOG_FILE=str(self._home / "debug.log"),
        )
        logger.info("starting local browser %s", self._executable)
        try:
            self._process = subprocess.Popen(
                self._command(skip_tls),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=env,
            )
        except OSError as exc:
            raise BrowserError(f"failed to start browser {self._executable}: {exc}") from exc
        self._endpoint = self._wait_for_endpoint(startup_timeout)
        logger.debug("local browser listening on %s", self._endpoint)

    def _wait_for_endpoint(self, startup_timeout: float) -> str:
        marker = self._home / "DevToolsActivePort"
        deadline = time.monotonic() + startup_timeout
        while time.monotonic() < deadline:
            if self._process is not None and self._process.poll() is not None:
                raise BrowserError(f"browser exited during startup with code {self._process.returncode}")
            if marker.exists():
                lines = marker.read_text(encoding="utf-8").splitlines()
                if len(lines) >= 2 and lines[0].strip().isdigit():
                    return f"ws://127.0.0.1:{lines[0].strip()}{lines[1].strip()}"
            time.sleep(0.05)
        raise BrowserError(f"browser did not expose a debugging port within {startup_timeout:.0f}s")

    @property
    def name(self) -> str:
        return "local"

    @property
    def endpoint(self) -> str:
        if not self._endpoint:
            raise BrowserError("local browser is not running")
        return self._endpoint

    def close(self) -> None:
        process, self._process = self._process, None
        self._endpoint = ""
        if process is not None and process.poll() is None:
            process.terminate()
            try:
                process.wait(5)
            except subprocess.TimeoutExpired:
                logger.warning("browser did not exit, killing pid %s", process.pid)
                process.kill()
                process.wait()
        if self._home.exists():
            shutil.rmtree(self._home, ignore_errors=True)


__all__ = ["CHROME_FLAGS", "LocalBrowserInstance", "bundled_chromium"]
