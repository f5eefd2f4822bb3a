# wled_transport.py
# GAL 26-09-30: HTTP access to a WLED controller
# - fetch presets.json / palette<n>.json / ledmap<n>.json
# - POST /json/state (show on device), multipart POST /upload, GET /win&RB (reboot)
# - Fixed retry count and delay; exhausted retries raise DeviceError

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

import requests

from librarian_console import WARN, dprint
from wled_core import DeviceError

RETRIES = 3
RETRY_DELAY = 1.0      # seconds between tries
STATE_TIMEOUT = 5      # /json/state
TRANSFER_TIMEOUT = 10  # downloads, uploads, reboot


class WledClient:
    """One controller at `ip`. Every call is synchronous."""

    def __init__(self, ip: str, retries: int = RETRIES, retry_delay: float = RETRY_DELAY,
                 timeout: float = TRANSFER_TIMEOUT, state_timeout: float = STATE_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.ip = ip
        self.retries = max(1, int(retries))
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.state_timeout = state_timeout
        self.session = session or requests.Session()

    def url(self, path: str) -> str:
        return f"http://{self.ip}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, timeout: float, **kw) -> requests.Response:
        url = self.url(path)
        last = None
        for attempt in range(1, self.retries + 1):
            dprint(f"{method} {url} (try {attempt}/{self.retries})", ctx="wled")
            try:
                resp = self.session.request(method, url, timeout=timeout, **kw)
            except requests.RequestException as e:
                last = str(e)
            else:
                if resp.status_code < 500:
                    return resp
                last = f"HTTP {resp.status_code}"
            if attempt < self.retries:
                time.sleep(self.retry_delay)
        raise DeviceError(f"{method} {url} failed after {self.retries} tries: {last}")

    def fetch(self, name: str) -> Optional[str]:
        """Text of a device file; None when the device says 404."""
        resp = self._request("GET", name, self.timeout)
        if resp.status_code == 404:
            dprint(f"{name} not found on {self.ip}", ctx="wled")
            return None
        if resp.status_code >= 400:
            raise DeviceError(f"GET {self.url(name)}: HTTP {resp.status_code}")
        return resp.text

    def post_state(self, payload: str) -> None:
        resp = self._request("POST", "json/state", self.state_timeout, data=payload.encode("utf-8"),
                             headers={"Content-Type": "application/json"})
        if resp.status_code >= 400:
            raise DeviceError(f"POST {self.url('json/state')}: HTTP {resp.status_code}")

    def upload(self, path: Path) -> None:
        """Multipart upload; the device stores it under the exact file name."""
        path = Path(path)
        files = {"data": (path.name, path.read_bytes(), "application/json")}
        resp = self._request("POST", "upload", self.timeout, files=files)
        if resp.status_code >= 400:
            raise DeviceError(f"Upload of {path.name} failed: HTTP {resp.status_code}")

    def reset(self) -> None:
        resp = self._request("GET", "win&RB", self.timeout)
        if resp.status_code >= 400:
            WARN(f"Reboot request answered HTTP {resp.status_code}", ctx="wled")
