"""HTTP client with retries, timeouts, and capped streaming downloads."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Callable

import requests
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from estate_import.common.constants import USER_AGENT
from estate_import.common.errors import FetchTransportError, SizeExceeded

RetryHook = Callable[[int, BaseException | None], None]


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 20.0
    read: float = 300.0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    wait_seconds: float = 5.0


def _declared_length(response: requests.Response) -> int | None:
    value = response.headers.get("Content-Length") if response.headers else None
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class HttpClient:
    def __init__(
        self,
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
        verify_ssl: bool = True,
    ) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.verify_ssl = verify_ssl
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "*/*"}
        if headers:
            out.update(headers)
        return out

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        if status < 200 or status >= 300:
            raise FetchTransportError(f"HTTP status: {status}")

    def _download_once(
        self,
        url: str,
        target: Path,
        *,
        auth: tuple[str, str] | None,
        max_bytes: int | None,
        chunk_size: int,
        headers: dict[str, str] | None,
    ) -> int:
        try:
            response = self.session.request(
                method="GET",
                url=url,
                auth=auth,
                headers=self._headers(headers),
                timeout=(self.timeout.connect, self.timeout.read),
                stream=True,
                verify=self.verify_ssl,
            )
        except requests.RequestException as exc:
            raise FetchTransportError(f"Request failed for {url}: {exc}") from exc

        try:
            self._raise_for_status(response)
            declared = _declared_length(response)
            if max_bytes is not None and declared is not None and declared > max_bytes:
                raise SizeExceeded(f"Declared size {declared} exceeds cap {max_bytes}")

            written = 0
            with target.open("wb") as f:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if not chunk:
                        continue
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise SizeExceeded(f"Transfer exceeded cap {max_bytes} bytes")
                    f.write(chunk)

            if declared is not None and written < declared:
                raise FetchTransportError(f"Partial body: got {written} of {declared} bytes")
            if written == 0:
                raise FetchTransportError(f"Empty body from {url}")
            return written
        except requests.RequestException as exc:
            raise FetchTransportError(f"Transfer interrupted for {url}: {exc}") from exc
        finally:
            response.close()

    def download(
        self,
        url: str,
        target: Path,
        *,
        auth: tuple[str, str] | None = None,
        max_bytes: int | None = None,
        chunk_size: int = 128 * 1024,
        headers: dict[str, str] | None = None,
        on_retry: RetryHook | None = None,
    ) -> int:
        """Stream ``url`` into ``target``; transport failures are retried, size caps are not."""

        def _before_sleep(state: RetryCallState) -> None:
            if on_retry is None:
                return
            exc = state.outcome.exception() if state.outcome is not None else None
            on_retry(state.attempt_number, exc)

        @retry(
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_fixed(self.retry.wait_seconds),
            retry=retry_if_exception_type(FetchTransportError),
            before_sleep=_before_sleep,
            reraise=True,
        )
        def _wrapped() -> int:
            return self._download_once(
                url,
                target,
                auth=auth,
                max_bytes=max_bytes,
                chunk_size=chunk_size,
                headers=headers,
            )

        return _wrapped()

    def head_status(self, url: str, *, auth: tuple[str, str] | None = None) -> int:
        try:
            response = self.session.request(
                method="HEAD",
                url=url,
                auth=auth,
                headers=self._headers(None),
                timeout=(self.timeout.connect, 30.0),
                allow_redirects=True,
                verify=self.verify_ssl,
            )
        except requests.RequestException as exc:
            raise FetchTransportError(f"Connection failed for {url}: {exc}") from exc
        try:
            return response.status_code
        finally:
            response.close()
