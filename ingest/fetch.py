from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx


logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class FetchError(Exception):
    def __init__(self, message: str, *, url: str, attempts: int = 1) -> None:
        super().__init__(message)
        self.url = url
        self.attempts = attempts


class FetchTimeoutError(FetchError):
    pass


class FetchNetworkError(FetchError):
    pass


class HttpStatusError(FetchError):
    def __init__(self, *, url: str, status_code: int, body: str) -> None:
        super().__init__(f"HTTP {status_code} from {url}", url=url)
        self.status_code = status_code
        self.body = body


class PayloadDecodeError(FetchError):
    pass


@dataclass(frozen=True)
class FetchOptions:
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Any = None
    params: dict[str, str] | None = None
    timeout: float = 8.0
    max_retries: int = 2
    retry_delay: float = 1.0
    response_type: str = "json"


def backoff_delay(options: FetchOptions, attempt: int) -> float:
    return options.retry_delay * (2 ** (attempt - 1))


def retry_budget_seconds(options: FetchOptions) -> float:
    delays = sum(backoff_delay(options, n) for n in range(1, options.max_retries + 1))
    return options.timeout * (options.max_retries + 1) + delays


async def fetch_payload(
    client: httpx.AsyncClient,
    url: str,
    options: FetchOptions,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> Any:
    timeout = httpx.Timeout(options.timeout, connect=min(5.0, options.timeout))
    attempt = 0
    while True:
        attempt += 1
        try:
            response = await client.request(
                options.method,
                url,
                headers=options.headers,
                json=options.json_body,
                params=options.params,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            if attempt > options.max_retries:
                raise FetchTimeoutError(
                    f"timeout after {attempt} attempts: {url}", url=url, attempts=attempt
                ) from e
            error = f"timeout:{e.__class__.__name__}"
        except httpx.TransportError as e:
            if attempt > options.max_retries:
                raise FetchNetworkError(
                    f"network error after {attempt} attempts: {e.__class__.__name__}",
                    url=url,
                    attempts=attempt,
                ) from e
            error = f"request_error:{e.__class__.__name__}"
        else:
            return _decode(response, url, options)

        delay = backoff_delay(options, attempt)
        logger.info(
            "retry %d/%d for %s after %.1fs (%s)",
            attempt,
            options.max_retries,
            url,
            delay,
            error,
        )
        await sleep(delay)


def _decode(response: httpx.Response, url: str, options: FetchOptions) -> Any:
    if not response.is_success:
        raise HttpStatusError(
            url=url, status_code=response.status_code, body=response.text[:2000]
        )
    if options.response_type == "text":
        return response.text
    try:
        return json.loads(response.content)
    except (ValueError, UnicodeDecodeError) as e:
        raise PayloadDecodeError(f"invalid JSON from {url}", url=url) from e
