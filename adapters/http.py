"""
Shared HTTP plumbing for REST adapters.

One pooled aiohttp session per adapter instance; timeouts come from
AdapterConfig. Transport failures and non-2xx answers both surface as
AdapterError so the orchestrators only ever see one exception type.
"""
import asyncio
import time
from typing import Any, Optional

import aiohttp

from logging_setup import get_logger, Component

from .config import AdapterConfig
from .errors import AdapterError


class HTTPAdapter:
    """Base class for adapters that talk to a REST API."""

    provider: str = "http"
    component: Component = Component.LLM

    def __init__(self, config: AdapterConfig, *, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self._http_session = session
        self._owns_session = session is None
        self.logger = get_logger(self.component)

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """
        Get or create the shared HTTP session with connection pooling.

        Reuses TCP connections between requests to reduce latency.
        """
        if self._http_session is None or self._http_session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.config.pool_size,
                limit_per_host=self.config.pool_size,
                ttl_dns_cache=300,
            )
            timeout = aiohttp.ClientTimeout(
                total=self.config.total_timeout,
                connect=self.config.connect_timeout,
            )
            self._http_session = aiohttp.ClientSession(connector=connector, timeout=timeout)
            self._owns_session = True

            self.logger.info(
                "Connection pool created",
                provider=self.provider,
                pool_size=self.config.pool_size,
                connect_timeout_ms=int(self.config.connect_timeout * 1000),
                total_timeout_ms=int(self.config.total_timeout * 1000),
            )
        return self._http_session

    async def aclose(self) -> None:
        """
        Best-effort cleanup of the HTTP session.
        Safe to call multiple times.
        """
        if self._http_session is not None and self._owns_session:
            try:
                await self._http_session.close()
                self.logger.info("Connection pool closed", provider=self.provider)
            except Exception as e:
                self.logger.warning(
                    "Error closing HTTP session",
                    provider=self.provider,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._http_session = None

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        expect: str = "json",
        **kwargs: Any,
    ) -> Any:
        """
        Issue one request and return the decoded body ("json" or "bytes").

        Raises AdapterError carrying the upstream status and body text for
        non-2xx answers, and status None for transport failures.
        """
        session = self._get_or_create_session()
        t_start = time.perf_counter()
        try:
            async with session.request(method, url, **kwargs) as response:
                if response.status < 200 or response.status >= 300:
                    error_text = await response.text()
                    self.logger.error(
                        "Upstream error",
                        provider=self.provider,
                        operation=operation,
                        status_code=response.status,
                        error_text=error_text[:500],
                    )
                    raise AdapterError(self.provider, error_text or response.reason or "error", status=response.status)

                if expect == "bytes":
                    body = await response.read()
                else:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError as e:
                        raise AdapterError(
                            self.provider, f"invalid JSON in response: {e}", status=response.status
                        ) from e

                self.logger.info(
                    "Upstream call completed",
                    provider=self.provider,
                    operation=operation,
                    status_code=response.status,
                    latency_ms=int((time.perf_counter() - t_start) * 1000),
                )
                return body

        except AdapterError:
            raise
        except asyncio.TimeoutError as e:
            self.logger.error("Upstream timeout", provider=self.provider, operation=operation)
            raise AdapterError(self.provider, f"{operation} timed out") from e
        except aiohttp.ClientError as e:
            self.logger.error(
                "Upstream connection failure",
                provider=self.provider,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise AdapterError(self.provider, f"connection error during {operation}: {e}") from e
