"""
External Route Optimizer Client

Serialized, retrying client for the RouteXL-compatible tour endpoint. The
endpoint rate-limits per credential, so the client owns a single permit and
at most one request is in flight per process. Callers queue on the permit.

Retry policy:
    - 429 is the only retried response. The same request is re-sent
      immediately while the permit is held, without a cap unless
      ROUTEXL_MAX_RATE_LIMIT_RETRIES is set to a positive number.
    - Anything else (transport error, other non-2xx, malformed body) is
      logged with a correlation id and raised as OptimizerFatalError.

Waiting for the permit can be cancelled. Once acquired, the call runs in a
shielded task that always releases the permit, so a cancelled caller cannot
strand it.
"""

import asyncio
import json
import logging
import os
import uuid
from typing import Optional, Sequence

import httpx
from pydantic import ValidationError

from models.optimization import OptimizationResult, OptimizerLocation, OptimizerResponse
from services.errors import InvalidArgument, OptimizerFatalError, TransientRejection

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.routexl.com/tour"
DEFAULT_TIMEOUT_SECONDS = 60.0


class ExternalOptimizerClient:
    """
    Client for the external tour optimization endpoint.

    Args:
        api_url: Tour endpoint (default: ROUTEXL_API_URL or the public API)
        username: Basic auth user (default: ROUTEXL_USERNAME)
        password: Basic auth password (default: ROUTEXL_PASSWORD)
        timeout: Per-request timeout in seconds (default: ROUTEXL_TIMEOUT_SECONDS)
        max_rate_limit_retries: Cap on 429 retries, 0 for none
            (default: ROUTEXL_MAX_RATE_LIMIT_RETRIES)
        permit: Semaphore gating calls; a fresh one-slot semaphore by default
        transport: Optional httpx transport
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        max_rate_limit_retries: Optional[int] = None,
        permit: Optional[asyncio.Semaphore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url or os.getenv("ROUTEXL_API_URL", DEFAULT_API_URL)
        self.username = username if username is not None else os.getenv("ROUTEXL_USERNAME")
        self.password = password if password is not None else os.getenv("ROUTEXL_PASSWORD")
        self.timeout = timeout if timeout is not None else float(
            os.getenv("ROUTEXL_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))
        )
        self.max_rate_limit_retries = (
            max_rate_limit_retries if max_rate_limit_retries is not None
            else int(os.getenv("ROUTEXL_MAX_RATE_LIMIT_RETRIES", "0"))
        )
        self._permit = permit or asyncio.Semaphore(1)
        self._transport = transport

        logger.info(
            f"Optimizer client initialized: url={self.api_url}, timeout={self.timeout}, "
            f"max_rate_limit_retries={self.max_rate_limit_retries or 'unbounded'}"
        )

    @property
    def configured(self) -> bool:
        return bool(self.username and self.password)

    async def optimize(self, locations: Sequence[OptimizerLocation]) -> OptimizationResult:
        """
        Submit ``locations`` and return the optimized visiting order.

        Args:
            locations: Non-empty list of locations, first and last being the
                journey's start and end

        Returns:
            OptimizationResult with per-stop arrival and distance

        Raises:
            InvalidArgument: If ``locations`` is empty (no request is made)
            OptimizerFatalError: On any non-retriable failure
        """
        if not locations:
            raise InvalidArgument("At least one location is required for optimization")

        correlation_id = str(uuid.uuid4())
        if not self.configured:
            logger.error(f"Optimizer credentials not configured: correlation_id={correlation_id}")
            raise OptimizerFatalError("optimizer credentials not configured", correlation_id)

        await self._permit.acquire()
        task = asyncio.create_task(self._run_holding_permit(list(locations), correlation_id))
        task.add_done_callback(_log_orphaned_failure)
        return await asyncio.shield(task)

    async def _run_holding_permit(
        self,
        locations: list[OptimizerLocation],
        correlation_id: str,
    ) -> OptimizationResult:
        try:
            return await self._submit_with_retry(locations, correlation_id)
        finally:
            self._permit.release()

    async def _submit_with_retry(
        self,
        locations: list[OptimizerLocation],
        correlation_id: str,
    ) -> OptimizationResult:
        form = {"locations": build_locations_field(locations)}
        auth = httpx.BasicAuth(self.username, self.password)

        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport, auth=auth) as client:
            while True:
                attempt += 1
                try:
                    response = await self._post(client, form, attempt, correlation_id)
                except TransientRejection as e:
                    if self.max_rate_limit_retries and attempt > self.max_rate_limit_retries:
                        logger.error(
                            f"Optimizer rate limit retries exhausted: correlation_id={correlation_id}, "
                            f"attempts={attempt}"
                        )
                        raise OptimizerFatalError(e.message, correlation_id) from e
                    logger.warning(
                        f"Optimizer rate limited, retrying: correlation_id={correlation_id}, "
                        f"attempt={attempt}"
                    )
                    continue

                result = self._parse(response, correlation_id)
                logger.info(
                    f"Optimization succeeded: correlation_id={correlation_id}, "
                    f"attempts={attempt}, stops={len(result.stops)}, feasible={result.feasible}"
                )
                return result

    async def _post(
        self,
        client: httpx.AsyncClient,
        form: dict,
        attempt: int,
        correlation_id: str,
    ) -> httpx.Response:
        try:
            response = await client.post(self.api_url, data=form)
        except httpx.HTTPError as e:
            logger.error(
                f"Optimizer request failed: correlation_id={correlation_id}, "
                f"attempt={attempt}, error={type(e).__name__}: {e}"
            )
            raise OptimizerFatalError(e, correlation_id) from e

        if response.status_code == 429:
            raise TransientRejection(attempt)

        if not response.is_success:
            logger.error(
                f"Optimizer returned error status: correlation_id={correlation_id}, "
                f"status={response.status_code}, body={response.text[:500]}"
            )
            raise OptimizerFatalError(f"HTTP {response.status_code}", correlation_id)

        return response

    @staticmethod
    def _parse(response: httpx.Response, correlation_id: str) -> OptimizationResult:
        try:
            raw = OptimizerResponse.model_validate(response.json())
            return OptimizationResult.from_response(raw)
        except (ValueError, ValidationError) as e:
            logger.error(
                f"Malformed optimizer response: correlation_id={correlation_id}, "
                f"error={e}, body={response.text[:500]}"
            )
            raise OptimizerFatalError(f"malformed response: {e}", correlation_id) from e


def build_locations_field(locations: Sequence[OptimizerLocation]) -> str:
    """JSON value of the ``locations`` form field."""
    return json.dumps([location.model_dump(exclude_none=True) for location in locations])


def _log_orphaned_failure(task: asyncio.Task) -> None:
    # The caller may have been cancelled while the shielded call finished
    if task.cancelled():
        return
    error = task.exception()
    if error is not None and not isinstance(error, OptimizerFatalError):
        logger.error(f"Optimizer call raised unexpectedly: error={error}")


_optimizer_client: Optional[ExternalOptimizerClient] = None


def get_optimizer_client() -> ExternalOptimizerClient:
    """Get or create the process-wide client and its single permit."""
    global _optimizer_client

    if _optimizer_client is None:
        _optimizer_client = ExternalOptimizerClient()

    return _optimizer_client
