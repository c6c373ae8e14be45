"""HTTP client for the credit-bureau prescreen gateway.

Handles authentication, program listing and editing, record submission and
billing reports. Network errors, timeouts and 5xx responses are retried with
exponential backoff; a 401 triggers one re-login.

Usage:
    async with BureauGatewayClient(settings.get_bureau_config()) as client:
        outcome = await client.submit_batch(records, program.bureau_program_id)
"""

from datetime import date
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from prescreen.bureau.token_cache import IssuedToken, TokenCache
from prescreen.bureau.types import (
    BUREAU_OUTPUT_KEYS,
    BureauScore,
    ConnectionCheck,
    ConnectionStatus,
    GatewayProgram,
    LeadRecord,
    RecordFailure,
    ScoredRecord,
    SubmitOutcome,
)
from prescreen.config.settings import BureauConfig
from prescreen.core.exceptions import (
    GatewayAuthenticationError,
    GatewayBlockedError,
    GatewayError,
    GatewayNotConfigured,
    GatewayTimeout,
    GatewayUnavailable,
    ValidationError,
)
from prescreen.db.models import MatchStatus
from prescreen.observability.metrics import observe_gateway_call

logger = structlog.get_logger()

_REJECTED_STATUSES = (400, 422)
_MISMATCH_MARKERS = ("address", "mismatch")


class BureauGatewayClient:
    """Async client for the bureau gateway.

    The token cache is injected so that every client in a process shares
    one login. Pass ``transport`` to route requests through a mock.
    """

    def __init__(
        self,
        config: BureauConfig,
        token_cache: TokenCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._tokens = token_cache or TokenCache(config.token_refresh_buffer_seconds)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    @property
    def max_batch_size(self) -> int:
        return self._config.max_batch_size

    async def __aenter__(self) -> "BureauGatewayClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url or "",
                timeout=httpx.Timeout(self._config.timeout_seconds),
                transport=self._transport,
            )
        return self._client

    def _require_configured(self) -> None:
        if not self._config.is_configured:
            raise GatewayNotConfigured()

    @property
    def _company_path(self) -> str:
        return f"/instaprescreen/companies/{self._config.company_id}"

    # =========================================================================
    # Authentication
    # =========================================================================

    async def authenticate(self) -> str:
        """Return a valid bearer token, logging in if the cache is stale.

        Raises:
            GatewayNotConfigured: If credentials are incomplete
            GatewayAuthenticationError: If the gateway rejects the credentials
            GatewayBlockedError: If the gateway blocks our source IP
        """
        self._require_configured()
        return await self._tokens.get(self._login)

    async def _login(self) -> IssuedToken:
        with observe_gateway_call("login"):
            response = await self._send(
                "POST",
                "/auth/tokens",
                data={
                    "username": self._config.username,
                    "password": self._config.password.get_secret_value(),
                },
                timeout=self._config.login_timeout_seconds,
            )

            if response.status_code >= 500:
                raise GatewayUnavailable(
                    f"Login failed: {response.status_code}", status_code=response.status_code
                )
            if not response.is_success:
                if _is_blocked(response):
                    raise GatewayBlockedError(
                        "Source IP blocked by bureau gateway firewall",
                        status_code=response.status_code,
                    )
                raise GatewayAuthenticationError(
                    f"Authentication failed: {response.status_code}",
                    status_code=response.status_code,
                )

            data = _json_or_none(response)
            if not isinstance(data, dict):
                data = {}
            token = data.get("token") or data.get("access_token")
            if not token:
                raise GatewayAuthenticationError("No token in authentication response")

            ttl = self._config.token_ttl_seconds
            if isinstance(data.get("expires_in"), int | float) and data["expires_in"] > 0:
                ttl = float(data["expires_in"])

        logger.info("bureau_authenticated")
        return IssuedToken(token=str(token), ttl_seconds=ttl)

    # =========================================================================
    # Transport
    # =========================================================================

    async def _send(
        self,
        method: str,
        path: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        request_timeout = (
            httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT
        )
        try:
            return await self._http().request(
                method, path, headers=headers, timeout=request_timeout, **kwargs
            )
        except httpx.TimeoutException as e:
            raise GatewayTimeout(f"Bureau gateway timed out on {path}") from e
        except httpx.TransportError as e:
            raise GatewayUnavailable(f"Bureau gateway unreachable: {type(e).__name__}") from e

    async def _send_authorized(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        token = await self.authenticate()
        response = await self._send(
            method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs
        )

        if response.status_code == 401:
            logger.info("bureau_token_rejected", path=path)
            self._tokens.invalidate(token)
            token = await self.authenticate()
            response = await self._send(
                method, path, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
            if response.status_code == 401:
                raise GatewayAuthenticationError("Gateway rejected a fresh token", status_code=401)

        if response.status_code >= 500:
            raise GatewayUnavailable(
                f"Bureau gateway returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code == 403 and _is_blocked(response):
            raise GatewayBlockedError(
                "Source IP blocked by bureau gateway firewall", status_code=403
            )
        return response

    async def _request(
        self, operation: str, method: str, path: str, **kwargs: Any
    ) -> httpx.Response:
        """Authorized request with retries for transient failures."""
        self._require_configured()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._config.max_attempts),
            wait=wait_exponential(
                multiplier=self._config.retry_base_delay, max=self._config.retry_max_delay
            ),
            retry=retry_if_exception_type(GatewayUnavailable),
            reraise=True,
        )
        with observe_gateway_call(operation) as ctx:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "bureau_request_retry",
                            operation=operation,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    response = await self._send_authorized(method, path, **kwargs)
            ctx["outcome"] = str(response.status_code)
        return response

    # =========================================================================
    # Programs
    # =========================================================================

    async def list_programs(self) -> list[GatewayProgram]:
        """List the company's prescreen programs.

        Raises:
            GatewayError: If the gateway call fails
        """
        response = await self._request("list_programs", "GET", f"{self._company_path}/programs")
        if not response.is_success:
            raise GatewayError(
                f"Failed to list programs: {response.status_code}",
                status_code=response.status_code,
            )
        data = _json_or_none(response)
        items = data if isinstance(data, list) else (data or {}).get("programs") or []
        return [
            GatewayProgram.from_api(item)
            for item in items
            if isinstance(item, dict) and "id" in item
        ]

    async def get_program(self, program_id: str) -> dict[str, Any]:
        """Full program definition, segments and criteria included.

        Raises:
            GatewayError: If the gateway call fails
        """
        response = await self._request(
            "get_program", "GET", f"{self._company_path}/programs/{program_id}"
        )
        data = _json_or_none(response)
        if not response.is_success or not isinstance(data, dict):
            raise GatewayError(
                f"Failed to fetch program {program_id}: {response.status_code}",
                status_code=response.status_code,
            )
        return data

    async def create_program(self, definition: dict[str, Any]) -> GatewayProgram:
        """Create a program from a full definition.

        Raises:
            GatewayError: If the gateway refuses the definition or the call fails
        """
        response = await self._request(
            "create_program", "POST", f"{self._company_path}/programs", json=definition
        )
        return _saved_program(response, "create")

    async def update_program(self, program_id: str, definition: dict[str, Any]) -> GatewayProgram:
        """Replace a program's definition. The gateway expects the whole
        definition, so merge changes over ``get_program`` first.

        Raises:
            GatewayError: If the gateway refuses the definition or the call fails
        """
        response = await self._request(
            "update_program",
            "PUT",
            f"{self._company_path}/programs/{program_id}",
            json=definition,
        )
        return _saved_program(response, "update", program_id)

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit_batch(self, records: list[LeadRecord], program_id: str) -> SubmitOutcome:
        """Submit records for a soft pull and classify each record's outcome.

        Args:
            records: Records to submit, at most ``max_batch_size``
            program_id: Gateway program identifier

        Returns:
            Outcome with one entry per submitted record, keyed by list index

        Raises:
            ValidationError: If more records are passed than the gateway accepts
            GatewayUnavailable: If retries are exhausted on transient failures
            GatewayError: For any other whole-call failure
        """
        if len(records) > self._config.max_batch_size:
            raise ValidationError(
                f"At most {self._config.max_batch_size} records per submission, "
                f"got {len(records)}",
                field="records",
            )
        if not records:
            return SubmitOutcome()

        payload = {"records": [record.to_payload(i + 1) for i, record in enumerate(records)]}
        response = await self._request(
            "submit",
            "POST",
            f"{self._company_path}/programs/{program_id}/records",
            json=payload,
        )

        if response.status_code in _REJECTED_STATUSES:
            reason = _error_message(response) or f"Rejected by gateway ({response.status_code})"
            logger.warning(
                "bureau_submission_rejected",
                status_code=response.status_code,
                record_count=len(records),
            )
            return SubmitOutcome(
                failures=[
                    RecordFailure(index=i, match_status=MatchStatus.REJECTED, reason=reason)
                    for i in range(len(records))
                ]
            )

        data = _json_or_none(response)
        has_arrays = isinstance(data, dict) and ("qualified" in data or "failed" in data)
        # The gateway answers 404 when nothing qualified but still sends the arrays
        if not has_arrays:
            raise GatewayError(
                f"Submit failed: {response.status_code}", status_code=response.status_code
            )

        outcome = _parse_outcome(data, len(records))
        logger.info(
            "bureau_submission_complete",
            record_count=len(records),
            scored=len(outcome.results),
            failed=len(outcome.failures),
        )
        return outcome

    # =========================================================================
    # Diagnostics and reporting
    # =========================================================================

    async def check_connection(self) -> ConnectionCheck:
        """Check credentials and reachability by listing programs."""
        if not self._config.is_configured:
            return ConnectionCheck(
                ConnectionStatus.NOT_CONFIGURED,
                "Set BUREAU_BASE_URL, BUREAU_USERNAME, BUREAU_PASSWORD and BUREAU_COMPANY_ID",
            )
        try:
            programs = await self.list_programs()
        except GatewayBlockedError as e:
            return ConnectionCheck(ConnectionStatus.BLOCKED, str(e))
        except GatewayError as e:
            return ConnectionCheck(ConnectionStatus.ERROR, str(e))
        return ConnectionCheck(
            ConnectionStatus.CONNECTED,
            f"Connected; {len(programs)} program(s) available",
            program_count=len(programs),
        )

    async def get_billing_report(self, start: date, end: date) -> list[dict[str, Any]]:
        """Fetch the basic billing report for the company.

        Raises:
            ValidationError: If ``start`` is after ``end``
            GatewayError: If the gateway call fails
        """
        if start > end:
            raise ValidationError("Start date must not be after end date", field="start_date")
        response = await self._request(
            "billing_report",
            "GET",
            f"/reports/instaprescreen/basic/company/{self._config.company_id}",
            params={"startDate": start.isoformat(), "endDate": end.isoformat()},
        )
        if not response.is_success:
            raise GatewayError(
                f"Report API returned {response.status_code}", status_code=response.status_code
            )
        data = _json_or_none(response)
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            return data.get("records") or data.get("data") or []
        return []


# =============================================================================
# Response parsing
# =============================================================================


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _is_blocked(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return "Permission Required" in response.text or "text/html" in content_type


def _error_message(response: httpx.Response) -> str | None:
    data = _json_or_none(response)
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            if isinstance(data.get(key), str):
                return data[key]
    return None


def _saved_program(
    response: httpx.Response, action: str, program_id: str | None = None
) -> GatewayProgram:
    data = _json_or_none(response)
    if not response.is_success or not isinstance(data, dict):
        detail = _error_message(response) or str(response.status_code)
        raise GatewayError(
            f"Failed to {action} program: {detail}", status_code=response.status_code
        )
    if "id" not in data:
        if program_id is None:
            raise GatewayError(f"No program id in {action} response")
        data = {**data, "id": program_id}
    logger.info("bureau_program_saved", action=action, program_id=str(data["id"]))
    return GatewayProgram.from_api(data)


def _index(input_id: Any, count: int) -> int | None:
    """Map a 1-based ``input_id`` back to a list index."""
    try:
        index = int(input_id) - 1
    except (TypeError, ValueError):
        return None
    return index if 0 <= index < count else None


def _score(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _failure_status(entry: dict[str, Any], reason: str) -> MatchStatus:
    if entry.get("match"):
        return MatchStatus.NO_SCORE
    lowered = reason.lower()
    if any(marker in lowered for marker in _MISMATCH_MARKERS):
        return MatchStatus.MISMATCH
    return MatchStatus.NO_MATCH


def _parse_outcome(data: dict[str, Any], count: int) -> SubmitOutcome:
    outcome = SubmitOutcome()
    seen: set[int] = set()

    for entry in data.get("qualified") or []:
        index = _index(entry.get("input_id"), count) if isinstance(entry, dict) else None
        if index is None or index in seen:
            logger.warning("bureau_unexpected_record", section="qualified")
            continue
        seen.add(index)
        outputs = entry.get("outputs")
        scores: list[BureauScore] = []
        for key, bureau in BUREAU_OUTPUT_KEYS.items():
            output = outputs.get(key) if isinstance(outputs, dict) else None
            if isinstance(output, dict):
                scores.append(
                    BureauScore(
                        bureau=bureau,
                        credit_score=_score(output.get("credit_score")),
                        raw_output=output,
                    )
                )
        outcome.results.append(
            ScoredRecord(index=index, scores=scores, segment_name=entry.get("segment_name"))
        )

    for entry in data.get("failed") or []:
        index = _index(entry.get("input_id"), count) if isinstance(entry, dict) else None
        if index is None or index in seen:
            logger.warning("bureau_unexpected_record", section="failed")
            continue
        seen.add(index)
        reason = str(entry.get("error") or entry.get("reason") or "No match found")
        outcome.failures.append(
            RecordFailure(index=index, match_status=_failure_status(entry, reason), reason=reason)
        )

    for index in range(count):
        if index not in seen:
            outcome.failures.append(
                RecordFailure(
                    index=index,
                    match_status=MatchStatus.NO_MATCH,
                    reason="No response from bureau for record",
                )
            )

    return outcome
