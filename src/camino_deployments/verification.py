"""Explorer source verification for camino-deployments library."""

import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

import requests

from .addressing import encode_constructor_args
from .constants import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_DELAY
from .exceptions import RateLimitedError, VerificationRejectedError
from .retry import with_retry
from .types import (
    DeployableUnit,
    DeploymentRecord,
    ExplorerEndpoint,
    ExplorerKind,
    RunContext,
    SourceBundle,
    VerificationJob,
    VerificationOutcome,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class VerificationRequest:
    """What every explorer needs to match a deployed address to its source."""

    address: str
    chain_id: int
    source: SourceBundle
    constructor_args: str  # ABI-encoded, hex without 0x


class ExplorerClient(Protocol):
    """
    One verification service.

    verify() returns VERIFIED or ALREADY_VERIFIED, and raises RateLimitedError
    or VerificationRejectedError otherwise.
    """

    url: str

    def verify(self, request: VerificationRequest) -> VerificationOutcome:
        ...


def _classify_etherscan_message(message: str) -> Optional[VerificationOutcome]:
    """
    Map an Etherscan API message to an outcome.

    Returns:
        Outcome, or None while verification is still queued

    Raises:
        RateLimitedError: On rate limiting
        VerificationRejectedError: On any other failure
    """
    lowered = message.lower()
    if "already verified" in lowered:
        return VerificationOutcome.ALREADY_VERIFIED
    if "pass - verified" in lowered:
        return VerificationOutcome.VERIFIED
    if "rate limit" in lowered:
        raise RateLimitedError(message)
    if "pending" in lowered:
        return None
    raise VerificationRejectedError(message)


class EtherscanClient:
    """Etherscan-compatible `verifysourcecode` API (Etherscan, Arbiscan, Blockscout)."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        poll_interval: float = 5.0,
        max_polls: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        timeout: float = 30,
    ):
        self.url = url
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.timeout = timeout
        self._session = session or requests.Session()
        self._sleep = sleep

    def _payload(self, response: requests.Response) -> Dict[str, Any]:
        if response.status_code == 429:
            raise RateLimitedError(f"{self.url} returned status 429")
        if response.status_code != 200:
            raise VerificationRejectedError(f"{self.url} returned status {response.status_code}")
        try:
            payload = response.json()
        except ValueError as e:
            raise VerificationRejectedError(f"Invalid response from {self.url}: {e}") from e
        if not isinstance(payload, dict):
            raise VerificationRejectedError(f"Invalid response from {self.url}: {payload!r:.200}")
        return payload

    def verify(self, request: VerificationRequest) -> VerificationOutcome:
        if not self.api_key:
            raise VerificationRejectedError(f"No API key configured for {self.url}")

        response = self._session.post(
            self.url,
            params={"chainid": request.chain_id},
            data={
                "apikey": self.api_key,
                "module": "contract",
                "action": "verifysourcecode",
                "contractaddress": request.address,
                "sourceCode": json.dumps(request.source.standard_json_input),
                "codeformat": "solidity-standard-json-input",
                "contractname": request.source.fully_qualified_name,
                "compilerversion": request.source.compiler_version,
                # Misspelling is part of the Etherscan API
                "constructorArguements": request.constructor_args,
            },
            timeout=self.timeout,
        )
        payload = self._payload(response)
        result = str(payload.get("result", ""))

        if str(payload.get("status")) != "1":
            outcome = _classify_etherscan_message(result)
            if outcome is None:
                raise RateLimitedError(f"{self.url} is busy: {result}")
            return outcome

        return self._poll(result, request.chain_id)

    def _poll(self, guid: str, chain_id: int) -> VerificationOutcome:
        for _ in range(self.max_polls):
            self._sleep(self.poll_interval)
            response = self._session.get(
                self.url,
                params={
                    "chainid": chain_id,
                    "apikey": self.api_key,
                    "module": "contract",
                    "action": "checkverifystatus",
                    "guid": guid,
                },
                timeout=self.timeout,
            )
            outcome = _classify_etherscan_message(str(self._payload(response).get("result", "")))
            if outcome is not None:
                return outcome

        # Resubmitting later is safe: a finished job answers "already verified"
        raise RateLimitedError(f"Verification {guid} still pending at {self.url}")


class SourcifyClient:
    """Sourcify server `POST /verify` API."""

    def __init__(
        self,
        url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 60,
    ):
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def verify(self, request: VerificationRequest) -> VerificationOutcome:
        if not request.source.metadata:
            raise VerificationRejectedError(
                f"No compiler metadata for {request.source.fully_qualified_name}"
            )

        files = {"metadata.json": request.source.metadata}
        for source_name, source in request.source.standard_json_input.get("sources", {}).items():
            if not isinstance(source, dict) or "content" not in source:
                raise VerificationRejectedError(
                    f"No source content for {source_name} in {request.source.fully_qualified_name}"
                )
            files[source_name] = source["content"]

        response = self._session.post(
            f"{self.url}/verify",
            json={"address": request.address, "chain": str(request.chain_id), "files": files},
            timeout=self.timeout,
        )

        if response.status_code == 429:
            raise RateLimitedError(f"{self.url} returned status 429")
        if response.status_code == 409:
            return VerificationOutcome.ALREADY_VERIFIED
        if response.status_code != 200:
            raise VerificationRejectedError(
                f"{self.url} returned status {response.status_code}: {response.text[:200]}"
            )

        try:
            result = response.json()["result"][0]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise VerificationRejectedError(f"Invalid response from {self.url}: {e}") from e
        if not isinstance(result, dict):
            raise VerificationRejectedError(f"Invalid response from {self.url}: {result!r:.200}")

        if result.get("status") not in ("perfect", "partial"):
            raise VerificationRejectedError(f"Sourcify could not match: {result}")
        if result.get("storageTimestamp"):
            return VerificationOutcome.ALREADY_VERIFIED
        return VerificationOutcome.VERIFIED


def default_client_factory(
    endpoint: ExplorerEndpoint, environ: Optional[Mapping[str, str]] = None
) -> ExplorerClient:
    environ = os.environ if environ is None else environ
    match endpoint.kind:
        case ExplorerKind.ETHERSCAN:
            return EtherscanClient(endpoint.url, api_key=endpoint.api_key(environ))
        case ExplorerKind.SOURCIFY:
            return SourcifyClient(endpoint.url)
        case _:
            raise ValueError(f"Unsupported explorer kind: {endpoint.kind}")


def _is_transient(error: Exception) -> bool:
    return isinstance(error, (RateLimitedError, requests.RequestException))


class VerificationSubmitter:
    """
    Submits newly deployed units to every explorer configured for the network.

    Failures are recorded on the job and never raised: verification can not
    fail a deployment run.
    """

    def __init__(
        self,
        client_factory: Optional[Callable[[ExplorerEndpoint], ExplorerClient]] = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client_factory = client_factory or default_client_factory
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @staticmethod
    def create_job(
        unit: DeployableUnit, context: RunContext, record: DeploymentRecord
    ) -> VerificationJob:
        """Queue a verification job for a confirmed record."""
        encoded = encode_constructor_args(unit.abi, record.constructor_args)
        return VerificationJob(
            unit=unit.name,
            network=context.network_name,
            address=record.address,
            source_reference=unit.source.fully_qualified_name if unit.source else None,
            constructor_args=encoded.hex(),
        )

    def submit(
        self, unit: DeployableUnit, context: RunContext, record: DeploymentRecord
    ) -> VerificationJob:
        """
        Verify a deployed unit on every explorer of the active network.

        Args:
            unit: Deployed unit
            context: Active run
            record: Confirmed ledger record of the unit

        Returns:
            VerificationJob: QUEUED if the network has no explorers, otherwise
            VERIFIED when every explorer accepted it and FAILED if any did not
        """
        job = self.create_job(unit, context, record)
        endpoints = context.network.explorer_endpoints
        if not endpoints:
            logger.info("No explorers configured for %s; %s left queued", job.network, unit.name)
            return job

        if unit.source is None:
            job.status = VerificationStatus.FAILED
            job.reason = "no source bundle for unit"
            logger.warning("Cannot verify %s: %s", unit.name, job.reason)
            return job

        request = VerificationRequest(
            address=record.address,
            chain_id=context.network.chain_id,
            source=unit.source,
            constructor_args=job.constructor_args,
        )

        job.status = VerificationStatus.SUBMITTED
        failures = []
        for endpoint in endpoints:
            try:
                outcome, reason = self._submit_to(self.client_factory(endpoint), request, job)
            except Exception as e:
                logger.exception("Unexpected error verifying %s on %s", unit.name, endpoint.url)
                outcome, reason = VerificationOutcome.REJECTED, f"unexpected error: {e!r}"
            job.results[endpoint.url] = outcome.value
            if outcome in (VerificationOutcome.VERIFIED, VerificationOutcome.ALREADY_VERIFIED):
                logger.info("%s %s on %s", unit.name, outcome.value, endpoint.url)
            else:
                logger.warning("Verification of %s on %s failed: %s", unit.name, endpoint.url, reason)
                failures.append(f"{endpoint.url}: {reason}")

        if failures:
            job.status = VerificationStatus.FAILED
            job.reason = "; ".join(failures)
        else:
            job.status = VerificationStatus.VERIFIED
        return job

    def _submit_to(
        self, client: ExplorerClient, request: VerificationRequest, job: VerificationJob
    ) -> Tuple[VerificationOutcome, Optional[str]]:
        def attempt() -> VerificationOutcome:
            job.attempts += 1
            return client.verify(request)

        try:
            return (
                with_retry(
                    attempt,
                    should_retry=_is_transient,
                    attempts=self.max_attempts,
                    base_delay=self.base_delay,
                    max_delay=self.max_delay,
                    sleep=self._sleep,
                    description=f"Verifying {job.unit} on {client.url}",
                ),
                None,
            )
        except VerificationRejectedError as e:
            return VerificationOutcome.REJECTED, str(e)
        except (RateLimitedError, requests.RequestException) as e:
            return VerificationOutcome.RATE_LIMITED, f"gave up after {self.max_attempts} attempt(s): {e}"
