"""Snyk REST client for package vulnerability data."""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlsplit

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from be.config import SnykSettings, settings
from clients.graphql import RETRYABLE_STATUS_CODES, RetryableResponseError

logger = logging.getLogger(__name__)


class SnykClientError(Exception):
    """Raised when data cannot be fetched from Snyk."""
    pass


class SnykProblem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    source: str | None = None
    url: str | None = None


class SnykSeverity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source: str | None = None
    level: str | None = None
    score: float | None = None


class SnykIssueAttributes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str | None = None
    title: str
    description: str | None = None
    effective_severity_level: str | None = None
    problems: list[SnykProblem] = Field(default_factory=list)
    severities: list[SnykSeverity] = Field(default_factory=list)


class SnykIssueDTO(BaseModel):
    """One entry of a JSON:API ``issues`` document."""
    model_config = ConfigDict(extra="ignore")

    id: str
    attributes: SnykIssueAttributes

    @property
    def key(self) -> str:
        return self.attributes.key or self.id

    @property
    def cvss_score(self) -> float | None:
        scores = [severity.score for severity in self.attributes.severities if severity.score is not None]
        return max(scores) if scores else None

    def problem_ids(self, source: str) -> list[str]:
        return [problem.id for problem in self.attributes.problems if (problem.source or "").upper() == source]

    @property
    def url(self) -> str | None:
        return next((problem.url for problem in self.attributes.problems if problem.url), None)


class SnykClient:
    """Minimal async client for the Snyk REST API."""

    def __init__(
        self,
        config: SnykSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_attempts: int | None = None,
        retry_backoff: float | None = None,
    ):
        self.config = config or settings.snyk
        if not self.config.url or not self.config.url.strip():
            raise ValueError("Snyk base URL cannot be empty")
        self.retry_attempts = retry_attempts or settings.http.retry_attempts
        self.retry_backoff = settings.http.retry_backoff if retry_backoff is None else retry_backoff
        headers = {"Accept": "application/vnd.api+json"}
        if self.config.token:
            headers["Authorization"] = f"token {self.config.token}"
        self._base_url = self.config.url.rstrip("/")
        self._client = httpx.AsyncClient(headers=headers, timeout=settings.http.timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    def build_purl(self, version: str) -> str:
        """Package URL of the scanned artifact, e.g. ``pkg:maven/org.example/core@9.1.0``."""
        return f"pkg:maven/{self.config.package_group}/{self.config.package_artifact}@{version.removeprefix('v')}"

    def _absolute(self, link: str) -> str:
        """Resolve a ``links.next`` value; Snyk returns it relative to the host or to the API root."""
        if link.startswith(("http://", "https://")):
            return link
        base = urlsplit(self._base_url)
        if base.path and link.startswith(base.path + "/"):
            return f"{base.scheme}://{base.netloc}{link}"
        return f"{self._base_url}/{link.lstrip('/')}"

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_backoff, min=0, max=10),
            retry=retry_if_exception_type((httpx.TransportError, RetryableResponseError)),
            reraise=True,
        ):
            with attempt:
                response = await self._client.get(url, params=params)
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise RetryableResponseError(response)
                response.raise_for_status()
                return response.json()
        raise AssertionError("unreachable")

    async def get_package_issues(self, purl: str) -> list[SnykIssueDTO]:
        """Fetch every known issue of a package version, following ``links.next``.

        Raises:
            SnykClientError: If any page fails or is malformed
        """
        if not self.config.org_id:
            raise SnykClientError("Snyk organisation id is not configured")

        url: str | None = f"{self._base_url}/orgs/{self.config.org_id}/packages/{quote(purl, safe='')}/issues"
        params: dict[str, Any] | None = {"version": self.config.api_version, "limit": self.config.page_size}
        issues: dict[str, SnykIssueDTO] = {}

        try:
            while url:
                body = await self._get(url, params)
                for item in body.get("data") or []:
                    issue = SnykIssueDTO.model_validate(item)
                    issues.setdefault(issue.key, issue)
                next_link = (body.get("links") or {}).get("next")
                url = self._absolute(next_link) if next_link else None
                # next links already carry version and cursor
                params = None
        except (httpx.HTTPError, RetryableResponseError, ValidationError, ValueError) as e:
            raise SnykClientError(f"Failed to fetch issues of {purl} from Snyk.") from e

        logger.info(f"Successfully fetched {len(issues)} issues of {purl} from Snyk")
        return list(issues.values())
