"""
Tests for the release vulnerability scan.
"""

import httpx
from sqlalchemy import select

from be import models
from be.config import SnykSettings
from be.pipelines.vulnerabilities import inject_vulnerabilities, map_vulnerability
from clients.snyk import SnykClient, SnykIssueDTO
from tests.factories import at

SNYK = SnykSettings(url="https://api.snyk.test/rest", token="tok", org_id="org-1")


def snyk_payload(*keys, score=5.3):
    return {
        "data": [
            {
                "id": f"uuid-{key}",
                "attributes": {
                    "key": key,
                    "title": f"Vulnerability {key}",
                    "effective_severity_level": "medium",
                    "problems": [
                        {"id": f"CVE-{key}", "source": "CVE", "url": f"https://nvd.test/{key}"},
                        {"id": "CWE-502", "source": "CWE"},
                    ],
                    "severities": [{"source": "NVD", "score": score}, {"source": "Snyk", "score": 4.0}],
                },
            }
            for key in keys
        ],
        "links": {},
    }


def snyk_client(responses: dict[str, object]) -> SnykClient:
    """Answers by package version; a missing version yields a 400."""

    def handler(request):
        version = request.url.path.split("%40")[-1].split("@")[-1].split("/")[0]
        payload = responses.get(version)
        if payload is None:
            return httpx.Response(400, json={"errors": [{"detail": "bad version"}]})
        return httpx.Response(200, json=payload)

    return SnykClient(SNYK, transport=httpx.MockTransport(handler), retry_attempts=1, retry_backoff=0)


async def add_releases(session, *tags):
    for day, tag in enumerate(tags, start=1):
        session.add(models.Release(id=f"r-{tag}", tag_name=tag, name=tag, published_at=at(day)))
    await session.commit()


async def release_vulnerabilities(session):
    rows = await session.execute(
        select(models.ReleaseVulnerability.release_id, models.ReleaseVulnerability.vulnerability_id)
    )
    return set(rows.all())


class TestMapVulnerability:
    """Tests for mapping Snyk issues."""

    def test_maps_ids_and_highest_score(self):
        issue = SnykIssueDTO.model_validate(snyk_payload("SNYK-1")["data"][0])

        vulnerability = map_vulnerability(issue)

        assert vulnerability.id == "SNYK-1"
        assert vulnerability.cvss_score == 5.3
        assert vulnerability.cve_ids == "CVE-SNYK-1"
        assert vulnerability.cwe_ids == "CWE-502"
        assert vulnerability.url == "https://nvd.test/SNYK-1"


class TestInjectVulnerabilities:
    """Tests for scanning stored releases."""

    async def test_skipped_without_client(self, session):
        assert (await inject_vulnerabilities(session, None)).skipped

    async def test_skipped_when_not_configured(self, session):
        client = SnykClient(SnykSettings(token=None, org_id=None))
        assert (await inject_vulnerabilities(session, client)).skipped
        await client.aclose()

    async def test_scans_every_release(self, session):
        await add_releases(session, "v9.0.0", "v9.1.0")
        client = snyk_client({"9.0.0": snyk_payload("SNYK-1", "SNYK-2"), "9.1.0": snyk_payload("SNYK-2")})

        result = await inject_vulnerabilities(session, client)
        await client.aclose()

        assert (result.fetched, result.saved, result.failures) == (2, 3, [])
        assert await release_vulnerabilities(session) == {
            ("r-v9.0.0", "SNYK-1"),
            ("r-v9.0.0", "SNYK-2"),
            ("r-v9.1.0", "SNYK-2"),
        }
        scanned = (await session.execute(select(models.Release.last_scanned))).scalars().all()
        assert all(value is not None for value in scanned)

    async def test_failed_release_is_skipped(self, session):
        await add_releases(session, "v9.0.0", "v9.1.0")
        client = snyk_client({"9.1.0": snyk_payload("SNYK-3")})

        result = await inject_vulnerabilities(session, client)
        await client.aclose()

        assert result.failures == ["v9.0.0"]
        assert await release_vulnerabilities(session) == {("r-v9.1.0", "SNYK-3")}

    async def test_rescan_drops_fixed_vulnerabilities(self, session):
        await add_releases(session, "v9.0.0")
        first = snyk_client({"9.0.0": snyk_payload("SNYK-1", "SNYK-2")})
        await inject_vulnerabilities(session, first)
        await first.aclose()

        second = snyk_client({"9.0.0": snyk_payload("SNYK-2")})
        await inject_vulnerabilities(session, second)
        await second.aclose()

        assert await release_vulnerabilities(session) == {("r-v9.0.0", "SNYK-2")}
        # vulnerabilities themselves are kept
        assert await session.get(models.Vulnerability, "SNYK-1") is not None
