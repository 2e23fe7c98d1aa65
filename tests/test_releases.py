"""
Tests for release injection and pull request assignment.
"""

import pytest
from sqlalchemy import select

from be import models
from be.pipelines.releases import (
    BranchRef,
    MergedPullRequest,
    ReleaseInjectionError,
    ReleaseRef,
    assign_to_releases,
    build_earliest_beta_rc_dates,
    find_branch_for_release,
    inject_releases,
    release_sort_key,
)
from tests.factories import at, release

BRANCHES = [BranchRef(id="b-master", name="master"), BranchRef(id="b-91", name="release/9.1")]


def ref(release_id, published_at, name=None):
    return ReleaseRef(id=release_id, tag_name=release_id, name=name or release_id, published_at=published_at, branch_id=None)


async def release_links(session):
    rows = await session.execute(select(models.ReleasePullRequest.release_id, models.ReleasePullRequest.pull_request_id))
    return set(rows.all())


class TestReleaseHelpers:
    """Tests for branch lookup, beta/RC dates and windows."""

    def test_branch_by_major_minor(self):
        assert find_branch_for_release(release("r", "v9.1.2", at(1)), BRANCHES, "master").id == "b-91"

    def test_branch_falls_back_to_master(self):
        assert find_branch_for_release(release("r", "v8.0.0", at(1)), BRANCHES, "master").id == "b-master"
        assert find_branch_for_release(release("r", "nightly", at(1)), BRANCHES, "master").id == "b-master"

    def test_branch_version_must_match_whole_number(self):
        branches = [
            BranchRef(id="b-910", name="release/9.10"),
            BranchRef(id="b-master", name="master"),
            BranchRef(id="b-19", name="release/19.1"),
        ]

        assert find_branch_for_release(release("r", "v9.1.0", at(1)), branches, "master").id == "b-master"
        assert find_branch_for_release(release("r", "v9.10.2", at(1)), branches, "master").id == "b-910"

    def test_branch_candidates_tried_in_name_order(self):
        branches = [BranchRef(id="b-new", name="release/9.1"), BranchRef(id="b-old", name="9.1-release")]
        assert find_branch_for_release(release("r", "v9.1.0", at(1)), branches, "master").id == "b-old"

    def test_no_master_branch(self):
        assert find_branch_for_release(release("r", "v8.0.0", at(1)), BRANCHES[1:], "master") is None

    def test_earliest_beta_rc_dates(self):
        valid = [release("r91", "v9.1.0", at(20)), release("r92", "v9.2.0", at(25))]
        invalid = [
            release("rc2", "v9.1.0-RC2", at(15)),
            release("rc1", "v9.1.0-RC1", at(10)),
            release("b1", "v9.1.0-B1", None),
            release("other", "v9.10.0-RC1", at(5)),
        ]

        assert build_earliest_beta_rc_dates(valid, invalid) == {"v9.1.0": at(10)}

    def test_nightly_sorted_last(self):
        releases = [ref("nightly", at(1), "Nightly build"), ref("a", at(5)), ref("b", at(3))]
        assert [r.id for r in sorted(releases, key=release_sort_key)] == ["b", "a", "nightly"]

    def test_window_is_half_open(self):
        releases = [ref("a", at(1)), ref("b", at(10)), ref("c", at(20))]
        prs = [
            MergedPullRequest("on-start", at(1)),
            MergedPullRequest("inside", at(5)),
            MergedPullRequest("on-end", at(10)),
            MergedPullRequest("late", at(25)),
            MergedPullRequest("unmerged", None),
        ]
        assignments = {}

        assign_to_releases(releases, prs, {}, assignments)

        assert assignments == {"b": {"on-start", "inside"}, "c": {"on-end"}}

    def test_window_closes_at_earliest_beta_rc(self):
        releases = [ref("a", at(1)), ref("b", at(10))]
        prs = [MergedPullRequest("before-rc", at(4)), MergedPullRequest("after-rc", at(7))]
        assignments = {}

        assign_to_releases(releases, prs, {"b": at(6)}, assignments)

        assert assignments == {"b": {"before-rc"}}


class TestInjectReleases:
    """Tests for the release pipeline."""

    @pytest.fixture
    async def merged_pull_requests(self, seeded):
        """Master pull requests a (day 5) and b (day 12), branch pull requests c (day 20) and d (day 30)."""
        for pr_id, number, merged_at, branch_id in [
            ("p-a", 1, at(5), "b-master"),
            ("p-b", 2, at(12), "b-master"),
            ("p-c", 3, at(20), "b-91"),
            ("p-d", 4, at(30), "b-91"),
        ]:
            seeded.add(models.PullRequest(id=pr_id, number=number, title=pr_id, merged_at=merged_at))
            seeded.add(models.BranchPullRequest(branch_id=branch_id, pull_request_id=pr_id))
        await seeded.commit()
        return seeded

    async def test_assigns_pull_requests(self, merged_pull_requests, github):
        session = merged_pull_requests
        github.releases = [
            release("r90", "v9.0.0", at(1)),
            release("r91-rc", "v9.1.0-RC1", at(10)),
            release("r91", "v9.1.0", at(15)),
            release("r911", "v9.1.1", at(25)),
            release("draft", "v9.2.0", None, nameless=True),
        ]

        result = await inject_releases(session, github, "master")

        assert (result.fetched, result.saved) == (5, 3)
        stored = {r.id: r.branch_id for r in (await session.execute(select(models.Release))).scalars()}
        assert stored == {"r90": "b-master", "r91": "b-91", "r911": "b-91"}
        # p-b was merged after the release candidate, p-d after the last release
        assert await release_links(session) == {("r91", "p-a"), ("r911", "p-c")}

    async def test_rerun_removes_stale_links(self, merged_pull_requests, github):
        session = merged_pull_requests
        session.add(models.Release(id="r90", tag_name="v9.0.0", name="v9.0.0", published_at=at(1)))
        session.add(models.ReleasePullRequest(release_id="r90", pull_request_id="p-d"))
        await session.commit()
        github.releases = [release("r90", "v9.0.0", at(1)), release("r91", "v9.1.0", at(15))]

        await inject_releases(session, github, "master")

        assert await release_links(session) == {("r91", "p-a"), ("r91", "p-b")}

    async def test_no_valid_releases(self, seeded, github):
        github.releases = [release("rc", "v9.1.0-RC1", at(1))]

        result = await inject_releases(seeded, github, "master")

        assert result.saved == 0
        assert (await seeded.execute(select(models.Release))).first() is None

    async def test_failure_wrapped(self, seeded, github):
        github.fail.add("releases")
        with pytest.raises(ReleaseInjectionError):
            await inject_releases(seeded, github, "master")
