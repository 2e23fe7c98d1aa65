"""Core SQLAlchemy models (2.x style) for the insights schema.

Primary keys of GitHub-backed tables are the GitHub node ids. Many-to-many
relationships are explicit join tables with composite primary keys so they can
be reconciled row by row.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class GitHubPropertyState(str, Enum):
    """State of a GitHub issue, pull request or milestone."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


class Label(Base):
    """Repository labels."""
    __tablename__ = "labels"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str | None] = mapped_column(String(16))


class Milestone(Base):
    """Repository milestones with issue counters."""
    __tablename__ = "milestones"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str | None] = mapped_column(String(512))
    state: Mapped[str] = mapped_column(String(16), nullable=False, default=GitHubPropertyState.OPEN.value)
    due_on: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    open_issue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed_issue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_milestones_state", "state"),
    )


class IssueType(Base):
    """Organisation issue types (Epic, Bug, Feature...)."""
    __tablename__ = "issue_types"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    color: Mapped[str | None] = mapped_column(String(32))


class IssuePriority(Base):
    """Options of the project's "Priority" single-select field."""
    __tablename__ = "issue_priorities"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(Text)


class IssueState(Base):
    """Options of the project's "Status" single-select field."""
    __tablename__ = "issue_states"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    color: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(Text)


class Branch(Base):
    """Protected branches (master and release branches)."""
    __tablename__ = "branches"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class Issue(Base):
    """Repository issues."""
    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(1024), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    url: Mapped[str | None] = mapped_column(String(512))
    points: Mapped[float | None] = mapped_column(Float)
    milestone_id: Mapped[str | None] = mapped_column(ForeignKey("milestones.id", ondelete="SET NULL"), index=True)
    issue_type_id: Mapped[str | None] = mapped_column(ForeignKey("issue_types.id", ondelete="SET NULL"))
    issue_priority_id: Mapped[str | None] = mapped_column(ForeignKey("issue_priorities.id", ondelete="SET NULL"))
    issue_state_id: Mapped[str | None] = mapped_column(ForeignKey("issue_states.id", ondelete="SET NULL"))
    parent_issue_id: Mapped[str | None] = mapped_column(ForeignKey("issues.id", ondelete="SET NULL"), index=True)

    # Relationships
    milestone: Mapped[Milestone | None] = relationship("Milestone", lazy="selectin")
    issue_type: Mapped[IssueType | None] = relationship("IssueType", lazy="selectin")
    issue_priority: Mapped[IssuePriority | None] = relationship("IssuePriority", lazy="selectin")
    issue_state: Mapped[IssueState | None] = relationship("IssueState", lazy="selectin")


class PullRequest(Base):
    """Merged pull requests."""
    __tablename__ = "pull_requests"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(1024), nullable=False)
    url: Mapped[str | None] = mapped_column(String(512))
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    milestone_id: Mapped[str | None] = mapped_column(ForeignKey("milestones.id", ondelete="SET NULL"))


class Release(Base):
    """Final (non beta / RC) releases."""
    __tablename__ = "releases"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tag_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_scanned: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    branch_id: Mapped[str | None] = mapped_column(ForeignKey("branches.id", ondelete="SET NULL"), index=True)

    # Relationship
    branch: Mapped[Branch | None] = relationship("Branch", lazy="selectin")


class Vulnerability(Base):
    """Known vulnerabilities reported by Snyk."""
    __tablename__ = "vulnerabilities"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    title: Mapped[str] = mapped_column(String(1024), nullable=False)
    severity: Mapped[str | None] = mapped_column(String(32), index=True)
    cvss_score: Mapped[float | None] = mapped_column(Float)
    cve_ids: Mapped[str | None] = mapped_column(String(1024))
    cwe_ids: Mapped[str | None] = mapped_column(String(1024))
    description: Mapped[str | None] = mapped_column(Text)
    url: Mapped[str | None] = mapped_column(String(512))


# Join entities

class IssueLabel(Base):
    __tablename__ = "issue_labels"

    issue_id: Mapped[str] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True)
    label_id: Mapped[str] = mapped_column(ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True)


class PullRequestLabel(Base):
    __tablename__ = "pull_request_labels"

    pull_request_id: Mapped[str] = mapped_column(ForeignKey("pull_requests.id", ondelete="CASCADE"), primary_key=True)
    label_id: Mapped[str] = mapped_column(ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True)


class PullRequestIssue(Base):
    """Issues closed by a pull request."""
    __tablename__ = "pull_request_issues"

    pull_request_id: Mapped[str] = mapped_column(ForeignKey("pull_requests.id", ondelete="CASCADE"), primary_key=True)
    issue_id: Mapped[str] = mapped_column(ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True)


class BranchPullRequest(Base):
    __tablename__ = "branch_pull_requests"

    branch_id: Mapped[str] = mapped_column(ForeignKey("branches.id", ondelete="CASCADE"), primary_key=True)
    pull_request_id: Mapped[str] = mapped_column(ForeignKey("pull_requests.id", ondelete="CASCADE"), primary_key=True)


class ReleasePullRequest(Base):
    __tablename__ = "release_pull_requests"

    release_id: Mapped[str] = mapped_column(ForeignKey("releases.id", ondelete="CASCADE"), primary_key=True)
    pull_request_id: Mapped[str] = mapped_column(ForeignKey("pull_requests.id", ondelete="CASCADE"), primary_key=True)


class ReleaseVulnerability(Base):
    __tablename__ = "release_vulnerabilities"

    release_id: Mapped[str] = mapped_column(ForeignKey("releases.id", ondelete="CASCADE"), primary_key=True)
    vulnerability_id: Mapped[str] = mapped_column(
        ForeignKey("vulnerabilities.id", ondelete="CASCADE"),
        primary_key=True,
    )


class ShedLock(Base):
    """Scheduler lock rows, one per job name."""
    __tablename__ = "shedlock"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    lock_until: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    locked_by: Mapped[str] = mapped_column(String(255), nullable=False)
