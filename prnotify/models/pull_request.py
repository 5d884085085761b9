"""Normalized pull request models shared by all git providers."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

APPROVED = "APPROVED"
CHANGES_REQUESTED = "CHANGES_REQUESTED"
PENDING = "PENDING"


class NormalizedPullRequest(BaseModel):
    """A pull/merge request reduced to the fields notifications need."""

    id: str
    title: str
    author: str
    url: str
    created_at: datetime
    repository: str
    labels: list[str] = Field(default_factory=list)
    reviewers: list[str] = Field(default_factory=list)
    has_approvals: bool = False
    has_changes_requested: bool = False
    additions: Optional[int] = None
    deletions: Optional[int] = None


class PRCategory(BaseModel):
    """A bucket of pull requests sharing the same review status."""

    name: str
    emoji: str
    short_label: str
    prs: list[NormalizedPullRequest] = Field(default_factory=list)


class Repository(BaseModel):
    """Repository or project the user can pick for a schedule."""

    id: str
    name: str
    full_name: str
    private: bool = False
    url: Optional[str] = None


class Channel(BaseModel):
    """Messaging channel the user can pick for a schedule."""

    id: str
    name: str
    is_private: bool = False


class Message(BaseModel):
    """Rendered notification ready to hand to a messaging adapter."""

    title: str
    text: str


class DeliveryResult(BaseModel):
    """What a messaging provider reported after a send."""

    channel_id: str
    message_id: Optional[str] = None


def summarize_review_states(states: list[str]) -> tuple[bool, bool]:
    """
    Reduce each reviewer's latest review state to (has_approvals, has_changes_requested).

    Both flags may be true when reviewers disagree.
    """
    return APPROVED in states, CHANGES_REQUESTED in states
