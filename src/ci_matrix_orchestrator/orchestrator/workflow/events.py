from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

_BRANCH_PREFIX = "refs/heads/"
_TAG_PREFIX = "refs/tags/"


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"


class RefKind(str, Enum):
    BRANCH = "branch"
    TAG = "tag"


class UnsupportedEventError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class RepositoryEvent:
    """A repository event emitted by the version-control host.

    For pull requests `ref_name` is the base branch the PR targets, which is
    what branch filters are evaluated against.
    """

    kind: EventKind
    ref_name: str
    ref_kind: RefKind

    def __post_init__(self) -> None:
        if not self.ref_name:
            raise UnsupportedEventError("Event ref name must not be empty")
        if self.kind is EventKind.PULL_REQUEST and self.ref_kind is not RefKind.BRANCH:
            raise UnsupportedEventError("Pull request events always target a branch")

    def to_json(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "ref_name": self.ref_name,
            "ref_kind": self.ref_kind.value,
        }


def parse_git_ref(ref: str) -> tuple[str, RefKind]:
    """Split a fully-qualified git ref into (short name, kind).

    Short names without a `refs/` prefix are treated as branch names.
    """

    if ref.startswith(_BRANCH_PREFIX):
        return ref[len(_BRANCH_PREFIX) :], RefKind.BRANCH
    if ref.startswith(_TAG_PREFIX):
        return ref[len(_TAG_PREFIX) :], RefKind.TAG
    if ref.startswith("refs/"):
        raise UnsupportedEventError(f"Unsupported git ref: {ref}")
    return ref, RefKind.BRANCH


def event_from_ref(kind: EventKind | str, ref: str) -> RepositoryEvent:
    name, ref_kind = parse_git_ref(ref)
    return RepositoryEvent(kind=EventKind(kind), ref_name=name, ref_kind=ref_kind)


def event_from_github(event_name: str, payload: Mapping[str, object]) -> RepositoryEvent:
    """Build an event from a GitHub webhook delivery.

    Only `push` and `pull_request` deliveries are understood; tag creation
    arrives as a `push` whose ref lives under `refs/tags/`.
    """

    if event_name == EventKind.PUSH.value:
        ref = payload.get("ref")
        if not isinstance(ref, str):
            raise UnsupportedEventError("push payload has no 'ref'")
        return event_from_ref(EventKind.PUSH, ref)

    if event_name == EventKind.PULL_REQUEST.value:
        pr = payload.get("pull_request")
        base = pr.get("base") if isinstance(pr, Mapping) else None
        base_ref = base.get("ref") if isinstance(base, Mapping) else None
        if not isinstance(base_ref, str):
            raise UnsupportedEventError("pull_request payload has no 'pull_request.base.ref'")
        return RepositoryEvent(
            kind=EventKind.PULL_REQUEST, ref_name=base_ref, ref_kind=RefKind.BRANCH
        )

    raise UnsupportedEventError(f"Unsupported event: {event_name!r}")


def event_from_environment(env: Mapping[str, str]) -> RepositoryEvent:
    """Build an event from the variables a GitHub Actions runner exports."""

    event_name = env.get("GITHUB_EVENT_NAME", "")
    if event_name == EventKind.PULL_REQUEST.value:
        base_ref = env.get("GITHUB_BASE_REF", "")
        if not base_ref:
            raise UnsupportedEventError("GITHUB_BASE_REF is required for pull_request events")
        return RepositoryEvent(
            kind=EventKind.PULL_REQUEST, ref_name=base_ref, ref_kind=RefKind.BRANCH
        )
    if event_name == EventKind.PUSH.value:
        ref = env.get("GITHUB_REF", "")
        if not ref:
            raise UnsupportedEventError("GITHUB_REF is required for push events")
        return event_from_ref(EventKind.PUSH, ref)
    raise UnsupportedEventError(f"Unsupported GITHUB_EVENT_NAME: {event_name!r}")
