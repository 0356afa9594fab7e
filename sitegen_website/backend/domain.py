import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


INITIAL_VERSION_NUMBER = 1.0
MINOR_EDIT_STEP = 0.1


class ContentType(str, Enum):
    """Kinds of site the generator is asked for."""
    LANDING = "landing"
    PORTFOLIO = "portfolio"
    BLOG = "blog"
    ECOMMERCE = "ecommerce"
    DASHBOARD = "dashboard"
    GENERAL = "general"


class Visibility(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


def next_version_number(parent_number: float, is_major: bool) -> float:
    """
    Number a version derived from ``parent_number``.

    A minor edit adds 0.1; a major edit jumps to the next whole number and
    drops the fractional part. Minor edits from x.9 therefore land on
    (x+1).0, the same number a major edit would give.
    """
    if is_major:
        return float(math.floor(parent_number) + 1)
    return round(parent_number + MINOR_EDIT_STEP, 1)


@dataclass(frozen=True)
class Version:
    """One immutable snapshot of generated content belonging to one artifact."""
    id: str
    artifact_id: str
    content: str
    instruction: str
    edit_instruction: Optional[str]
    content_type: str
    version_number: float
    is_initial: bool
    parent_version_id: Optional[str]
    created_at: str
    derived_from_version_id: Optional[str] = None

    def to_dict(self, include_content: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if not include_content:
            data.pop("content")
        return data


@dataclass
class Artifact:
    """Current state of one user-owned generated site."""
    id: str
    owner_id: str
    display_name: str
    description: str
    content_type: str
    visibility: str
    latest_version_id: str
    tags: List[str] = field(default_factory=list)
    thumbnail: str = ""
    version_count: int = 1
    edit_count: int = 0
    view_count: int = 0
    fork_count: int = 0
    is_fork: bool = False
    origin_artifact_id: Optional[str] = None
    origin_owner_id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_public(self) -> bool:
        return self.visibility == Visibility.PUBLIC.value

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ArtifactView:
    """An artifact together with its latest version, as returned by a read."""
    artifact: Artifact
    latest_version: Optional[Version]
    include_content: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = self.artifact.to_dict()
        data["latest_version"] = (
            self.latest_version.to_dict(include_content=self.include_content)
            if self.latest_version else None
        )
        return data


@dataclass
class Variation:
    """One uncommitted draft produced by the variation engine."""
    variation_index: int
    content: str
    instruction: str
    content_type: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AuthError(Exception):
    """Custom exception for authentication errors."""
    pass
