"""
Listing domain models.

WHAT: Typed listing params and the overlap summary stored on matches
WHY: Validate the params blob once at the boundary instead of re-parsing downstream
HOW: Pydantic v2 models; ORM rows keep the JSON form, the scorer works on these
"""

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from typing import Literal, Optional, Any

from ..utils.exceptions import ValidationException


RemotePreference = Literal["remote", "onsite", "hybrid"]


class ListingParams(BaseModel):
    """Structured listing parameters."""

    skills: frozenset[str] = Field(default_factory=frozenset)
    rate_min: Optional[float] = Field(default=None, ge=0)
    rate_max: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, max_length=10)
    remote: Optional[RemotePreference] = None
    availability: Optional[str] = Field(default=None, max_length=100)

    @field_validator("skills", mode="before")
    @classmethod
    def normalize_skills(cls, v):
        """Lower-case and de-duplicate skills; blank entries are dropped."""
        if v is None:
            return frozenset()
        if isinstance(v, str):
            raise ValueError("skills must be a list of strings")
        skills = set()
        for skill in v:
            if not isinstance(skill, str):
                raise ValueError("skills must be a list of strings")
            if skill.strip():
                skills.add(skill.strip().lower())
        return frozenset(skills)

    @model_validator(mode="after")
    def validate_rate_range(self):
        """Ensure rate_min <= rate_max when both are given."""
        if self.rate_min is not None and self.rate_max is not None and self.rate_min > self.rate_max:
            raise ValueError(f"rate_min ({self.rate_min}) must not exceed rate_max ({self.rate_max})")
        return self

    @property
    def has_rate_range(self) -> bool:
        return self.rate_min is not None and self.rate_max is not None

    def to_json(self) -> dict:
        """JSON form persisted on the Listing row (skills sorted for stable output)."""
        data = self.model_dump(exclude_none=True)
        data["skills"] = sorted(self.skills)
        return data


def parse_listing_params(raw: Any) -> ListingParams:
    """
    Validate a raw params mapping.

    Raises:
        ValidationException: with pydantic's field errors when params are malformed
    """
    if isinstance(raw, ListingParams):
        return raw
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValidationException("params must be an object")
    try:
        return ListingParams.model_validate(raw)
    except ValidationError as e:
        field_errors = [
            {"field": ".".join(str(p) for p in err["loc"]) or "params", "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationException("Invalid listing params", field_errors=field_errors)


class RateRange(BaseModel):
    """Closed numeric interval."""
    min: float
    max: float


class OverlapSummary(BaseModel):
    """Compatibility detail computed for a listing pair."""
    matching_skills: list[str]
    rate_overlap: Optional[RateRange] = None
    remote_compatible: bool
    score: int = Field(ge=0, le=100)
