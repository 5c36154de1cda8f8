from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from . import rank_points as rank_points_codec
from .validation import TOTAL_TEAMS, check_match_entries


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def now() -> datetime:
    return datetime.now(timezone.utc)


class SortMode(str, Enum):
    POINTS = "points"
    TEAM_NUMBER = "team"


class TournamentConfig(BaseModel):
    """One version of the tournament settings. The newest ``created_at`` is current."""

    id: str = Field(default_factory=lambda: new_id("cfg"))
    total_days: int = Field(ge=1)
    matches_per_day: int = Field(ge=1)
    total_teams: int = TOTAL_TEAMS
    points_per_kill: int = Field(ge=0)
    # encoded rank -> points table, e.g. {"1":10,"2":6}
    rank_points: str = "{}"
    created_at: datetime = Field(default_factory=now)

    def rank_points_table(self) -> dict[int, int]:
        return rank_points_codec.decode(self.rank_points)

    def has_scoring_changes(self, other: "TournamentConfig") -> bool:
        return (
            self.points_per_kill != other.points_per_kill
            or self.rank_points != other.rank_points
        )


class MatchResult(BaseModel):
    day: int = Field(ge=1)
    match_number: int = Field(ge=1)
    team_number: int = Field(ge=1)
    kills: int = Field(ge=0)
    rank: int = Field(ge=1)
    total_points: int
    timestamp: datetime = Field(default_factory=now)

    @property
    def key(self) -> tuple[int, int, int]:
        return (self.day, self.match_number, self.team_number)

    def with_score_of(self, other: "MatchResult") -> "MatchResult":
        """This row's identity carrying ``other``'s kills, rank and points."""
        return self.model_copy(
            update={"kills": other.kills, "rank": other.rank, "total_points": other.total_points}
        )


class Penalty(BaseModel):
    day: int = Field(ge=1)
    match_number: int = Field(ge=1)
    team_number: int = Field(ge=1)
    penalty_points: int = Field(ge=0)
    timestamp: datetime = Field(default_factory=now)


class TeamAlias(BaseModel):
    id: str = Field(default_factory=lambda: new_id("alias"))
    primary_team_number: int = Field(ge=1)
    alias_team_number: int = Field(ge=1)
    group_name: str = ""
    created_at: datetime = Field(default_factory=now)


class LeaderboardEntry(BaseModel):
    """Per-team sums straight from the result store, before penalties."""

    team_number: int
    total_kills: int
    total_points: int
    matches_played: int


class TeamScore(BaseModel):
    team_number: int
    total_kills: int
    total_points: int
    matches_played: int


class TeamEntry(BaseModel):
    """One filled line of the match entry form. ``team_number`` 0 means left blank."""

    rank: int = Field(ge=1, le=TOTAL_TEAMS)
    team_number: int = Field(ge=0)
    kills: int = 0


class SaveMatchRequest(BaseModel):
    entries: list[TeamEntry] = Field(min_length=1, max_length=TOTAL_TEAMS)

    @model_validator(mode="after")
    def _check_entries(self) -> "SaveMatchRequest":
        errors = check_match_entries(self.entries)
        if errors:
            raise ValueError("; ".join(errors))
        return self


class SaveConfigRequest(BaseModel):
    total_days: int = Field(ge=1)
    matches_per_day: int = Field(ge=1)
    points_per_kill: int = Field(ge=0)
    rank_points: dict[int, int] = Field(default_factory=dict)

    @field_validator("rank_points")
    @classmethod
    def _check_rank_points(cls, v: dict[int, int]) -> dict[int, int]:
        errors = rank_points_codec.validate(v)
        if errors:
            raise ValueError("; ".join(errors))
        return v

    def to_config(self) -> TournamentConfig:
        return TournamentConfig(
            total_days=self.total_days,
            matches_per_day=self.matches_per_day,
            points_per_kill=self.points_per_kill,
            rank_points=rank_points_codec.encode(self.rank_points),
        )


class PenaltyRequest(BaseModel):
    penalty_points: int = Field(ge=1)


class ScoreOverrideRequest(BaseModel):
    total_points: int


class TeamAliasRequest(BaseModel):
    primary_team_number: int = Field(ge=1, le=TOTAL_TEAMS)
    alias_team_number: int = Field(ge=1, le=TOTAL_TEAMS)
    group_name: str = Field(default="", max_length=50)

    @field_validator("group_name", mode="before")
    @classmethod
    def _strip_group_name(cls, v: object) -> str:
        if v is None:
            return ""
        if not isinstance(v, str):
            raise TypeError("group_name must be a string")
        return v.strip()


class SaveResponse(BaseModel):
    ok: bool
    message: str | None = None


class ConfigResponse(BaseModel):
    config: TournamentConfig
    rank_points: dict[int, int]


class ShrinkCheckResponse(BaseModel):
    matches_per_day: int
    has_hidden_data: bool


class DataPresenceResponse(BaseModel):
    has_any_data: bool
    days: list[int]
    last_day: int | None


class DayPresenceResponse(BaseModel):
    day: int
    matches: list[int]
    last_match: int | None

