from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from .domain import (
    ConfigResponse,
    DataPresenceResponse,
    DayPresenceResponse,
    MatchResult,
    Penalty,
    PenaltyRequest,
    SaveConfigRequest,
    SaveMatchRequest,
    SaveResponse,
    ScoreOverrideRequest,
    ShrinkCheckResponse,
    SortMode,
    TeamAlias,
    TeamAliasRequest,
    TeamScore,
)
from .errors import RankerError
from .repository import TournamentRepository
from .store import Store, build_store

logger = logging.getLogger(__name__)


def _load_dotenv(repo_root: Path) -> None:
    env_path = repo_root / "config" / ".env"
    if not env_path.exists():
        return
    try:
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)
    except ImportError:
        # python-dotenv is an optional convenience; env vars may be set by runtime.
        return


def _configure_logging() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _failed(exc: RankerError) -> SaveResponse:
    return SaveResponse(ok=False, message=str(exc))


def create_app(store: Store | None = None) -> FastAPI:
    app = FastAPI(title="Ranker Scoring")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    repo_root = Path(__file__).resolve().parents[3]
    _load_dotenv(repo_root)
    _configure_logging()

    if store is None:
        store = build_store()
    logger.info("using %s", type(store).__name__)
    repository = TournamentRepository(store)

    @app.get("/health")
    def health():
        return {"ok": True}

    # configuration

    @app.get("/api/config", response_model=ConfigResponse)
    def get_config():
        try:
            config = repository.current_config()
        except RankerError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        if config is None:
            raise HTTPException(status_code=404, detail="tournament is not configured")
        return ConfigResponse(config=config, rank_points=config.rank_points_table())

    @app.put("/api/config", response_model=SaveResponse)
    def save_config(req: SaveConfigRequest):
        try:
            recalculated = repository.save_config(req.to_config())
        except RankerError as exc:
            return _failed(exc)
        message = f"recalculated {recalculated} match results" if recalculated else None
        return SaveResponse(ok=True, message=message)

    @app.delete("/api/config", response_model=SaveResponse)
    def delete_config():
        try:
            repository.delete_configuration()
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    @app.get("/api/config/shrink-check", response_model=ShrinkCheckResponse)
    def shrink_check(matches_per_day: int = Query(ge=1)):
        try:
            has_hidden_data = repository.check_shrink_conflict(matches_per_day)
        except RankerError as exc:
            raise HTTPException(status_code=503, detail=str(exc))
        return ShrinkCheckResponse(matches_per_day=matches_per_day, has_hidden_data=has_hidden_data)

    # match results

    @app.get("/api/days/{day}/matches/{match_number}/results", response_model=list[MatchResult])
    def get_match_results(day: int, match_number: int):
        return repository.get_match_results(day, match_number)

    @app.put("/api/days/{day}/matches/{match_number}/results", response_model=SaveResponse)
    def save_match(day: int, match_number: int, req: SaveMatchRequest):
        try:
            results = repository.save_match(day, match_number, req.entries)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True, message=f"saved {len(results)} results")

    @app.delete("/api/days/{day}/matches/{match_number}", response_model=SaveResponse)
    def reset_match(day: int, match_number: int):
        try:
            repository.reset_match(day, match_number)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    @app.delete("/api/days/{day}", response_model=SaveResponse)
    def reset_day(day: int):
        try:
            repository.reset_day(day)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    @app.delete("/api/days", response_model=SaveResponse)
    def reset_days(start: int | None = None, end: int | None = None):
        try:
            if start is None and end is None:
                repository.reset_all()
            elif start is None or end is None or start > end:
                raise HTTPException(status_code=400, detail="start and end must form a range")
            else:
                repository.reset_day_range(start, end)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    @app.put(
        "/api/days/{day}/matches/{match_number}/teams/{team_number}/score",
        response_model=SaveResponse,
    )
    def override_score(day: int, match_number: int, team_number: int, req: ScoreOverrideRequest):
        try:
            repository.update_team_score(day, match_number, team_number, req.total_points)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    # penalties

    @app.get("/api/days/{day}/matches/{match_number}/penalties", response_model=list[Penalty])
    def get_penalties(day: int, match_number: int):
        return repository.get_match_penalties(day, match_number)

    @app.put(
        "/api/days/{day}/matches/{match_number}/teams/{team_number}/penalty",
        response_model=SaveResponse,
    )
    def apply_penalty(day: int, match_number: int, team_number: int, req: PenaltyRequest):
        try:
            repository.apply_penalty(day, match_number, team_number, req.penalty_points)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(
            ok=True,
            message=(
                f"penalty of {req.penalty_points} points applied to team {team_number} "
                f"for day {day} match {match_number}"
            ),
        )

    @app.delete(
        "/api/days/{day}/matches/{match_number}/teams/{team_number}/penalty",
        response_model=SaveResponse,
    )
    def delete_penalty(day: int, match_number: int, team_number: int):
        try:
            repository.delete_penalty(day, match_number, team_number)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    # leaderboard and data presence

    @app.get("/api/leaderboard", response_model=list[TeamScore])
    def leaderboard(day: int | None = None, sort: SortMode = SortMode.POINTS):
        return repository.leaderboard(day=day, sort_mode=sort)

    @app.get("/api/progress", response_model=DataPresenceResponse)
    def progress():
        return DataPresenceResponse(
            has_any_data=repository.has_any_data(),
            days=repository.days_with_data(),
            last_day=repository.last_day_with_data(),
        )

    @app.get("/api/progress/{day}", response_model=DayPresenceResponse)
    def day_progress(day: int):
        return DayPresenceResponse(
            day=day,
            matches=repository.matches_with_data(day),
            last_match=repository.last_match_with_data(day),
        )

    # team aliases

    @app.get("/api/aliases", response_model=list[TeamAlias])
    def list_aliases():
        return repository.list_team_aliases()

    @app.post("/api/aliases", response_model=TeamAlias)
    def add_alias(req: TeamAliasRequest):
        try:
            return repository.add_team_alias(
                req.primary_team_number, req.alias_team_number, req.group_name
            )
        except RankerError as exc:
            raise HTTPException(status_code=409, detail=str(exc))

    @app.delete("/api/aliases/{primary_team_number}", response_model=SaveResponse)
    def delete_group(primary_team_number: int):
        if not repository.aliases_for_primary(primary_team_number):
            raise HTTPException(status_code=404, detail="team group not found")
        try:
            repository.delete_aliases_for_primary(primary_team_number)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    @app.delete("/api/aliases/by-id/{alias_id}", response_model=SaveResponse)
    def delete_alias(alias_id: str):
        try:
            repository.delete_team_alias(alias_id)
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    @app.delete("/api/aliases", response_model=SaveResponse)
    def delete_all_aliases():
        try:
            repository.delete_all_team_aliases()
        except RankerError as exc:
            return _failed(exc)
        return SaveResponse(ok=True)

    app.state.repository = repository
    return app


app = create_app()
handler = Mangum(app)
