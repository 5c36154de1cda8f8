from __future__ import annotations

import logging

from .domain import TournamentConfig
from .errors import ConfigurationError
from .scoring import calculate_total_points
from .store import Store

logger = logging.getLogger(__name__)


class ConfigurationManager:
    """Owns the current tournament config and keeps cached match points in step with it."""

    def __init__(self, store: Store):
        self._store = store

    def current(self) -> TournamentConfig | None:
        try:
            return self._store.get_current_config()
        except Exception as exc:
            logger.exception("failed to load configuration")
            raise ConfigurationError(f"failed to load configuration: {exc}") from exc

    def save_config(self, config: TournamentConfig) -> int:
        """Replace the current config.

        When points per kill or the rank points table differ from the
        previous config, every stored match result is rescored. The replace
        and the rescoring share one store transaction. Returns the number of
        results rescored.
        """

        try:
            with self._store.transaction():
                previous = self._store.get_current_config()
                self._store.delete_all_configs()
                self._store.insert_config(config)
                logger.debug("configuration saved: %s", config)

                if previous is None or not previous.has_scoring_changes(config):
                    return 0
                logger.info("scoring parameters changed, recalculating all match results")
                return self._recalculate_all(config)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("failed to save configuration")
            raise ConfigurationError(f"failed to save configuration: {exc}") from exc

    def _recalculate_all(self, config: TournamentConfig) -> int:
        try:
            results = self._store.list_results()
            if not results:
                logger.debug("no match results to recalculate")
                return 0

            table = config.rank_points_table()
            updated = [
                r.model_copy(
                    update={
                        "total_points": calculate_total_points(
                            kills=r.kills,
                            rank=r.rank,
                            points_per_kill=config.points_per_kill,
                            rank_points=table,
                        )
                    }
                )
                for r in results
            ]
            self._store.upsert_results(updated)
        except Exception as exc:
            logger.exception("error during recalculation")
            raise ConfigurationError(f"error during recalculation: {exc}") from exc

        logger.info("recalculated %s match results", len(updated))
        return len(updated)

    def delete_configuration(self) -> None:
        """Remove the config only; results, penalties and aliases stay."""

        try:
            self._store.delete_all_configs()
        except Exception as exc:
            logger.exception("failed to delete configuration")
            raise ConfigurationError(f"failed to delete configuration: {exc}") from exc

    def check_shrink_conflict(self, new_matches_per_day: int) -> bool:
        """True when stored results exist for matches beyond ``new_matches_per_day``.

        Such results are hidden from the leaderboard after the change, not deleted.
        """

        try:
            return self._store.has_data_beyond_match(new_matches_per_day)
        except Exception as exc:
            logger.exception("failed to check for matches beyond %s", new_matches_per_day)
            raise ConfigurationError(f"failed to check stored matches: {exc}") from exc
