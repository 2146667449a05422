"""Greedy maximum-coverage search for access point placement."""

import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional

from rfcoverage.schemas.enums import FAIR_SIGNAL_DBM
from rfcoverage.schemas.transmitter import Transmitter
from rfcoverage.services.geometry import Point3D
from rfcoverage.services.rf_propagation import PropagationModel

logger = logging.getLogger(__name__)


@dataclass
class PlacementRecommendation:
    """One chosen access point position."""
    rank: int
    position: Point3D
    newly_covered: int
    remaining_uncovered: int

    def to_dict(self) -> dict:
        return {
            "rank": self.rank,
            "x": self.position[0],
            "y": self.position[1],
            "z": self.position[2],
            "newly_covered": self.newly_covered,
            "remaining_uncovered": self.remaining_uncovered,
        }


class GreedyPlacementOptimizer:
    """
    Greedy set-cover over a lattice of candidate positions.

    Each round places a test access point at every candidate and keeps the
    one that lifts the most still-uncovered sample points to at least fair
    signal. Candidates closer than the minimum separation to an already
    chosen position are skipped.
    """

    def __init__(self, model: PropagationModel, threshold_dbm: float = FAIR_SIGNAL_DBM):
        self.model = model
        self.config = model.config
        self.threshold_dbm = threshold_dbm

        bounds = model.calculate_environment_bounds()
        self.uncovered_points: List[Point3D] = model.generate_grid_points(
            bounds, self.config.coverage_grid_m, self.config.sample_height_m
        )
        self.candidates: List[Point3D] = model.generate_grid_points(
            bounds, self.config.candidate_spacing_m, self.config.mount_height_m
        )
        self.recommendations: List[PlacementRecommendation] = []

    def _test_transmitter(self, position: Point3D) -> Transmitter:
        return Transmitter(
            position=position,
            transmit_power_dbm=self.config.placement_tx_power_dbm,
            antenna_gain_dbi=self.config.placement_antenna_gain_dbi,
            band=self.model.frequency_band,
            name=f"Candidate {len(self.recommendations) + 1}",
        )

    def _covered_by(self, position: Point3D, points: List[Point3D]) -> List[bool]:
        tx = self._test_transmitter(position)
        return [
            self.model.calculate_signal_strength(point, tx) >= self.threshold_dbm
            for point in points
        ]

    def _too_close(self, candidate: Point3D) -> bool:
        return any(
            math.dist(candidate, r.position) < self.config.min_ap_separation_m
            for r in self.recommendations
        )

    def optimize(
        self,
        max_aps: int = 3,
        progress_callback: Optional[Callable[[int, int, int], None]] = None
    ) -> List[PlacementRecommendation]:
        """
        Run the greedy search.

        Args:
            max_aps: Upper bound on placed access points
            progress_callback: Optional callback(round, max_aps, newly_covered)

        Returns:
            Recommendations in selection order
        """
        self.recommendations = []
        if max_aps <= 0 or not self.candidates:
            logger.info("No placement candidates available")
            return []

        uncovered = list(self.uncovered_points)
        logger.info(
            f"Placing up to {max_aps} APs: {len(self.candidates)} candidates, "
            f"{len(uncovered)} sample points"
        )

        for round_index in range(max_aps):
            if not uncovered:
                break

            best_position: Optional[Point3D] = None
            best_mask: List[bool] = []
            best_count = 0

            for candidate in self.candidates:
                if self._too_close(candidate):
                    continue

                mask = self._covered_by(candidate, uncovered)
                count = sum(mask)
                if count > best_count:
                    best_position = candidate
                    best_mask = mask
                    best_count = count

            if best_position is None:
                logger.info(f"No candidate improves coverage after {round_index} placements")
                break

            uncovered = [p for p, covered in zip(uncovered, best_mask) if not covered]
            self.recommendations.append(PlacementRecommendation(
                rank=round_index + 1,
                position=best_position,
                newly_covered=best_count,
                remaining_uncovered=len(uncovered),
            ))
            logger.debug(f"AP {round_index + 1} at {best_position} covers {best_count} points")

            if progress_callback:
                progress_callback(round_index + 1, max_aps, best_count)

        logger.info(
            f"Placed {len(self.recommendations)} APs, {len(uncovered)} points remain uncovered"
        )
        return list(self.recommendations)

    def as_transmitters(self) -> List[Transmitter]:
        """Recommendations as transmitters with the test AP parameters."""
        return [
            Transmitter(
                position=r.position,
                transmit_power_dbm=self.config.placement_tx_power_dbm,
                antenna_gain_dbi=self.config.placement_antenna_gain_dbi,
                band=self.model.frequency_band,
                name=f"AP {r.rank}",
            )
            for r in self.recommendations
        ]
