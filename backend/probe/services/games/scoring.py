from typing import Callable, Iterable, Optional

# Points repeat every three positions: 5, 10, 15, 5, 10, 15, ...
POSITION_POINTS = (5, 10, 15)


class ScoringEngine:
    """Position-based scoring for revealed characters.

    Blanks and letters pay the same for a given position; only the rules for
    guessing them differ.
    """

    def get_position_points(self, position: int) -> int:
        if position < 0:
            raise ValueError(f'position must be non-negative, got {position}')
        return POSITION_POINTS[position % len(POSITION_POINTS)]

    def calculate_score(self, positions: Iterable[int],
                        is_blank_position: Optional[Callable[[int], bool]] = None) -> int:
        return sum(self.get_position_points(pos) for pos in positions)


scoring_engine = ScoringEngine()
