import secrets
from typing import List


def generate_sequence(grid_size: int, steps: int) -> List[int]:
    """Draw ``steps`` tile indices uniformly from ``[0, grid_size ** 2)``, repeats allowed.

    Uses the OS CSPRNG so a client cannot predict upcoming tiles.
    """
    tiles = grid_size * grid_size
    return [secrets.randbelow(tiles) for _ in range(steps)]
