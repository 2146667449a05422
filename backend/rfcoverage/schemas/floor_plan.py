"""Floor plan Pydantic schemas."""

from pydantic import BaseModel, Field, ConfigDict
from typing import List

from rfcoverage.schemas.enums import MaterialType


class Room(BaseModel):
    """One identified room of the floor plan.

    The polygon lives in the horizontal XZ plane; vertices are
    ``[x, z]`` pairs in meters and the last vertex connects back to the
    first. Polygons with fewer than three vertices are accepted but never
    contain any point.
    """
    model_config = ConfigDict(frozen=True)

    name: str = "Room"
    polygon: List[List[float]] = Field(
        default_factory=list,
        description="Room boundary as list of [x, z] coordinates in meters"
    )
    material: MaterialType = Field(
        MaterialType.DRYWALL,
        description="Material of the walls derived from the polygon edges"
    )
    wall_height_m: float = Field(3.0, gt=0, description="Wall height in meters")

    @property
    def is_degenerate(self) -> bool:
        return len(self.polygon) < 3

    @property
    def vertices(self) -> List[tuple]:
        """Polygon vertices as (x, z) tuples."""
        return [(float(p[0]), float(p[1])) for p in self.polygon]
