"""Planar and ray geometry used to bound and obstruct propagation.

Floor plans live in the horizontal XZ plane; 3D positions are
``(x, y, z)`` with ``y`` pointing up.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
import math

from rfcoverage.schemas.enums import MaterialType
from rfcoverage.schemas.floor_plan import Room

Point2D = Tuple[float, float]
Point3D = Tuple[float, float, float]
Bounds2D = Tuple[Point2D, Point2D]

# Parallel segment tolerance for the 2D crossing test
PARALLEL_EPSILON = 1e-6
# Ray/plane tolerance: rays closer to parallel than this miss the wall
RAY_PLANE_EPSILON = 1e-4
# Slack on the footprint check, absorbs rounding on axis-aligned walls
FOOTPRINT_EPSILON = 1e-6


@dataclass(frozen=True)
class WallSegment:
    """Vertical wall standing on one polygon edge."""
    start: Point2D  # (x, z)
    end: Point2D    # (x, z)
    material: MaterialType = MaterialType.DRYWALL
    attenuation_db: float = MaterialType.DRYWALL.attenuation_db
    height: float = 3.0

    @property
    def length(self) -> float:
        return math.hypot(self.end[0] - self.start[0], self.end[1] - self.start[1])


def horizontal(point: Sequence[float]) -> Point2D:
    """Project a 3D ``(x, y, z)`` point onto the floor plane."""
    return (float(point[0]), float(point[2]))


def point_in_polygon(point: Point2D, polygon: Sequence[Sequence[float]]) -> bool:
    """
    Even-odd crossing number test.

    Args:
        point: (x, z) position
        polygon: Ordered [x, z] vertices, implicitly closed

    Returns:
        True if the point lies inside; always False for fewer than 3 vertices
    """
    n = len(polygon)
    if n < 3:
        return False

    px, pz = point
    inside = False

    for i in range(n):
        ax, az = polygon[i][0], polygon[i][1]
        bx, bz = polygon[(i + 1) % n][0], polygon[(i + 1) % n][1]

        if ((az > pz) != (bz > pz)) and (px < (bx - ax) * (pz - az) / (bz - az) + ax):
            inside = not inside

    return inside


def point_in_any_room(point: Point2D, rooms: Iterable[Room]) -> bool:
    return any(point_in_polygon(point, room.polygon) for room in rooms)


def segments_intersect(p1: Point2D, p2: Point2D, q1: Point2D, q2: Point2D) -> bool:
    """
    Test whether segment p1-p2 crosses segment q1-q2.

    Parallel and collinear segments are reported as non-intersecting,
    even when they overlap.
    """
    rx = p2[0] - p1[0]
    rz = p2[1] - p1[1]
    sx = q2[0] - q1[0]
    sz = q2[1] - q1[1]

    denominator = rx * sz - rz * sx
    if abs(denominator) < PARALLEL_EPSILON:
        return False

    qpx = q1[0] - p1[0]
    qpz = q1[1] - p1[1]
    t = (qpx * sz - qpz * sx) / denominator
    u = (qpx * rz - qpz * rx) / denominator

    return 0.0 <= t <= 1.0 and 0.0 <= u <= 1.0


def ray_intersects_wall(
    origin: Point3D,
    direction: Point3D,
    wall: WallSegment,
    max_distance: Optional[float] = None
) -> bool:
    """
    Intersect a ray with a wall treated as a vertical rectangle.

    The wall spans its 2D footprint horizontally and ``[0, height]``
    vertically.

    Args:
        origin: Ray origin (x, y, z)
        direction: Ray direction, need not be normalized
        wall: Wall to test
        max_distance: Only count hits at most this far along the ray

    Returns:
        True if the ray hits the wall rectangle
    """
    dir_len = math.sqrt(direction[0] ** 2 + direction[1] ** 2 + direction[2] ** 2)
    if dir_len == 0.0 or wall.length == 0.0:
        return False
    dx, dy, dz = direction[0] / dir_len, direction[1] / dir_len, direction[2] / dir_len

    # Horizontal wall normal: cross(end - start, up)
    ex = wall.end[0] - wall.start[0]
    ez = wall.end[1] - wall.start[1]
    nx, nz = -ez / wall.length, ex / wall.length

    denominator = dx * nx + dz * nz
    if abs(denominator) <= RAY_PLANE_EPSILON:
        return False

    t = ((wall.start[0] - origin[0]) * nx + (wall.start[1] - origin[2]) * nz) / denominator
    if t < 0:
        return False
    if max_distance is not None and t > max_distance:
        return False

    hit_x = origin[0] + t * dx
    hit_y = origin[1] + t * dy
    hit_z = origin[2] + t * dz

    min_x, max_x = min(wall.start[0], wall.end[0]), max(wall.start[0], wall.end[0])
    min_z, max_z = min(wall.start[1], wall.end[1]), max(wall.start[1], wall.end[1])

    return (
        min_x - FOOTPRINT_EPSILON <= hit_x <= max_x + FOOTPRINT_EPSILON and
        min_z - FOOTPRINT_EPSILON <= hit_z <= max_z + FOOTPRINT_EPSILON and
        0.0 <= hit_y <= wall.height
    )


def bounding_box(points: Iterable[Sequence[float]]) -> Optional[Bounds2D]:
    """Axis-aligned bounds of (x, z) points, or None when there are none."""
    xs: List[float] = []
    zs: List[float] = []
    for p in points:
        xs.append(float(p[0]))
        zs.append(float(p[1]))

    if not xs:
        return None

    return (min(xs), min(zs)), (max(xs), max(zs))


def rooms_bounding_box(rooms: Iterable[Room]) -> Optional[Bounds2D]:
    """Bounds of every vertex of every non-degenerate room."""
    return bounding_box(
        vertex
        for room in rooms
        if not room.is_degenerate
        for vertex in room.polygon
    )


def polygon_area(polygon: Sequence[Sequence[float]]) -> float:
    """Unsigned shoelace area; 0 for degenerate polygons."""
    n = len(polygon)
    if n < 3:
        return 0.0
    twice_area = 0.0
    for i in range(n):
        ax, az = polygon[i][0], polygon[i][1]
        bx, bz = polygon[(i + 1) % n][0], polygon[(i + 1) % n][1]
        twice_area += ax * bz - bx * az
    return abs(twice_area) / 2.0


def extract_walls(rooms: Iterable[Room]) -> List[WallSegment]:
    """Build one wall per polygon edge, closing edge included."""
    walls: List[WallSegment] = []

    for room in rooms:
        vertices = room.vertices
        if len(vertices) < 2:
            continue

        for i in range(len(vertices)):
            walls.append(WallSegment(
                start=vertices[i],
                end=vertices[(i + 1) % len(vertices)],
                material=room.material,
                attenuation_db=room.material.attenuation_db,
                height=room.wall_height_m
            ))

    return walls
