import pytest

from rfcoverage.schemas import MaterialType, Room
from rfcoverage.services.geometry import (
    WallSegment,
    bounding_box,
    extract_walls,
    point_in_polygon,
    polygon_area,
    ray_intersects_wall,
    rooms_bounding_box,
    segments_intersect,
)

L_SHAPE = [[0, 0], [6, 0], [6, 2], [2, 2], [2, 6], [0, 6]]


def test_point_in_polygon_basic():
    """Points inside, outside and in the notch of an L-shaped room"""
    assert point_in_polygon((1, 1), L_SHAPE)
    assert point_in_polygon((5, 1), L_SHAPE)
    assert point_in_polygon((1, 5), L_SHAPE)
    assert not point_in_polygon((4, 4), L_SHAPE)
    assert not point_in_polygon((-1, 1), L_SHAPE)


@pytest.mark.parametrize("shift", range(len(L_SHAPE)))
def test_point_in_polygon_rotation_invariant(shift):
    """Cyclic rotation of the vertex list never changes containment"""
    rotated = L_SHAPE[shift:] + L_SHAPE[:shift]
    for point in [(1, 1), (5, 1), (1, 5), (4, 4), (7, 7), (3, 1.5)]:
        assert point_in_polygon(point, rotated) == point_in_polygon(point, L_SHAPE)


def test_point_in_degenerate_polygon():
    assert not point_in_polygon((0, 0), [])
    assert not point_in_polygon((0.5, 0.5), [[0, 0], [1, 1]])


def test_segments_intersect():
    assert segments_intersect((0, 0), (2, 2), (0, 2), (2, 0))
    assert not segments_intersect((0, 0), (1, 1), (2, 0), (3, -1))


def test_segments_touching_endpoint_intersect():
    assert segments_intersect((0, 0), (1, 0), (1, -1), (1, 1))


def test_parallel_and_collinear_segments_do_not_intersect():
    assert not segments_intersect((0, 0), (2, 0), (0, 1), (2, 1))
    # Overlapping collinear segments are reported as non-intersecting
    assert not segments_intersect((0, 0), (2, 0), (1, 0), (3, 0))


def test_ray_hits_wall_in_front():
    wall = WallSegment(start=(4, 0), end=(4, 4))
    assert ray_intersects_wall((2, 1, 2), (1, 0, 0), wall)


def test_ray_misses_wall_behind_origin():
    wall = WallSegment(start=(4, 0), end=(4, 4))
    assert not ray_intersects_wall((2, 1, 2), (-1, 0, 0), wall)


def test_ray_parallel_to_wall_misses():
    wall = WallSegment(start=(0, 0), end=(4, 0))
    assert not ray_intersects_wall((0, 1, 1), (1, 0, 0), wall)


def test_ray_beyond_max_distance_misses():
    wall = WallSegment(start=(4, 0), end=(4, 4))
    assert ray_intersects_wall((2, 1, 2), (1, 0, 0), wall, max_distance=2.5)
    assert not ray_intersects_wall((2, 1, 2), (1, 0, 0), wall, max_distance=1.5)


def test_ray_passing_over_wall_misses():
    wall = WallSegment(start=(4, 0), end=(4, 4), height=3.0)
    assert not ray_intersects_wall((2, 5, 2), (1, 0, 0), wall)


def test_ray_outside_wall_footprint_misses():
    wall = WallSegment(start=(4, 0), end=(4, 1))
    assert not ray_intersects_wall((2, 1, 2), (1, 0, 0), wall)


def test_zero_direction_never_hits():
    wall = WallSegment(start=(4, 0), end=(4, 4))
    assert not ray_intersects_wall((2, 1, 2), (0, 0, 0), wall)


def test_bounding_box():
    assert bounding_box([]) is None
    assert bounding_box([(1, 2), (-3, 5), (0, -1)]) == ((-3, -1), (1, 5))


def test_rooms_bounding_box_skips_degenerate_rooms():
    rooms = [
        Room(polygon=[[0, 0], [2, 0], [2, 2]]),
        Room(polygon=[[50, 50], [60, 60]]),
    ]
    assert rooms_bounding_box(rooms) == ((0, 0), (2, 2))
    assert rooms_bounding_box([Room(polygon=[[1, 1]])]) is None


def test_extract_walls_closes_polygon(square_room):
    walls = extract_walls([square_room])
    assert len(walls) == 4
    assert walls[-1].start == (0.0, 4.0)
    assert walls[-1].end == (0.0, 0.0)
    assert all(w.attenuation_db == MaterialType.DRYWALL.attenuation_db for w in walls)


def test_extract_walls_uses_room_material_and_height():
    room = Room(polygon=[[0, 0], [1, 0], [1, 1]], material=MaterialType.METAL, wall_height_m=2.4)
    walls = extract_walls([room])
    assert {w.material for w in walls} == {MaterialType.METAL}
    assert all(w.attenuation_db == 20.0 and w.height == 2.4 for w in walls)


def test_extract_walls_degenerate_rooms():
    assert extract_walls([Room(polygon=[[0, 0]])]) == []
    assert len(extract_walls([Room(polygon=[[0, 0], [3, 0]])])) == 2


def test_polygon_area():
    assert polygon_area(L_SHAPE) == pytest.approx(20.0)
    assert polygon_area(list(reversed(L_SHAPE))) == pytest.approx(20.0)
    assert polygon_area([[0, 0], [1, 1]]) == 0.0
