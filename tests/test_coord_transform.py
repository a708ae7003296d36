import numpy as np
import pytest

from geomutils.coord_transform import (
    align,
    cartesian_to_spherical,
    center_of_mass,
    euler_to_matrix,
    kabsch_rotation,
    list_of_points,
    matrix_to_euler,
    random_euler_increments,
    random_eulers,
    random_vector,
    spherical_to_cartesian,
)
from geomutils.errors import GeometryError


def test_spherical_round_trip(rng):
    xyz = rng.uniform(-5.0, 5.0, size=(50, 3))
    back = spherical_to_cartesian(cartesian_to_spherical(xyz))
    assert np.allclose(back, xyz)


def test_spherical_convention():
    # omega is the polar angle from +z
    assert np.allclose(spherical_to_cartesian([2.0, 0.0, 0.0]), [0.0, 0.0, 2.0])
    assert np.allclose(spherical_to_cartesian([1.0, np.pi / 2, np.pi / 2]), [0.0, 1.0, 0.0])


def test_euler_matrix_is_rotation_and_inverts(rng):
    for _ in range(20):
        eulers = random_eulers(rng)
        rot = euler_to_matrix(eulers)
        assert np.allclose(rot @ rot.T, np.eye(3))
        assert np.isclose(np.linalg.det(rot), 1.0)
        assert np.allclose(euler_to_matrix(matrix_to_euler(rot)), rot)


def test_euler_increments_stay_in_range(rng):
    eulers = random_eulers(rng)
    for _ in range(100):
        random_euler_increments(eulers, 1.0, rng)
        assert 0.0 <= eulers[0] < 2 * np.pi
        assert 0.0 <= eulers[1] <= np.pi
        assert 0.0 <= eulers[2] < 2 * np.pi


def test_random_vector_norm(rng):
    assert np.isclose(np.linalg.norm(random_vector(rng, norm=2.5)), 2.5)


def test_align_recovers_rigid_motion(rng):
    numbers = np.array([8, 1, 1, 6])
    reference = rng.normal(size=(4, 3))
    rot = euler_to_matrix(random_eulers(rng))
    shift = np.array([1.0, -3.0, 2.0])
    target = (reference - center_of_mass(reference, numbers)) @ rot.T + shift
    fitted_rot, translation, rmsd = align(reference, target, numbers)
    assert rmsd < 1e-8
    assert np.allclose(fitted_rot, rot)
    assert np.allclose(translation, shift)


def test_list_of_points_distinct_and_sorted(rng):
    for _ in range(50):
        points = list_of_points(4, 6, rng)
        assert points == sorted(set(points))
        assert all(0 <= p < 6 for p in points)
    with pytest.raises(ValueError):
        list_of_points(7, 6, rng)


@pytest.mark.parametrize("strength", [-0.1, 1.5])
def test_euler_increment_strength_out_of_range_raises(rng, strength):
    eulers = random_eulers(rng)
    before = eulers.copy()
    with pytest.raises(GeometryError):
        random_euler_increments(eulers, strength, rng)
    assert np.array_equal(eulers, before)


def test_kabsch_rotation_is_proper_for_mirrored_sets(rng):
    p = rng.normal(size=(6, 3))
    p -= p.mean(axis=0)
    mirrored = p * np.array([1.0, 1.0, -1.0])
    rot = kabsch_rotation(p, mirrored)
    assert np.allclose(rot @ rot.T, np.eye(3))
    assert np.isclose(np.linalg.det(rot), 1.0)


def test_align_rejects_non_finite_coordinates(rng):
    numbers = np.array([8, 1, 1])
    reference = rng.normal(size=(3, 3))
    target = reference.copy()
    target[1, 2] = np.nan
    with pytest.raises(np.linalg.LinAlgError):
        align(reference, target, numbers)
