from __future__ import annotations

import logging

import numpy as np
from ase.data import atomic_masses
from rmsd import kabsch

from geomutils.errors import GeometryError

logger = logging.getLogger(__name__)


# ==========================
# Spherical coordinates
# ==========================


def spherical_to_cartesian(spherical: np.ndarray) -> np.ndarray:
    """
    (r, phi, omega) -> (x, y, z). phi is the azimuth in the x-y plane,
    omega the polar angle measured from +z. Accepts (3,) or (n, 3).
    """
    sph = np.asarray(spherical, dtype=float)
    r, phi, omega = sph[..., 0], sph[..., 1], sph[..., 2]
    return np.stack(
        [
            r * np.sin(omega) * np.cos(phi),
            r * np.sin(omega) * np.sin(phi),
            r * np.cos(omega),
        ],
        axis=-1,
    )


def cartesian_to_spherical(cartesian: np.ndarray) -> np.ndarray:
    xyz = np.asarray(cartesian, dtype=float)
    x, y, z = xyz[..., 0], xyz[..., 1], xyz[..., 2]
    r = np.sqrt(x * x + y * y + z * z)
    phi = np.mod(np.arctan2(y, x), 2.0 * np.pi)
    safe_r = np.where(r > 0.0, r, 1.0)
    omega = np.where(r > 0.0, np.arccos(np.clip(z / safe_r, -1.0, 1.0)), 0.0)
    return np.stack([r, phi, omega], axis=-1)


# ==========================
# Euler angles (z-x-z convention)
# ==========================


def euler_to_matrix(eulers: np.ndarray) -> np.ndarray:
    a, b, c = (float(x) for x in eulers)
    ca, sa = np.cos(a), np.sin(a)
    cb, sb = np.cos(b), np.sin(b)
    cc, sc = np.cos(c), np.sin(c)
    rz_a = np.array([[ca, -sa, 0.0], [sa, ca, 0.0], [0.0, 0.0, 1.0]])
    rx_b = np.array([[1.0, 0.0, 0.0], [0.0, cb, -sb], [0.0, sb, cb]])
    rz_c = np.array([[cc, -sc, 0.0], [sc, cc, 0.0], [0.0, 0.0, 1.0]])
    return rz_a @ rx_b @ rz_c


def matrix_to_euler(rot: np.ndarray) -> np.ndarray:
    rot = np.asarray(rot, dtype=float)
    b = float(np.arccos(np.clip(rot[2, 2], -1.0, 1.0)))
    if abs(np.sin(b)) > 1e-9:
        a = float(np.arctan2(rot[0, 2], -rot[1, 2]))
        c = float(np.arctan2(rot[2, 0], rot[2, 1]))
    else:
        # gimbal lock, fold everything into the first angle
        a = float(np.arctan2(rot[1, 0], rot[0, 0]))
        c = 0.0
    return np.array([a, b, c])


def random_eulers(rng: np.random.Generator) -> np.ndarray:
    return np.array(
        [
            rng.random() * 2.0 * np.pi,
            rng.random() * np.pi,
            rng.random() * 2.0 * np.pi,
        ]
    )


def random_euler_increments(
    eulers: np.ndarray, strength: float, rng: np.random.Generator
) -> None:
    """Kick Euler angles in place by at most strength * (2pi, pi, 2pi)."""
    if not 0.0 <= strength <= 1.0:
        raise GeometryError(
            f"Euler increment strength must lie in [0, 1], got {strength}."
        )
    spans = np.array([2.0 * np.pi, np.pi, 2.0 * np.pi])
    eulers += strength * spans * rng.uniform(-1.0, 1.0, size=3)
    eulers[0] = np.mod(eulers[0], 2.0 * np.pi)
    eulers[1] = np.clip(eulers[1], 0.0, np.pi)
    eulers[2] = np.mod(eulers[2], 2.0 * np.pi)


def random_vector(
    rng: np.random.Generator, norm: float = 1.0, size: int = 3
) -> np.ndarray:
    v = rng.uniform(-1.0, 1.0, size=size)
    n = np.linalg.norm(v)
    while n < 1e-12:
        v = rng.uniform(-1.0, 1.0, size=size)
        n = np.linalg.norm(v)
    return v * (norm / n)


def list_of_points(
    no_points: int, high: int, rng: np.random.Generator, low: int = 0
) -> list[int]:
    """Distinct integers from [low, high) in ascending order."""
    if no_points > high - low:
        raise ValueError(f"Cannot draw {no_points} distinct points from [{low},{high}).")
    chosen = rng.choice(np.arange(low, high), size=no_points, replace=False)
    return sorted(int(x) for x in chosen)


# ==========================
# Center of mass and alignment
# ==========================


def center_of_mass(positions: np.ndarray, numbers: np.ndarray) -> np.ndarray:
    masses = atomic_masses[np.asarray(numbers, dtype=int)]
    return masses @ np.asarray(positions, dtype=float) / masses.sum()


def kabsch_rotation(reference: np.ndarray, target: np.ndarray) -> np.ndarray:
    """
    Rotation R minimising sum |R @ p_i - q_i|^2 for centered point sets.
    Raises numpy.linalg.LinAlgError for non-finite input or when the SVD
    does not converge.
    """
    p = np.asarray(reference, dtype=float)
    q = np.asarray(target, dtype=float)
    if not (np.all(np.isfinite(p)) and np.all(np.isfinite(q))):
        raise np.linalg.LinAlgError("Non-finite coordinates in rigid fit.")
    # kabsch gives U with p @ U ~ q, i.e. row vectors
    return kabsch(p, q).T


def align(
    reference: np.ndarray, target: np.ndarray, numbers: np.ndarray
) -> tuple[np.ndarray, np.ndarray, float]:
    """
    Fit reference onto target by rotation about and translation of the COM.

    Returns
    -------
    rotation : (3, 3)
    translation : (3,)
        COM of target, i.e. aligned = (reference - com_ref) @ R.T + translation.
    rmsd : float
    """
    com_ref = center_of_mass(reference, numbers)
    com_tgt = center_of_mass(target, numbers)
    p = np.asarray(reference, dtype=float) - com_ref
    q = np.asarray(target, dtype=float) - com_tgt
    rot = kabsch_rotation(p, q)
    fitted = p @ rot.T
    rmsd = float(np.sqrt(np.mean(np.sum((fitted - q) ** 2, axis=1))))
    return rot, com_tgt, rmsd
