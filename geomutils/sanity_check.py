from __future__ import annotations

import logging

from geomutils.collision_detection import CollisionDetection
from geomutils.geometry import Geometry

logger = logging.getLogger(__name__)


class GeometrySanityCheck:
    """
    Gate between operators and the expensive fitness: structural validation
    (raises), then collision, dissociation and environment fit (return False).
    """

    def __init__(
        self,
        blow_collision: float,
        blow_dissociation: float,
        check_collisions: bool = True,
        check_dissociation: bool = True,
        n_particles: int | None = None,
        collision: CollisionDetection | None = None,
    ) -> None:
        self.blow_collision = blow_collision
        self.blow_dissociation = blow_dissociation
        self.check_collisions = check_collisions
        self.check_dissociation = check_dissociation
        self.n_particles = n_particles
        self.collision = collision or CollisionDetection()
        self._collision_info = self.collision.new_info()

    def is_sane(self, geometry: Geometry) -> bool:
        geometry.validate(self.n_particles)
        atoms = geometry.to_atoms()
        if geometry.environment is not None and not geometry.environment.does_it_fit(atoms):
            logger.debug("Geometry %d does not fit its environment.", geometry.id)
            return False
        dists = None
        if self.check_collisions:
            info = self.collision.check_for_collision(
                atoms, self.blow_collision, geometry.bonds, self._collision_info
            )
            if info.has_collision():
                logger.debug("Geometry %d has a collision.", geometry.id)
                return False
            dists = info.pairwise_distances()
        if self.check_dissociation and self.collision.check_for_dissociation(
            atoms, self.blow_dissociation, geometry.bonds, dists, self._collision_info
        ):
            logger.debug("Geometry %d is dissociated.", geometry.id)
            return False
        return True
