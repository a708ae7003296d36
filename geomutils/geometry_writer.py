from __future__ import annotations

import os
from typing import Any, TextIO

from ase.io import write

from geomutils.geometry import Geometry


def format_property(name: str, value: Any) -> str:
    return f"{name}\n\t{value}\n\n"


class GeometryWriter:
    """xyz files per individual plus an optional property block next to them."""

    def __init__(self, directory: str, with_environment: bool = True) -> None:
        self.directory = directory
        self.with_environment = with_environment
        os.makedirs(directory, exist_ok=True)

    def path_for(self, geometry: Geometry, rank: int | None = None) -> str:
        stem = f"geometry_{geometry.id}" if rank is None else f"rank{rank}_geometry_{geometry.id}"
        return os.path.join(self.directory, f"{stem}.xyz")

    def write_geometry(self, geometry: Geometry, rank: int | None = None) -> str:
        atoms = geometry.to_atoms(with_environment=self.with_environment)
        atoms.set_constraint([])
        path = self.path_for(geometry, rank)
        comment = f"id={geometry.id} fitness={geometry.fitness}"
        write(path, atoms, format="xyz", comment=comment)
        return path

    def write_property(self, handle: TextIO, name: str, value: Any) -> None:
        handle.write(format_property(name, value))

    def write_properties(self, path: str, properties: dict[str, Any]) -> None:
        with open(path, "w", encoding="utf-8") as handle:
            for name, value in properties.items():
                self.write_property(handle, name, value)
