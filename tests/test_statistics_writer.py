import threading

import pytest
from ase.io import read

from geomutils.geometry_writer import GeometryWriter, format_property
from geomutils.statistics import COUNTERS, SearchStatistics


def test_counters_start_at_zero():
    assert SearchStatistics().snapshot() == {name: 0 for name in COUNTERS}


def test_unknown_counter():
    with pytest.raises(KeyError):
        SearchStatistics().increment("mutations")


def test_increments_from_many_threads():
    stats = SearchStatistics()

    def bump():
        for _ in range(1000):
            stats.increment("trials")

    threads = [threading.Thread(target=bump) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert stats.get("trials") == 8000


def test_format_property():
    assert format_property("best fitness", -1.5) == "best fitness\n\t-1.5\n\n"


def test_writer_outputs_xyz_and_properties(tmp_path, argon_geometry):
    geometry = argon_geometry(3, geometry_id=42)
    geometry.fitness = -0.03
    writer = GeometryWriter(str(tmp_path / "out"))
    path = writer.write_geometry(geometry, rank=0)
    assert path.endswith("rank0_geometry_42.xyz")
    atoms = read(path)
    assert len(atoms) == 3
    writer.write_properties(str(tmp_path / "out" / "pool.txt"), {"pool size": 1, "best": -0.03})
    text = (tmp_path / "out" / "pool.txt").read_text()
    assert text == "pool size\n\t1\n\nbest\n\t-0.03\n\n"
