import numpy as np
import pytest
from ase import Atoms

torch = pytest.importorskip("torch")
pytest.importorskip("dxtb")

from geomutils.dxtb_calculator import DXTBCalculator  # noqa: E402


class RecordingBackend:
    def __init__(self):
        self.charges = []

    def reset(self):
        pass

    def get_energy(self, pos, chrg, spin):
        self.charges.append(chrg)
        return (pos**2).sum()

    def get_forces(self, pos, chrg, spin):
        self.charges.append(chrg)
        return -2.0 * pos.detach()


def test_charge_tensor_follows_calculator_device_and_dtype(monkeypatch):
    calc = DXTBCalculator(method="GFN2", device="cpu", dtype=torch.float32)
    backend = RecordingBackend()
    monkeypatch.setattr(calc, "_backend", lambda numbers: backend)
    atoms = Atoms("OH", positions=[[0.0, 0.0, 0.0], [0.0, 0.0, 0.97]])
    atoms.info["charge"] = -1
    calc.calculate(atoms, ["energy", "forces"])
    assert len(backend.charges) == 2
    for charge in backend.charges:
        assert charge.device == calc.device
        assert charge.dtype == torch.float32
        assert float(charge) == -1.0
    assert np.isfinite(calc.results["energy"])
    assert calc.results["forces"].shape == (2, 3)


def test_unknown_method_is_rejected():
    with pytest.raises(ValueError):
        DXTBCalculator(method="GFN0")
