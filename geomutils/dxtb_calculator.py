import torch
import dxtb

from ase.calculators.calculator import Calculator, all_changes
from ase.units import Bohr, Hartree


class DXTBCalculator(Calculator):
    """
    ASE calculator for the dxtb GFN1/GFN2 tight-binding methods.

    Total charge and number of unpaired electrons are read from
    ``atoms.info["charge"]`` and ``atoms.info["spin"]``, which is where
    geometries put them.
    """

    implemented_properties = ["energy", "forces"]

    def __init__(
        self,
        method: str = "GFN1",
        device: str = "cpu",
        dtype: torch.dtype = torch.double,
        opts: dict | None = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.method = method.upper()
        if self.method not in ("GFN1", "GFN2"):
            raise ValueError("Unsupported method: must be 'GFN1' or 'GFN2'")
        self.device = torch.device(device)
        self.dtype = dtype
        self.opts = opts
        self._calc = None
        self._numbers_key: tuple[int, ...] | None = None

    def _backend(self, numbers: torch.Tensor):
        key = tuple(int(x) for x in numbers.cpu().tolist())
        if self._calc is not None and self._numbers_key == key:
            return self._calc
        dd = {"device": self.device, "dtype": self.dtype}
        if self.method == "GFN1":
            calc = dxtb.calculators.GFN1Calculator(numbers, opts=self.opts, **dd)
        else:
            calc = dxtb.calculators.GFN2Calculator(numbers, opts=self.opts, **dd)
        self._calc = calc
        self._numbers_key = key
        return calc

    def calculate(self, atoms=None, properties=["energy"], system_changes=all_changes):
        super().calculate(atoms, properties, system_changes)
        if atoms is None:
            raise ValueError("DXTBCalculator.calculate called with atoms=None")
        if any(atoms.pbc):
            raise NotImplementedError("dxtb GFN methods are used for finite clusters only.")

        numbers = torch.tensor(list(atoms.numbers), device=self.device, dtype=torch.long)
        calc = self._backend(numbers)
        calc.reset()
        pos = torch.tensor(
            atoms.get_positions() / Bohr,
            device=self.device,
            dtype=self.dtype,
            requires_grad=True,
        )
        charge = torch.tensor(
            float(atoms.info.get("charge", 0)), device=self.device, dtype=self.dtype
        )
        spin = int(atoms.info.get("spin", 0))

        energy = calc.get_energy(pos, chrg=charge, spin=spin)
        self.results["energy"] = float(energy.detach().cpu().item()) * Hartree
        if "forces" in properties:
            forces = calc.get_forces(pos, chrg=charge, spin=spin)
            self.results["forces"] = forces.detach().cpu().numpy() * (Hartree / Bohr)
