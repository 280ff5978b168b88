"""
# Life-Cycle Topologies and Matrix Assembly

This module describes the fixed structure of a stage-structured population
(which projection-matrix cells are nonzero and how vital rates combine in
each) and assembles projection matrices from computed vital rates.

## Classes

- `Cell`: One structurally nonzero matrix entry, a sum of products of factors
- `LifeCycleTopology`: Stage labels plus the set of nonzero cells

## Functions

- `assemble`: Build a projection matrix from a topology and vital rates
- `validate_rates`: Warn about vital rates outside their natural domain
- `five_stage_plus_group`: Single-sex model, juveniles plus four age classes
- `two_sex_juvenile_adult`: Juvenile/adult x male/female model
- `three_stage_maturation`: Immature/philopatric/breeder model
- `get_topology`: Look up a built-in topology by name

## Factor Grammar

Each cell is a list of products; each product is a list of factors:

- a number, used as a constant (e.g. 0.5 for the sex ratio)
- a vital-rate name, e.g. "s_fa"
- a complement "1-<name>", e.g. "1-mature"

## Example Usage

```python
from mpm_tools.topology import LifeCycleTopology, assemble

topology = LifeCycleTopology.from_dict({
    "name": "two-stage",
    "stages": ["juvenile", "adult"],
    "cells": [
        {"row": 0, "col": 1, "terms": [["s_a", 0.5, "fec"]]},
        {"row": 1, "col": 0, "terms": [["s_j"]]},
        {"row": 1, "col": 1, "terms": [["s_a"]]},
    ],
})

A = assemble(topology, {"s_j": 0.4, "s_a": 0.8, "fec": 3.0})
```
"""

from dataclasses import dataclass
from typing import Mapping
import math
import warnings

import numpy as np

from mpm_tools.errors import MalformedTopology, OutOfDomainRate
from mpm_tools.utils.links import Scale


COMPLEMENT_PREFIX = "1-"


@dataclass(frozen=True)
class Factor:
    """A single multiplicative factor: a constant, a rate, or a rate's complement."""
    rate: str = None
    constant: float = 1.0
    complement: bool = False

    @classmethod
    def parse(cls, token) -> "Factor":
        if isinstance(token, Factor):
            return token
        if isinstance(token, (int, float)) and not isinstance(token, bool):
            return cls(constant=float(token))
        if isinstance(token, str) and token:
            if token.startswith(COMPLEMENT_PREFIX):
                return cls(rate=token[len(COMPLEMENT_PREFIX):].strip(), complement=True)
            return cls(rate=token.strip())
        raise MalformedTopology(f"Cannot parse matrix factor {token!r}")

    def value(self, rates: Mapping[str, float]) -> float:
        if self.rate is None:
            return self.constant
        x = rates[self.rate]
        return 1.0 - x if self.complement else x

    def to_token(self):
        if self.rate is None:
            return self.constant
        return f"{COMPLEMENT_PREFIX}{self.rate}" if self.complement else self.rate


@dataclass(frozen=True)
class Cell:
    """
    A structurally nonzero matrix entry.

    The entry's value is a sum of products, so several pathways feeding the
    same (row, col) are written as separate products.

    Attributes:
        row (int): Destination stage index.
        col (int): Source stage index.
        terms (tuple[tuple[Factor, ...], ...]): Products to be summed.
    """
    row: int
    col: int
    terms: tuple

    def __post_init__(self):
        terms = tuple(tuple(Factor.parse(f) for f in product) for product in self.terms)
        if not terms or any(len(product) == 0 for product in terms):
            raise MalformedTopology(f"Cell ({self.row}, {self.col}) has an empty formula")
        object.__setattr__(self, "terms", terms)

    @property
    def rates(self) -> frozenset[str]:
        return frozenset(f.rate for product in self.terms for f in product if f.rate is not None)

    def evaluate(self, rates: Mapping[str, float]) -> float:
        return sum(math.prod(f.value(rates) for f in product) for product in self.terms)

    @classmethod
    def from_dict(cls, data: dict) -> "Cell":
        return cls(row=int(data["row"]), col=int(data["col"]), terms=data["terms"])

    def to_dict(self) -> dict:
        return {
            "row": self.row,
            "col": self.col,
            "terms": [[f.to_token() for f in product] for product in self.terms],
        }


@dataclass(frozen=True)
class LifeCycleTopology:
    """
    Fixed structure of a stage-structured population.

    Attributes:
        name (str): Identifier, e.g. the species.
        stages (tuple[str, ...]): Stage labels; their order defines the
            matrix rows and columns.
        cells (tuple[Cell, ...]): Structurally nonzero cells. Every other
            cell is exactly zero.

    Raises:
        MalformedTopology: On duplicate stages, cells outside the matrix,
            or two formulas for the same cell.

    Example:
        ```python
        topology = five_stage_plus_group()
        topology.n_stages       # 5
        sorted(topology.rates)  # ['bp1', ..., 's_den']
        ```
    """
    name: str
    stages: tuple
    cells: tuple

    def __post_init__(self):
        stages = tuple(self.stages)
        cells = tuple(c if isinstance(c, Cell) else Cell.from_dict(c) for c in self.cells)
        object.__setattr__(self, "stages", stages)
        object.__setattr__(self, "cells", cells)

        n = len(stages)
        if n == 0:
            raise MalformedTopology(f"Topology {self.name!r} has no stages")
        if len(set(stages)) != n:
            raise MalformedTopology(f"Topology {self.name!r} has duplicate stage labels")

        seen = set()
        for cell in cells:
            if not (0 <= cell.row < n and 0 <= cell.col < n):
                raise MalformedTopology(
                    f"Cell ({cell.row}, {cell.col}) is outside the {n}x{n} matrix of {self.name!r}"
                )
            if (cell.row, cell.col) in seen:
                raise MalformedTopology(
                    f"Cell ({cell.row}, {cell.col}) is defined twice in {self.name!r}"
                )
            seen.add((cell.row, cell.col))

    @property
    def n_stages(self) -> int:
        return len(self.stages)

    @property
    def nonzero(self) -> frozenset[tuple[int, int]]:
        """(row, col) positions of the structurally nonzero cells."""
        return frozenset((c.row, c.col) for c in self.cells)

    @property
    def rates(self) -> frozenset[str]:
        """Names of every vital rate the formulas need."""
        return frozenset().union(*(c.rates for c in self.cells))

    def assemble(self, rates: Mapping[str, float]) -> np.ndarray:
        return assemble(self, rates)

    @classmethod
    def from_dict(cls, data: dict) -> "LifeCycleTopology":
        """
        Create a topology from a dictionary with keys 'name', 'stages' and
        'cells' (each cell a dict with 'row', 'col' and 'terms').
        """
        return cls(
            name=data.get("name", "topology"),
            stages=tuple(data["stages"]),
            cells=tuple(Cell.from_dict(c) for c in data["cells"]),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "stages": list(self.stages),
            "cells": [c.to_dict() for c in self.cells],
        }


def assemble(topology: LifeCycleTopology, rates: Mapping[str, float]) -> np.ndarray:
    """
    Assemble a projection matrix from vital rates.

    Every declared cell is evaluated from `rates`; all other cells are exactly
    zero. Rates are not re-validated or clamped here, see `validate_rates`.

    Args:
        topology (LifeCycleTopology): Structure of the population.
        rates (Mapping[str, float]): Vital-rate values by name. Extra names
            are ignored.

    Returns:
        np.ndarray: A new (n_stages, n_stages) float array.

    Raises:
        MalformedTopology: If a rate needed by a cell is missing.

    Example:
        ```python
        A = assemble(five_stage_plus_group(), rates)
        ```
    """
    n = topology.n_stages
    matrix = np.zeros((n, n), dtype=float)
    for cell in topology.cells:
        try:
            matrix[cell.row, cell.col] = cell.evaluate(rates)
        except KeyError as e:
            raise MalformedTopology(
                f"Cell ({cell.row}, {cell.col}) of {topology.name!r} needs vital rate {e.args[0]!r}"
            ) from None

    if matrix.shape != (n, n):
        raise MalformedTopology(f"Assembled matrix has shape {matrix.shape}, expected {(n, n)}")

    return matrix


def validate_rates(rates: Mapping[str, float], scales: Mapping[str, Scale]) -> list[str]:
    """
    Flag vital rates outside their natural domain.

    Probabilities must lie in [0, 1]; positive rates must be > 0. Non-finite
    values fail both. Each offending rate emits an `OutOfDomainRate` warning;
    nothing is raised or clamped.

    Args:
        rates (Mapping[str, float]): Vital-rate values by name.
        scales (Mapping[str, Scale]): Scale of each rate to check. Rates
            without a scale (constants) are skipped.

    Returns:
        list[str]: Names of the rates that are out of domain.
    """
    flagged = []
    for name, scale in scales.items():
        if name not in rates:
            continue
        x = rates[name]
        if scale is Scale.PROBABILITY:
            ok = math.isfinite(x) and 0.0 <= x <= 1.0
        else:
            ok = math.isfinite(x) and x > 0.0
        if not ok:
            flagged.append(name)
            warnings.warn(
                OutOfDomainRate(f"Vital rate {name!r} = {x} is outside its {scale.value} domain"),
                stacklevel=2,
            )
    return flagged


def five_stage_plus_group(sex_ratio: float = 0.5) -> LifeCycleTopology:
    """
    Single-sex (female) model with juveniles and four adult age classes.

    Post-breeding census. Stage j survives with `s{j}`; survivors of age
    class j breed at age min(j + 1, 4) with breeding probability `bp{k}`,
    litter size `ls{k}` and pup survival to weaning `s_den`. Ages four and
    over collapse into the absorbing "age4+" class.

    Rates:
        s0..s4, bp1..bp4, ls1..ls4, s_den

    Example:
        With every survival 0.7, breeding 0.8, litter 2.5 and s_den 0.6 the
        first row is 0.7 * 0.5 * 0.8 * 2.5 * 0.6 = 0.42 throughout.
    """
    stages = ("juvenile", "age1", "age2", "age3", "age4+")
    cells = []
    for j in range(5):
        k = min(j + 1, 4)
        cells.append(Cell(0, j, ((f"s{j}", sex_ratio, f"bp{k}", f"ls{k}", "s_den"),)))
    for j in range(4):
        cells.append(Cell(j + 1, j, ((f"s{j}",),)))
    cells.append(Cell(4, 4, (("s4",),)))
    return LifeCycleTopology("five_stage_plus_group", stages, tuple(cells))


def two_sex_juvenile_adult(sex_ratio: float = 0.5) -> LifeCycleTopology:
    """
    Juvenile/adult x male/female model sharing one fertility pathway.

    Stages are male juvenile, male adult, female juvenile, female adult.
    Females of both ages recruit offspring at rate `rec`, split by
    `sex_ratio` between the male and female juvenile stages; juveniles
    surviving the year become adults.

    Rates:
        s_mj, s_ma, s_fj, s_fa, rec
    """
    male = 1.0 - sex_ratio
    stages = ("male_juvenile", "male_adult", "female_juvenile", "female_adult")
    cells = (
        Cell(1, 0, (("s_mj",),)),
        Cell(1, 1, (("s_ma",),)),
        Cell(0, 2, ((male, "s_fj", "rec"),)),
        Cell(2, 2, ((sex_ratio, "s_fj", "rec"),)),
        Cell(3, 2, (("s_fj",),)),
        Cell(0, 3, ((male, "s_fa", "rec"),)),
        Cell(2, 3, ((sex_ratio, "s_fa", "rec"),)),
        Cell(3, 3, (("s_fa",),)),
    )
    return LifeCycleTopology("two_sex_juvenile_adult", stages, cells)


def three_stage_maturation(sex_ratio: float = 0.5) -> LifeCycleTopology:
    """
    Immature / philopatric / breeder model.

    Immatures that survive either recruit straight into the breeding stage
    (`recruit`) or stay as philopatric non-breeders; philopatric individuals
    mature into breeders with probability `mature`. Breeders survive with
    `s_b` and produce `breed * litter * sex_ratio` surviving immatures.

    Rates:
        s_i, s_p, s_b, recruit, mature, breed, litter
    """
    stages = ("immature", "philopatric", "breeder")
    cells = (
        Cell(0, 2, (("s_b", sex_ratio, "breed", "litter"),)),
        Cell(1, 0, (("s_i", "1-recruit"),)),
        Cell(2, 0, (("s_i", "recruit"),)),
        Cell(1, 1, (("s_p", "1-mature"),)),
        Cell(2, 1, (("s_p", "mature"),)),
        Cell(2, 2, (("s_b",),)),
    )
    return LifeCycleTopology("three_stage_maturation", stages, cells)


BUILTIN_TOPOLOGIES = {
    "five_stage_plus_group": five_stage_plus_group,
    "two_sex_juvenile_adult": two_sex_juvenile_adult,
    "three_stage_maturation": three_stage_maturation,
}


def get_topology(name: str, **kwargs) -> LifeCycleTopology:
    """
    Look up a built-in topology by name.

    Args:
        name (str): One of `BUILTIN_TOPOLOGIES`.
        **kwargs: Passed to the topology factory (e.g. sex_ratio).

    Raises:
        ValueError: If the name is unknown.
    """
    try:
        factory = BUILTIN_TOPOLOGIES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown topology: {name}") from None
    return factory(**kwargs)
