"""Configuration class for covariate sensitivity analysis settings.

This module provides the configuration for the near-equilibrium grid search
and the perturbation sweeps: tolerance around lambda = 1, grid resolution,
perturbation fraction, covariates to analyse, and execution settings. It
supports serialization to and from JSON format for easy persistence and
loading of sensitivity analysis configurations.

Typical usage example:

    from mpm_tools.sa import SensitivityAnalysisConfig

    config = SensitivityAnalysisConfig.from_json("sa_config.json")
    config.resolution = 30
    config.to_json("updated_sa_config.json")
"""

from dataclasses import dataclass, asdict
import json


@dataclass
class SensitivityAnalysisConfig:
    """Configuration class for sensitivity analysis execution settings.

    Near-equilibrium combinations are grid points whose lambda lies within
    `tolerance` of one. Both the tolerance and the grid resolution are
    tunable; the defaults reproduce the usual lambda in [0.99, 1.01] on a
    20-point grid per covariate.

    Attributes:
        tolerance (float): Half-width of the accepted band around lambda = 1.
            Defaults to 0.01.
        resolution (int): Grid points per covariate. Defaults to 20.
        fraction (float): Relative perturbation of a covariate's absolute
            value. Defaults to 0.1 (10%).
        covariates (list[str] | None): Covariates to grid and perturb.
            Defaults to every covariate in the space.
        vital_rates (list[str] | None): Vital rates to perturb one at a
            time, alongside "all". Defaults to every predicted rate.
        limit (int | None): Maximum number of grid points. Required for
            grids over more than three covariates.
        include_joint (bool): Also perturb all covariates together.
            Defaults to True.
        workers (int): Number of worker threads. Defaults to 4.
        parallel (bool): Evaluate on a thread pool. Defaults to True.

    Example:
        ```python
        config = SensitivityAnalysisConfig(
            tolerance=0.005,
            resolution=30,
            covariates=["dens", "rain", "temp"],
            workers=8,
        )
        ```
    """

    tolerance: float = 0.01
    resolution: int = 20
    fraction: float = 0.1
    covariates: list[str] | None = None
    vital_rates: list[str] | None = None
    limit: int | None = None
    include_joint: bool = True
    workers: int = 4
    parallel: bool = True

    def __post_init__(self):
        if self.tolerance < 0:
            raise ValueError(f"tolerance must be non-negative, got {self.tolerance}")
        if self.resolution < 1:
            raise ValueError(f"resolution must be at least 1, got {self.resolution}")

    @classmethod
    def from_json(cls, infile: str):
        """Create a SensitivityAnalysisConfig instance from a JSON file.

        Args:
            infile (str): Path to the JSON file containing the configuration
                data. Missing keys take their defaults.

        Returns:
            SensitivityAnalysisConfig: A new instance initialized with data
                from the file.

        Raises:
            FileNotFoundError: If the specified file does not exist.
            json.JSONDecodeError: If the file contains invalid JSON.
            TypeError: If the file contains unknown keys.

        Example:
            ```python
            config = SensitivityAnalysisConfig.from_json("sa_config.json")
            print(f"Searching a {config.resolution}-point grid with {config.workers} workers")
            ```
        """

        with open(infile, "r") as f:
            data = json.load(f)

        return cls(**data)

    def to_json(self, outfile: str):
        """Serialize the configuration to a JSON file.

        Args:
            outfile (str): Path to the output file where the JSON will be saved.

        Raises:
            FileExistsError: If the specified file already exists.

        Note:
            The file is opened in exclusive creation mode ("+x") to prevent
            accidental overwrites.
        """
        with open(outfile, "+x") as f:
            json.dump(asdict(self), f, indent=4)
