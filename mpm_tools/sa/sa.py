"""Covariate sensitivity analysis for matrix population models.

This module implements the perturbation protocol that links environmental
covariates to population growth: it searches a covariate grid for
combinations producing near-equilibrium dynamics (lambda close to one),
perturbs each covariate at those combinations for each vital rate in turn
and for all of them at once, and computes Morris-style scaled sensitivities
with and without the covariation observed among covariates.

Features:
    - Near-equilibrium grid search with tunable tolerance and resolution
    - Relative sensitivities per covariate (and all covariates jointly) and
      per vital rate (and all vital rates)
    - Scaled sensitivities, other covariates at their means or at the values
      observed alongside each extreme
    - Exact zeros for vital rates that do not depend on a covariate
    - Per-combination failure isolation; a batch never aborts on one matrix
    - Parallel evaluation with results kept in input order

References:
    - Paniw, M., et al. (2019). Interactive life-history traits predict
      sensitivity of plants and animals to temporal autocorrelation.
    - Morris, W.F., et al. (2020). Demographic compensation does not rescue
      populations from climate change.

Typical usage example:

    from mpm_tools import StageModel
    from mpm_tools.config import CovariateSpace
    from mpm_tools.sa import SensitivityAnalysis, SensitivityAnalysisConfig

    model = StageModel.from_dict(model_data)
    space = CovariateSpace.from_csv("covariates.csv", time_column="year")
    config = SensitivityAnalysisConfig.from_json("sa_config.json")
    report = SensitivityAnalysis(model, space, config).run()
"""

# Model and config
from ..model import StageModel
from ..config.space import CovariateSpace, Extreme
from .config import SensitivityAnalysisConfig

# Results
from ..utils.results import SensitivityResult, SensitivityResults, GridSearchResult, SensitivityReport
from ..utils.parallel import ordered_map
from ..errors import NonErgodicMatrix

# Logging
import logging

from enum import Enum
from typing import Iterable, Sequence

import numpy as np


ALL = "all"
"""Vital-rate selector meaning every rate that depends on the covariates."""

# Failures recorded per combination instead of aborting a batch
NUMERICAL_ERRORS = (NonErgodicMatrix, np.linalg.LinAlgError)


class Covariation(str, Enum):
    """
    How the other covariates are set in a scaled sensitivity.

    Values:
        NONE: Other covariates at their historical means
        PAIRED: Other covariates at the values observed when the perturbed
            covariate was at its extreme
    """
    NONE = "none"
    PAIRED = "paired"

    @staticmethod
    def from_name(name: str) -> "Covariation":
        try:
            return Covariation(name.lower())
        except ValueError:
            raise ValueError(f"Unknown covariation mode: {name}")


class SensitivityAnalysis:
    """Covariate sensitivity analysis of a stage-structured model.

    Attributes:
        model (StageModel): Vital rates and topology to analyse.
        space (CovariateSpace): Historical covariate series.
        config (SensitivityAnalysisConfig): Tolerance, resolution,
            perturbation fraction and execution settings.

    Example:
        ```python
        sa = SensitivityAnalysis(model, space, SensitivityAnalysisConfig(workers=8))

        found = sa.find_equilibrium_combinations(space.grid(20))
        if found.empty:
            print("No near-equilibrium combinations")

        result = sa.perturb(found.combinations[0], "rain", vital_rate="s_fa")
        morris = sa.scaled_sensitivity("rain", Covariation.PAIRED)
        ```
    """

    def __init__(
        self,
        model: StageModel,
        space: CovariateSpace,
        config: SensitivityAnalysisConfig = None,
    ):
        """Initialize the SensitivityAnalysis with model, space and configuration.

        Args:
            model (StageModel): Model evaluated at every covariate combination.
            space (CovariateSpace): Historical covariate series supplying
                ranges, means and paired values.
            config (SensitivityAnalysisConfig, optional): Analysis settings.
                Defaults to `SensitivityAnalysisConfig()`.

        Raises:
            KeyError: If the configuration names covariates missing from the
                space, or vital rates missing from the model.
        """
        self.model = model
        self.space = space
        self.config = config if config is not None else SensitivityAnalysisConfig()

        for name in self.covariates:
            if name not in space.names:
                raise KeyError(f"Unknown covariate: {name!r}; expected one of {space.names}")
        for rate in self.vital_rates:
            self._check_rate(rate)

    @property
    def covariates(self) -> list[str]:
        """Covariates gridded and perturbed."""
        if self.config.covariates is not None:
            return list(self.config.covariates)
        return self.space.names

    @property
    def vital_rates(self) -> list[str]:
        """Vital rates perturbed one at a time."""
        if self.config.vital_rates is not None:
            return list(self.config.vital_rates)
        return list(self.model.rate_names)

    def _check_rate(self, vital_rate: str):
        if vital_rate != ALL and vital_rate not in self.model.rates:
            raise KeyError(
                f"Unknown vital rate: {vital_rate!r}; expected {ALL!r} or one of {list(self.model.rates)}"
            )

    def _selected(self, vital_rate: str, covariates: Sequence[str]) -> list[str]:
        """Rates that see the perturbed covariates and depend on at least one."""
        candidates = self.model.rate_names if vital_rate == ALL else (vital_rate,)
        return [
            rate for rate in candidates
            if any(self.model.depends_on(rate, c) for c in covariates)
        ]

    def grid(self):
        """
        Grid over the configured covariates at the configured resolution.

        Covariates in the space that are not gridded are held at their means.
        """
        covariates = self.covariates
        fixed = {k: v for k, v in self.space.means().items() if k not in covariates}
        return self.space.grid(
            self.config.resolution,
            covariates=covariates,
            limit=self.config.limit,
            fixed=fixed,
        )

    def find_equilibrium_combinations(
        self,
        grid: Iterable[dict[str, float]] = None,
        tolerance: float = None,
    ) -> GridSearchResult:
        """Find covariate combinations with lambda within `tolerance` of one.

        Every grid point is evaluated. Points whose matrix has no unique real
        dominant eigenvalue are recorded as failures and skipped.

        Args:
            grid (Iterable[dict[str, float]], optional): Covariate
                combinations to evaluate. Defaults to `self.grid()`.
            tolerance (float, optional): Accepted |lambda - 1|. Defaults to
                the configured tolerance.

        Returns:
            GridSearchResult: Qualifying combinations in grid order, possibly
                none, with their lambdas and the failed points.
        """
        tolerance = self.config.tolerance if tolerance is None else tolerance
        if tolerance < 0:
            raise ValueError(f"tolerance must be non-negative, got {tolerance}")
        combinations = list(grid if grid is not None else self.grid())

        logging.info(f"Searching {len(combinations)} covariate combinations for |lambda - 1| <= {tolerance}.")
        outcomes = ordered_map(
            self.model.run,
            combinations,
            workers=self.config.workers,
            parallel=self.config.parallel,
            catch=NUMERICAL_ERRORS,
            desc="equilibrium search",
        )

        result = GridSearchResult(evaluated=len(combinations))
        for combination, (lam, error) in zip(combinations, outcomes):
            if error is not None:
                result.failures.append((combination, str(error)))
            elif abs(lam - 1.0) <= tolerance:
                result.combinations.append(combination)
                result.lambdas.append(lam)

        logging.info(
            f"Found {len(result.combinations)} near-equilibrium combinations "
            f"({len(result.failures)} inconclusive)."
        )
        return result

    def _relative(
        self,
        combination: dict[str, float],
        covariates: tuple[str, ...],
        vital_rate: str,
        fraction: float,
        baseline_id: int | None,
        lambda_control: float,
    ) -> SensitivityResult:
        result = SensitivityResult(
            kind="relative",
            covariates=covariates,
            vital_rate=vital_rate,
            covariation="baseline",
            baseline_id=baseline_id,
            baseline=dict(combination),
            lambda_control=lambda_control,
        )

        selected = self._selected(vital_rate, covariates)
        perturbed = {
            **combination,
            **{c: combination[c] + fraction * abs(combination[c]) for c in covariates},
        }
        if fraction == 0 or not selected or all(perturbed[c] == combination[c] for c in covariates):
            result.lambda_perturbed = lambda_control
            result.delta = 0.0
            return result

        if lambda_control == 0:
            result.error = "lambda_control is zero"
            return result

        try:
            lam = self.model.growth_rate(combination, perturbed=perturbed, selected=selected)
        except NUMERICAL_ERRORS as e:
            logging.warning(f"Perturbation of {covariates} for {vital_rate!r} failed: {e}")
            result.error = str(e)
            return result

        result.lambda_perturbed = lam
        result.delta = (lam - lambda_control) / lambda_control
        return result

    def _control(self, combination: dict[str, float]):
        try:
            return self.model.growth_rate(combination), None
        except NUMERICAL_ERRORS as e:
            logging.warning(f"Control matrix at {combination} failed: {e}")
            return None, str(e)

    def perturb(
        self,
        combination: dict[str, float],
        covariates: str | Sequence[str],
        vital_rate: str = ALL,
        fraction: float = None,
        baseline_id: int = None,
    ) -> SensitivityResult:
        """Relative change in lambda after increasing covariates by a fraction.

        Each perturbed covariate x becomes x + fraction * |x|; the other
        covariates keep their baseline values. Only the selected vital rates
        are recomputed at the perturbed values.

        Args:
            combination (dict[str, float]): Baseline covariate combination,
                usually near equilibrium.
            covariates (str | Sequence[str]): Covariate, or covariates
                perturbed together.
            vital_rate (str, optional): A single vital rate, or "all" for
                every rate that depends on the covariates. Defaults to "all".
            fraction (float, optional): Perturbation fraction. Defaults to
                the configured fraction.
            baseline_id (int, optional): Identifier of the baseline
                combination, carried into the result.

        Returns:
            SensitivityResult: delta = (lambda_perturbed - lambda_control) /
                lambda_control. Exactly 0.0 when fraction is 0 or no selected
                rate depends on the covariates. Inconclusive (error set) when
                either matrix has no unique real dominant eigenvalue.

        Raises:
            KeyError: If a covariate is missing from the combination or the
                vital rate is unknown.
        """
        covariates = (covariates,) if isinstance(covariates, str) else tuple(covariates)
        fraction = self.config.fraction if fraction is None else fraction
        self._check_rate(vital_rate)
        for c in covariates:
            if c not in combination:
                raise KeyError(f"Covariate {c!r} is not in the baseline combination")

        lambda_control, error = self._control(combination)
        if error is not None:
            return SensitivityResult(
                kind="relative",
                covariates=covariates,
                vital_rate=vital_rate,
                covariation="baseline",
                baseline_id=baseline_id,
                baseline=dict(combination),
                error=error,
            )
        return self._relative(combination, covariates, vital_rate, fraction, baseline_id, lambda_control)

    def _perturbations(self, covariates: Sequence[str], include_joint: bool) -> list[tuple[str, ...]]:
        groups = [(c,) for c in covariates]
        if include_joint and len(covariates) > 1:
            groups.append(tuple(covariates))
        return groups

    def sweep(
        self,
        combinations: Iterable[dict[str, float]],
        covariates: Sequence[str] = None,
        include_joint: bool = None,
    ) -> SensitivityResults:
        """Relative sensitivities for every combination, covariate and vital rate.

        For each baseline combination, each covariate (and, when
        `include_joint`, all covariates together) is perturbed for each
        vital rate in turn and for "all". The control lambda is computed
        once per combination.

        Args:
            combinations (Iterable[dict[str, float]]): Baseline combinations.
                Their position is used as `baseline_id`.
            covariates (Sequence[str], optional): Covariates to perturb.
                Defaults to the configured covariates.
            include_joint (bool, optional): Also perturb all covariates
                together. Defaults to the configured value.

        Returns:
            SensitivityResults: Ordered by combination, then covariate group,
                then vital rate with "all" last.
        """
        covariates = list(covariates) if covariates is not None else self.covariates
        include_joint = self.config.include_joint if include_joint is None else include_joint
        groups = self._perturbations(covariates, include_joint)
        rates = [*self.vital_rates, ALL]
        fraction = self.config.fraction

        def evaluate(item):
            idx, combination = item
            lambda_control, error = self._control(combination)
            out = []
            for group in groups:
                for rate in rates:
                    if error is not None:
                        out.append(SensitivityResult(
                            kind="relative",
                            covariates=group,
                            vital_rate=rate,
                            covariation="baseline",
                            baseline_id=idx,
                            baseline=dict(combination),
                            error=error,
                        ))
                    else:
                        out.append(self._relative(combination, group, rate, fraction, idx, lambda_control))
            return out

        items = list(enumerate(combinations))
        logging.info(
            f"Perturbing {len(groups)} covariate groups x {len(rates)} vital-rate selectors "
            f"at {len(items)} combinations."
        )
        outcomes = ordered_map(
            evaluate,
            items,
            workers=self.config.workers,
            parallel=self.config.parallel,
            desc="relative sensitivity",
        )

        results = SensitivityResults()
        for out, _ in outcomes:
            results.extend(out)
        return results

    def scaled_sensitivity(
        self,
        covariate: str,
        covariation: Covariation | str = Covariation.NONE,
        vital_rate: str = ALL,
    ) -> SensitivityResult:
        """Morris-style scaled sensitivity of lambda to one covariate.

        Lambda is computed with the covariate at its historical minimum and
        maximum. Other covariates are at their means (`Covariation.NONE`) or
        at the values observed alongside each extreme (`Covariation.PAIRED`).
        Only the selected vital rates see the extreme combinations; the rest
        stay at the covariate means.

        Args:
            covariate (str): Covariate to vary.
            covariation (Covariation | str, optional): Defaults to NONE.
            vital_rate (str, optional): A single vital rate or "all".

        Returns:
            SensitivityResult: delta = |lambda_max - lambda_min| /
                ((max - min) / sd), with `baseline` the minimum combination and
                `baseline_id` the label "<covariate>:<covariation>". A covariate
                with no variation gives an inconclusive result with
                error "no variation".

        Raises:
            KeyError: If the covariate or vital rate is unknown.
        """
        covariation = Covariation.from_name(covariation) if isinstance(covariation, str) else covariation
        self._check_rate(vital_rate)
        summary = self.space.marginal(covariate)

        paired = covariation is Covariation.PAIRED
        low = self.space.at_extreme(covariate, Extreme.MIN, paired)
        high = self.space.at_extreme(covariate, Extreme.MAX, paired)

        result = SensitivityResult(
            kind="scaled",
            covariates=(covariate,),
            vital_rate=vital_rate,
            covariation=covariation.value,
            baseline_id=f"{covariate}:{covariation.value}",
            baseline=low,
        )

        if summary.range == 0 or not summary.sd > 0:
            logging.warning(f"Covariate {covariate!r} has no variation; scaled sensitivity is undefined")
            result.error = "no variation"
            return result

        if vital_rate == ALL:
            selected = None
            base = None
        else:
            selected = [vital_rate]
            base = self.space.means()

        try:
            if base is None:
                lam_min = self.model.growth_rate(low)
                lam_max = self.model.growth_rate(high)
            else:
                lam_min = self.model.growth_rate(base, perturbed=low, selected=selected)
                lam_max = self.model.growth_rate(base, perturbed=high, selected=selected)
        except NUMERICAL_ERRORS as e:
            logging.warning(f"Scaled sensitivity to {covariate!r} failed: {e}")
            result.error = str(e)
            return result

        result.lambda_control = lam_min
        result.lambda_perturbed = lam_max
        result.delta = abs(lam_max - lam_min) / (summary.range / summary.sd)
        return result

    def scaled_sweep(
        self,
        covariates: Sequence[str] = None,
        vital_rates: Sequence[str] = (ALL,),
    ) -> SensitivityResults:
        """Scaled sensitivities for every covariate, with and without covariation.

        Args:
            covariates (Sequence[str], optional): Defaults to the configured
                covariates.
            vital_rates (Sequence[str], optional): Vital-rate selectors.
                Defaults to ("all",).

        Returns:
            SensitivityResults: Ordered by covariate, then covariation mode
                (none before paired), then vital rate.
        """
        covariates = list(covariates) if covariates is not None else self.covariates
        logging.info(f"Computing scaled sensitivities for {covariates}.")
        return SensitivityResults(
            self.scaled_sensitivity(c, mode, rate)
            for c in covariates
            for mode in Covariation
            for rate in vital_rates
        )

    def run(self) -> SensitivityReport:
        """Execute the complete sensitivity analysis workflow.

        Note:
            This method orchestrates the complete workflow:
            1. Search the covariate grid for near-equilibrium combinations
            2. Perturb every covariate for every vital rate at each of them
            3. Compute scaled sensitivities with and without covariation

        Returns:
            SensitivityReport: Equilibrium search, relative and scaled
                sensitivities. With no near-equilibrium combinations the
                relative results are empty and a warning is logged.

        Example:
            ```python
            report = SensitivityAnalysis(model, space, config).run()
            report.relative.to_frame()
            ```
        """
        equilibrium = self.find_equilibrium_combinations()

        if equilibrium.empty:
            logging.warning("No near-equilibrium combinations found; skipping relative sensitivities.")
            relative = SensitivityResults()
        else:
            relative = self.sweep(equilibrium.combinations)

        scaled = self.scaled_sweep()

        logging.info(
            f"Sensitivity analysis done: {len(relative)} relative and {len(scaled)} scaled results, "
            f"{len(relative.failures) + len(scaled.failures)} inconclusive."
        )
        return SensitivityReport(equilibrium=equilibrium, relative=relative, scaled=scaled)
