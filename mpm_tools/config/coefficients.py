"""
# Coefficient Tables

This module loads fitted vital-rate coefficient tables and maps them onto the
rate names a life-cycle topology expects.

## Classes

- `CoefficientConfig`: Vital-rate models keyed by name

## Example Usage

```python
from mpm_tools.config.coefficients import CoefficientConfig

models = CoefficientConfig.from_dict({
    "survival": {
        "link": "logit",
        "intercept": 9.95,
        "slopes": {"dens": 0.0401, "rain": 0.0031, "temp": -0.38},
        "levels": {"adult": {}, "juvenile": {"intercept": -1.86}},
    },
    "rec": {"link": "log", "intercept": -10.965, "slopes": {"temp": 0.364}},
})

rates = models.bind_rates({
    "s_fj": {"model": "survival", "category": "juvenile"},
    "s_fa": {"model": "survival", "category": "adult"},
    "rec": "rec",
    "s_den": 0.6,
})
```
"""

from typing import Mapping
import json

from mpm_tools.vitalrates import VitalRateModel, VitalRate, HazardSurvival


class CoefficientConfig(dict[str, VitalRateModel]):
    """
    Collection of `VitalRateModel` instances keyed by model name.

    Each entry in the source dictionary holds a "link" tag and the fields of
    `VitalRateCoefficients`.

    Example:
        ```python
        models = CoefficientConfig.from_json("coefficients.json")
        models["survival"].predict(covariates, category="adult")
        ```
    """

    @classmethod
    def from_dict(cls, data: dict):
        """
        Create a CoefficientConfig from a dictionary of coefficient tables.

        Args:
            data (dict): Model name -> {"link": str, **coefficient fields}.
                The link defaults to "logit".

        Returns:
            CoefficientConfig: Configured instance.

        Raises:
            ValueError: If a link name is unknown.
            TypeError: If a table has fields that are not coefficients.
        """
        models = cls()
        for name, table in data.items():
            table = dict(table)
            link = table.pop("link", "logit")
            models[name] = VitalRateModel(name=name, coefficients=table, link=link)
        return models

    @classmethod
    def from_json(cls, infile: str):
        """
        Load coefficient tables from a JSON file.

        Args:
            infile (str): Path to the JSON file.

        Raises:
            FileNotFoundError: If the file does not exist.
            json.JSONDecodeError: If the file contains invalid JSON.
        """
        with open(infile, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        return {name: model.to_dict() for name, model in self.items()}

    def to_json(self, outfile: str):
        """
        Save the coefficient tables to a JSON file.

        Note:
            Uses the "+x" mode to create a new file, will fail if file already exists.
        """
        with open(outfile, "+x") as f:
            json.dump(self.to_dict(), f, indent=4)

    def _model(self, name: str) -> VitalRateModel:
        if name not in self:
            raise KeyError(f"Unknown vital-rate model: {name!r}; expected one of {list(self)}")
        return self[name]

    def _resolve(self, rate: str, spec) -> VitalRate | float:
        if isinstance(spec, (int, float)):
            return float(spec)
        if isinstance(spec, str):
            return self._model(spec)
        if "hazards" in spec:
            return HazardSurvival(
                name=rate,
                hazards=tuple(self._resolve(rate, h) for h in spec["hazards"]),
            )
        model = self._model(spec["model"])
        return model.bind(
            category=spec.get("category"),
            period=spec.get("period"),
            age=spec.get("age"),
        )

    def bind_rates(self, bindings: Mapping[str, object]) -> dict[str, VitalRate | float]:
        """
        Map topology rate names onto models, bound selectors or constants.

        Args:
            bindings (Mapping[str, object]): Rate name -> one of
                - a number: a constant rate
                - a model name: the model as is
                - {"model": name, "category": ..., "period": ..., "age": ...}
                - {"hazards": [binding, ...]}: survival from summed hazards

        Returns:
            dict[str, VitalRate | float]: Rates ready for `StageModel`.

        Raises:
            KeyError: If a binding names an unknown model.
            InvalidCategory: If a category is not declared by its model.
            InvalidPeriod: If a period is not declared by its model.
        """
        return {rate: self._resolve(rate, spec) for rate, spec in bindings.items()}
