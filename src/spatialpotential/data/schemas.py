from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator

from spatialpotential.errors import InvalidParameter


class RatioSpec(BaseModel):
    numerator: str
    denominator: str
    scale: float = Field(default=1.0, gt=0.0)
    name: str = "ratio"


class PotentialRequest(BaseModel):
    """
    One computation request, as supplied by the presentation layer or the CLI.
    """

    family: Literal["exponential", "pareto"] = "exponential"
    span: float = Field(gt=0.0)
    beta: float = Field(gt=0.0)
    variables: list[str] = Field(min_length=1)
    ratio: RatioSpec | None = None

    mode: Literal["discrete", "raster"] = "discrete"
    frame: Literal["planar", "geographic"] = "planar"
    metric: Literal["euclidean", "geodesic"] = "euclidean"
    resolution: float | None = Field(default=None, gt=0.0)
    buffer: float | None = Field(default=None, ge=0.0)
    max_cells: int = Field(default=1_000_000, gt=0)
    max_pairs: int = Field(default=100_000_000, gt=0)
    workers: int = Field(default=1, ge=1)
    chunk_size: int = Field(default=4096, ge=1)

    breaks: list[float] | None = None
    # Provided breaks come from a reference layer: keep their interior, refit the ends.
    comparable: bool = True
    breaks_method: Literal["quantile", "equal"] = "quantile"
    nclass: int = Field(default=8, ge=1)

    @model_validator(mode="after")
    def _check_combination(self) -> "PotentialRequest":
        if self.mode == "raster" and self.resolution is None:
            raise ValueError("raster mode requires a resolution")
        if self.ratio is not None:
            missing = {self.ratio.numerator, self.ratio.denominator} - set(self.variables)
            if missing:
                raise ValueError(f"ratio uses variables that are not computed: {sorted(missing)}")
        return self

    @property
    def classified_variable(self) -> str:
        # The ratio (when requested) is the layer that gets classified and contoured.
        return self.ratio.name if self.ratio is not None else self.variables[0]

    @classmethod
    def parse(cls, data: dict[str, Any]) -> "PotentialRequest":
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InvalidParameter(f"Invalid potential request: {exc}") from exc


class IsoplethProperties(BaseModel):
    band: int = Field(ge=0)
    lower: float
    upper: float
    center: float

    @model_validator(mode="after")
    def _check_order(self) -> "IsoplethProperties":
        if self.upper < self.lower:
            raise ValueError("upper must be >= lower")
        return self
