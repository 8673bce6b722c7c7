# geoworkbench/demography.py

import math
from typing import Any, Iterable, List, NamedTuple, Optional, Sequence

import geopandas as gpd
from loguru import logger

from geoworkbench.errors import EmptyResultError, ValidationError
from geoworkbench.features import AnalysisResult, is_number, scope_to_selection, with_fresh_ids


class PopulationProjection(NamedTuple):
    projected: float
    annual_rate: float
    period_rates: List[float]
    base_year: int
    target_year: int


def _check_years(years: Sequence[Any], target_year: Any) -> None:
    if len(years) < 2:
        raise ValidationError("At least two census points are needed")
    for y in list(years) + [target_year]:
        if not is_number(y):
            raise ValidationError(f"Years must be numbers, got {y!r}")
    if any(b <= a for a, b in zip(years[:-1], years[1:])):
        raise ValidationError(f"Years must be strictly increasing, got {list(years)}")
    if target_year < years[-1]:
        raise ValidationError(f"Target year {target_year} is before the latest census year {years[-1]}")


def _check_inputs(populations: Sequence[Any], years: Sequence[Any], target_year: Any) -> None:
    if len(populations) != len(years):
        raise ValidationError("populations and years must have the same length")
    _check_years(years, target_year)
    for p in populations:
        if not is_number(p) or p <= 0:
            raise ValidationError(f"Populations must be positive numbers, got {p!r}")


def project_population(populations: Sequence[float], years: Sequence[int], target_year: int) -> PopulationProjection:
    """
    Compound-growth projection from census counts (usually three).

    Each period gives an annual rate (p1 / p0) ** (1 / dy) - 1. The average
    rate is the geometric mean of the period growth factors minus one, and
    the projection is p_latest * (1 + rate) ** (target_year - latest_year).
    """
    _check_inputs(populations, years, target_year)
    factors = [
        (populations[i + 1] / populations[i]) ** (1.0 / (years[i + 1] - years[i]))
        for i in range(len(populations) - 1)
    ]
    rate = math.exp(sum(math.log(f) for f in factors) / len(factors)) - 1.0
    projected = populations[-1] * (1.0 + rate) ** (target_year - years[-1])
    return PopulationProjection(
        projected=float(projected),
        annual_rate=float(rate),
        period_rates=[f - 1.0 for f in factors],
        base_year=int(years[-1]),
        target_year=int(target_year),
    )


def project_population_layer(features: gpd.GeoDataFrame, fields: Sequence[str], years: Sequence[int],
                             target_year: int, output_field: Optional[str] = None,
                             selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Project every feature from its census fields (one field per year).
    Features with missing or invalid counts are skipped and reported.
    Adds `<output_field>` and `growth_rate` to a copy of the layer.
    """
    missing = [f for f in fields if f not in features.columns]
    if missing:
        raise ValidationError(f"Fields not found: {missing}")
    if len(fields) != len(years):
        raise ValidationError("One population field is needed per census year")
    _check_years(years, target_year)
    output_field = output_field or f"pop_{target_year}"

    scoped = scope_to_selection(features, selection)
    out = scoped.copy()
    projected, rates, skipped = [], [], []
    for fid, row in scoped.iterrows():
        try:
            result = project_population([row[f] for f in fields], years, target_year)
        except ValidationError as e:
            logger.warning(f"[population] Skipping feature {fid}: {e}")
            skipped.append(fid)
            continue
        projected.append(result.projected)
        rates.append(result.annual_rate)

    if len(scoped) and len(skipped) == len(scoped):
        raise EmptyResultError(f"No feature could be projected: all {len(scoped)} features have invalid census counts")

    out = out[~out.index.isin(skipped)].copy()
    out[output_field] = projected
    out["growth_rate"] = rates
    logger.info(f"[population] {len(out)} features projected to {target_year}")
    return AnalysisResult(features=with_fresh_ids(out), skipped=skipped, total=len(scoped))
