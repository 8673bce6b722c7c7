# geoworkbench/aggregate.py

from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

import geopandas as gpd
import pandas as pd
from loguru import logger

from geoworkbench.errors import EmptyResultError, ValidationError
from geoworkbench.features import AnalysisResult, attribute_columns, scope_to_selection, with_fresh_ids

POLYGON_TYPES = ("Polygon", "MultiPolygon")


def dissolve(features: gpd.GeoDataFrame, by: Optional[str] = None,
             selection: Optional[Iterable[Any]] = None) -> AnalysisResult:
    """
    Merge polygons into their union, one output feature per group.

    Without `by` the whole collection becomes a single (multi)polygon. Each
    attribute of the output takes the first non-null value found in its group
    (input order); `feature_count` records how many polygons were merged.
    """
    scoped = scope_to_selection(features, selection)
    if by is not None and by not in scoped.columns:
        raise ValidationError(f"Field '{by}' not found. Available: {attribute_columns(scoped)}")
    if scoped.empty:
        return AnalysisResult(features=with_fresh_ids(scoped), total=0)

    is_poly = scoped.geometry.geom_type.isin(POLYGON_TYPES)
    skipped = scoped.index[~is_poly].tolist()
    for fid in skipped:
        logger.warning(f"[dissolve] Skipping feature {fid}: not a polygon")
    work = scoped[is_poly].copy()
    if work.empty:
        raise ValidationError("Dissolve needs polygon features")
    if by is not None:
        no_key = work.index[work[by].isna()].tolist()
        for fid in no_key:
            logger.warning(f"[dissolve] Skipping feature {fid}: no value in '{by}'")
        skipped += no_key
        work = work[work[by].notna()].copy()
        if work.empty:
            raise EmptyResultError(f"Every polygon has a null '{by}' value, nothing to dissolve")

    geom_col = work.geometry.name
    work[geom_col] = work.geometry.buffer(0)
    columns = attribute_columns(work)
    work["feature_count"] = 1
    aggfunc = {c: "first" for c in columns if c != by}
    aggfunc["feature_count"] = "sum"

    if by is None:
        dissolved = work.dissolve(aggfunc=aggfunc)
    else:
        dissolved = work.dissolve(by=by, aggfunc=aggfunc).reset_index()
    ordered = ([by] if by is not None else []) + [c for c in columns if c != by] + ["feature_count", geom_col]
    dissolved = dissolved[ordered].copy()
    dissolved["feature_count"] = dissolved["feature_count"].astype(int)

    logger.info(f"[dissolve] {len(work)} polygons merged into {len(dissolved)} features")
    return AnalysisResult(features=with_fresh_ids(dissolved), skipped=skipped, total=len(scoped))


def merged_schema(layers: Sequence[gpd.GeoDataFrame]) -> List[str]:
    """Union of attribute names across layers, in first-seen order."""
    keys: List[str] = []
    for gdf in layers:
        for column in attribute_columns(gdf):
            if column not in keys:
                keys.append(column)
    return keys


def union_layers(layers: Union[Sequence[gpd.GeoDataFrame], Mapping[str, gpd.GeoDataFrame]]) -> AnalysisResult:
    """
    Concatenate the features of several layers into one collection.

    Every feature is padded with None for the attributes it lacks, reprojected
    to the first layer's CRS and given a fresh id. When layers are passed as a
    name -> layer mapping a `source_layer` attribute records the origin.
    """
    if isinstance(layers, Mapping):
        names: Optional[List[str]] = list(layers.keys())
        frames = list(layers.values())
    else:
        names = None
        frames = list(layers)
    if len(frames) < 2:
        raise ValidationError("Select at least two layers to merge")

    target_crs = next((f.crs for f in frames if f.crs is not None), None)
    keys = merged_schema(frames)

    parts = []
    for i, gdf in enumerate(frames):
        if target_crs is not None and gdf.crs is not None and gdf.crs != target_crs:
            gdf = gdf.to_crs(target_crs)
        attrs = pd.DataFrame(gdf.drop(columns=gdf.geometry.name)).reindex(columns=keys)
        attrs = attrs.astype(object).where(attrs.notna(), None)
        if names is not None:
            attrs["source_layer"] = names[i]
        parts.append(gpd.GeoDataFrame(attrs, geometry=list(gdf.geometry), crs=target_crs))

    merged = gpd.GeoDataFrame(pd.concat(parts, ignore_index=True), geometry="geometry", crs=target_crs)
    total = sum(len(f) for f in frames)
    logger.info(f"[union] {total} features merged from {len(frames)} layers with {len(keys)} attributes")
    return AnalysisResult(features=with_fresh_ids(merged), total=total)
