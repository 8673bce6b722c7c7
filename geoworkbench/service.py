# geoworkbench/service.py

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import geopandas as gpd
import pandas as pd
from loguru import logger
from unidecode import unidecode

from geoworkbench import aggregate, classification, demography, generalize, hulls, overlay, profile, trajectory
from geoworkbench.config import WorkbenchConfig, load_config
from geoworkbench.constants import COLUMN_DESCRIPTIONS, COLUMN_NAMES, QUANTILES
from geoworkbench.errors import ValidationError
from geoworkbench.features import AnalysisResult, numeric_fields
from geoworkbench.sampling import EarthEngineSampler, PointSampler


class WorkbenchService:
    """
    In-memory workbench: named layers, a feature selection, and one method per
    analysis. Analyses read the current selection (falling back to the whole
    layer) and register their output as a new layer, returning its name.
    """

    def __init__(self, config: Optional[WorkbenchConfig] = None, sampler: Optional[PointSampler] = None):
        self.config = config or load_config()
        self.layers: Dict[str, gpd.GeoDataFrame] = {}
        self.timestamps: Dict[str, Any] = {}
        self.selection: List[Any] = []
        self._sampler = sampler

    # -- layers -------------------------------------------------------------

    @staticmethod
    def _norm(s: Optional[str]) -> str:
        return unidecode("" if s is None or (isinstance(s, float) and pd.isna(s)) else str(s)).strip()

    def layer_names(self) -> List[str]:
        return sorted(self.layers, key=lambda x: self._norm(x).lower())

    def _unique_name(self, name: str) -> str:
        if name not in self.layers:
            return name
        n = 2
        while f"{name} ({n})" in self.layers:
            n += 1
        return f"{name} ({n})"

    def add_layer(self, name: str, gdf: gpd.GeoDataFrame, timestamp: Any = None) -> str:
        """Register a layer under a unique name; `timestamp` is needed by trajectory analyses."""
        name = self._unique_name(name)
        self.layers[name] = gdf
        if timestamp is not None:
            self.timestamps[name] = timestamp
        logger.info(f"Layer '{name}' added with {len(gdf)} features")
        return name

    def load_layer(self, path: str, name: Optional[str] = None, layer: Optional[str] = None,
                   timestamp: Any = None) -> str:
        """Read a vector file (GPKG, SHP, GeoJSON) into a new layer."""
        try:
            gdf = gpd.read_file(path, layer=layer) if layer else gpd.read_file(path)
        except Exception as e:
            raise ValidationError(f"Failed to read {path}: {e}")
        return self.add_layer(name or path, gdf, timestamp=timestamp)

    def get_layer(self, name: str) -> gpd.GeoDataFrame:
        if name not in self.layers:
            raise ValidationError(f"Layer '{name}' not found. Available: {self.layer_names()}")
        return self.layers[name]

    def remove_layer(self, name: str) -> None:
        self.get_layer(name)
        del self.layers[name]
        self.timestamps.pop(name, None)

    def set_timestamp(self, name: str, timestamp: Any) -> None:
        self.get_layer(name)
        self.timestamps[name] = timestamp

    def data_dictionary(self, name: str) -> pd.DataFrame:
        """Programmatic name, user-friendly name and description of each attribute column."""
        gdf = self.get_layer(name)
        dict_rows = []
        for col in gdf.columns:
            if col == gdf.geometry.name:
                continue
            dict_rows.append({
                "Programmatic Name": col,
                "User-Friendly Name": COLUMN_NAMES.get(col, col),
                "Description": COLUMN_DESCRIPTIONS.get(col, ""),
            })
        return pd.DataFrame(dict_rows, columns=["Programmatic Name", "User-Friendly Name", "Description"])

    def select(self, ids: Iterable[Any]) -> None:
        self.selection = list(ids)

    def clear_selection(self) -> None:
        self.selection = []

    def _register(self, name: str, result: AnalysisResult) -> str:
        if result.partial:
            logger.warning(f"'{name}': {len(result.skipped)} of {result.total} features skipped")
        return self.add_layer(name, result.features)

    # -- classification -----------------------------------------------------

    def numeric_fields(self, layer: str) -> List[str]:
        """Fields that can be classified with quantiles or natural breaks."""
        return numeric_fields(self.get_layer(layer))

    def classify(self, layer: str, field: str, method: str = QUANTILES,
                 classes: Optional[int] = None, ramp: Optional[str] = None):
        return classification.classify_graduated(
            self.get_layer(layer), field, method=method,
            classes=classes or self.config.default_classes,
            ramp=ramp or self.config.default_ramp, ramps=self.config.ramps(),
        )

    def categorize(self, layer: str, field: str, ramp: str = "viridis",
                   custom_colors: Optional[Dict[str, str]] = None):
        return classification.categorize(self.get_layer(layer), field, ramp=ramp,
                                         custom_colors=custom_colors, ramps=self.config.ramps())

    # -- overlay ------------------------------------------------------------

    def clip(self, layer: str, mask_layer: str) -> str:
        result = overlay.clip(self.get_layer(layer), self.get_layer(mask_layer), self.selection)
        return self._register(f"{layer} clipped", result)

    def erase(self, layer: str, mask_layer: str) -> str:
        result = overlay.erase(self.get_layer(layer), self.get_layer(mask_layer), self.selection)
        return self._register(f"{layer} erased", result)

    def extract_by_bbox(self, layer: str, bbox: Tuple[float, float, float, float]) -> str:
        result = overlay.extract_by_bbox(self.get_layer(layer), bbox, self.selection)
        return self._register(f"{layer} extract", result)

    def weighted_sum(self, layer: str, field: str, area_layer: str) -> Dict[str, float]:
        return overlay.weighted_sum(self.get_layer(layer), field, self.get_layer(area_layer), self.selection)

    def statistics(self, layer: str, field: str) -> Dict[str, float]:
        return profile.field_statistics(self.get_layer(layer), field, self.selection)

    # -- buffer / hulls -----------------------------------------------------

    def buffer(self, layer: str, distance: float, unit: Optional[str] = None) -> str:
        unit = unit or self.config.buffer_unit
        result = hulls.buffer(self.get_layer(layer), distance, unit, self.selection)
        return self._register(f"{layer} buffer {distance} {unit}", result)

    def convex_hull(self, layer: str) -> str:
        return self._register(f"{layer} convex hull", hulls.convex_hull(self.get_layer(layer), self.selection))

    def suggest_concavity(self, layer: str, unit: Optional[str] = None) -> hulls.ConcavitySuggestion:
        return hulls.suggest_concavity(self.get_layer(layer), unit or self.config.buffer_unit,
                                       self.config.concavity_step_divisor, self.selection)

    def concave_hull(self, layer: str, concavity: Optional[float] = None, unit: Optional[str] = None) -> str:
        unit = unit or self.config.buffer_unit
        if concavity is None:
            concavity = self.suggest_concavity(layer, unit).suggested
        result = hulls.concave_hull(self.get_layer(layer), concavity, unit, self.selection)
        return self._register(f"{layer} concave hull", result)

    # -- generalization / aggregation ---------------------------------------

    def smooth(self, layer: str, resolution: Optional[int] = None, sharpness: Optional[float] = None) -> str:
        kwargs = {}
        if resolution is not None:
            kwargs["resolution"] = resolution
        if sharpness is not None:
            kwargs["sharpness"] = sharpness
        result = generalize.bezier_smooth(self.get_layer(layer), selection=self.selection, **kwargs)
        return self._register(f"{layer} smoothed", result)

    def cross_sections(self, layer: str, station_interval: float, section_length: float,
                       unit: Optional[str] = None) -> str:
        result = generalize.cross_sections(self.get_layer(layer), station_interval, section_length,
                                           unit or self.config.cross_section_unit, self.selection)
        return self._register(f"{layer} cross-sections", result)

    def dissolve(self, layer: str, by: Optional[str] = None) -> str:
        return self._register(f"{layer} dissolved", aggregate.dissolve(self.get_layer(layer), by, self.selection))

    def union(self, layers: Sequence[str], name: str = "Merged") -> str:
        if len(layers) < 2:
            raise ValidationError("Select at least two layers to merge")
        result = aggregate.union_layers({n: self.get_layer(n) for n in layers})
        return self._register(name, result)

    # -- trajectory ---------------------------------------------------------

    def displacement_vectors(self, source: str, target: str, search_radius_km: float) -> str:
        result = trajectory.displacement_vectors(
            self.get_layer(source), self.get_layer(target), search_radius_km,
            self.timestamps.get(source), self.timestamps.get(target), self.selection,
        )
        return self._register(f"{source} -> {target} vectors", result)

    def cluster_vectors(self, layer: str, multiplier: Optional[float] = None,
                        min_points: Optional[int] = None) -> trajectory.ClusterResult:
        return trajectory.cluster_vectors(
            self.get_layer(layer),
            multiplier=self.config.cluster_multiplier if multiplier is None else multiplier,
            min_points=min_points or self.config.min_cluster_points,
            selection=self.selection,
        )

    def coherence(self, layer: str, magnitude_field: str = "speed",
                  clusters: Optional[trajectory.ClusterResult] = None) -> Tuple[str, trajectory.CoherenceResult]:
        """Score the vectors and register a labelled copy; returns (layer name, scores)."""
        vectors = self.get_layer(layer)
        scores = trajectory.coherence_scores(vectors, magnitude_field, clusters)
        name = self.add_layer(f"{layer} coherence", trajectory.label_features(vectors, scores))
        return name, scores

    def track(self, first: str, second: str, max_distance_km: float, attribute: Optional[str] = None,
              tolerance: Optional[float] = None, attribute_weight: float = 0.5) -> str:
        result = trajectory.track_features(
            self.get_layer(first), self.get_layer(second), max_distance_km,
            self.timestamps.get(first), self.timestamps.get(second),
            attribute=attribute, tolerance=tolerance, attribute_weight=attribute_weight,
            selection=self.selection,
        )
        return self._register(f"{first} -> {second} tracks", result)

    # -- demography / profiles ----------------------------------------------

    def project_population(self, layer: str, fields: Sequence[str], years: Sequence[int],
                           target_year: int, output_field: Optional[str] = None) -> str:
        result = demography.project_population_layer(self.get_layer(layer), fields, years, target_year,
                                                     output_field, self.selection)
        return self._register(f"{layer} projection {target_year}", result)

    @property
    def sampler(self) -> PointSampler:
        if self._sampler is None:
            self._sampler = EarthEngineSampler(self.config.ee_project_id, self.config.ee_max_retries,
                                               self.config.ee_backoff_factor)
        return self._sampler

    def _line(self, layer: str, feature_id: Any):
        gdf = self.get_layer(layer)
        if feature_id not in gdf.index:
            raise ValidationError(f"Feature {feature_id} not found in '{layer}'")
        return gdf.geometry.loc[feature_id], gdf.crs

    async def elevation_profile(self, layer: str, feature_id: Any, stations: int,
                                dataset_id: str, band: str) -> pd.DataFrame:
        line, crs = self._line(layer, feature_id)
        return await profile.elevation_profile(line, stations, self.sampler, dataset_id, band,
                                               crs=crs or profile.WGS84)

    async def compare_profiles(self, layer: str, feature_id: Any, stations: int,
                               first: Tuple[str, str], second: Tuple[str, str]):
        line, crs = self._line(layer, feature_id)
        return await profile.compare_profiles(line, stations, self.sampler, first, second,
                                              crs=crs or profile.WGS84)
