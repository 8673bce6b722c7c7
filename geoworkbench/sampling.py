# geoworkbench/sampling.py

import asyncio
import time
from typing import Any, Dict, List, Optional, Protocol, Sequence

from loguru import logger

from geoworkbench.errors import RemoteSamplingError
from geoworkbench.geodesy import GeodeticPoint

RETRYABLE = ("429", "rate", "rateexceeded", "quota", "too many requests", "resourceexhausted")


class PointSampler(Protocol):
    """Anything that can read one raster band at a list of lon/lat points."""

    async def sample_values(self, points: Sequence[GeodeticPoint], dataset_id: str,
                            band: str) -> List[Optional[float]]:
        ...


class EarthEngineSampler:
    """
    Point sampler backed by Google Earth Engine.
    Earth Engine is only imported and initialised on first use.
    """

    def __init__(self, project_id: Optional[str] = None, max_retries: int = 5,
                 backoff_factor: float = 0.6, scale: float = 30.0):
        self.project_id = project_id
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.scale = scale
        self._ee_initialized = False

    def initialize_ee(self) -> None:
        import ee
        # Existing credentials first, then the standard auth flow.
        try:
            ee.Initialize(project=self.project_id)
            self._ee_initialized = True
            return
        except Exception as e:
            logger.debug(f"[ee] Initialize without auth failed: {e}")

        try:
            ee.Authenticate()
            ee.Initialize(project=self.project_id)
            self._ee_initialized = True
        except Exception as e:
            raise RemoteSamplingError(
                "Earth Engine authentication failed. Check that the account can use the Earth Engine API "
                f"for project '{self.project_id}'. Original error: {e}"
            )

    def _ensure_ee(self) -> None:
        if not self._ee_initialized:
            self.initialize_ee()

    def _ee_getinfo(self, ee_object):
        """`ee_object.getInfo()` with exponential backoff on rate-limit errors."""
        last_exc = None
        for attempt in range(self.max_retries):
            try:
                return ee_object.getInfo()
            except Exception as e:
                last_exc = e
                msg = str(e).lower()
                if any(k in msg for k in RETRYABLE):
                    delay = self.backoff_factor * (2 ** attempt)
                    logger.warning(f"[ee] Rate limited, retrying in {delay:.1f}s (attempt {attempt + 1}/{self.max_retries})")
                    time.sleep(delay)
                    continue
                raise RemoteSamplingError(f"Earth Engine request failed: {e}")
        raise RemoteSamplingError(f"EE getInfo failed after {self.max_retries} attempts: {last_exc}")

    def _image(self, dataset_id: str, band: str):
        import ee
        asset = ee.data.getAsset(dataset_id)
        if asset.get("type") == "IMAGE_COLLECTION":
            image = ee.ImageCollection(dataset_id).mosaic()
        else:
            image = ee.Image(dataset_id)
        return image.select(band)

    def _sample_blocking(self, points: Sequence[GeodeticPoint], dataset_id: str,
                         band: str) -> List[Optional[float]]:
        import ee
        self._ensure_ee()
        fc = ee.FeatureCollection([
            ee.Feature(ee.Geometry.Point([float(p.lon), float(p.lat)]), {"idx": i})
            for i, p in enumerate(points)
        ])
        sampled = self._image(dataset_id, band).reduceRegions(
            collection=fc, reducer=ee.Reducer.first(), scale=self.scale
        )
        info: Dict[str, Any] = self._ee_getinfo(sampled)
        by_index: Dict[int, Optional[float]] = {}
        for feature in info.get("features", []):
            props = feature.get("properties", {})
            value = props.get("first")
            by_index[int(props["idx"])] = float(value) if value is not None else None
        return [by_index.get(i) for i in range(len(points))]

    async def sample_values(self, points: Sequence[GeodeticPoint], dataset_id: str,
                            band: str) -> List[Optional[float]]:
        if not points:
            return []
        logger.debug(f"[ee] Sampling {len(points)} points from {dataset_id}/{band}")
        return await asyncio.to_thread(self._sample_blocking, list(points), dataset_id, band)
