# geoworkbench/constants.py
"""
Geoworkbench Constants and Configuration
Color ramp definitions, linear units and output column metadata shared by the analysis engines.
"""

# Color ramps defined by their start and end colors (interpolated to any class count)
COLOR_RAMPS = {
    "reds": {"start": "#fee5d9", "end": "#a50f15"},
    "blues": {"start": "#eff3ff", "end": "#08519c"},
    "greens": {"start": "#edf8e9", "end": "#006d2c"},
    "viridis": {"start": "#440154", "end": "#fde725"},
    "pinks": {"start": "#ffcce1", "end": "#c70063"},
}

CUSTOM_RAMP = "custom"

# Classification methods for graduated symbology
QUANTILES = "quantiles"
NATURAL_BREAKS = "natural-breaks"
CLASSIFICATION_METHODS = (QUANTILES, NATURAL_BREAKS)

# Linear units -> meters
UNIT_METERS = {
    "meters": 1.0,
    "kilometers": 1000.0,
    "miles": 1609.344,
}

EARTH_RADIUS_KM = 6371.0088

# Coherence tiers
COHERENT = "Coherent"
MODERATE = "Moderate"
OUTLIER = "Outlier"
ISOLATED = "Isolated"

# Tier thresholds in standard deviations
COHERENT_SIGMA = 1.0
OUTLIER_SIGMA = 2.0

# Clustering radius multiplier bounds
CLUSTER_MULTIPLIER_RANGE = (0.1, 5.0)

# Bezier defaults
BEZIER_RESOLUTION = 10000
BEZIER_SHARPNESS = 0.85

# Column name mapping: programmatic -> user-friendly
COLUMN_NAMES = {
    'distance': 'Distance (km)',
    'bearing': 'Bearing (deg)',
    'speed': 'Speed (km/h)',
    'source_id': 'Source Feature',
    'target_id': 'Target Feature',
    'cluster_id': 'Cluster',
    'coherence': 'Coherence',
    'station': 'Station',
    'chainage': 'Chainage',
    'feature_count': 'Merged Features',
    'source_layer': 'Source Layer',
    'attribute_change': 'Attribute Change',
}

# Column descriptions for data dictionary
COLUMN_DESCRIPTIONS = {
    'distance': 'Great-circle distance between the paired points in kilometers',
    'bearing': 'Initial bearing from the first to the second point, clockwise from north (0-360)',
    'speed': 'Distance divided by the elapsed time between the two layers (km/h)',
    'source_id': 'Identifier of the feature the output was derived from',
    'target_id': 'Identifier of the matched feature in the second layer',
    'cluster_id': 'DBSCAN cluster number, empty for isolated vectors',
    'coherence': 'Coherent, Moderate, Outlier or Isolated relative to the group mean',
    'station': 'Zero-based station number along the line',
    'chainage': 'Distance of the station from the start of the line',
    'feature_count': 'Number of input features merged into the dissolved geometry',
    'source_layer': 'Name of the layer the feature was copied from',
    'attribute_change': 'Change of the tracked attribute between the two time steps',
}
