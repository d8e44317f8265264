"""
Data loading functions for Regional Spatial Analysis.

Loading sits outside the analysis core and is used by the command line
interface: any vector format geopandas can read becomes a SpatialDataset.
"""
import os
import logging
from typing import Optional

import pandas as pd
import geopandas as gpd

from ..core.decorators import performance_tracker
from ..core.exceptions import ValidationError
from .dataset import SpatialDataset

logger = logging.getLogger(__name__)


@performance_tracker()
def load_geometries(file_path: str, layer: Optional[str] = None) -> gpd.GeoDataFrame:
    """Read a vector file (GeoJSON, shapefile, GeoPackage, ...)."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Data file not found: {file_path}")

    kwargs = {'layer': layer} if layer else {}
    gdf = gpd.read_file(file_path, **kwargs)
    logger.info(f"Read {len(gdf)} features from {file_path}")
    return gdf


@performance_tracker()
def load_attributes(file_path: str, id_column: str) -> pd.DataFrame:
    """Read a CSV attribute table keyed by the unit identifier."""
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Attribute file not found: {file_path}")

    df = pd.read_csv(file_path)
    if id_column not in df.columns:
        raise ValidationError(f"Identifier column '{id_column}' not found in {file_path}", stage='dataset')
    return df


def load_dataset(
    file_path: str,
    id_column: str,
    weight_column: Optional[str] = None,
    attributes_path: Optional[str] = None,
    layer: Optional[str] = None
) -> SpatialDataset:
    """
    Load geometries (and optionally a CSV attribute table) into a dataset.

    Args:
        file_path: Vector file with unit polygons.
        id_column: Unique unit identifier column.
        weight_column: Optional auxiliary weight column.
        attributes_path: Optional CSV joined to the geometries on id_column.
        layer: Layer name for multi-layer formats.

    Returns:
        Validated SpatialDataset snapshot.
    """
    gdf = load_geometries(file_path, layer)

    if attributes_path:
        attributes = load_attributes(attributes_path, id_column)
        overlap = [c for c in attributes.columns if c != id_column and c in gdf.columns]
        if overlap:
            logger.warning(f"Attribute columns override geometry file columns: {overlap}")
            gdf = gdf.drop(columns=overlap)
        gdf = gdf.merge(attributes, on=id_column, how='left')
        logger.info(f"Joined {len(attributes.columns) - 1} attribute columns from {attributes_path}")

    return SpatialDataset.from_geodataframe(gdf, id_column, weight_column)
