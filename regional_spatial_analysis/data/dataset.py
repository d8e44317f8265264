"""
Immutable input dataset for Regional Spatial Analysis.

Every pipeline stage receives a ``SpatialDataset`` explicitly. The dataset
owns a private copy of the joined entity table and geometries; attribute
changes produce a new snapshot instead of editing the existing one.
"""
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterator, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd
import geopandas as gpd

from ..core.exceptions import MissingDataError, ValidationError
from ..models.schemas import RegressionSpecification

logger = logging.getLogger(__name__)

INTERCEPT = 'const'


@dataclass(frozen=True)
class SpatialUnit:
    """A single administrative unit."""
    unit_id: Any
    geometry: Any
    centroid: Tuple[float, float]
    values: Mapping[str, float]
    weight: Optional[float] = None


class SpatialDataset:
    """
    Fully joined and imputed entity table with polygon geometries.

    Attributes:
        id_column (str): Name of the identifier column.
        weight_column (str, optional): Column holding auxiliary weights.
    """

    def __init__(
        self,
        frame: gpd.GeoDataFrame,
        id_column: str,
        weight_column: Optional[str] = None
    ):
        self._frame = frame
        self.id_column = id_column
        self.weight_column = weight_column
        self._ids = tuple(frame[id_column].tolist())
        centroids = frame.geometry.centroid
        coords = np.column_stack([centroids.x.to_numpy(), centroids.y.to_numpy()])
        coords.setflags(write=False)
        self._coords = coords

    @classmethod
    def from_geodataframe(
        cls,
        frame: gpd.GeoDataFrame,
        id_column: str,
        weight_column: Optional[str] = None
    ) -> 'SpatialDataset':
        """Validate and snapshot a GeoDataFrame."""
        if frame is None or len(frame) == 0:
            raise ValidationError("Dataset is empty", stage='dataset')

        if not isinstance(frame, gpd.GeoDataFrame):
            raise ValidationError("Data is not a GeoDataFrame", stage='dataset')

        if id_column not in frame.columns:
            raise ValidationError(f"Identifier column '{id_column}' not found", stage='dataset')

        duplicated = frame[id_column][frame[id_column].duplicated()].tolist()
        if duplicated:
            raise ValidationError(
                "Unit identifiers must be unique", stage='dataset', unit_ids=duplicated
            )

        if weight_column is not None:
            if weight_column not in frame.columns:
                raise ValidationError(f"Weight column '{weight_column}' not found", stage='dataset')
            w = pd.to_numeric(frame[weight_column], errors='coerce')
            bad = frame[id_column][~np.isfinite(w.to_numpy(dtype=float)) | (w < 0).to_numpy()].tolist()
            if bad:
                raise ValidationError(
                    "Auxiliary weights must be finite and non-negative",
                    stage='dataset', unit_ids=bad
                )

        snapshot = frame.reset_index(drop=True).copy()
        logger.info(f"Loaded dataset with {len(snapshot)} units and {len(snapshot.columns)} columns")
        return cls(snapshot, id_column, weight_column)

    @property
    def ids(self) -> Tuple[Any, ...]:
        return self._ids

    @property
    def n(self) -> int:
        return len(self._ids)

    @property
    def columns(self) -> List[str]:
        return [c for c in self._frame.columns if c not in (self.id_column, self._frame.geometry.name)]

    @property
    def crs(self):
        return self._frame.crs

    @property
    def geometries(self) -> gpd.GeoSeries:
        return self._frame.geometry.copy()

    def centroids(self) -> np.ndarray:
        """Read-only (n, 2) array of centroid coordinates."""
        return self._coords

    def to_geodataframe(self) -> gpd.GeoDataFrame:
        """Independent copy of the underlying frame."""
        return self._frame.copy()

    def column(self, name: str) -> np.ndarray:
        """Float copy of one attribute column; missing values are a hard failure."""
        if name not in self._frame.columns:
            raise MissingDataError(f"Column '{name}' not found in dataset", stage='dataset')

        values = np.array(pd.to_numeric(self._frame[name], errors='coerce'), dtype=float)
        bad = ~np.isfinite(values)
        if bad.any():
            missing_ids = [self._ids[i] for i in np.flatnonzero(bad)]
            raise MissingDataError(
                f"Column '{name}' has {int(bad.sum())} missing or non-finite values",
                stage='dataset', unit_ids=missing_ids
            )
        return values

    def auxiliary_weights(self) -> Optional[np.ndarray]:
        if self.weight_column is None:
            return None
        return self.column(self.weight_column)

    def design(self, spec: RegressionSpecification) -> Tuple[np.ndarray, np.ndarray, List[str]]:
        """
        Response vector and design matrix for a specification.

        Returns:
            Tuple of (y, X, names) where X has a leading intercept column and
            names lists the column labels of X.

        Raises:
            MissingDataError: If any named column is absent or incomplete.
        """
        absent = [c for c in [spec.response] + spec.predictors if c not in self._frame.columns]
        if absent:
            raise MissingDataError(
                f"Columns not found in dataset: {', '.join(absent)}",
                stage='design', model=spec.label
            )

        try:
            y = self.column(spec.response)
            X = np.column_stack([np.ones(self.n)] + [self.column(p) for p in spec.predictors])
        except MissingDataError as e:
            e.model = spec.label
            raise

        return y, X, [INTERCEPT] + list(spec.predictors)

    def units(self) -> Iterator[SpatialUnit]:
        """Iterate over the units as frozen records."""
        value_columns = [c for c in self.columns if pd.api.types.is_numeric_dtype(self._frame[c])]
        weights = self.auxiliary_weights()
        table = self._frame[value_columns].to_numpy(dtype=float)
        geoms = self._frame.geometry
        for i in range(self.n):
            values = MappingProxyType(dict(zip(value_columns, table[i].tolist())))
            yield SpatialUnit(
                unit_id=self._ids[i],
                geometry=geoms.iloc[i],
                centroid=(float(self._coords[i, 0]), float(self._coords[i, 1])),
                values=values,
                weight=None if weights is None else float(weights[i])
            )

    def with_attributes(self, attributes: pd.DataFrame) -> 'SpatialDataset':
        """
        New snapshot with attribute columns replaced or added.

        ``attributes`` must be indexed by unit identifier and cover every unit.
        """
        missing = [u for u in self._ids if u not in attributes.index]
        if missing:
            raise MissingDataError(
                "Attribute table does not cover every unit", stage='dataset', unit_ids=missing
            )

        frame = self._frame.copy()
        aligned = attributes.loc[list(self._ids)]
        for col in aligned.columns:
            frame[col] = aligned[col].to_numpy()

        return SpatialDataset.from_geodataframe(frame, self.id_column, self.weight_column)

    def __len__(self) -> int:
        return self.n

    def __repr__(self) -> str:
        return f"SpatialDataset(n={self.n}, id_column='{self.id_column}')"
