"""
Data module for Regional Spatial Analysis.
"""
from .dataset import SpatialDataset, SpatialUnit, INTERCEPT
from .loaders import load_dataset, load_geometries, load_attributes

__all__ = [
    'SpatialDataset', 'SpatialUnit', 'INTERCEPT',
    'load_dataset', 'load_geometries', 'load_attributes'
]
