"""
Reporting module for Regional Spatial Analysis.
"""
from .exporters import (
    NumpyEncoder, save_weights, load_weights, weights_to_dict, weights_from_dict,
    export_weight_triples, save_model_results, save_moran_results, export_gwr_table
)

__all__ = [
    'NumpyEncoder', 'save_weights', 'load_weights', 'weights_to_dict', 'weights_from_dict',
    'export_weight_triples', 'save_model_results', 'save_moran_results', 'export_gwr_table'
]
