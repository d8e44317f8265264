"""
Result export utilities for Regional Spatial Analysis.

Weight matrices are serialized as JSON documents (style, zero policy,
ordered ids and (row_id, col_id, weight) triples) so they can be reused
without recomputing the adjacency graph.
"""
import os
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Union

import numpy as np
import pandas as pd

from ..core.decorators import performance_tracker
from ..core.exceptions import ValidationError
from ..models.gwr.engine import GWRResult
from ..models.schemas import GlobalModelResult, WeightStyle
from ..models.spatial.autocorrelation import MoranResult
from ..models.spatial.weights import SpatialWeightMatrix

logger = logging.getLogger(__name__)

WEIGHTS_FORMAT_VERSION = 1


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles NumPy types."""

    def default(self, obj):
        if isinstance(obj, np.integer):
            return int(obj)
        elif isinstance(obj, np.floating):
            return float(obj)
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif isinstance(obj, np.bool_):
            return bool(obj)
        elif isinstance(obj, (datetime, pd.Timestamp)):
            return obj.isoformat()
        return super(NumpyEncoder, self).default(obj)


def _ensure_parent(path: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    os.makedirs(parent, exist_ok=True)


def _write_json(payload: Any, path: str) -> str:
    _ensure_parent(path)
    with open(path, 'w') as f:
        json.dump(payload, f, indent=2, cls=NumpyEncoder)
    return path


def weights_to_dict(w: SpatialWeightMatrix) -> Dict[str, Any]:
    triples = w.to_triples()
    return {
        'format_version': WEIGHTS_FORMAT_VERSION,
        'style': w.style.value,
        'zero_policy': w.zero_policy,
        'ids': list(w.ids),
        'triples': [
            [row, col, float(weight)]
            for row, col, weight in zip(triples['row_id'], triples['col_id'], triples['weight'])
        ],
    }


def weights_from_dict(payload: Dict[str, Any]) -> SpatialWeightMatrix:
    missing = [key for key in ('style', 'zero_policy', 'ids', 'triples') if key not in payload]
    if missing:
        raise ValidationError(f"Weight document is missing keys: {', '.join(missing)}", stage='weights')

    triples = pd.DataFrame(payload['triples'], columns=['row_id', 'col_id', 'weight'])
    return SpatialWeightMatrix.from_triples(
        triples, payload['ids'], WeightStyle(payload['style']), bool(payload['zero_policy'])
    )


@performance_tracker()
def save_weights(w: SpatialWeightMatrix, path: str) -> str:
    """Write a weight matrix as a JSON document."""
    _write_json(weights_to_dict(w), path)
    logger.info(f"Saved weight matrix ({w.sparse.nnz} links) to {path}")
    return path


@performance_tracker()
def load_weights(path: str) -> SpatialWeightMatrix:
    """Read a weight matrix written by save_weights."""
    with open(path, 'r') as f:
        payload = json.load(f)
    w = weights_from_dict(payload)
    logger.info(f"Loaded weight matrix with {w.n} units from {path}")
    return w


def export_weight_triples(w: SpatialWeightMatrix, path: str) -> str:
    """Write (row_id, col_id, weight) triples as CSV."""
    _ensure_parent(path)
    w.to_triples().to_csv(path, index=False)
    logger.info(f"Exported weight triples to {path}")
    return path


def save_model_results(
    results: Iterable[Union[GlobalModelResult, Dict[str, Any]]],
    path: str
) -> str:
    """Write model records (and batch failure records) as one JSON list."""
    records: List[Dict[str, Any]] = [
        r.model_dump(mode='json') if isinstance(r, GlobalModelResult) else r for r in results
    ]
    _write_json(records, path)
    logger.info(f"Saved {len(records)} model records to {path}")
    return path


def save_moran_results(results: Dict[str, MoranResult], path: str) -> str:
    """Write Moran's I results keyed by variable name."""
    _write_json({name: r.to_dict() for name, r in results.items()}, path)
    logger.info(f"Saved Moran's I for {len(results)} variables to {path}")
    return path


def export_gwr_table(result: GWRResult, path: str) -> str:
    """Write the GWR coefficient table (one row per unit) as CSV."""
    _ensure_parent(path)
    result.to_frame().to_csv(path)
    summary_path = os.path.splitext(path)[0] + '_summary.json'
    _write_json(result.summary(), summary_path)
    logger.info(f"Exported GWR table for {result.n} units to {path}")
    return path
