"""
Configuration management for Regional Spatial Analysis.
"""
import os
import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional


DEFAULT_CONFIG: Dict[str, Any] = {
    'directories': {
        'results_dir': 'results',
        'logs_dir': 'results/logs',
    },
    'contiguity': {
        'rule': 'queen',
        'k': 4,
        'distance_threshold': None,
        'snap_tolerance': 0.0,
        'symmetrize_knn': True,
        'metric': 'planar',
    },
    'weights': {
        'style': 'row_standardized',
        'zero_policy': True,
        'auxiliary_weights': False,
    },
    'autocorrelation': {
        'permutations': 999,
        'seed': 12345,
        'chunk_size': 250,
    },
    'gwr': {
        'kernel': 'bisquare',
        'bandwidth_mode': 'adaptive',
        'bandwidth': None,
        'search_range': [10, 200],
        'search_method': 'golden',
        'grid_points': 20,
        'max_iter': 200,
        'tolerance': 1.0e-5,
        'min_valid_fraction': 0.9,
        'condition_threshold': 1.0e10,
        'metric': 'planar',
    },
    'regression': {
        'kinds': ['ols', 'lag', 'sac'],
        'use_auxiliary_weights': False,
        'max_iter': 500,
        'tolerance': 1.0e-8,
        'logdet_method': 'eigen',
        'impact_draws': 2000,
        'trace_powers': 100,
        'trace_samples': 50,
        'confidence_level': 0.95,
        'seed': 12345,
    },
    'parallel': {
        'max_workers': 1,
        'executor': 'process',
    },
    'logging': {
        'log_level': 'INFO',
        'verbose_libraries': {
            'libpysal': 'WARNING',
            'fiona': 'WARNING',
            'pyogrio': 'WARNING',
        }
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager for the application."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration from file or defaults."""
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file on top of the defaults."""
        if self.config_path and os.path.exists(self.config_path):
            with open(self.config_path, 'r') as f:
                loaded = yaml.safe_load(f) or {}
            return _merge(DEFAULT_CONFIG, loaded)

        return copy.deepcopy(DEFAULT_CONFIG)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        keys = key_path.split('.')
        result = self.config

        for key in keys:
            if isinstance(result, dict) and key in result:
                result = result[key]
            else:
                return default

        return result

    def get_path(self, key_path: str) -> Path:
        """Get a path from configuration, ensuring it exists."""
        path_str = self.get(key_path)
        if not path_str:
            raise ValueError(f"Path configuration '{key_path}' not found")

        path = Path(path_str)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        target = self.config

        for key in keys[:-1]:
            if key not in target:
                target[key] = {}
            target = target[key]

        target[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """Save current configuration to file."""
        save_path = path or self.config_path
        if not save_path:
            raise ValueError("No path specified for saving configuration")

        with open(save_path, 'w') as f:
            yaml.dump(self.config, f, default_flow_style=False)


# Global configuration instance
config = Config()


def initialize_config(config_path: str) -> Config:
    """Reload the shared configuration instance from a file."""
    config.config_path = config_path
    config.config = config._load_config()
    return config
