"""
Unit tests for configuration, schemas and the error hierarchy.
"""
import os
import json
import logging
import tempfile
import unittest

import yaml

from regional_spatial_analysis.core.config import Config, DEFAULT_CONFIG
from regional_spatial_analysis.core.decorators import stage_errors
from regional_spatial_analysis.core.logging_setup import JsonFormatter, setup_logging
from regional_spatial_analysis.core.exceptions import (
    ComputationError, ConfigurationError, IsolateError, SpatialAnalysisError
)
from regional_spatial_analysis.models.schemas import (
    AnalysisConfig, GWRConfig, KernelKind, ModelKind, RegressionSpecification
)


class TestConfig(unittest.TestCase):
    """Tests for the YAML configuration layer."""

    def setUp(self):
        """Set up a temporary directory."""
        self.tmp = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmp.name, 'config.yaml')

    def tearDown(self):
        self.tmp.cleanup()

    def test_defaults(self):
        cfg = Config()
        self.assertEqual(cfg.get('weights.style'), 'row_standardized')
        self.assertEqual(cfg.get('autocorrelation.permutations'), 999)
        self.assertIsNone(cfg.get('missing.key'))
        self.assertEqual(cfg.get('missing.key', 5), 5)

    def test_yaml_overrides_merge_with_defaults(self):
        with open(self.path, 'w') as f:
            yaml.safe_dump({'gwr': {'kernel': 'gaussian'}, 'contiguity': {'rule': 'rook'}}, f)

        cfg = Config(self.path)
        self.assertEqual(cfg.get('gwr.kernel'), 'gaussian')
        self.assertEqual(cfg.get('gwr.bandwidth_mode'), DEFAULT_CONFIG['gwr']['bandwidth_mode'])

        settings = AnalysisConfig.from_config(cfg)
        self.assertEqual(settings.gwr.kernel, KernelKind.GAUSSIAN)
        self.assertEqual(settings.contiguity.rule.value, 'rook')

    def test_set_and_save(self):
        cfg = Config()
        cfg.set('regression.impact_draws', 50)
        cfg.set('new.section.value', 1)
        cfg.save(self.path)

        reloaded = Config(self.path)
        self.assertEqual(reloaded.get('regression.impact_draws'), 50)
        self.assertEqual(reloaded.get('new.section.value'), 1)

    def test_invalid_section_raises_configuration_error(self):
        cfg = Config()
        cfg.set('gwr.search_range', [50, 10])

        with self.assertRaises(ConfigurationError):
            AnalysisConfig.from_config(cfg)

    def test_packaged_yaml_is_valid(self):
        path = os.path.join(os.path.dirname(__file__), '..', 'config', 'config.yaml')
        settings = AnalysisConfig.from_config(Config(path))
        self.assertEqual(settings.regression.kinds, [ModelKind.OLS, ModelKind.LAG, ModelKind.SAC])
        self.assertEqual(settings.gwr, GWRConfig())


class TestRegressionSpecification(unittest.TestCase):
    """Tests for the typed specification."""

    def test_predictors_deduplicated_in_order(self):
        spec = RegressionSpecification(response='y', predictors=['b', 'a', 'b', 'c', 'a'])
        self.assertEqual(spec.predictors, ['b', 'a', 'c'])
        self.assertEqual(spec.label, 'y ~ b + a + c')

    def test_response_not_a_predictor(self):
        with self.assertRaises(ValueError):
            RegressionSpecification(response='y', predictors=['x', 'y'])

    def test_predictors_required(self):
        with self.assertRaises(ValueError):
            RegressionSpecification(response='y', predictors=[])

    def test_named_label(self):
        spec = RegressionSpecification(response='y', predictors=['x'], name='baseline')
        self.assertEqual(spec.label, 'baseline')


class TestErrors(unittest.TestCase):
    """Tests for the exception hierarchy and stage tagging."""

    def test_context_in_message_and_dict(self):
        error = IsolateError("Units without neighbors", stage='weights', unit_ids=['C'])

        self.assertIsInstance(error, SpatialAnalysisError)
        self.assertIn('stage=weights', str(error))
        self.assertIn('C', str(error))
        self.assertEqual(error.to_dict()['error_type'], 'IsolateError')
        self.assertEqual(error.to_dict()['unit_ids'], ['C'])

    def test_stage_errors_tags_and_wraps(self):
        @stage_errors('demo')
        def raises_package_error():
            raise IsolateError("no links")

        @stage_errors('demo')
        def raises_value_error():
            raise ValueError("bad value")

        with self.assertRaises(IsolateError) as ctx:
            raises_package_error()
        self.assertEqual(ctx.exception.stage, 'demo')

        with self.assertRaises(ComputationError) as ctx:
            raises_value_error()
        self.assertEqual(ctx.exception.stage, 'demo')
        self.assertIsInstance(ctx.exception.original_error, ValueError)


class TestLogging(unittest.TestCase):
    """Tests for logging setup."""

    def setUp(self):
        """Save root handlers so they can be restored."""
        self.root = logging.getLogger()
        self.handlers = self.root.handlers[:]
        self.level = self.root.level

    def tearDown(self):
        for handler in self.root.handlers[:]:
            if handler not in self.handlers:
                self.root.removeHandler(handler)
                handler.close()
        for handler in self.handlers:
            if handler not in self.root.handlers:
                self.root.addHandler(handler)
        self.root.setLevel(self.level)

    def test_json_formatter(self):
        record = logging.LogRecord('rsa.test', logging.WARNING, __file__, 10, "unit %s failed", ('A',), None)
        record.data = {'unit_ids': ['A']}

        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload['level'], 'WARNING')
        self.assertEqual(payload['message'], 'unit A failed')
        self.assertEqual(payload['data'], {'unit_ids': ['A']})

    def test_file_handler_and_library_levels(self):
        with tempfile.TemporaryDirectory() as tmp:
            setup_logging('DEBUG', log_dir=tmp, verbose_libraries={'libpysal': 'ERROR'})
            files = os.listdir(tmp)
            for handler in self.root.handlers[:]:
                self.root.removeHandler(handler)
                handler.close()

        self.assertEqual(len(files), 1)
        self.assertTrue(files[0].startswith('spatial_analysis_'))
        self.assertEqual(logging.getLogger('libpysal').level, logging.ERROR)


if __name__ == '__main__':
    unittest.main()
