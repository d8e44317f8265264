"""
Command-line application for Regional Spatial Analysis.

Every command reads the YAML configuration, loads a vector dataset and
writes its artifacts to the configured results directory.
"""
import os
import logging
from pathlib import Path
from typing import List, Optional

import typer

from ..core.config import config, initialize_config
from ..core.exceptions import SpatialAnalysisError
from ..core.logging_setup import setup_logging_from_config
from ..data.loaders import load_dataset
from ..data.dataset import SpatialDataset
from ..models.schemas import AnalysisConfig, ModelKind, RegressionSpecification
from ..models.spatial.graph import GeometryGraphBuilder
from ..models.spatial.weights import SpatialWeightMatrix, WeightMatrixFactory
from ..models.spatial.autocorrelation import AutocorrelationTester
from ..models.gwr.engine import LocalRegressionEngine
from ..analysis.batch import SpecificationBatch
from ..reporting.exporters import (
    export_gwr_table, export_weight_triples, load_weights, save_model_results,
    save_moran_results, save_weights
)

logger = logging.getLogger(__name__)

app = typer.Typer(help="Spatial weights, autocorrelation, spatial regression and GWR for administrative units")


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in value.split(',') if v.strip()] if value else []


def _prepare(config_path: str, verbose: bool) -> AnalysisConfig:
    if config_path and not os.path.exists(config_path):
        logger.warning(f"Configuration file not found: {config_path}; using defaults")
    initialize_config(config_path)
    setup_logging_from_config()
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")
    return AnalysisConfig.from_config(config)


def _output_dir(output: Optional[str]) -> Path:
    if output:
        path = Path(output)
        path.mkdir(parents=True, exist_ok=True)
        return path
    return config.get_path('directories.results_dir')


def _weights_for(dataset: SpatialDataset, settings: AnalysisConfig, weights_path: Optional[str]) -> SpatialWeightMatrix:
    if weights_path:
        w = load_weights(weights_path)
        if tuple(w.ids) != tuple(dataset.ids):
            raise typer.BadParameter("Weight matrix ids do not match the dataset", param_hint='--weights')
        return w

    graph = GeometryGraphBuilder(settings.contiguity).build(dataset)
    aux = dataset.auxiliary_weights() if settings.weights.auxiliary_weights else None
    return WeightMatrixFactory(settings.weights).build(graph, aux)


def _fail(error: SpatialAnalysisError) -> None:
    logger.error(f"{type(error).__name__}: {error}")
    raise typer.Exit(code=1)


@app.command()
def weights(
    data: str = typer.Argument(..., help='Vector file with unit polygons'),
    id_column: str = typer.Option(..., '--id-column', help='Unique unit identifier column'),
    weight_column: Optional[str] = typer.Option(None, help='Auxiliary weight column'),
    attributes: Optional[str] = typer.Option(None, help='CSV attribute table joined on the id column'),
    config_path: str = typer.Option('config/config.yaml', '--config', help='Configuration file path'),
    output: Optional[str] = typer.Option(None, help='Output directory'),
    verbose: bool = typer.Option(False, help='Enable verbose logging')
):
    """Build and save the spatial weight matrix."""
    settings = _prepare(config_path, verbose)
    try:
        dataset = load_dataset(data, id_column, weight_column, attributes)
        w = _weights_for(dataset, settings, None)
    except SpatialAnalysisError as e:
        _fail(e)

    out = _output_dir(output)
    save_weights(w, str(out / 'weights.json'))
    export_weight_triples(w, str(out / 'weights.csv'))
    typer.echo(f"{w!r}; isolates: {len(w.isolates)}")


@app.command()
def moran(
    data: str = typer.Argument(..., help='Vector file with unit polygons'),
    variables: str = typer.Option(..., help='Comma-separated variables to test'),
    id_column: str = typer.Option(..., '--id-column', help='Unique unit identifier column'),
    attributes: Optional[str] = typer.Option(None, help='CSV attribute table joined on the id column'),
    weights_path: Optional[str] = typer.Option(None, '--weights', help='Saved weight matrix (JSON)'),
    permutations: Optional[int] = typer.Option(None, help='Permutations (overrides config)'),
    config_path: str = typer.Option('config/config.yaml', '--config', help='Configuration file path'),
    output: Optional[str] = typer.Option(None, help='Output directory'),
    verbose: bool = typer.Option(False, help='Enable verbose logging')
):
    """Moran's I for one or more variables."""
    settings = _prepare(config_path, verbose)
    try:
        dataset = load_dataset(data, id_column, None, attributes)
        w = _weights_for(dataset, settings, weights_path)
        tester = AutocorrelationTester(w, settings.autocorrelation)
        results = tester.moran_by_column(dataset, _split(variables), permutations=permutations)
    except SpatialAnalysisError as e:
        _fail(e)

    save_moran_results(results, str(_output_dir(output) / 'moran.json'))
    for name, r in results.items():
        typer.echo(f"{name}: I={r.I:.4f} E[I]={r.expected:.4f} p_norm={r.p_norm} p_sim={r.p_sim}")


@app.command()
def regress(
    data: str = typer.Argument(..., help='Vector file with unit polygons'),
    response: str = typer.Option(..., help='Response variable'),
    predictors: List[str] = typer.Option(..., help='Comma-separated predictors; repeat for several specifications'),
    id_column: str = typer.Option(..., '--id-column', help='Unique unit identifier column'),
    weight_column: Optional[str] = typer.Option(None, help='Auxiliary weight column'),
    attributes: Optional[str] = typer.Option(None, help='CSV attribute table joined on the id column'),
    weights_path: Optional[str] = typer.Option(None, '--weights', help='Saved weight matrix (JSON)'),
    kinds: Optional[str] = typer.Option(None, help='Comma-separated model kinds (ols, lag, sac)'),
    config_path: str = typer.Option('config/config.yaml', '--config', help='Configuration file path'),
    output: Optional[str] = typer.Option(None, help='Output directory'),
    verbose: bool = typer.Option(False, help='Enable verbose logging')
):
    """Fit global OLS / LAG / SAC models for one or more specifications."""
    settings = _prepare(config_path, verbose)
    specs = [RegressionSpecification(response=response, predictors=_split(p)) for p in predictors]
    model_kinds = [ModelKind(k) for k in _split(kinds)] or None

    try:
        dataset = load_dataset(data, id_column, weight_column, attributes)
        w = _weights_for(dataset, settings, weights_path)
        batch = SpecificationBatch(dataset, w, settings).run(specs, model_kinds)
    except SpatialAnalysisError as e:
        _fail(e)

    save_model_results(batch.to_records(), str(_output_dir(output) / 'models.json'))
    for result in batch.results:
        typer.echo(
            f"{result.kind.value.upper():4s} {result.specification.label}: "
            f"logL={result.log_likelihood:.3f} AIC={result.aic:.3f}"
        )
    for failure in batch.failures:
        typer.echo(f"FAILED {failure.kind} {failure.specification}: {failure.error_type}: {failure.message}")


@app.command()
def gwr(
    data: str = typer.Argument(..., help='Vector file with unit polygons'),
    response: str = typer.Option(..., help='Response variable'),
    predictors: str = typer.Option(..., help='Comma-separated predictors'),
    id_column: str = typer.Option(..., '--id-column', help='Unique unit identifier column'),
    attributes: Optional[str] = typer.Option(None, help='CSV attribute table joined on the id column'),
    bandwidth: Optional[float] = typer.Option(None, help='Bandwidth (selected by cross-validation if omitted)'),
    config_path: str = typer.Option('config/config.yaml', '--config', help='Configuration file path'),
    output: Optional[str] = typer.Option(None, help='Output directory'),
    verbose: bool = typer.Option(False, help='Enable verbose logging')
):
    """Fit a geographically weighted regression surface."""
    settings = _prepare(config_path, verbose)
    spec = RegressionSpecification(response=response, predictors=_split(predictors))

    try:
        dataset = load_dataset(data, id_column, None, attributes)
        result = LocalRegressionEngine(settings.gwr, settings.parallel).fit(dataset, spec, bandwidth)
    except SpatialAnalysisError as e:
        _fail(e)

    export_gwr_table(result, str(_output_dir(output) / 'gwr.csv'))
    summary = result.summary()
    typer.echo(
        f"GWR {spec.label}: bandwidth={summary['bandwidth']:g} AICc={summary['aicc']:.3f} "
        f"R2={summary['r2']:.4f} failed={summary['n_failed']}"
    )


if __name__ == "__main__":
    app()
