#!/usr/bin/env python
"""
Setup script for Regional Spatial Analysis package.

This package provides spatial weights, autocorrelation tests, global
spatial regression models and geographically weighted regression for
geographic administrative units.
"""
from setuptools import setup, find_packages

setup(
    name="regional_spatial_analysis",
    version="0.1.0",
    description="Spatial econometrics and geographically weighted regression for administrative units",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "numpy>=1.22.0",
        "pandas>=1.4.0",
        "scipy>=1.9.0",
        "statsmodels>=0.13.0",
        "geopandas>=0.12.0",
        "shapely>=2.0.0",
        "libpysal>=4.7.0",
        "spreg>=1.4.0",
        "pydantic>=2.0.0",
        "PyYAML>=6.0",
        "typer>=0.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0.0",
            "pytest-cov>=2.12.0",
            "flake8>=3.9.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "regional-spatial=regional_spatial_analysis.cli.app:app",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: GIS",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
)
