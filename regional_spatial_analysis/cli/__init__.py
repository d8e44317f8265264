"""
Command-line interface for Regional Spatial Analysis.
"""
from .app import app

__all__ = ['app']
