"""
Analysis module for Regional Spatial Analysis.
"""
from .batch import SpecificationBatch, BatchResult, BatchFailure

__all__ = ['SpecificationBatch', 'BatchResult', 'BatchFailure']
