"""
Self-evaluation (SOAP) and iterative refinement (RESOAP).
"""

from .evaluator import SelfEvaluator, SoapResult
from .refiner import Refiner, RefineResult, DROP, KEEP

__all__ = [
    'SelfEvaluator',
    'SoapResult',
    'Refiner',
    'RefineResult',
    'DROP',
    'KEEP',
]
