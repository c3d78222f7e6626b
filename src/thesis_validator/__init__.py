"""
Thesis Validator - research workflow engine for investment due diligence.

Maintains the hypothesis graph, evidence, contradictions, stress tests and
quality metrics of an engagement, and drives long-running research jobs
against them.
"""

__version__ = "0.1.0"
