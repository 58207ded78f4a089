"""
Pipeline trigger scheduling and execution orchestration service.
"""

__version__ = "0.1.0"
