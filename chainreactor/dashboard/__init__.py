"""
ChainReactor dashboard - FastAPI control plane over PipelineService
"""

from .main import create_app

__all__ = ["create_app"]
