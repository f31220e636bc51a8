"""Pydantic models for serialising optimizer output."""

from .result import LineupPlayerResponse, OptimizationResponse, result_to_response

__all__ = ["LineupPlayerResponse", "OptimizationResponse", "result_to_response"]
