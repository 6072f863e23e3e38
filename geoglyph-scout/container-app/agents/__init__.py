"""
Agents Package for Geoglyph Scout Container App

- GeoglyphVisionAgent: sends a satellite thumbnail to GPT-4o vision with a fixed
  archaeological evaluation prompt and returns a typed ValidationResult
  (isValid, confidence, analysis, features).
"""

from .geoglyph_vision_agent import (
    GeoglyphVisionAgent,
    ValidationResult,
    get_vision_agent,
    parse_validation_result,
)

__all__ = [
    "GeoglyphVisionAgent",
    "ValidationResult",
    "get_vision_agent",
    "parse_validation_result",
]
