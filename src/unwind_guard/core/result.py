"""
Data structures representing the output of an engine run.

This module defines the `TransformResult` Pydantic model, which encapsulates
the generated code, the functions that were (or were not) transformed, the
scope issues found, and the execution trace.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class TransformResult(BaseModel):
  """
  Container for the results of a transformation run.
  """

  code: str = Field(default="", description="The generated source code.")
  success: bool = Field(default=True, description="True if the run completed without fatal failures.")
  errors: List[str] = Field(default_factory=list, description="List of error messages encountered.")
  transformed: List[str] = Field(default_factory=list, description="Qualified names that were rewritten.")
  skipped: List[str] = Field(default_factory=list, description="Qualified names left verbatim after a failure.")
  issues: List[Dict[str, Any]] = Field(default_factory=list, description="Ambiguous receiver occurrences.")
  trace_events: List[Dict[str, Any]] = Field(default_factory=list, description="Execution trace log data.")

  @property
  def has_errors(self) -> bool:
    """
    Check if the result contains any error messages.

    Returns:
        True if one or more errors are present.
    """
    return len(self.errors) > 0
