"""
Failure conditions raised by the transformation core.

Every error is raised whole: the core never returns a partially rewritten
function. The engine decides whether a failure aborts the run or only skips
the offending function.
"""

from typing import List, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
  from unwind_guard.analysis.scope_report import ScopeIssue


class TransformError(Exception):
  """
  Base class for all transformation failures.

  Attributes:
      function: Name of the function being transformed, when known.
  """

  def __init__(self, message: str, function: Optional[str] = None) -> None:
    self.function = function
    self.message = message
    super().__init__(self._format())

  def _format(self) -> str:
    if self.function:
      return f"{self.function}: {self.message}"
    return self.message


class ResolutionAmbiguous(TransformError):
  """
  A receiver-named occurrence sits behind a construct the resolver cannot see through.

  Attributes:
      issues: The ambiguous occurrences, each with its location and reason.
  """

  def __init__(self, issues: Sequence["ScopeIssue"], function: Optional[str] = None) -> None:
    self.issues: List["ScopeIssue"] = list(issues)
    details = "; ".join(issue.render() for issue in self.issues)
    super().__init__(f"receiver reference cannot be resolved statically ({details})", function)


class IdentifierCollision(TransformError):
  """
  No reserved identifier could be found that is absent from the function.

  Attributes:
      base: The requested base name.
      attempts: Number of candidates that were tried.
  """

  def __init__(self, base: str, attempts: int, function: Optional[str] = None) -> None:
    self.base = base
    self.attempts = attempts
    super().__init__(f"no free identifier for '{base}' after {attempts} attempts", function)


class UnsupportedSignatureShape(TransformError):
  """
  The signature cannot be carried over to the inner function without changing its meaning.
  """

  def __init__(self, reason: str, function: Optional[str] = None) -> None:
    self.reason = reason
    super().__init__(f"unsupported signature: {reason}", function)
