"""
Scope Report.

Collects the receiver occurrences that the Identifier Resolver could not
classify statically (dynamic code strings, namespace introspection,
self-documenting f-strings). They are surfaced to the caller as a limitation
instead of being guessed.
"""

from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Mapping, Optional

import libcst as cst
from libcst.metadata import CodeRange


@dataclass(frozen=True)
class ScopeIssue:
  """
  A single ambiguous occurrence of the receiver name.
  """

  name: str
  """The receiver identifier involved."""

  reason: str
  """Why the occurrence cannot be resolved."""

  line: Optional[int] = None
  column: Optional[int] = None

  def render(self) -> str:
    """
    Formats the issue as ``line:col: reason``.

    Returns:
        str: One-line description.
    """
    if self.line is None:
      return f"'{self.name}': {self.reason}"
    return f"{self.line}:{self.column}: '{self.name}': {self.reason}"

  def to_dict(self) -> Dict[str, Any]:
    return asdict(self)


@dataclass
class ScopeReport:
  """
  Accumulates ambiguous occurrences across one or more resolver runs.
  """

  issues: List[ScopeIssue] = field(default_factory=list)

  @property
  def has_issues(self) -> bool:
    return len(self.issues) > 0

  def record(
    self,
    name: str,
    reason: str,
    node: cst.CSTNode,
    positions: Optional[Mapping[cst.CSTNode, CodeRange]] = None,
  ) -> ScopeIssue:
    """
    Adds an issue for ``node``, locating it through ``positions`` when available.

    Args:
        name: The receiver identifier.
        reason: Human-readable explanation.
        node: The offending CST node.
        positions: PositionProvider metadata for the tree ``node`` belongs to.

    Returns:
        ScopeIssue: The recorded issue.
    """
    line = column = None
    if positions is not None and node in positions:
      start = positions[node].start
      line, column = start.line, start.column
    issue = ScopeIssue(name=name, reason=reason, line=line, column=column)
    self.issues.append(issue)
    return issue
