"""
Receiver Rewriting for Function Bodies.

The `BodyRewriter` replaces exactly the receiver occurrences the resolver
marked for rewriting. Shadowed occurrences and every other node are left
untouched, so the output tree is structurally identical to the input apart
from the renamed identifiers.
"""

from typing import Optional

import libcst as cst

from unwind_guard.analysis.resolver import Resolution
from unwind_guard.errors import ResolutionAmbiguous


class BodyRewriter(cst.CSTTransformer):
  """
  Renames the resolved receiver occurrences to a fresh identifier.
  """

  def __init__(self, resolution: Resolution, fresh_name: str) -> None:
    """
    Initializes the rewriter.

    Args:
        resolution: Classification produced by the resolver.
        fresh_name: Identifier replacing the receiver.
    """
    self.resolution = resolution
    self.fresh_name = fresh_name

  def leave_Name(self, original_node: cst.Name, updated_node: cst.Name) -> cst.Name:
    if original_node in self.resolution.rewrite:
      return updated_node.with_changes(value=self.fresh_name)
    return updated_node

  def leave_ImportAlias(self, original_node: cst.ImportAlias, updated_node: cst.ImportAlias) -> cst.ImportAlias:
    """
    ``import self`` binds the receiver without naming it as a target; alias it instead.
    """
    if original_node.asname is None and original_node.name in self.resolution.rewrite:
      return updated_node.with_changes(
        name=original_node.name,
        asname=cst.AsName(name=cst.Name(self.fresh_name)),
      )
    return updated_node


def rewrite_body(
  body: cst.BaseSuite,
  resolution: Resolution,
  fresh_name: str,
  function: Optional[str] = None,
) -> cst.BaseSuite:
  """
  Applies `BodyRewriter` to a function body.

  Args:
      body: The original function body.
      resolution: Classification produced by the resolver for ``body``.
      fresh_name: Identifier replacing the receiver.
      function: Name of the function, for error messages.

  Returns:
      The rewritten body.

  Raises:
      ResolutionAmbiguous: If the resolution contains unresolved occurrences.
  """
  if not resolution.is_resolved:
    raise ResolutionAmbiguous(resolution.ambiguous, function=function)
  return body.visit(BodyRewriter(resolution, fresh_name))
