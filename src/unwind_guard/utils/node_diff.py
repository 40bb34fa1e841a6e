"""
AST Node Serialization for Diffs and Traces.

Renders detached LibCST nodes to source text "in vacuum". Used to record the
before/after source of transformed functions in the trace, and to turn
annotations into comparable strings for signature views.
"""

import libcst as cst

# A dummy module used as a context to render detached nodes.
_RENDER_CTX = cst.parse_module("")


def capture_node_source(node: cst.CSTNode) -> str:
  """
  Renders a LibCST node into its Python source code string representation.

  Args:
      node: The CST node to serialise.

  Returns:
      str: The Python code string.
  """
  return _RENDER_CTX.code_for_node(node)


def diff_nodes(original: cst.CSTNode, modified: cst.CSTNode) -> tuple[str, str, bool]:
  """
  Compares two nodes and returns their source strings if they differ.

  Args:
      original: The node before transformation.
      modified: The node after transformation.

  Returns:
      tuple: (source_before, source_after, has_changed)
  """
  src_before = capture_node_source(original)
  src_after = capture_node_source(modified)

  is_diff = src_before.strip() != src_after.strip()

  return src_before, src_after, is_diff
