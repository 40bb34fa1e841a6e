"""
Binding Collection.

Static helpers that answer the two questions the resolver and the name
allocator ask about a piece of code:

1.  **Scope bindings**: which names does a single scope bind locally, and
    which does it declare ``global`` / ``nonlocal``? Nested functions,
    lambdas and classes are separate scopes and are not descended into
    (only their own names bind here). Walrus targets inside comprehensions
    bind in the enclosing function scope and are included.
2.  **Identifiers in use**: every identifier appearing anywhere in a tree,
    used to guarantee that generated names never collide.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Union

import libcst as cst

_SCOPE_NODES = (cst.FunctionDef, cst.ClassDef, cst.Lambda)


def target_names(node: Optional[cst.CSTNode]) -> List[str]:
  """
  Extracts the plain names bound by an assignment target.

  Attribute and subscript targets bind nothing. Tuple and list targets are
  unpacked recursively, including starred elements.

  Args:
      node: The target expression.

  Returns:
      List[str]: Bound identifiers in source order.
  """
  if node is None:
    return []
  if isinstance(node, cst.Name):
    return [node.value]
  if isinstance(node, (cst.Tuple, cst.List)):
    names = []
    for element in node.elements:
      names.extend(target_names(element.value))
    return names
  if isinstance(node, (cst.StarredElement, cst.Element)):
    return target_names(node.value)
  return []


def import_binding(alias: cst.ImportAlias) -> Optional[str]:
  """
  Returns the local name bound by an import alias.

  ``import a.b`` binds ``a``; ``import a.b as c`` binds ``c``.
  """
  if alias.asname is not None:
    names = target_names(alias.asname.name)
    return names[0] if names else None
  root = alias.name
  while isinstance(root, cst.Attribute):
    root = root.value
  return root.value if isinstance(root, cst.Name) else None


@dataclass
class ScopeBindings:
  """
  Names bound by one scope.
  """

  bound: Set[str] = field(default_factory=set)
  globals: Set[str] = field(default_factory=set)
  nonlocals: Set[str] = field(default_factory=set)

  def binds_locally(self, name: str) -> bool:
    """True when ``name`` is a local variable of the scope."""
    return name in self.bound and name not in self.globals and name not in self.nonlocals


class _BindingCollector(cst.CSTVisitor):
  """
  Walks a single scope, stopping at nested scope boundaries.
  """

  def __init__(self) -> None:
    self.bindings = ScopeBindings()

  def _bind(self, names: Iterable[str]) -> None:
    self.bindings.bound.update(names)

  # --- Nested scopes: only their own names bind here ---

  def visit_FunctionDef(self, node: cst.FunctionDef) -> bool:
    self._bind([node.name.value])
    return False

  def visit_ClassDef(self, node: cst.ClassDef) -> bool:
    self._bind([node.name.value])
    return False

  def visit_Lambda(self, node: cst.Lambda) -> bool:
    return False

  # --- Binding statements ---

  def visit_AssignTarget(self, node: cst.AssignTarget) -> None:
    self._bind(target_names(node.target))

  def visit_AnnAssign(self, node: cst.AnnAssign) -> None:
    self._bind(target_names(node.target))

  def visit_AugAssign(self, node: cst.AugAssign) -> None:
    self._bind(target_names(node.target))

  def visit_For(self, node: cst.For) -> None:
    self._bind(target_names(node.target))

  def visit_WithItem(self, node: cst.WithItem) -> None:
    if node.asname is not None:
      self._bind(target_names(node.asname.name))

  def visit_ExceptHandler(self, node: cst.ExceptHandler) -> None:
    if node.name is not None:
      self._bind(target_names(node.name.name))

  def visit_ExceptStarHandler(self, node: cst.ExceptStarHandler) -> None:
    if node.name is not None:
      self._bind(target_names(node.name.name))

  def visit_Del(self, node: cst.Del) -> None:
    self._bind(target_names(node.target))

  def visit_NamedExpr(self, node: cst.NamedExpr) -> None:
    self._bind(target_names(node.target))

  def visit_ImportAlias(self, node: cst.ImportAlias) -> None:
    name = import_binding(node)
    if name:
      self._bind([name])

  def visit_MatchAs(self, node: cst.MatchAs) -> None:
    if node.name is not None:
      self._bind([node.name.value])

  def visit_MatchStar(self, node: cst.MatchStar) -> None:
    if node.name is not None:
      self._bind([node.name.value])

  def visit_MatchMapping(self, node: cst.MatchMapping) -> None:
    if node.rest is not None:
      self._bind([node.rest.value])

  # --- Declarations ---

  def visit_Global(self, node: cst.Global) -> None:
    self.bindings.globals.update(item.name.value for item in node.names)

  def visit_Nonlocal(self, node: cst.Nonlocal) -> None:
    self.bindings.nonlocals.update(item.name.value for item in node.names)


def collect_scope_bindings(
  body: Union[cst.CSTNode, Iterable[cst.CSTNode]],
  params: Optional[cst.Parameters] = None,
) -> ScopeBindings:
  """
  Collects the bindings of a single scope.

  Args:
      body: The scope body (a suite, an expression, or a list of statements).
      params: The parameters of the scope, when it is a function or lambda.

  Returns:
      ScopeBindings: Local, global and nonlocal names of the scope.
  """
  collector = _BindingCollector()
  nodes = [body] if isinstance(body, cst.CSTNode) else list(body)
  for node in nodes:
    node.visit(collector)
  if params is not None:
    collector._bind(parameter_names(params))
  return collector.bindings


def parameter_names(params: cst.Parameters) -> List[str]:
  """
  Lists every parameter name of a signature, including ``*args`` and ``**kwargs``.
  """
  names = [p.name.value for p in params.posonly_params]
  names.extend(p.name.value for p in params.params)
  if isinstance(params.star_arg, cst.Param):
    names.append(params.star_arg.name.value)
  names.extend(p.name.value for p in params.kwonly_params)
  if params.star_kwarg is not None:
    names.append(params.star_kwarg.name.value)
  return names


class _IdentifierCollector(cst.CSTVisitor):
  def __init__(self) -> None:
    self.names: Set[str] = set()

  def visit_Name(self, node: cst.Name) -> None:
    self.names.add(node.value)


def collect_identifiers(*nodes: cst.CSTNode) -> Set[str]:
  """
  Collects every identifier used or declared anywhere in the given trees.

  Args:
      *nodes: Trees to scan.

  Returns:
      Set[str]: All ``Name`` values found.
  """
  collector = _IdentifierCollector()
  for node in nodes:
    node.visit(collector)
  return collector.names


class _YieldFinder(cst.CSTVisitor):
  def __init__(self) -> None:
    self.found = False

  def visit_Yield(self, node: cst.Yield) -> bool:
    self.found = True
    return False

  def visit_FunctionDef(self, node: cst.FunctionDef) -> bool:
    return False

  def visit_ClassDef(self, node: cst.ClassDef) -> bool:
    return False

  def visit_Lambda(self, node: cst.Lambda) -> bool:
    return False


def is_generator_body(body: cst.BaseSuite) -> bool:
  """
  Checks whether a function body makes its function a generator.

  ``yield`` and ``yield from`` count only in the function's own scope.
  """
  finder = _YieldFinder()
  body.visit(finder)
  return finder.found
