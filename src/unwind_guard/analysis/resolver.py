"""
Receiver Identifier Resolution.

This module classifies every occurrence of the receiver identifier (``self``,
``cls``, ...) in a function body as either a reference to the enclosing
function's receiver, or a shadowed occurrence that belongs to a nested scope.

The `ReceiverResolver` visitor walks the body depth-first while maintaining a
stack of `ScopeFrame` entries. A frame is *shadowed* when the scope it
represents rebinds the receiver name. Python's rules decide where each piece
of a nested construct is evaluated:

1.  **Functions and lambdas**: decorators, defaults and annotations belong to
    the enclosing scope; the body gets a new frame.
2.  **Classes**: decorators and bases belong to the enclosing scope; free
    names in methods skip the class frame when resolving closures.
3.  **Comprehensions**: the first iterable belongs to the enclosing scope;
    walrus targets bind in the nearest enclosing function.

Occurrences hidden inside code the pass cannot see (strings handed to
``eval``, namespace introspection, self-documenting f-strings) are reported
as ambiguous rather than guessed.
"""

import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Set

import libcst as cst
from libcst.metadata import CodeRange

from unwind_guard.analysis.bindings import (
  ScopeBindings,
  collect_scope_bindings,
  import_binding,
  target_names,
)
from unwind_guard.analysis.scope_report import ScopeIssue, ScopeReport
from unwind_guard.config import TransformConfig
from unwind_guard.enums import ScopeKind

_COMPREHENSIONS = (cst.ListComp, cst.SetComp, cst.GeneratorExp, cst.DictComp)


@dataclass
class ScopeFrame:
  """
  One entry of the scope stack.
  """

  kind: ScopeKind
  shadowed: bool


@dataclass
class Resolution:
  """
  Classification of the receiver occurrences of one function body.
  """

  receiver: str
  rewrite: Set[cst.Name] = field(default_factory=set)
  """Occurrences bound to the enclosing function's receiver."""

  shadowed: Set[cst.Name] = field(default_factory=set)
  """Occurrences bound by a nested scope; left untouched."""

  ambiguous: List[ScopeIssue] = field(default_factory=list)
  """Occurrences the pass cannot resolve."""

  visited: int = 0
  """Number of variable-reference identifiers classified (receiver or not), each counted once."""

  @property
  def is_resolved(self) -> bool:
    return not self.ambiguous


class ReceiverResolver(cst.CSTVisitor):
  """
  Depth-first classifier for receiver occurrences.

  The root frame is the function's own scope and is never shadowed: any
  rebinding of the receiver name there is a rebinding of the same local
  variable.
  """

  def __init__(
    self,
    receiver: str,
    config: Optional[TransformConfig] = None,
    positions: Optional[Mapping[cst.CSTNode, CodeRange]] = None,
    report: Optional[ScopeReport] = None,
  ) -> None:
    """
    Initializes the resolver.

    Args:
        receiver: The receiver identifier to track.
        config: Supplies the lists of opaque callables.
        positions: PositionProvider metadata used to locate ambiguous occurrences.
        report: Shared report receiving ambiguous occurrences.
    """
    self.receiver = receiver
    self.config = config or TransformConfig()
    self.positions = positions
    self.report = report if report is not None else ScopeReport()
    self.resolution = Resolution(receiver=receiver)
    self._scope_stack: List[ScopeFrame] = [ScopeFrame(ScopeKind.FUNCTION, False)]
    self._token = re.compile(rf"(?<![\w]){re.escape(receiver)}(?![\w])")

  def resolve(self, body: cst.CSTNode) -> Resolution:
    """
    Walks ``body`` and returns the resulting classification.

    Args:
        body: The function body (suite) of the function being transformed.

    Returns:
        Resolution: The rewrite / shadowed / ambiguous sets.
    """
    body.visit(self)
    return self.resolution

  # --- Scope stack ---

  @property
  def _shadowed(self) -> bool:
    return self._scope_stack[-1].shadowed

  def _enclosing_function_state(self, skip_comprehensions: bool = False) -> bool:
    """Shadow state seen by a closure: class frames are transparent."""
    for frame in reversed(self._scope_stack):
      if frame.kind == ScopeKind.CLASS:
        continue
      if skip_comprehensions and frame.kind == ScopeKind.COMPREHENSION:
        continue
      return frame.shadowed
    return False

  def _shadows(self, bindings: ScopeBindings) -> bool:
    if self.receiver in bindings.globals:
      return True
    if self.receiver in bindings.nonlocals:
      return self._enclosing_function_state()
    if bindings.binds_locally(self.receiver):
      return True
    return self._enclosing_function_state()

  def _enter_scope(self, kind: ScopeKind, shadowed: bool) -> None:
    self._scope_stack.append(ScopeFrame(kind, shadowed))

  def _exit_scope(self) -> None:
    if len(self._scope_stack) > 1:
      self._scope_stack.pop()

  # --- Classification ---

  def _classify(self, node: cst.Name, shadowed: Optional[bool] = None) -> None:
    self.resolution.visited += 1
    if node.value != self.receiver:
      return
    if shadowed is None:
      shadowed = self._shadowed
    if shadowed:
      self.resolution.shadowed.add(node)
    else:
      self.resolution.rewrite.add(node)

  def _ambiguous(self, node: cst.CSTNode, reason: str) -> None:
    issue = self.report.record(self.receiver, reason, node, self.positions)
    self.resolution.ambiguous.append(issue)

  def visit_Name(self, node: cst.Name) -> None:
    self._classify(node)

  # --- Names that are not variable references ---

  def visit_Attribute(self, node: cst.Attribute) -> bool:
    node.value.visit(self)
    return False

  def visit_Arg(self, node: cst.Arg) -> bool:
    node.value.visit(self)
    return False

  def visit_MatchKeywordElement(self, node: cst.MatchKeywordElement) -> bool:
    node.pattern.visit(self)
    return False

  def visit_ImportFrom(self, node: cst.ImportFrom) -> bool:
    if not isinstance(node.names, cst.ImportStar):
      for alias in node.names:
        alias.visit(self)
    return False

  def visit_ImportAlias(self, node: cst.ImportAlias) -> bool:
    if node.asname is not None:
      node.asname.name.visit(self)
    elif isinstance(node.name, cst.Name):
      self._classify(node.name)
    elif import_binding(node) == self.receiver and not self._shadowed:
      self._ambiguous(node, "dotted import binds the receiver name to a package")
    return False

  # --- Nested scopes ---

  def _visit_signature_parts(self, params: cst.Parameters) -> None:
    """Defaults and annotations are evaluated in the enclosing scope."""
    for param in _all_params(params):
      if param.annotation is not None:
        param.annotation.visit(self)
      if param.default is not None:
        param.default.visit(self)

  def _visit_param_names(self, params: cst.Parameters) -> None:
    for param in _all_params(params):
      self._classify(param.name)

  def visit_FunctionDef(self, node: cst.FunctionDef) -> bool:
    for decorator in node.decorators:
      decorator.visit(self)
    type_parameters = getattr(node, "type_parameters", None)
    if type_parameters is not None:
      type_parameters.visit(self)
    self._visit_signature_parts(node.params)
    if node.returns is not None:
      node.returns.visit(self)
    self._classify(node.name)

    bindings = collect_scope_bindings(node.body, node.params)
    self._enter_scope(ScopeKind.FUNCTION, self._shadows(bindings))
    self._visit_param_names(node.params)
    node.body.visit(self)
    self._exit_scope()
    return False

  def visit_Lambda(self, node: cst.Lambda) -> bool:
    self._visit_signature_parts(node.params)

    bindings = collect_scope_bindings(node.body, node.params)
    self._enter_scope(ScopeKind.LAMBDA, self._shadows(bindings))
    self._visit_param_names(node.params)
    node.body.visit(self)
    self._exit_scope()
    return False

  def visit_ClassDef(self, node: cst.ClassDef) -> bool:
    for decorator in node.decorators:
      decorator.visit(self)
    type_parameters = getattr(node, "type_parameters", None)
    if type_parameters is not None:
      type_parameters.visit(self)
    for arg in [*node.bases, *node.keywords]:
      arg.visit(self)
    self._classify(node.name)

    bindings = collect_scope_bindings(node.body)
    self._enter_scope(ScopeKind.CLASS, self._shadows(bindings))
    node.body.visit(self)
    self._exit_scope()
    return False

  def _visit_comprehension(self, node: cst.BaseComp, elements: Sequence[cst.BaseExpression]) -> None:
    clauses = _comp_clauses(node.for_in)
    clauses[0].iter.visit(self)

    targets = set()
    for clause in clauses:
      targets.update(target_names(clause.target))
    shadowed = True if self.receiver in targets else self._enclosing_function_state()

    self._enter_scope(ScopeKind.COMPREHENSION, shadowed)
    for index, clause in enumerate(clauses):
      clause.target.visit(self)
      if index > 0:
        clause.iter.visit(self)
      for condition in clause.ifs:
        condition.visit(self)
    for element in elements:
      element.visit(self)
    self._exit_scope()

  def visit_ListComp(self, node: cst.ListComp) -> bool:
    self._visit_comprehension(node, [node.elt])
    return False

  def visit_SetComp(self, node: cst.SetComp) -> bool:
    self._visit_comprehension(node, [node.elt])
    return False

  def visit_GeneratorExp(self, node: cst.GeneratorExp) -> bool:
    self._visit_comprehension(node, [node.elt])
    return False

  def visit_DictComp(self, node: cst.DictComp) -> bool:
    self._visit_comprehension(node, [node.key, node.value])
    return False

  def visit_NamedExpr(self, node: cst.NamedExpr) -> bool:
    if self._scope_stack[-1].kind == ScopeKind.COMPREHENSION and isinstance(node.target, cst.Name):
      self._classify(node.target, self._enclosing_function_state(skip_comprehensions=True))
    else:
      node.target.visit(self)
    node.value.visit(self)
    return False

  # --- Opaque constructs ---

  def visit_Call(self, node: cst.Call) -> None:
    if self._shadowed or not isinstance(node.func, cst.Name):
      return
    callee = node.func.value
    if callee in self.config.dynamic_code_callables:
      for arg in node.args:
        text = _literal_text(arg.value)
        if text is not None and self._token.search(text):
          self._ambiguous(node, f"receiver name appears in code passed to {callee}()")
          break
    elif callee in self.config.introspection_callables and not node.args:
      self._ambiguous(node, f"{callee}() exposes local variable names")

  def visit_FormattedStringExpression(self, node: cst.FormattedStringExpression) -> None:
    if node.equal is None or self._shadowed:
      return
    if self.receiver in _names_in(node.expression):
      self._ambiguous(node, "self-documenting f-string renders the receiver's source text")


def resolve_receiver(
  body: cst.CSTNode,
  receiver: str,
  config: Optional[TransformConfig] = None,
  positions: Optional[Mapping[cst.CSTNode, CodeRange]] = None,
  report: Optional[ScopeReport] = None,
) -> Resolution:
  """
  Convenience wrapper around `ReceiverResolver`.

  Args:
      body: Function body to analyse.
      receiver: The receiver identifier.
      config: Transformation configuration.
      positions: Optional PositionProvider metadata.
      report: Optional shared report.

  Returns:
      Resolution: The classification.
  """
  return ReceiverResolver(receiver, config=config, positions=positions, report=report).resolve(body)


def _all_params(params: cst.Parameters) -> List[cst.Param]:
  found = [*params.posonly_params, *params.params]
  if isinstance(params.star_arg, cst.Param):
    found.append(params.star_arg)
  found.extend(params.kwonly_params)
  if params.star_kwarg is not None:
    found.append(params.star_kwarg)
  return found


def _comp_clauses(for_in: cst.CompFor) -> List[cst.CompFor]:
  clauses = []
  current: Optional[cst.CompFor] = for_in
  while current is not None:
    clauses.append(current)
    current = current.inner_for_in
  return clauses


class _NameGatherer(cst.CSTVisitor):
  def __init__(self) -> None:
    self.names: Set[str] = set()

  def visit_Name(self, node: cst.Name) -> None:
    self.names.add(node.value)

  def visit_Attribute(self, node: cst.Attribute) -> bool:
    node.value.visit(self)
    return False


def _names_in(node: cst.CSTNode) -> Set[str]:
  gatherer = _NameGatherer()
  node.visit(gatherer)
  return gatherer.names


def _literal_text(expr: cst.BaseExpression) -> Optional[str]:
  """Best-effort text of a string literal argument."""
  if isinstance(expr, (cst.SimpleString, cst.ConcatenatedString)):
    value = expr.evaluated_value
    if isinstance(value, bytes):
      return value.decode("latin-1")
    return value
  if isinstance(expr, cst.FormattedString):
    return "".join(part.value for part in expr.parts if isinstance(part, cst.FormattedStringText))
  return None
