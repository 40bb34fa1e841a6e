"""
Orchestration Engine for Module Transformations.

This module provides the `EpilogueEngine`, the driver that applies the
single-function pipeline to the functions of a whole module. The caller
names the functions to transform by qualified name (``Account.withdraw``,
``helper``, ``outer.inner``); the engine does not decide on its own which
functions need a guard.

The Engine pipeline consists of:

1.  **Parsing**: source text into a LibCST module, plus position metadata so
    ambiguous receiver occurrences can be reported with line and column.
2.  **Transformation**: every selected function is rewritten by
    `EpilogueTransformer`. Whether the definition sits directly in a class
    body decides whether its first parameter is the receiver.
3.  **Import Injection**: the module of every guard factory the rewrites use is
    imported at the top of the module when the ``exit_stack`` guard is used
    and the import is missing.
4.  **Failure Policy**: ``abort`` returns the original source untouched;
    ``skip`` keeps the successful rewrites and leaves failing functions as
    they were.
"""

from typing import Iterable, List, Mapping, Optional, Set, Tuple

import libcst as cst
from libcst.metadata import CodeRange, MetadataWrapper, PositionProvider
from rich.markup import escape

from unwind_guard.analysis.scope_report import ScopeReport
from unwind_guard.config import TransformConfig
from unwind_guard.core.injector import Epilogue, is_docstring
from unwind_guard.core.result import TransformResult
from unwind_guard.core.tracer import TraceLogger
from unwind_guard.core.transform import EpilogueTransformer
from unwind_guard.enums import FailurePolicy, GuardStyle
from unwind_guard.errors import TransformError
from unwind_guard.utils.console import log_error, log_info, log_success, log_warning
from unwind_guard.utils.node_diff import capture_node_source, diff_nodes


class _TargetRewriter(cst.CSTTransformer):
  """
  Walks a module with a qualified-name stack and transforms the selected functions.
  """

  def __init__(
    self,
    targets: Set[str],
    epilogue: Epilogue,
    transformer: EpilogueTransformer,
    positions: Mapping[cst.CSTNode, CodeRange],
    report: ScopeReport,
    tracer: TraceLogger,
  ) -> None:
    self.targets = targets
    self.epilogue = epilogue
    self.transformer = transformer
    self.positions = positions
    self.report = report
    self.tracer = tracer

    self.found: Set[str] = set()
    self.transformed: List[str] = []
    self.guard_modules: List[str] = []
    self.failures: List[Tuple[str, TransformError]] = []
    self._stack: List[Tuple[str, bool]] = []  # (name, is_class)
    self._rewrites_at_entry: List[int] = []

  def visit_ClassDef(self, node: cst.ClassDef) -> None:
    self._stack.append((node.name.value, True))

  def leave_ClassDef(self, original_node: cst.ClassDef, updated_node: cst.ClassDef) -> cst.ClassDef:
    self._stack.pop()
    return updated_node

  def visit_FunctionDef(self, node: cst.FunctionDef) -> None:
    self._stack.append((node.name.value, False))
    self._rewrites_at_entry.append(len(self.transformed))

  def leave_FunctionDef(self, original_node: cst.FunctionDef, updated_node: cst.FunctionDef) -> cst.FunctionDef:
    qualname = ".".join(name for name, _ in self._stack)
    in_class = len(self._stack) > 1 and self._stack[-2][1]
    nested_rewrites = len(self.transformed) > self._rewrites_at_entry.pop()
    self._stack.pop()

    if qualname not in self.targets:
      return updated_node
    self.found.add(qualname)

    # Original nodes keep their identity, and with it their positions.
    source = updated_node if nested_rewrites else original_node
    self.tracer.start_phase(f"Transforming {qualname}")
    try:
      result = self.transformer.transform(
        source, self.epilogue, in_class=in_class, positions=self.positions, report=self.report
      )
    except TransformError as e:
      self.failures.append((qualname, e))
      self.tracer.log_failure(qualname, e)
      return updated_node
    finally:
      self.tracer.end_phase()

    self.transformed.append(qualname)
    module = self.transformer.config.module_for(source.asynchronous is not None)
    if module not in self.guard_modules:
      self.guard_modules.append(module)
    before, after, _ = diff_nodes(source, result)
    self.tracer.log_mutation(qualname, before, after)
    return result


class EpilogueEngine:
  """
  Applies the epilogue transformation to selected functions of a module.
  """

  def __init__(self, config: Optional[TransformConfig] = None) -> None:
    """
    Initializes the Engine.

    Args:
        config (TransformConfig, optional): Configuration; loaded from
            ``pyproject.toml`` when omitted.
    """
    self.config = config or TransformConfig.load()
    self.transformer = EpilogueTransformer(self.config)

  def run(self, code: str, targets: Iterable[str], epilogue: Epilogue) -> TransformResult:
    """
    Transforms the selected functions of ``code``.

    Args:
        code: Module source text.
        targets: Qualified names of the functions to transform.
        epilogue: Code to run when an exception leaves a transformed function.

    Returns:
        TransformResult: Generated code, status, errors, scope issues and trace.
    """
    tracer = TraceLogger()
    report = ScopeReport()
    wanted = set(targets)

    tracer.start_phase("Parsing")
    try:
      module = cst.parse_module(code)
    except cst.ParserSyntaxError as e:
      tracer.end_phase()
      log_error(f"Parse failed: {escape(str(e))}")
      return TransformResult(code=code, success=False, errors=[str(e)], trace_events=tracer.export())
    wrapper = MetadataWrapper(module, unsafe_skip_copy=True)
    positions = wrapper.resolve(PositionProvider)
    tracer.end_phase()

    log_info(f"Guarding {len(wanted)} function(s)")
    tracer.start_phase("Transforming", f"{len(wanted)} target(s)")
    rewriter = _TargetRewriter(wanted, epilogue, self.transformer, positions, report, tracer)
    new_module = module.visit(rewriter)
    tracer.end_phase()

    errors = [f"{name}: {e.message}" for name, e in rewriter.failures]
    for missing in sorted(wanted - rewriter.found):
      errors.append(f"{missing}: function not found")
    for message in errors:
      log_error(escape(message))
    for issue in report.issues:
      tracer.log_warning(issue.render())

    failed = [name for name, _ in rewriter.failures]
    if errors and self.config.failure_policy == FailurePolicy.ABORT:
      return TransformResult(
        code=code,
        success=False,
        errors=errors,
        skipped=failed,
        issues=[i.to_dict() for i in report.issues],
        trace_events=tracer.export(),
      )

    if rewriter.transformed and self.config.guard_style == GuardStyle.EXIT_STACK and self.config.inject_imports:
      for target in rewriter.guard_modules:
        new_module = self._ensure_import(new_module, target, tracer)

    for name in rewriter.transformed:
      log_success(f"Guarded [code]{escape(name)}[/code]")
    for name in failed:
      log_warning(f"Left {escape(name)} unchanged")

    return TransformResult(
      code=new_module.code,
      success=True,
      errors=errors,
      transformed=rewriter.transformed,
      skipped=failed,
      issues=[i.to_dict() for i in report.issues],
      trace_events=tracer.export(),
    )

  def _ensure_import(self, module: cst.Module, target: str, tracer: TraceLogger) -> cst.Module:
    """
    Adds ``import <target>`` after the docstring and ``__future__`` imports if absent.

    Args:
        module: The transformed module.
        target: Module of a guard factory used by the rewrites.
        tracer: Trace of the current run.

    Returns:
        cst.Module: The module with the import in place.
    """
    if target in _top_level_imports(module):
      return module

    stmts = list(module.body)
    insert_at = 0
    while insert_at < len(stmts) and (
      (insert_at == 0 and is_docstring(stmts[0])) or _is_future_import(stmts[insert_at])
    ):
      insert_at += 1

    stmts.insert(insert_at, cst.parse_statement(f"import {target}"))
    tracer.log_import(target)
    return module.with_changes(body=stmts)


def _top_level_imports(module: cst.Module) -> Set[str]:
  """Dotted module names bound by plain ``import x.y`` statements at module level."""
  found: Set[str] = set()
  for stmt in module.body:
    if not isinstance(stmt, cst.SimpleStatementLine):
      continue
    for small in stmt.body:
      if isinstance(small, cst.Import):
        for alias in small.names:
          if alias.asname is None:
            found.add(capture_node_source(alias.name))
  return found


def _is_future_import(stmt: cst.CSTNode) -> bool:
  if not isinstance(stmt, cst.SimpleStatementLine):
    return False
  for small in stmt.body:
    if isinstance(small, cst.ImportFrom) and isinstance(small.module, cst.Name) and small.module.value == "__future__":
      return True
  return False
