"""
Single-Function Transformation Pipeline.

Runs the four stages over one function definition, in a single pass:

1.  **Resolve**: classify receiver occurrences (`ReceiverResolver`).
2.  **Rewrite**: rename the resolved occurrences (`BodyRewriter`).
3.  **Split**: derive the inner function's signature (`SignatureSplitter`).
4.  **Inject**: assemble the guarded body (`EpilogueInjector`).

The pipeline is pure: it depends only on the given tree, keeps no state
between calls, and either returns a complete rewrite or raises a
`TransformError`.
"""

from typing import Mapping, Optional

import libcst as cst
from libcst.metadata import CodeRange

from unwind_guard.analysis.bindings import collect_identifiers
from unwind_guard.analysis.resolver import resolve_receiver
from unwind_guard.analysis.scope_report import ScopeReport
from unwind_guard.config import TransformConfig
from unwind_guard.core.injector import Epilogue, EpilogueInjector, parse_epilogue
from unwind_guard.core.names import FreshNameAllocator, GeneratedNames
from unwind_guard.core.rewriter.body import rewrite_body
from unwind_guard.core.signature import FunctionSignature, SignatureSplitter
from unwind_guard.enums import GuardStyle
from unwind_guard.errors import ResolutionAmbiguous


class EpilogueTransformer:
  """
  Transforms function definitions so an epilogue runs on abnormal exit only.
  """

  def __init__(self, config: Optional[TransformConfig] = None) -> None:
    """
    Args:
        config: Transformation configuration; defaults are used when omitted.
    """
    self.config = config or TransformConfig()
    self.injector = EpilogueInjector(self.config)

  def transform(
    self,
    node: cst.FunctionDef,
    epilogue: Epilogue,
    in_class: bool = False,
    positions: Optional[Mapping[cst.CSTNode, CodeRange]] = None,
    report: Optional[ScopeReport] = None,
  ) -> cst.FunctionDef:
    """
    Transforms one function definition.

    Args:
        node: The function to transform.
        epilogue: Code to run when an exception leaves the function.
        in_class: Whether ``node`` sits directly in a class body (its first
            parameter is then the receiver, unless it is a staticmethod).
        positions: PositionProvider metadata for locating ambiguous occurrences.
        report: Shared Scope Report receiving ambiguous occurrences.

    Returns:
        cst.FunctionDef: The transformed definition, externally identical to ``node``.

    Raises:
        ResolutionAmbiguous: If a receiver occurrence cannot be resolved statically.
        IdentifierCollision: If no fresh identifier is available.
        UnsupportedSignatureShape: If the signature cannot be carried over verbatim.
    """
    signature = FunctionSignature.from_node(node, in_class=in_class)
    epilogue_stmts = parse_epilogue(epilogue)
    receiver = signature.receiver.name if signature.receiver is not None else None

    resolution = None
    if receiver is not None:
      resolution = resolve_receiver(node.body, receiver, self.config, positions=positions, report=report)
      if not resolution.is_resolved:
        raise ResolutionAmbiguous(resolution.ambiguous, function=signature.name)

    taken = collect_identifiers(node, *epilogue_stmts)
    taken.add(self.config.factory_for(signature.is_async).split(".")[0])
    allocator = FreshNameAllocator(
      taken,
      prefix=self.config.name_prefix,
      max_attempts=self.config.max_name_attempts,
      function=signature.name,
    )
    guard_stem = "armed" if self.config.guard_style == GuardStyle.FLAG else "guard"
    names = GeneratedNames.allocate(allocator, guard_stem, receiver)

    body = node.body
    if resolution is not None:
      body = rewrite_body(body, resolution, names.receiver, function=signature.name)

    inner = SignatureSplitter(signature, names.receiver).split()
    return self.injector.inject(node, signature, inner, body, names, epilogue_stmts)


def transform_function(
  node: cst.FunctionDef,
  epilogue: Epilogue,
  *,
  in_class: bool = False,
  config: Optional[TransformConfig] = None,
  positions: Optional[Mapping[cst.CSTNode, CodeRange]] = None,
  report: Optional[ScopeReport] = None,
) -> cst.FunctionDef:
  """
  Functional entry point wrapping `EpilogueTransformer`.

  Args:
      node: The function to transform.
      epilogue: Code to run when an exception leaves the function.
      in_class: Whether ``node`` is defined directly in a class body.
      config: Transformation configuration.
      positions: PositionProvider metadata.
      report: Shared Scope Report.

  Returns:
      cst.FunctionDef: The transformed definition.
  """
  return EpilogueTransformer(config).transform(
    node, epilogue, in_class=in_class, positions=positions, report=report
  )
