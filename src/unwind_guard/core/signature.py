"""
Signature Model and Splitting.

This module parses a LibCST function definition into an immutable
`FunctionSignature` and derives from it the signature of the inner,
capture-free function that carries the original body:

1.  **Receiver**: when the function has one, the first positional parameter
    is renamed to the fresh identifier. Its annotation and binding kind
    (instance / class) are kept as they are.
2.  **Other parameters**: copied in order and in their original groups
    (positional-only, ``*args``, keyword-only, ``**kwargs``) with their
    annotations turned into string literals, and without defaults since
    every argument is passed explicitly.
3.  **Call arguments**: the outer parameter names, passed so that each lands
    in the same inner parameter.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import libcst as cst

from unwind_guard.analysis.bindings import is_generator_body
from unwind_guard.enums import ParamKind, ReceiverKind
from unwind_guard.errors import UnsupportedSignatureShape
from unwind_guard.utils.node_diff import capture_node_source

# Dunders that Python binds to the class without an explicit decorator.
IMPLICIT_CLASS_RECEIVERS = frozenset({"__new__", "__init_subclass__", "__class_getitem__"})

_TIGHT_EQUAL = cst.AssignEqual(
  whitespace_before=cst.SimpleWhitespace(""),
  whitespace_after=cst.SimpleWhitespace(""),
)


@dataclass(frozen=True)
class Parameter:
  """
  One parameter of a parsed signature.
  """

  name: str
  kind: ParamKind
  annotation: Optional[str] = None
  has_default: bool = False
  receiver_kind: ReceiverKind = ReceiverKind.NONE
  node: Optional[cst.Param] = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class FunctionSignature:
  """
  Immutable view of a function definition's external signature.
  """

  name: str
  parameters: Tuple[Parameter, ...]
  returns: Optional[str] = None
  is_async: bool = False
  has_receiver: bool = False
  receiver_kind: ReceiverKind = ReceiverKind.NONE
  node: Optional[cst.FunctionDef] = field(default=None, compare=False, repr=False)

  @property
  def receiver(self) -> Optional[Parameter]:
    """
    The receiver parameter, if the function has one.

    Returns:
        Optional[Parameter]: The first positional parameter of a method.
    """
    if not self.has_receiver:
      return None
    return self.parameters[0]

  def external_view(self) -> Tuple:
    """
    The part of the signature callers can observe.

    Returns:
        Tuple: (name, parameters as (name, kind, annotation, has_default), returns, is_async).
    """
    params = tuple((p.name, p.kind.value, p.annotation, p.has_default) for p in self.parameters)
    return (self.name, params, self.returns, self.is_async)

  @classmethod
  def from_node(cls, node: cst.FunctionDef, in_class: bool = False) -> "FunctionSignature":
    """
    Parses a function definition.

    Args:
        node: The function definition.
        in_class: Whether the definition sits directly in a class body.

    Returns:
        FunctionSignature: The parsed signature.

    Raises:
        UnsupportedSignatureShape: For generators, conflicting method decorators,
            or methods without a parameter to carry the receiver.
    """
    name = node.name.value
    decorators = {_decorator_name(d) for d in node.decorators}
    is_static = "staticmethod" in decorators
    is_classmethod = "classmethod" in decorators

    if is_static and is_classmethod:
      raise UnsupportedSignatureShape("decorated as both staticmethod and classmethod", function=name)
    if is_generator_body(node.body):
      raise UnsupportedSignatureShape("generator functions cannot be split into an inner call", function=name)

    has_receiver = in_class and not is_static
    receiver_kind = ReceiverKind.NONE
    if has_receiver:
      receiver_kind = ReceiverKind.CLASS if is_classmethod or name in IMPLICIT_CLASS_RECEIVERS else ReceiverKind.INSTANCE

    grouped = _grouped_params(node.params)
    if has_receiver and (not grouped or grouped[0][1] not in _POSITIONAL):
      raise UnsupportedSignatureShape("method has no positional parameter to carry the receiver", function=name)

    parameters = []
    for index, (param, kind) in enumerate(grouped):
      parameters.append(
        Parameter(
          name=param.name.value,
          kind=kind,
          annotation=_annotation_text(param.annotation),
          has_default=param.default is not None,
          receiver_kind=receiver_kind if has_receiver and index == 0 else ReceiverKind.NONE,
          node=param,
        )
      )

    return cls(
      name=name,
      parameters=tuple(parameters),
      returns=_annotation_text(node.returns),
      is_async=node.asynchronous is not None,
      has_receiver=has_receiver,
      receiver_kind=receiver_kind,
      node=node,
    )


@dataclass
class InnerSignature:
  """
  Everything needed to declare and call the inner function.
  """

  params: cst.Parameters
  returns: Optional[cst.Annotation]
  call_args: List[cst.Arg]
  receiver: Optional[str] = None
  """Fresh name of the receiver inside the inner function."""


class SignatureSplitter:
  """
  Derives the inner function's signature from the outer one.
  """

  def __init__(self, signature: FunctionSignature, fresh_receiver: Optional[str] = None) -> None:
    """
    Args:
        signature: The parsed outer signature.
        fresh_receiver: Name replacing the receiver; required when the signature has one.
    """
    if signature.has_receiver and not fresh_receiver:
      raise ValueError("A fresh receiver name is required for methods")
    self.signature = signature
    self.fresh_receiver = fresh_receiver

  def split(self) -> InnerSignature:
    """
    Builds the inner parameters, return annotation and call arguments.

    Returns:
        InnerSignature: The derived signature.
    """
    outer = self.signature.node.params
    posonly = [self._inner_param(p) for p in outer.posonly_params]
    params = [self._inner_param(p) for p in outer.params]
    posonly_ind = outer.posonly_ind

    receiver = self.signature.receiver
    if receiver is not None and receiver.kind == ParamKind.POSITIONAL_OR_KEYWORD and outer.star_kwarg is not None:
      # keys of **kwargs must never reach the fresh receiver name
      posonly = [params.pop(0)]
      posonly_ind = cst.MaybeSentinel.DEFAULT

    star_arg = outer.star_arg
    if isinstance(star_arg, cst.Param):
      star_arg = self._inner_param(star_arg)

    inner_params = outer.with_changes(
      posonly_params=posonly,
      posonly_ind=posonly_ind,
      params=params,
      star_arg=star_arg,
      kwonly_params=[self._inner_param(p) for p in outer.kwonly_params],
      star_kwarg=self._inner_param(outer.star_kwarg) if outer.star_kwarg is not None else None,
    )

    return InnerSignature(
      params=inner_params,
      returns=_deferred_annotation(self.signature.node.returns),
      call_args=self._call_args(),
      receiver=self.fresh_receiver if receiver is not None else None,
    )

  def _inner_param(self, param: cst.Param) -> cst.Param:
    changes = {
      "default": None,
      "equal": cst.MaybeSentinel.DEFAULT,
      "comma": cst.MaybeSentinel.DEFAULT,
    }
    if param.annotation is not None:
      changes["annotation"] = _deferred_annotation(param.annotation)
    receiver = self.signature.receiver
    if receiver is not None and param is receiver.node:
      changes["name"] = cst.Name(self.fresh_receiver)
    return param.with_changes(**changes)

  def _call_args(self) -> List[cst.Arg]:
    args = []
    for param in self.signature.parameters:
      value = cst.Name(param.name)
      if param.kind in _POSITIONAL:
        args.append(cst.Arg(value=value))
      elif param.kind == ParamKind.VAR_POSITIONAL:
        args.append(cst.Arg(value=value, star="*"))
      elif param.kind == ParamKind.KEYWORD_ONLY:
        args.append(cst.Arg(value=value, keyword=cst.Name(param.name), equal=_TIGHT_EQUAL))
      else:
        args.append(cst.Arg(value=value, star="**"))
    return args


_POSITIONAL = (ParamKind.POSITIONAL_ONLY, ParamKind.POSITIONAL_OR_KEYWORD)


def _grouped_params(params: cst.Parameters) -> List[Tuple[cst.Param, ParamKind]]:
  grouped = [(p, ParamKind.POSITIONAL_ONLY) for p in params.posonly_params]
  grouped.extend((p, ParamKind.POSITIONAL_OR_KEYWORD) for p in params.params)
  if isinstance(params.star_arg, cst.Param):
    grouped.append((params.star_arg, ParamKind.VAR_POSITIONAL))
  grouped.extend((p, ParamKind.KEYWORD_ONLY) for p in params.kwonly_params)
  if params.star_kwarg is not None:
    grouped.append((params.star_kwarg, ParamKind.VAR_KEYWORD))
  return grouped


def _annotation_text(annotation: Optional[cst.Annotation]) -> Optional[str]:
  if annotation is None:
    return None
  return capture_node_source(annotation.annotation).strip()


def _deferred_annotation(annotation: Optional[cst.Annotation]) -> Optional[cst.Annotation]:
  """
  Rewrites an annotation as a string literal.

  The inner function is defined inside the outer one, where names bound in an
  enclosing class body are not visible, so its annotations must not be
  evaluated.
  """
  if annotation is None or isinstance(annotation.annotation, (cst.SimpleString, cst.ConcatenatedString)):
    return annotation
  return annotation.with_changes(annotation=cst.SimpleString(repr(_annotation_text(annotation))))


def _decorator_name(decorator: cst.Decorator) -> Optional[str]:
  expr = decorator.decorator
  if isinstance(expr, cst.Name):
    return expr.value
  if isinstance(expr, cst.Attribute):
    return expr.attr.value
  return None
