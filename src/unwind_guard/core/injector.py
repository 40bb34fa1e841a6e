"""
Epilogue Injection.

Assembles the final function from the rewritten body and the split
signature. The new body always follows the same order:

1.  Declare the guard whose release runs the epilogue.
2.  Declare the inner function holding the original body.
3.  Call it with the outer function's own arguments.
4.  Disarm the guard.
5.  Return the result.

Only step 3 can raise; steps 4 and 5 are reached on the value-producing path
alone, so every ``return`` of the original body skips the epilogue while any
exception leaving the call runs it exactly once.

Two guard shapes are supported (see `GuardStyle`): a ``contextlib.ExitStack``
(``contextlib.AsyncExitStack`` for coroutine functions) whose callback is
detached with ``pop_all()``, and a ``try/finally`` with an armed flag.
"""

import textwrap
from typing import List, Optional, Sequence, Tuple, Union

import libcst as cst

from unwind_guard.config import TransformConfig
from unwind_guard.core.names import GeneratedNames
from unwind_guard.core.signature import FunctionSignature, InnerSignature
from unwind_guard.enums import GuardStyle
from unwind_guard.errors import UnsupportedSignatureShape

Epilogue = Union[str, Sequence[cst.BaseStatement]]


def parse_epilogue(epilogue: Epilogue) -> List[cst.BaseStatement]:
  """
  Normalises the caller's epilogue into a list of statements.

  The block is injected as given; it is only parsed, never inspected.

  Args:
      epilogue: Python source text or LibCST statements.

  Returns:
      List[cst.BaseStatement]: Statements, ``pass`` when the block is empty.
  """
  if isinstance(epilogue, str):
    stmts = list(cst.parse_module(textwrap.dedent(epilogue)).body)
  else:
    stmts = list(epilogue)
  return stmts or [_pass()]


def is_docstring(stmt: cst.CSTNode) -> bool:
  """Checks if a statement is a bare string literal."""
  return (
    isinstance(stmt, cst.SimpleStatementLine)
    and len(stmt.body) == 1
    and isinstance(stmt.body[0], cst.Expr)
    and isinstance(stmt.body[0].value, (cst.SimpleString, cst.ConcatenatedString))
  )


def as_indented_block(body: cst.BaseSuite) -> cst.IndentedBlock:
  """
  Converts one-line bodies (``def f(): return 1``) into indented blocks.

  Args:
      body: Function body.

  Returns:
      cst.IndentedBlock: The same statements as an indented block.
  """
  if isinstance(body, cst.SimpleStatementSuite):
    return cst.IndentedBlock(body=[cst.SimpleStatementLine(body=[stmt]) for stmt in body.body])
  return body


def split_docstring(block: cst.IndentedBlock) -> Tuple[Optional[cst.BaseStatement], cst.IndentedBlock]:
  """
  Separates a leading docstring from the rest of the body.

  Args:
      block: Function body.

  Returns:
      Tuple: (docstring statement or None, remaining block)
  """
  stmts = list(block.body)
  if stmts and is_docstring(stmts[0]):
    rest = stmts[1:] or [_pass()]
    return stmts[0], block.with_changes(body=rest, header=cst.TrailingWhitespace())
  return None, block.with_changes(header=cst.TrailingWhitespace())


class EpilogueInjector:
  """
  Builds the guarded function body.
  """

  def __init__(self, config: Optional[TransformConfig] = None) -> None:
    self.config = config or TransformConfig()

  def inject(
    self,
    node: cst.FunctionDef,
    signature: FunctionSignature,
    inner: InnerSignature,
    body: cst.BaseSuite,
    names: GeneratedNames,
    epilogue: List[cst.BaseStatement],
  ) -> cst.FunctionDef:
    """
    Produces the transformed function.

    Args:
        node: The original function definition (name, decorators, params are kept).
        signature: Parsed outer signature.
        inner: Derived inner signature.
        body: The receiver-rewritten body.
        names: Generated identifiers.
        epilogue: Statements to run on abnormal exit.

    Returns:
        cst.FunctionDef: The transformed function.

    Raises:
        UnsupportedSignatureShape: If a parameter hides the guard factory's module.
    """
    docstring, inner_block = split_docstring(as_indented_block(body))

    inner_def = cst.FunctionDef(
      name=cst.Name(names.body),
      params=inner.params,
      body=inner_block,
      returns=inner.returns,
      asynchronous=cst.Asynchronous() if signature.is_async else None,
    )

    call: cst.BaseExpression = cst.Call(func=cst.Name(names.body), args=inner.call_args)
    if signature.is_async:
      call = cst.Await(expression=call)
    invoke = cst.SimpleStatementLine(
      body=[cst.Assign(targets=[cst.AssignTarget(target=cst.Name(names.result))], value=call)]
    )
    ret = cst.SimpleStatementLine(body=[cst.Return(value=cst.Name(names.result))])

    if self.config.guard_style == GuardStyle.FLAG:
      guarded = self._flag_guard(names, inner_def, invoke, ret, epilogue)
    else:
      self._check_factory_visible(signature)
      guarded = self._exit_stack_guard(names, inner_def, invoke, ret, epilogue, signature.is_async)

    outer_stmts = [docstring] if docstring is not None else []
    outer_stmts.extend(guarded)
    header = body.header if isinstance(body, cst.IndentedBlock) else cst.TrailingWhitespace()
    return node.with_changes(body=cst.IndentedBlock(body=outer_stmts, header=header))

  def _exit_stack_guard(
    self,
    names: GeneratedNames,
    inner_def: cst.FunctionDef,
    invoke: cst.SimpleStatementLine,
    ret: cst.SimpleStatementLine,
    epilogue: List[cst.BaseStatement],
    is_async: bool = False,
  ) -> List[cst.BaseStatement]:
    """
    with <factory>() as guard:
        @guard.callback
        def epilogue(): ...
        def body(...): ...
        result = body(...)
        guard.pop_all()
        return result

    Coroutine functions get ``async with`` over the async factory and an
    ``async def`` epilogue registered with ``push_async_callback``, so the
    epilogue may ``await``.
    """
    register = "push_async_callback" if is_async else "callback"
    asynchronous = cst.Asynchronous() if is_async else None
    callback = cst.FunctionDef(
      name=cst.Name(names.epilogue),
      params=cst.Parameters(),
      body=cst.IndentedBlock(body=epilogue),
      decorators=[cst.Decorator(decorator=cst.parse_expression(f"{names.guard}.{register}"))],
      asynchronous=asynchronous,
    )
    disarm = cst.parse_statement(f"{names.guard}.pop_all()")
    guard = cst.With(
      items=[
        cst.WithItem(
          item=cst.parse_expression(f"{self.config.factory_for(is_async)}()"),
          asname=cst.AsName(name=cst.Name(names.guard)),
        )
      ],
      body=cst.IndentedBlock(body=[callback, inner_def, invoke, disarm, ret]),
      asynchronous=asynchronous,
    )
    return [guard]

  def _flag_guard(
    self,
    names: GeneratedNames,
    inner_def: cst.FunctionDef,
    invoke: cst.SimpleStatementLine,
    ret: cst.SimpleStatementLine,
    epilogue: List[cst.BaseStatement],
  ) -> List[cst.BaseStatement]:
    """
    armed = True
    def body(...): ...
    try:
        result = body(...)
        armed = False
        return result
    finally:
        if armed: ...
    """
    arm = cst.parse_statement(f"{names.guard} = True")
    disarm = cst.parse_statement(f"{names.guard} = False")
    release = cst.If(test=cst.Name(names.guard), body=cst.IndentedBlock(body=epilogue))
    guarded = cst.Try(
      body=cst.IndentedBlock(body=[invoke, disarm, ret]),
      finalbody=cst.Finally(body=cst.IndentedBlock(body=[release])),
    )
    return [arm, inner_def, guarded]

  def _check_factory_visible(self, signature: FunctionSignature) -> None:
    factory = self.config.factory_for(signature.is_async)
    root = factory.split(".")[0]
    if any(p.name == root for p in signature.parameters):
      raise UnsupportedSignatureShape(
        f"parameter '{root}' hides the guard factory {factory}",
        function=signature.name,
      )


def _pass() -> cst.SimpleStatementLine:
  return cst.SimpleStatementLine(body=[cst.Pass()])
