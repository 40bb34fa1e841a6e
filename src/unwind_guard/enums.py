"""
Enumerations for unwind-guard.

This module defines the enumerations shared by the analysis passes, the
signature model and the code generator.
"""

from enum import Enum


class GuardStyle(str, Enum):
  """
  Shape of the guard emitted around the inner invocation.
  """

  EXIT_STACK = "exit_stack"  # with ExitStack() ... guard.pop_all()
  FLAG = "flag"  # try/finally with an armed flag


class ReceiverKind(str, Enum):
  """
  How the first parameter of a function is bound by the caller.
  """

  INSTANCE = "instance"  # self
  CLASS = "class"  # cls
  NONE = "none"  # free function or staticmethod


class ParamKind(str, Enum):
  """
  Parameter groups of a Python signature, in declaration order.
  """

  POSITIONAL_ONLY = "positional_only"
  POSITIONAL_OR_KEYWORD = "positional_or_keyword"
  VAR_POSITIONAL = "var_positional"
  KEYWORD_ONLY = "keyword_only"
  VAR_KEYWORD = "var_keyword"


class ScopeKind(str, Enum):
  """
  Kinds of frames pushed on the resolver's scope stack.
  """

  FUNCTION = "function"
  LAMBDA = "lambda"
  CLASS = "class"
  COMPREHENSION = "comprehension"


class FailurePolicy(str, Enum):
  """
  What the engine does when a selected function cannot be transformed.
  """

  ABORT = "abort"  # emit nothing, return the original source
  SKIP = "skip"  # leave the failing function verbatim
