"""
unwind-guard Package.

A deterministic source-to-source transformer that makes a function run an
epilogue when an exception propagates out of it, and only then. Every normal
exit, including early ``return`` statements, skips the epilogue.

The original body is moved into a nested, capture-free function. References
to the method receiver (``self``/``cls``) are renamed with scope awareness so
that nested functions, lambdas, classes and comprehensions that rebind the
same name are left alone.

Usage
-----

Simple String Transformation
^^^^^^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    import unwind_guard

    code = '''
    class Account:
        def withdraw(self, amount):
            if amount > self.balance:
                raise ValueError("insufficient funds")
            self.balance -= amount
            return self.balance
    '''
    print(unwind_guard.transform(code, ["Account.withdraw"], "audit.record_failure()"))

Single Function (LibCST)
^^^^^^^^^^^^^^^^^^^^^^^^

.. code-block:: python

    import libcst as cst
    from unwind_guard import transform_function

    func = cst.parse_statement("def f(x):\\n    return x\\n")
    new_func = transform_function(func, "log.error('f failed')")
"""

from typing import Iterable, Optional

from unwind_guard.config import TransformConfig
from unwind_guard.core.engine import EpilogueEngine
from unwind_guard.core.injector import Epilogue
from unwind_guard.core.result import TransformResult
from unwind_guard.core.transform import EpilogueTransformer, transform_function
from unwind_guard.enums import FailurePolicy, GuardStyle
from unwind_guard.errors import (
  IdentifierCollision,
  ResolutionAmbiguous,
  TransformError,
  UnsupportedSignatureShape,
)

__version__ = "0.1.0"


def transform(
  code: str,
  targets: Iterable[str],
  epilogue: Epilogue,
  config: Optional[TransformConfig] = None,
) -> str:
  """
  Guards the selected functions of a module with an abnormal-exit epilogue.

  This is a high-level convenience wrapper around `EpilogueEngine`.

  Args:
      code (str): The module source code.
      targets (Iterable[str]): Qualified names of the functions to transform
          (e.g. ``"Account.withdraw"``).
      epilogue (Epilogue): Statements to run when an exception leaves a target.
      config (TransformConfig, optional): Configuration. Defaults to the
          ``[tool.unwind_guard]`` table of the nearest ``pyproject.toml``.

  Returns:
      str: The transformed source code.

  Raises:
      ValueError: If the run fails (syntax errors, unknown targets, or
          functions that cannot be transformed under the abort policy).
  """
  engine = EpilogueEngine(config=config)
  result = engine.run(code, targets, epilogue)

  if not result.success:
    error_msg = "\n".join(result.errors)
    raise ValueError(f"Transformation failed:\n{error_msg}")

  return result.code


__all__ = [
  "transform",
  "transform_function",
  "EpilogueEngine",
  "EpilogueTransformer",
  "TransformConfig",
  "TransformResult",
  "GuardStyle",
  "FailurePolicy",
  "TransformError",
  "ResolutionAmbiguous",
  "IdentifierCollision",
  "UnsupportedSignatureShape",
  "__version__",
]
