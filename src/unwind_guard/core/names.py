"""
Fresh Identifier Allocation.

Generated code introduces a handful of identifiers (renamed receiver, inner
function, guard, result, ...). Each one is derived from a reserved prefix and
checked against every identifier already present in the function and in the
epilogue block, so the generated names can never capture or shadow user code.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Set

from unwind_guard.errors import IdentifierCollision


class FreshNameAllocator:
  """
  Hands out identifiers that are absent from a known set of taken names.

  Allocated names are added to the taken set, so names handed out by one
  allocator are also mutually distinct.
  """

  def __init__(
    self,
    taken: Iterable[str],
    prefix: str = "_unwind_",
    max_attempts: int = 100,
    function: Optional[str] = None,
  ) -> None:
    """
    Initializes the allocator.

    Args:
        taken: Identifiers already used by the code under transformation.
        prefix: Reserved prefix for generated names.
        max_attempts: Number of candidates tried per request.
        function: Name of the function being transformed, for error messages.
    """
    self.taken: Set[str] = set(taken)
    self.prefix = prefix
    self.max_attempts = max_attempts
    self.function = function

  def allocate(self, stem: str) -> str:
    """
    Returns ``<prefix><stem>``, or the first free ``<prefix><stem>_<n>``.

    Args:
        stem: Descriptive part of the name (e.g. ``self``, ``body``).

    Returns:
        str: A fresh identifier.

    Raises:
        IdentifierCollision: If every candidate is already taken.
    """
    base = f"{self.prefix}{stem}"
    for attempt in range(self.max_attempts):
      candidate = base if attempt == 0 else f"{base}_{attempt}"
      if candidate not in self.taken:
        self.taken.add(candidate)
        return candidate
    raise IdentifierCollision(base, self.max_attempts, function=self.function)


@dataclass(frozen=True)
class GeneratedNames:
  """
  The identifiers introduced by one transformation.
  """

  receiver: Optional[str]
  body: str
  guard: str
  result: str
  epilogue: str

  @classmethod
  def allocate(cls, allocator: FreshNameAllocator, guard_stem: str, receiver: Optional[str]) -> "GeneratedNames":
    """
    Allocates every generated identifier from one allocator.

    Args:
        allocator: Allocator seeded with the function's identifiers.
        guard_stem: Stem of the guard variable (``guard`` or ``armed``).
        receiver: Original receiver name, or None for functions without one.

    Returns:
        GeneratedNames: Mutually distinct fresh names.
    """
    return cls(
      receiver=allocator.allocate(receiver) if receiver else None,
      body=allocator.allocate("body"),
      guard=allocator.allocate(guard_stem),
      result=allocator.allocate("result"),
      epilogue=allocator.allocate("epilogue"),
    )
