"""
Rewriter Package.

Provides the `BodyRewriter`, the LibCST transformer that renames resolved
receiver occurrences inside a function body.
"""

from unwind_guard.core.rewriter.body import BodyRewriter, rewrite_body

__all__ = ["BodyRewriter", "rewrite_body"]
