"""
Static analysis passes run before any rewriting.
"""

from unwind_guard.analysis.resolver import ReceiverResolver, Resolution, resolve_receiver
from unwind_guard.analysis.scope_report import ScopeIssue, ScopeReport

__all__ = ["ReceiverResolver", "Resolution", "resolve_receiver", "ScopeIssue", "ScopeReport"]
