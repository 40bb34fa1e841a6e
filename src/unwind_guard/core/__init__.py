"""
Core transformation logic: signature splitting, rewriting, injection and the engine.
"""
