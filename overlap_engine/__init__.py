"""
Overlap report engine: two-phase LLM generation with validation and corrective retry.
"""
