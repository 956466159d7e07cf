"""
Request helpers for the Flask layer.
"""
