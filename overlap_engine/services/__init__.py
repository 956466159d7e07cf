"""
Generation services: style registry, validators, phases and orchestrator.
"""
