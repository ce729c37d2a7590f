"""Core Application Layer.

Contains the reconciler, the diff evaluator and the command handler that
orchestrate domain objects and infrastructure services.
"""
