"""Infrastructure Layer.

Contains concrete implementations of domain interfaces (adapters) and
technical services like resilience, configuration, logging and display.
"""
