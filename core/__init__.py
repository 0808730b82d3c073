"""Core module - record models, configuration, audit and observability.

Shared by the entity store and the migration engine. Nothing in here knows
about individual migration passes.
"""

__version__ = "1.0.0"
