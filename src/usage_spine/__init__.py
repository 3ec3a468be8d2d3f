"""
usage-spine - local usage tracking with reliable push synchronization.

Layers (top to bottom)::

    usage_spine.cli     typer commands: push, push-status, config, db
    usage_spine.ops     operation functions returning OperationResult
    usage_spine.push    selector, builder, transport, reconciler, controller
    usage_spine.core    errors, logging, settings, namespace, ORM
"""

__version__ = "0.1.0"
