"""
Batch Kernel - execution history store for batch jobs

Records job instances, job executions and step executions with:
- Atomic named sequences for every identifier
- Restart decisions (already running / already complete / unknown)
- Optimistic concurrency on one shared version per execution
- Single-document atomic writes only
"""

__version__ = "0.1.0"
