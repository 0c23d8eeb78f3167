"""
Higher-level methods to reconcile and drive the services of installed packages.

Each public function in this module should:

- perform a complete task, as needed by an install, refresh or removal workflow
- avoid non-idempotent calls unless required by a prior state change
- take a `Backend` for any managers or sinks needed by plumbing
"""
