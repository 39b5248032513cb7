"""
Error taxonomy for the cognitive loop.

Absorbed (recorded, never raised out of execute()):
  SourceUnavailable  — one search provider failed
  ValidationDegraded — one scoring sub-check failed

Propagated to the caller of execute():
  CompilationFailure — the compiler step failed; the loop aborts
  ConfigurationError — missing or invalid configuration; not retried
"""


class CognitiveLoopError(Exception):
    """Base class for all cognitive loop errors."""
    pass


class SourceUnavailable(CognitiveLoopError):
    """A search provider could not be queried (credentials, network, quota)."""

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class ValidationDegraded(CognitiveLoopError):
    """A scoring sub-check failed and fell back to a neutral score."""

    def __init__(self, check: str, reason: str):
        self.check = check
        self.reason = reason
        super().__init__(f"{check}: {reason}")


class CompilationFailure(CognitiveLoopError):
    """Knowledge compilation failed; fatal for the current iteration."""
    pass


class ConfigurationError(CognitiveLoopError):
    """Required configuration is missing or invalid."""
    pass
