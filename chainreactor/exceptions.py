"""
Service-layer exceptions

The execution core (ProcessRunner, PipelineOrchestrator) never raises; these
are raised by PipelineService and mapped to HTTP / CLI errors by the callers.
"""


class ChainReactorError(Exception):
    """Base class for service-layer errors"""


class PipelineNotFoundError(ChainReactorError, KeyError):
    """No profile with the requested name"""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Pipeline '{self.name}' does not exist"


class EmptyRunListError(ChainReactorError, ValueError):
    """Nothing left to run after filtering"""


class PipelineAlreadyRunningError(ChainReactorError, RuntimeError):
    """A run with the same name is still active"""

    def __init__(self, name: str):
        super().__init__(f"Pipeline '{name}' is already running")
        self.name = name
