"""Custom exception hierarchy for aoforge."""


class ForgeError(Exception):
    """Base for all aoforge errors."""


class ConfigError(ForgeError):
    """The project configuration file could not be read or is invalid."""


class ProcessError(ForgeError):
    """An AO process could not be started or stopped."""


class AOSNotInstalledError(ProcessError):
    """The aos binary was not found on PATH."""


class ProcessNotRunningError(ProcessError):
    """The operation needs a running process and none is tracked."""


class EvaluationError(ForgeError):
    """The process rejected or failed an evaluation."""


class EvaluationTimeoutError(EvaluationError):
    """No response arrived before the evaluation timeout."""


class SchedulerError(ForgeError):
    """Base for tick scheduler errors."""


class SchedulerAlreadyRunningError(SchedulerError):
    """start() was called on a scheduler that is already running."""
