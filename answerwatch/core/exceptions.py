"""Domain exceptions raised by the execution pipeline."""


class AnswerWatchError(Exception):
    """Base class for pipeline errors."""


class BusinessNotFoundError(AnswerWatchError):
    def __init__(self, business_id: int):
        super().__init__(f"Business {business_id} not found")
        self.business_id = business_id


class PromptNotFoundError(AnswerWatchError):
    def __init__(self, prompt_id: int, message: str | None = None):
        super().__init__(message or f"Prompt {prompt_id} not found")
        self.prompt_id = prompt_id


class PlatformConfigurationError(AnswerWatchError):
    """Unknown platform key, unsupported provider or missing credential."""


class ProviderError(AnswerWatchError):
    """A provider call failed after its retries were exhausted."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class AnalysisUnavailableError(AnswerWatchError):
    """No credential is available for the combined analysis model."""
