"""Error taxonomy shared by the stores, the gateway and the HTTP layer."""


class MoodMusicError(Exception):
    pass


class ValidationError(MoodMusicError):
    """Malformed input, rejected before any I/O happens."""


class StorageError(MoodMusicError):
    """A read or write against the local database failed."""


class ProviderError(MoodMusicError):
    def __init__(self, provider: str, message: str):
        super().__init__(f"[{provider}] {message}")
        self.provider = provider


class ProviderAuthError(ProviderError):
    """Credential or token failure for one external provider."""


class ProviderRequestError(ProviderError):
    """Timeout, rate limit or malformed response from a provider."""
