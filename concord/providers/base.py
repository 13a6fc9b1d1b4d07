"""Abstract boundary between the invocation layer and a concrete backend."""

from abc import ABC, abstractmethod


class ProviderError(Exception):
    """Raised when a backend call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        self.detail = message
        super().__init__(f"[{provider_name}] {message}")


class Backend(ABC):
    """A language-model backend reachable through a single ``call`` operation."""

    @abstractmethod
    def name(self) -> str:
        """Return the short backend id (e.g. 'gemini', 'claude-cli')."""
        ...

    def identity(self) -> str:
        """Return the physical identity calls are serialized and tracked by.

        Two backend ids that share one exclusive resource (the same local CLI
        process, say) must report the same identity.
        """
        return self.name()

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def call(self, prompt: str, system_prompt: str | None = None) -> str:
        """Send one prompt and return the reply text.

        Raises:
            ProviderError: On API failure, process failure or an unusable reply.
        """
        ...
