"""Provider capability interface.

A provider turns a prompt into its service's request body, sends it, and pulls
the reply text out of the service's response envelope. The dispatcher only
talks to this interface; adding a provider means registering a new adapter.
"""

from abc import ABC, abstractmethod
from typing import Any


class InsightProvider(ABC):
    """Adapter for one remote AI service.

    Attributes:
        provider_id: Registry key, also the credential id for its API key.
        display_name: Human-readable name.
        model: Model identifier sent with each request.
    """

    provider_id: str
    display_name: str
    model: str

    @property
    def credential_id(self) -> str:
        """Credential store id holding this provider's key."""
        return self.provider_id

    @abstractmethod
    def build_request(
        self,
        prompt: str,
        *,
        system: str = "",
        temperature: float = 0.3,
        max_tokens: int = 800,
    ) -> dict[str, Any]:
        """Build the JSON request body for a prompt."""
        ...

    @abstractmethod
    def parse_response(self, payload: dict[str, Any]) -> str:
        """Extract the reply text from a response envelope.

        Raises:
            ResponseParseFailed: If the envelope has no reply text.
        """
        ...

    @abstractmethod
    async def send(self, body: dict[str, Any], api_key: str) -> dict[str, Any]:
        """POST a request body and return the decoded response envelope.

        Raises:
            ProviderRequestFailed: On transport, HTTP or timeout failure.
        """
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(provider_id={self.provider_id!r}, model={self.model!r})"
