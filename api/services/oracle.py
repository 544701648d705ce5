"""
Text-classification oracle clients.

The commitment extractor treats the LLM as a bounded, stateless oracle:
one prompt in, one text response out. Two backends share that contract:
- AnthropicOracle: Claude via the Anthropic Messages API (default)
- OllamaOracle: a local Ollama server over HTTP

Clients are created by the caller and passed into the extractor; the
caller owns their lifecycle (see create_oracle / aclose).
"""
import logging
from typing import Any, Optional, Protocol

import anthropic
import httpx

from config.settings import settings

logger = logging.getLogger(__name__)


class OracleError(Exception):
    """Error communicating with the text-classification oracle."""
    pass


class CommitmentOracle(Protocol):
    """Anything that turns a prompt into a response string."""

    async def generate(self, prompt: str) -> str:
        ...


class AnthropicOracle:
    """
    Oracle backed by Claude.

    Uses a low temperature so repeated runs over the same message classify
    it the same way.
    """

    MODEL_HAIKU = "claude-haiku-4-5"
    MODEL_SONNET = "claude-sonnet-4-5"

    def __init__(
        self,
        client: Any = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        max_tokens: int = 1024,
    ):
        """
        Initialize the Anthropic oracle.

        Args:
            client: Pre-built AsyncAnthropic client (default: created lazily)
            model: Claude model to use (default from settings)
            timeout: Request timeout in seconds (default from settings)
            max_tokens: Response token cap
        """
        self._client = client
        self.model = model or settings.oracle_model
        self.timeout = timeout or settings.oracle_timeout
        self.max_tokens = max_tokens

    @property
    def client(self):
        """Lazy-load the Anthropic client."""
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=settings.anthropic_api_key,
                timeout=self.timeout,
                max_retries=0,  # Retries are handled per message by the extractor
            )
        return self._client

    async def generate(self, prompt: str) -> str:
        """
        Send a prompt to Claude and return the text response.

        Raises:
            OracleError: If the API call fails or returns no text
        """
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.1,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise OracleError(f"Timeout calling Anthropic: {e}") from e
        except anthropic.APIConnectionError as e:
            raise OracleError(f"Connection error to Anthropic: {e}") from e
        except anthropic.APIStatusError as e:
            raise OracleError(f"HTTP {e.status_code} from Anthropic: {e}") from e
        except anthropic.APIError as e:
            raise OracleError(f"Error calling Anthropic: {e}") from e

        for block in response.content or []:
            if getattr(block, "type", None) == "text":
                return block.text
        raise OracleError("No text content in Anthropic response")

    async def aclose(self) -> None:
        """Close the underlying HTTP client if one was created."""
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()


class OllamaOracle:
    """
    Oracle backed by a local Ollama server.

    Requests JSON-formatted output so the response parses the same way as
    Claude's.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        """
        Initialize Ollama oracle.

        Args:
            host: Ollama server URL (default from settings)
            model: Model name to use (default from settings)
            timeout: Request timeout in seconds (default from settings)
        """
        self.host = host or settings.ollama_host
        self.model = model or settings.ollama_model
        self.timeout = timeout or settings.oracle_timeout

    async def generate(self, prompt: str) -> str:
        """
        Generate a response from the local LLM.

        Raises:
            OracleError: If communication fails
        """
        url = f"{self.host}/api/generate"
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": 0.1,
                "num_predict": 800,
            }
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict):
                    raise OracleError(f"Unexpected response shape from Ollama: {type(data).__name__}")
                return data.get("response", "")

        except httpx.TimeoutException as e:
            raise OracleError(f"Timeout connecting to Ollama: {e}") from e
        except httpx.ConnectError as e:
            raise OracleError(f"Connection error to Ollama: {e}") from e
        except httpx.HTTPStatusError as e:
            raise OracleError(f"HTTP error from Ollama: {e}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise OracleError(f"Error communicating with Ollama: {e}") from e

    def is_available(self) -> bool:
        """Check if Ollama server is available."""
        try:
            response = httpx.get(f"{self.host}", timeout=2.0)
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def aclose(self) -> None:
        """Nothing to release; a client is opened per request."""
        return None


def create_oracle(provider: Optional[str] = None):
    """
    Build an oracle for the configured provider.

    Args:
        provider: "anthropic" or "ollama" (default from settings)

    Raises:
        ValueError: For an unknown provider
    """
    provider = (provider or settings.oracle_provider).lower()
    if provider == "anthropic":
        return AnthropicOracle()
    if provider == "ollama":
        return OllamaOracle()
    raise ValueError(f"Unknown oracle provider: {provider}")
