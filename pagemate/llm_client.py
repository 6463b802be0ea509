"""Ollama client for the locally hosted language model and embeddings."""
import httpx
from typing import List, Dict, Optional
import structlog

from pagemate import config

logger = structlog.get_logger()


class LanguageModelUnavailable(RuntimeError):
    """The local model service could not be reached or returned nothing."""


class OllamaClient:
    """Async client for interacting with the Ollama API."""

    def __init__(self, base_url: str = None, timeout: float = None):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.LLM_TIMEOUT)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.LLM_TIMEOUT

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> Dict:
        """Send a non-streaming chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            LanguageModelUnavailable: If Ollama cannot be reached, times out
                or answers with an error status
            httpx.HTTPError: On other API errors
        """
        model = model or config.CHAT_MODEL

        payload = {
            "model": model,
            "messages": messages,
            "stream": False,
        }
        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                )
                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()
                data = response.json()

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise LanguageModelUnavailable(f"Language model unavailable: {e}") from e
        except httpx.TimeoutException as e:
            logger.error("ollama_timeout", error=str(e), model=model, timeout=self.timeout)
            raise LanguageModelUnavailable(f"Language model timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "ollama_http_status_error",
                error=str(e),
                status_code=e.response.status_code,
            )
            raise LanguageModelUnavailable(
                f"Language model returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "ollama_http_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

        logger.info(
            "ollama_chat_response",
            model=model,
            response_length=len(data.get("message", {}).get("content", "")),
        )
        return data

    async def complete(self, prompt: str, system: Optional[str] = None, **kwargs) -> str:
        """Prompt the model and return the answer text.

        Raises:
            LanguageModelUnavailable: If the service is down or the answer is empty
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        data = await self.chat(messages, **kwargs)
        answer = data.get("message", {}).get("content", "")
        if not answer:
            logger.error("empty_ollama_response", response=data)
            raise LanguageModelUnavailable("Empty response from language model")
        return answer

    async def embeddings(self, prompt: str, model: str = None) -> Dict:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'embedding' list

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.EMBEDDING_MODEL

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.debug("ollama_embedding_request", model=model, prompt_length=len(prompt))
                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": model, "prompt": prompt},
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise

        logger.debug(
            "ollama_embedding_response",
            model=model,
            dimension=len(data.get("embedding", [])),
        )
        return data

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise


# Global client instance
ollama_client = OllamaClient()
