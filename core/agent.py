"""
Chat Agent - Default response generator

Answers chat messages through an OpenAI-compatible chat completions endpoint
and keeps a bounded conversation memory per (user, thread).

@.architecture
Incoming: ws/handlers.py (generator callable), app.py, config/settings.py --- {str input, str user_id, str thread_id, AgentSettings}
Processing: start(), run(), _build_messages(), _remember(), stop(), get_health_status() --- {4 jobs: conversation_memory, completion_request, response_extraction, lifecycle_management}
Outgoing: ws/handlers.py, monitoring/health.py --- {Dict {"text_response": str}, health status dict}
"""

from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Tuple

import httpx

from config.settings import AgentSettings
from monitoring import get_logger
from utils.http import HTTPClient, HTTPClientConfig

logger = get_logger(__name__)


class AgentError(Exception):
    """Raised when the agent cannot produce a response."""
    pass


class ChatAgent:
    """
    Conversational agent backed by a chat completions API.

    Usage:
        agent = ChatAgent(settings.agent)
        await agent.start()
        result = await agent.run("Hello", "user@example.com", "thread-1")
        # {"text_response": "..."}
    """

    def __init__(
        self,
        settings: Optional[AgentSettings] = None,
        http_client: Optional[HTTPClient] = None,
    ):
        """
        Initialize agent.

        Args:
            settings: Model endpoint and prompt configuration
            http_client: HTTP client (built from settings if None)
        """
        self.settings = settings or AgentSettings()
        self.http_client = http_client or HTTPClient(
            HTTPClientConfig(read_timeout=self.settings.request_timeout)
        )
        self._memory: Dict[Tuple[str, str], Deque[Dict[str, str]]] = defaultdict(
            lambda: deque(maxlen=self.settings.max_history_messages)
        )
        self._started = False
        self._requests = 0
        self._failures = 0

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Mark the agent ready to serve requests."""
        self._started = True
        logger.info(f"Chat agent started (model={self.settings.model})")

    async def stop(self) -> None:
        """Close the HTTP client and stop serving."""
        self._started = False
        await self.http_client.close()
        logger.info("Chat agent stopped")

    async def run(self, input: str, user_id: str, thread_id: str) -> Dict[str, Any]:
        """
        Generate a reply for one chat message.

        Args:
            input: User message text
            user_id: Principal user id
            thread_id: Conversation thread id

        Returns:
            {"text_response": <assistant text>}

        Raises:
            AgentError: If the agent is not started, the request fails,
                or the response is malformed
        """
        if not self._started:
            raise AgentError("Agent not initialized")

        key = (user_id, thread_id)
        messages = self._build_messages(key, input)
        self._requests += 1

        try:
            response = await self.http_client.post(
                f"{self.settings.api_base.rstrip('/')}/chat/completions",
                json={
                    "model": self.settings.model,
                    "messages": messages,
                    "max_tokens": self.settings.max_tokens,
                    "temperature": self.settings.temperature,
                },
                headers={"Authorization": f"Bearer {self.settings.api_key}"},
            )
            text = self._extract_text(response.json())
        except httpx.HTTPError as e:
            self._failures += 1
            raise AgentError(f"Completion request failed: {e}") from e
        except ValueError as e:
            self._failures += 1
            raise AgentError(f"Malformed completion response: {e}") from e

        self._remember(key, input, text)
        logger.debug(f"Agent replied on thread {thread_id} ({len(text)} chars)")
        return {"text_response": text}

    __call__ = run

    def get_history(self, user_id: str, thread_id: str) -> List[Dict[str, str]]:
        return list(self._memory.get((user_id, thread_id), ()))

    def clear_history(self, user_id: str, thread_id: Optional[str] = None) -> None:
        """Forget one thread, or every thread of a user when thread_id is None."""
        for key in list(self._memory):
            if key[0] == user_id and (thread_id is None or key[1] == thread_id):
                del self._memory[key]

    def get_health_status(self) -> Dict[str, Any]:
        return {
            'healthy': self._started,
            'message': 'Agent ready' if self._started else 'Agent not initialized',
            'model': self.settings.model,
            'threads': len(self._memory),
            'requests': self._requests,
            'failures': self._failures,
        }

    # Private helpers

    def _build_messages(self, key: Tuple[str, str], input: str) -> List[Dict[str, str]]:
        messages = [{"role": "system", "content": self.settings.system_prompt}]
        messages.extend(self._memory.get(key, ()))
        messages.append({"role": "user", "content": input})
        return messages

    def _remember(self, key: Tuple[str, str], input: str, text: str) -> None:
        history = self._memory[key]
        history.append({"role": "user", "content": input})
        history.append({"role": "assistant", "content": text})

    @staticmethod
    def _extract_text(payload: Any) -> str:
        """
        Pull the assistant text out of a chat completions payload.

        Raises:
            ValueError: If the payload has no assistant message content
        """
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"missing choices[0].message.content ({e})") from e
        if not isinstance(content, str):
            raise ValueError("assistant content is not text")
        return content
