"""
Remote Reasoning Service Clients

Two interchangeable clients fulfil the same contract:
    POST {sessionId, agentId, utterance, history} -> {text, feedback, audioUrl?}

- HttpReasoningClient talks to the conversation backend over HTTP (httpx)
- OpenAIReasoningClient asks a chat model directly for the same JSON shape

Every failure mode (transport error, non-2xx, malformed body) is raised as
RemoteServiceError so ConnectionManager has a single thing to absorb.
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from language_peer.errors import InvalidAgentError, RemoteServiceError
from language_peer.logger import get_logger
from language_peer.models import Feedback
from language_peer.personalities import PersonalityCatalog, get_default_catalog

logger = get_logger("language_peer.remote")

CONVERSATION_PATH = "/conversation"
HEALTH_PATH = "/health"


# ==================== Wire Models ====================

class RemoteFeedback(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    grammar_score: float = Field(default=0, alias="grammarScore")
    fluency_score: float = Field(default=0, alias="fluencyScore")
    vocabulary_score: float = Field(default=0, alias="vocabularyScore")
    suggestions: List[str] = Field(default_factory=list)
    corrections: List[str] = Field(default_factory=list)
    encouragement: str = ""

    @field_validator("grammar_score", "fluency_score", "vocabulary_score")
    @classmethod
    def clamp(cls, value: float) -> float:
        return max(0.0, min(100.0, value))

    def to_feedback(self) -> Feedback:
        return Feedback(
            grammar_score=self.grammar_score,
            fluency_score=self.fluency_score,
            vocabulary_score=self.vocabulary_score,
            suggestions=tuple(self.suggestions),
            corrections=tuple(self.corrections),
            encouragement=self.encouragement,
        )


class RemoteReasoningRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")
    agent_id: str = Field(alias="agentId")
    utterance: str
    history: List[Dict[str, str]] = Field(default_factory=list)


class RemoteReasoningResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(min_length=1)
    feedback: Optional[RemoteFeedback] = None
    audio_url: Optional[str] = Field(default=None, alias="audioUrl")


# ==================== Clients ====================

class ReasoningClient:
    """Base contract for remote reasoning backends."""

    async def respond(self, request: RemoteReasoningRequest) -> RemoteReasoningResponse:
        raise NotImplementedError

    async def health_check(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


class HttpReasoningClient(ReasoningClient):
    """
    HTTP client for the conversation backend.

    Args:
        base_url: service root, e.g. https://api.example.com/development
        timeout_s: per-request timeout handed to httpx
        client: pre-built httpx.AsyncClient (tests pass one with MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 4.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._client = client or httpx.AsyncClient(
            timeout=timeout_s,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    async def respond(self, request: RemoteReasoningRequest) -> RemoteReasoningResponse:
        url = f"{self.base_url}{CONVERSATION_PATH}"
        try:
            resp = await self._client.post(url, json=request.model_dump(by_alias=True))
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Request to {url} failed: {e}") from e

        if resp.status_code >= 400:
            raise RemoteServiceError(f"HTTP error! status: {resp.status_code}")

        try:
            return RemoteReasoningResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise RemoteServiceError(f"Malformed response body: {e}") from e

    async def health_check(self) -> bool:
        try:
            resp = await self._client.get(f"{self.base_url}{HEALTH_PATH}")
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return resp.status_code < 400

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAIReasoningClient(ReasoningClient):
    """
    Chat-model backend producing {text, feedback} in the agent's voice.

    Uses a lightweight model; the reply and the feedback come from one call.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o-mini",
        catalog: Optional[PersonalityCatalog] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.catalog = catalog or get_default_catalog()
        self.llm_client = client or AsyncOpenAI(api_key=api_key)

    def build_messages(self, request: RemoteReasoningRequest) -> List[Dict[str, str]]:
        try:
            personality = self.catalog.get(request.agent_id)
        except InvalidAgentError as e:
            raise RemoteServiceError(str(e)) from e

        system = f"""You are {personality.display_name}, a language practice partner.
{personality.description}
Traits: {", ".join(personality.traits)}.

Reply to the learner in character, in one to three short spoken sentences (no markdown).
Then assess the learner's LAST message.

Return ONLY a JSON object with this exact format:
{{"text": "your reply", "feedback": {{"grammarScore": 0-100, "fluencyScore": 0-100,
"vocabularyScore": 0-100, "suggestions": ["..."], "corrections": ["..."],
"encouragement": "one sentence"}}}}

Do not include any other text."""

        messages = [{"role": "system", "content": system}]
        for entry in request.history:
            role = "assistant" if entry.get("role") == "agent" else "user"
            messages.append({"role": role, "content": entry.get("text", "")})
        messages.append({"role": "user", "content": request.utterance})
        return messages

    async def respond(self, request: RemoteReasoningRequest) -> RemoteReasoningResponse:
        try:
            completion = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(request),
                temperature=0.7,
                max_tokens=300,
            )
        except OpenAIError as e:
            raise RemoteServiceError(f"Chat completion failed: {e}") from e

        if not completion.choices:
            raise RemoteServiceError("Chat completion returned no choices")
        content = (completion.choices[0].message.content or "").strip()
        return self.parse_content(content)

    @staticmethod
    def parse_content(content: str) -> RemoteReasoningResponse:
        # Models sometimes wrap the JSON in prose or code fences
        json_match = re.search(r"\{.*\}", content, re.DOTALL)
        json_str = json_match.group(0) if json_match else content
        try:
            data: Any = json.loads(json_str)
            return RemoteReasoningResponse.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise RemoteServiceError(f"Model returned unusable content: {e}") from e

    async def health_check(self) -> bool:
        try:
            await self.llm_client.models.retrieve(self.model)
        except OpenAIError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return True

    async def aclose(self) -> None:
        await self.llm_client.close()
