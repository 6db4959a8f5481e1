from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any, Protocol

from openai import OpenAI, OpenAIError

from backend.app.models.extraction_contracts import VideoResult

LOGGER = logging.getLogger("channel_transcripts.summarization")

SYSTEM_INSTRUCTION = (
    "You are an expert YouTube content analyst. Analyze the provided video transcripts to "
    "identify patterns and themes, and answer the user's request in a clear, structured and "
    "insightful way. Reply in well-formatted plain text."
)
TRANSCRIPTS_INTRO = "Here are the transcripts to analyze:"


class SummarizationError(Exception):
    pass


class SummarizerNotConfigured(SummarizationError):
    pass


class InvalidSummaryRequest(SummarizationError):
    pass


class Summarizer(Protocol):
    @property
    def configured(self) -> bool:
        ...

    def summarize(self, prompt: str) -> str:
        ...

    def stream(self, prompt: str) -> Iterator[str]:
        ...


def build_analysis_prompt(transcripts: Sequence[VideoResult], custom_prompt: str) -> str:
    if not transcripts:
        raise InvalidSummaryRequest("At least one transcript is required.")
    if not custom_prompt.strip():
        raise InvalidSummaryRequest("A non-empty prompt is required.")
    combined = "\n\n".join(
        f"--- Video: {transcript.title} ---\n{transcript.transcript}"
        for transcript in transcripts
    )
    return f"{custom_prompt.strip()}\n\n{TRANSCRIPTS_INTRO}\n\n{combined}"


class OpenAISummarizer:
    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        base_url: str | None = None,
        temperature: float = 0.5,
        top_p: float = 0.95,
        client: Any | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url
        self._temperature = temperature
        self._top_p = top_p
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or self._api_key is not None

    def summarize(self, prompt: str) -> str:
        try:
            response = self._get_client().chat.completions.create(
                **self._request_kwargs(prompt),
            )
        except OpenAIError as exc:
            LOGGER.warning("summarization request failed model=%s error=%s", self._model, exc)
            raise SummarizationError(f"LLM request failed: {exc}") from exc

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise SummarizationError("LLM response contained no choices.")
        content = choices[0].message.content
        return content or ""

    def stream(self, prompt: str) -> Iterator[str]:
        try:
            chunks = self._get_client().chat.completions.create(
                **self._request_kwargs(prompt),
                stream=True,
            )
            for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except OpenAIError as exc:
            LOGGER.warning("summarization stream failed model=%s error=%s", self._model, exc)
            raise SummarizationError(f"LLM request failed: {exc}") from exc

    def _request_kwargs(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": SYSTEM_INSTRUCTION},
                {"role": "user", "content": prompt},
            ],
            "temperature": self._temperature,
            "top_p": self._top_p,
        }

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if self._api_key is None:
            raise SummarizerNotConfigured(
                "Server configuration error: the LLM API key is missing."
            )
        self._client = OpenAI(api_key=self._api_key, base_url=self._base_url)
        return self._client
