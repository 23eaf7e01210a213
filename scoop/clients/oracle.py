"""OpenRouter-backed AI oracle for scoring, deduplication, rewriting and fact-checking."""

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

import aiohttp

from ..core.errors import ExternalSourceError, MalformedResponse, TransientSourceError, ValidationError
from ..core.responses import OracleResult, normalize_response
from ..core.retry import RetryPolicy
from ..models.content import (
    CandidateArticle,
    DuplicateGroup,
    ExternalEvent,
    FactCheckResult,
    GeneratedCopy,
    ScoredResult,
)
from . import prompts

logger = logging.getLogger(__name__)

FACT_CHECK_COMPONENTS = ("factual_accuracy", "context_preservation", "no_misleading_claims")
EVENT_SUMMARY_MAX_WORDS = 50


def _rating(value: Any, name: str) -> float:
    """Coerce a 0-10 rating, clamping out-of-range numbers."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Rating {name} is not a number: {value!r}", missing=(name,))
    return max(0.0, min(10.0, number))


def _truncate_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return text.strip()
    return " ".join(words[:max_words]).rstrip(",;:") + "..."


class OracleClient:
    """Client for the AI oracle behind the OpenRouter chat completions API."""

    def __init__(
        self,
        api_key: Optional[str],
        settings=None,
        model: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the oracle client.

        Args:
            api_key: OpenRouter API key
            settings: Settings instance for configuration values
            model: Model override
            retry_policy: Policy for transient failures (defaults from settings)
        """
        self.api_key = api_key
        self.base_url = settings.openrouter_base_url if settings else "https://openrouter.ai/api/v1"
        self.model = model or (settings.oracle_model if settings else "openai/gpt-4o")
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": "https://stcscoop.com",
            "X-Title": "St. Cloud Scoop",
        }

        if settings:
            self.timeout = settings.oracle_timeout
            self.min_request_interval = settings.oracle_min_request_interval
            max_retries = settings.oracle_max_retries
        else:
            self.timeout = 30.0
            self.min_request_interval = 0.5
            max_retries = 1

        self.retry_policy = retry_policy or RetryPolicy.with_retries(max_retries, base_delay=2.0)
        self.last_request_time = 0.0

    async def _rate_limit_delay(self):
        """Keep a minimum interval between oracle requests."""
        time_since_last = time.monotonic() - self.last_request_time
        if time_since_last < self.min_request_interval:
            delay = self.min_request_interval - time_since_last
            logger.debug(f"Rate limiting: waiting {delay:.1f}s before next oracle request")
            await asyncio.sleep(delay)
        self.last_request_time = time.monotonic()

    async def _complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        """Send one chat completion request and return the message text.

        Raises:
            TransientSourceError: on network errors, timeouts, 429 and 5xx
            ExternalSourceError: on other HTTP errors
            MalformedResponse: when the envelope has no message content
        """
        if not self.api_key:
            raise ExternalSourceError("No OpenRouter API key configured")

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False,
        }

        await self._rate_limit_delay()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.base_url}/chat/completions",
                    headers=self.headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status == 200:
                        data = await response.json(content_type=None)
                    elif response.status == 429 or response.status >= 500:
                        error_text = await response.text()
                        raise TransientSourceError(
                            f"Oracle HTTP {response.status}: {error_text[:200]}",
                            status=response.status,
                        )
                    else:
                        error_text = await response.text()
                        raise ExternalSourceError(
                            f"Oracle HTTP {response.status}: {error_text[:200]}",
                            status=response.status,
                        )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientSourceError(f"Oracle request failed: {e!r}") from e

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise MalformedResponse(f"Unexpected oracle envelope: {e!r}", raw=str(data)[:500])

    async def request(
        self,
        prompt: str,
        expect: str = "object",
        required: Iterable[str] = (),
        max_tokens: int = 500,
        temperature: float = 0.3,
    ) -> OracleResult:
        """Run a prompt and normalize the reply into a tagged result.

        Transient failures are retried by the retry policy; the parsed
        content itself is never retried.
        """
        raw = await self.retry_policy.run(self._complete, prompt, max_tokens, temperature)
        result = normalize_response(raw, expect=expect, required=required)
        if not result.ok:
            logger.warning(f"Oracle returned {result.kind.value} response: {result.error}")
        return result

    async def score(self, candidate: CandidateArticle) -> ScoredResult:
        """Rate a candidate on each scoring criterion (0-10)."""
        result = await self.request(
            prompts.score_prompt(candidate.title, candidate.body),
            expect="object",
            required=prompts.SCORING_CRITERIA,
            max_tokens=200,
        )
        value = result.unwrap()
        criteria = {name: _rating(value[name], name) for name in prompts.SCORING_CRITERIA}
        return ScoredResult(criteria=criteria, reasoning=str(value.get("reasoning", "")))

    async def dedupe(self, candidates: Sequence[CandidateArticle]) -> List[DuplicateGroup]:
        """Group candidates covering the same story.

        Returns:
            Groups of two or more 0-based indices into ``candidates``
        """
        if len(candidates) < 2:
            return []

        items = [f"{c.title} - {(c.body or '')[:200]}" for c in candidates]
        result = await self.request(
            prompts.dedupe_prompt(items), expect="array", max_tokens=1000, temperature=0.1
        )
        groups = []
        claimed = set()
        for entry in result.unwrap():
            if not isinstance(entry, dict):
                raise MalformedResponse(f"Dedup group is not an object: {entry!r}", raw=result.raw)
            indices = [entry.get("primary_article_index")]
            indices.extend(entry.get("duplicate_indices") or [])
            members = []
            for index in indices:
                if isinstance(index, int) and 0 <= index < len(candidates) and index not in claimed:
                    members.append(index)
                    claimed.add(index)
            if len(members) >= 2:
                groups.append(
                    DuplicateGroup(
                        topic_signature=str(entry.get("topic_signature", "")),
                        member_indices=members,
                    )
                )
        return groups

    async def rewrite(self, candidate: CandidateArticle) -> GeneratedCopy:
        """Produce publish-ready copy for a candidate."""
        result = await self.request(
            prompts.rewrite_prompt(candidate.title, candidate.body),
            expect="object",
            required=("headline", "content"),
            max_tokens=600,
            temperature=0.5,
        )
        value = result.unwrap()
        content = str(value["content"]).strip()
        return GeneratedCopy(
            headline=str(value["headline"]).strip(),
            content=content,
            word_count=len(content.split()),
        )

    async def fact_check(self, generated: GeneratedCopy, original: str) -> FactCheckResult:
        """Score generated copy against the source text.

        ``passed`` is derived locally from the summed components.
        """
        result = await self.request(
            prompts.fact_check_prompt(generated.headline, generated.content, original),
            expect="object",
            required=FACT_CHECK_COMPONENTS,
            max_tokens=400,
            temperature=0.1,
        )
        value = result.unwrap()
        components: Dict[str, float] = {
            name: _rating(value[name], name) for name in FACT_CHECK_COMPONENTS
        }
        return FactCheckResult(details=str(value.get("details", "")), **components)

    async def summarize_event(self, event: ExternalEvent) -> str:
        """Short highlight of an event description."""
        result = await self.request(
            prompts.event_summary_prompt(event.title, event.description or "", event.venue or ""),
            expect="object",
            required=("event_summary",),
            max_tokens=200,
        )
        value = result.unwrap()
        return _truncate_words(str(value["event_summary"]), EVENT_SUMMARY_MAX_WORDS)

    async def generate_subject_line(self, headline: str, content: str, max_length: int = 40) -> str:
        """Plain-text subject line for a campaign's lead story."""
        result = await self.request(
            prompts.subject_line_prompt(headline, content, max_length),
            expect="text",
            max_tokens=50,
            temperature=0.8,
        )
        return result.unwrap()
