"""
Completion Gateway - OpenAI API wrapper for the chat core

Provides:
- Freeform chat completion (plain or streamed and concatenated)
- Assistant-thread completion with a bounded, backed-off status poll
- File upload and assistant build over a set of file ids
- Retries for transient errors
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from openai import AsyncOpenAI, APIError, RateLimitError, APIConnectionError

from copilot.config import settings
from copilot.errors import CompletionTimeout, UpstreamFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

FAILED_RUN_STATUSES = {"failed", "cancelled", "expired", "incomplete"}


def normalize_response(text: str) -> str:
    """Strip at most two leading newlines. Nothing else is touched."""
    for _ in range(2):
        if text.startswith("\n"):
            text = text[1:]
        else:
            break
    return text


class CompletionGateway:
    """
    Completion provider used by the chat orchestrator and the file tracker.

    The OpenAI client is created once by the application and handed in.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        chat_model: Optional[str] = None,
        assistant_model: Optional[str] = None,
        system_preamble: Optional[str] = None,
        poll_timeout: Optional[float] = None,
        poll_initial_delay: Optional[float] = None,
        poll_max_delay: Optional[float] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        self.client = client
        self.chat_model = chat_model or settings.chat_model
        self.assistant_model = assistant_model or settings.assistant_model
        self.system_preamble = system_preamble if system_preamble is not None else settings.system_preamble
        self.poll_timeout = poll_timeout if poll_timeout is not None else settings.run_poll_timeout
        self.poll_initial_delay = poll_initial_delay if poll_initial_delay is not None else settings.run_poll_initial_delay
        self.poll_max_delay = poll_max_delay if poll_max_delay is not None else settings.run_poll_max_delay
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    # ------------------------------------------------------------------
    # Freeform completion
    # ------------------------------------------------------------------
    def build_messages(self, prior_turns: Sequence[Dict[str, str]], prompt: str) -> List[Dict[str, str]]:
        """System preamble, then the stored turns, then the new prompt."""
        return [
            {"role": "system", "content": self.system_preamble},
            *({"role": t["role"], "content": t["content"]} for t in prior_turns),
            {"role": "user", "content": prompt},
        ]

    async def complete_freeform(
        self,
        prior_turns: Sequence[Dict[str, str]],
        prompt: str,
        stream: bool = False,
    ) -> str:
        """
        Generate a chat completion over the given turns.

        Args:
            prior_turns: Stored role-tagged turns, oldest first
            prompt: The new user prompt
            stream: Stream the completion and concatenate fragments in order

        Returns:
            The raw completion text (not normalized)
        """
        messages = self.build_messages(prior_turns, prompt)

        if not stream:
            async def _complete() -> str:
                response = await self.client.chat.completions.create(
                    model=self.chat_model,
                    messages=messages,
                    top_p=settings.freeform_top_p,
                )
                return response.choices[0].message.content or ""

            return await self._with_retry("chat completion", _complete)

        async def _stream() -> str:
            parts: List[str] = []
            response = await self.client.chat.completions.create(
                model=self.chat_model,
                messages=messages,
                top_p=settings.stream_top_p,
                stream=True,
            )
            async for chunk in response:
                if chunk.choices and chunk.choices[0].delta.content:
                    parts.append(chunk.choices[0].delta.content)
            return "".join(parts)

        return await self._with_retry("streamed chat completion", _stream)

    # ------------------------------------------------------------------
    # Assistant completion
    # ------------------------------------------------------------------
    async def complete_with_assistant(self, assistant_id: str, prompt: str) -> str:
        """
        Run the prompt on a fresh thread of the given assistant.

        Raises:
            CompletionTimeout: the run did not complete before the deadline
            UpstreamFailure: the run ended in a failure status
        """
        thread = await self._with_retry(
            "thread create",
            lambda: self.client.beta.threads.create(
                messages=[{"role": "user", "content": prompt}]
            ),
        )
        run = await self._with_retry(
            "run create",
            lambda: self.client.beta.threads.runs.create(thread.id, assistant_id=assistant_id),
        )

        await self._wait_for_run(thread.id, run.id, run.status)

        messages = await self._with_retry(
            "message list",
            lambda: self.client.beta.threads.messages.list(thread.id),
        )
        try:
            return messages.data[0].content[0].text.value
        except (IndexError, AttributeError) as e:
            logger.error(f"Assistant thread {thread.id} returned no text: {e}")
            raise UpstreamFailure("Assistant returned no text")

    async def _wait_for_run(self, thread_id: str, run_id: str, status: str) -> None:
        deadline = time.monotonic() + self.poll_timeout
        delay = self.poll_initial_delay

        while status != "completed":
            if status in FAILED_RUN_STATUSES:
                logger.error(f"Assistant run {run_id} ended with status {status}")
                raise UpstreamFailure(f"Assistant run {status}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Assistant run {run_id} still {status} after {self.poll_timeout}s")
                raise CompletionTimeout("Assistant run timed out")

            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self.poll_max_delay)

            run = await self._with_retry(
                "run retrieve",
                lambda: self.client.beta.threads.runs.retrieve(run_id, thread_id=thread_id),
            )
            status = run.status

    # ------------------------------------------------------------------
    # Files and assistants
    # ------------------------------------------------------------------
    async def upload_file(self, file_name: str, content: bytes) -> str:
        """Upload a file for assistant use and return its provider id."""
        uploaded = await self._with_retry(
            "file upload",
            lambda: self.client.files.create(file=(file_name, content), purpose="assistants"),
        )
        logger.info(f"Uploaded {file_name} as {uploaded.id}")
        return uploaded.id

    async def build_assistant(self, file_ids: Sequence[str]) -> str:
        """Create an assistant with code interpreter and file search over the files."""
        ids = list(file_ids)
        tool_resources: Dict[str, Any] = {
            "code_interpreter": {"file_ids": ids},
            "file_search": {"vector_stores": [{"file_ids": ids}]},
        }
        assistant = await self._with_retry(
            "assistant create",
            lambda: self.client.beta.assistants.create(
                name=settings.assistant_name,
                instructions=settings.assistant_instructions,
                model=self.assistant_model,
                tools=[{"type": "code_interpreter"}, {"type": "file_search"}],
                tool_resources=tool_resources,
            ),
        )
        logger.info(f"Built assistant {assistant.id} over {len(ids)} file(s)")
        return assistant.id

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------
    async def _with_retry(self, label: str, call: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(self.max_retries):
            try:
                return await call()

            except RateLimitError as e:
                if attempt < self.max_retries - 1:
                    wait_time = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Rate limited on {label}, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"Rate limited on {label}, giving up: {e}")
                    raise UpstreamFailure("Completion provider is rate limited") from e

            except APIConnectionError as e:
                if attempt < self.max_retries - 1:
                    wait_time = self.retry_delay * (2 ** attempt)
                    logger.warning(f"Connection error on {label}, retrying in {wait_time}s: {e}")
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"Connection error on {label}, giving up: {e}")
                    raise UpstreamFailure("Completion provider is unreachable") from e

            except APIError as e:
                logger.error(f"OpenAI API error on {label}: {e}")
                raise UpstreamFailure("Completion provider error") from e

        raise UpstreamFailure("Completion provider error")
