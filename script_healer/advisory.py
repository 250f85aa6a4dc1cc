"""
Advisory service client.

The advisory tier is a language model asked to explain a failure or rewrite
a script. It is always optional: callers wrap every call in `bounded_call`
and fall back to the rules in `diagnosis` / `auto_fix_rules` on any error.
"""

import asyncio
from typing import Optional

import openai

from script_healer.config import Config
from script_healer.exceptions import AdvisoryError, AdvisoryTimeout
from script_healer.logger import get_logger

logger = get_logger('advisory')

DIAGNOSIS_SYSTEM_PROMPT = """You debug UI-automation scripts. Explain why a script failed against the current screen.

Focus on:
1. Whether the element selectors still match the screen
2. Whether fixed coordinates are still accurate
3. Whether waits are long enough for the UI to settle
4. Whether the automation service has the permissions it needs
5. Whether the script logic is sound

Reply with JSON only:
{"primary_cause": "<short tag>", "explanation": "<one sentence>", "suggested_fixes": ["<fix>", ...], "confidence": <0..1>}"""

GENERATION_SYSTEM_PROMPT = """You repair UI-automation scripts using a failure analysis and the current screen.

Rules:
1. Prefer text(), desc() and id() selectors over fixed coordinates
2. Add waits where the UI may still be loading
3. Check that an element exists before acting on it
4. Keep the script short and readable

Return only the repaired script, with no commentary."""


class AdvisoryClient:
    """Interface of an advisory service. Both calls return raw text."""

    async def diagnose(self, prompt: str) -> str:
        raise NotImplementedError

    async def generate(self, prompt: str) -> str:
        raise NotImplementedError


class OpenAIAdvisoryClient(AdvisoryClient):
    """Advisory service backed by an OpenAI-compatible chat completions API."""

    def __init__(self, client: Optional[openai.AsyncOpenAI] = None, model: Optional[str] = None,
                 api_key: Optional[str] = None, base_url: Optional[str] = None,
                 request_timeout: Optional[float] = None):
        self.model = model or Config.ADVISORY_MODEL
        self.client = client or openai.AsyncOpenAI(
            api_key=api_key or Config.OPENAI_API_KEY,
            base_url=base_url or Config.ADVISORY_BASE_URL,
            timeout=request_timeout or Config.ADVISORY_TIMEOUT,
        )

    async def diagnose(self, prompt: str) -> str:
        return await self._complete(DIAGNOSIS_SYSTEM_PROMPT, prompt, max_tokens=1500, temperature=0.3)

    async def generate(self, prompt: str) -> str:
        return await self._complete(GENERATION_SYSTEM_PROMPT, prompt, max_tokens=2000, temperature=0.2)

    async def _complete(self, system_prompt: str, prompt: str, max_tokens: int, temperature: float) -> str:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
            )
        except openai.APITimeoutError as e:
            raise AdvisoryTimeout(str(e)) from e
        except openai.OpenAIError as e:
            raise AdvisoryError(str(e)) from e

        if not response.choices:
            raise AdvisoryError("Advisory service returned no choices")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise AdvisoryError("Advisory service returned an empty reply")
        return content


def build_advisory_client() -> Optional[AdvisoryClient]:
    """Advisory client from Config, or None when no API key is configured."""
    if not Config.OPENAI_API_KEY:
        logger.info("OPENAI_API_KEY not set - advisory tier disabled, using rules only")
        return None
    return OpenAIAdvisoryClient()


async def bounded_call(call, prompt: str, timeout: float) -> str:
    """Await an advisory call, turning an overrun into AdvisoryTimeout."""
    try:
        return await asyncio.wait_for(call(prompt), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AdvisoryTimeout(f"Advisory call exceeded {timeout}s") from e
