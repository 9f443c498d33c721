"""OpenAI chat models wrapped by Instructor, answering in TOOLS mode."""

import instructor
from openai import AsyncOpenAI

from event_ingestion.agents.llm.base_llm_client import BaseLLMClient


class OpenAILLMClient(BaseLLMClient):
    provider = "openai"
    default_model = "gpt-4o-mini"

    def _key_from(self, settings):
        return self._secret(settings.OPENAI_API_KEY)

    def _build_client(self, api_key):
        return instructor.from_openai(AsyncOpenAI(api_key=api_key), mode=instructor.Mode.TOOLS)

    async def _request(self, client, system_prompt, user_prompt, output_schema, temperature, max_tokens):
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        parsed, completion = await client.chat.completions.create_with_completion(
            model=self.model_name,
            messages=messages,
            response_model=output_schema,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        usage = completion.usage
        if not usage:
            return parsed, None
        return parsed, {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total": usage.total_tokens,
        }
