"""
Claude models through the Anthropic SDK.

The SDK has no response_model, so the output schema is offered as the only
tool and the model is forced to call it; the tool input is the answer.
"""

import anthropic

from event_ingestion.agents.llm.base_llm_client import BaseLLMClient

TOOL_NAME = "structured_output"


class AnthropicLLMClient(BaseLLMClient):
    provider = "anthropic"
    default_model = "claude-haiku-4-5-20251001"

    def _key_from(self, settings):
        return self._secret(settings.ANTHROPIC_API_KEY)

    def _build_client(self, api_key):
        return anthropic.AsyncAnthropic(api_key=api_key)

    async def _request(self, client, system_prompt, user_prompt, output_schema, temperature, max_tokens):
        tool = {
            "name": TOOL_NAME,
            "description": f"Report the answer as {output_schema.__name__}",
            "input_schema": output_schema.model_json_schema(),
        }
        message = await client.messages.create(
            model=self.model_name,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            tools=[tool],
            tool_choice={"type": "tool", "name": TOOL_NAME},
            temperature=temperature,
            max_tokens=max_tokens,
        )
        usage = {
            "prompt_tokens": message.usage.input_tokens,
            "completion_tokens": message.usage.output_tokens,
            "total": message.usage.input_tokens + message.usage.output_tokens,
        }
        tool_input = next((b.input for b in message.content if b.type == "tool_use"), None)
        if tool_input is None:
            raise ValueError("Anthropic response contained no tool_use block")
        return output_schema.model_validate(tool_input), usage
