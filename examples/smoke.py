import asyncio
import logging

from llm_relay.config import ProviderConfig
from llm_relay.errors import ProviderError
from llm_relay.manager import LLMManager
from llm_relay.types import ChatRequest, Message


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    manager = LLMManager.from_configs(
        [
            ProviderConfig(name="openai", api_key="DUMMY"),
            ProviderConfig(name="anthropic", api_key="DUMMY"),
            ProviderConfig(name="ollama"),
        ],
        fallback_providers=["anthropic", "ollama"],
        retry_attempts=2,
        retry_delay_s=0.2,
    )

    statuses = await manager.get_provider_statuses()
    for name, status in statuses.items():
        print(f"{name}: available={status.available} error={status.error}")

    req = ChatRequest(
        messages=[Message(role="user", content="Say hi in five words.")],
        system_prompt="You are terse.",
    )
    print("Estimated cost:", manager.estimate_cost(req))

    try:
        response = await manager.send_message(req)
        print(f"[{response.provider}] {response.content}")
    except ProviderError as e:
        # DUMMY keys are expected to fail unless a local Ollama is running
        print("Expected error:", e.code, e)

    print(manager.get_usage_stats())
    await manager.aclose()


if __name__ == "__main__":
    asyncio.run(main())
