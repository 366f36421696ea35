import unittest

from llm_relay.config import ProviderConfig
from llm_relay.errors import UnsupportedProviderError
from llm_relay.providers import AnthropicProvider, OllamaProvider, OpenAIProvider, ProviderKind, create_provider


class CreateProviderTests(unittest.TestCase):
    def test_dispatches_on_name(self) -> None:
        self.assertIsInstance(create_provider(ProviderConfig(name="openai")), OpenAIProvider)
        self.assertIsInstance(create_provider(ProviderConfig(name="anthropic")), AnthropicProvider)
        self.assertIsInstance(create_provider(ProviderConfig(name="ollama")), OllamaProvider)

    def test_provider_type_overrides_name(self) -> None:
        provider = create_provider(
            ProviderConfig(name="work-gpt", provider_type="openai", base_url="https://proxy.internal/v1")
        )

        self.assertIsInstance(provider, OpenAIProvider)
        self.assertEqual(provider.name, "work-gpt")
        self.assertEqual(provider.config.base_url, "https://proxy.internal/v1")
        # catalog still comes from the backend defaults
        self.assertEqual(provider.default_model.id, "gpt-4-turbo-preview")

    def test_unknown_kind(self) -> None:
        with self.assertRaises(UnsupportedProviderError) as ctx:
            create_provider(ProviderConfig(name="gemini"))
        self.assertEqual(ctx.exception.provider, "gemini")

    def test_every_kind_has_an_implementation(self) -> None:
        for kind in ProviderKind:
            self.assertEqual(create_provider(ProviderConfig(name=kind.value)).name, kind.value)


if __name__ == "__main__":
    unittest.main()
