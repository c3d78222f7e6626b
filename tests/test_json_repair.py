import pytest

from thesis_validator.providers.json_repair import extract_json_block, parse_candidates, parse_json_loose
from thesis_validator.providers.reasoning import OllamaReasoningProvider


def test_repairs_single_quotes_and_trailing_commas() -> None:
    assert parse_json_loose("{'a': 1, 'b': 'x',}") == {"a": 1, "b": "x"}


def test_repairs_unquoted_keys_and_fenced_json() -> None:
    raw = """```json
    {a: 1, b: true, c: null,}
    ```"""

    assert parse_json_loose(raw) == {"a": 1, "b": True, "c": None}


def test_extracts_block_from_prose() -> None:
    raw = 'Here you go: [{"name": "Recession"}] Hope that helps {not json}'

    assert extract_json_block(raw) == '[{"name": "Recession"}]'
    assert parse_json_loose(raw) == [{"name": "Recession"}]


def test_unrecoverable_text_returns_none() -> None:
    assert parse_json_loose("no structure here") is None
    assert parse_json_loose("") is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('[{"content": "a"}, "junk", {"content": "b"}]', [{"content": "a"}, {"content": "b"}]),
        ('{"items": [{"content": "a"}]}', [{"content": "a"}]),
        ('{"content": "only one"}', [{"content": "only one"}]),
        ("nothing", []),
    ],
)
def test_parse_candidates_shapes(raw, expected) -> None:
    assert parse_candidates(raw) == expected


@pytest.mark.asyncio
async def test_ollama_provider_parses_repaired_reply() -> None:
    provider = OllamaReasoningProvider(model="test-model", timeout=1, max_retries=0)
    prompts: list[str] = []

    async def fake_complete(prompt: str) -> str:
        prompts.append(prompt)
        return "Sure!\n```json\n[{type: 'lever', content: 'Pricing power',}]\n```"

    provider.complete = fake_complete  # type: ignore[assignment]

    candidates = await provider.generate("Decompose the thesis.", {"kind": "hypothesis", "count": 3})

    assert candidates == [{"type": "lever", "content": "Pricing power"}]
    assert "Decompose the thesis." in prompts[0]
