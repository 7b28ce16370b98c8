"""
Tests for response generation
"""

import pytest
from sqlalchemy import func, select

from sovtrack.adapters.llm import LLMProviderType, LLMRateLimitError
from sovtrack.models import AIResponse, Prompt
from sovtrack.services import AnalysisCancelled, CancellationToken, GeneratedPrompt, ResponseGenerator

from conftest import FakeLLMAdapter


async def stored_prompts(db, brand, category, texts, session_id="s1"):
    items = []
    for text in texts:
        prompt = Prompt(category_id=category.id, brand_id=brand.id, prompt_text=text, analysis_session_id=session_id)
        db.add(prompt)
        items.append(GeneratedPrompt(prompt=prompt, category=category))
    await db.flush()
    return items


async def response_count(db, session_id="s1"):
    result = await db.execute(
        select(func.count()).select_from(AIResponse).where(AIResponse.analysis_session_id == session_id)
    )
    return result.scalar_one()


def echo(prompt, config):
    return "Answer: " + prompt.splitlines()[0]


class TestResponseGenerator:

    def test_request_carries_brand_instruction(self):
        request = ResponseGenerator.build_request("Which widget suppliers are best?")
        assert request.startswith("Which widget suppliers are best?")
        assert "explicitly mention the brand names" in request

    @pytest.mark.asyncio
    async def test_stores_one_response_per_prompt(self, db, brand, category):
        items = await stored_prompts(db, brand, category, ["Q1?", "Q2?", "Q3?"])
        generator = ResponseGenerator(db, FakeLLMAdapter(echo))

        batch = await generator.run_responses(items, brand.id, "user-1", "s1")

        assert [r.ai_response.response_text for r in batch.responses] == [
            "Answer: Q1?", "Answer: Q2?", "Answer: Q3?",
        ]
        first = batch.responses[0].ai_response
        assert first.prompt_id == items[0].prompt.id
        assert first.brand_id == brand.id
        assert first.user_id == "user-1"
        assert first.total_tokens == 30
        assert first.model_name == "gpt-4o-mini"
        assert await response_count(db) == 3

    @pytest.mark.asyncio
    async def test_failure_isolated_per_prompt(self, db, brand, category):
        items = await stored_prompts(db, brand, category, ["Q1?", "Q2?", "Q3?"])

        def flaky(prompt, config):
            if prompt.startswith("Q2?"):
                return LLMRateLimitError("Rate limit exceeded", LLMProviderType.OPENAI)
            return echo(prompt, config)

        batch = await ResponseGenerator(db, FakeLLMAdapter(flaky)).run_responses(items, brand.id, "user-1", "s1")

        assert len(batch.responses) == 2
        assert len(batch.failures) == 1
        assert batch.failures[0].prompt.prompt_text == "Q2?"
        assert await response_count(db) == 2

    @pytest.mark.asyncio
    async def test_invalid_items_skipped(self, db, brand, category):
        items = await stored_prompts(db, brand, category, ["Q1?", "Q2?"])
        items.append(GeneratedPrompt(prompt=items[0].prompt, category=None))
        items.append(GeneratedPrompt(prompt=Prompt(prompt_text="   "), category=category))

        batch = await ResponseGenerator(db, FakeLLMAdapter(echo)).run_responses(items, brand.id, "user-1", "s1")

        assert batch.invalid == 2
        assert len(batch.responses) == 2

    @pytest.mark.asyncio
    async def test_unconfigured_adapter_fails_every_prompt(self, db, brand, category):
        items = await stored_prompts(db, brand, category, ["Q1?", "Q2?"])
        adapter = FakeLLMAdapter(echo, configured=False)

        batch = await ResponseGenerator(db, adapter).run_responses(items, brand.id, "user-1", "s1")

        assert batch.responses == []
        assert len(batch.failures) == 2
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_cancellation_keeps_completed_work(self, db, brand, category):
        items = await stored_prompts(db, brand, category, ["Q1?", "Q2?", "Q3?"])
        token = CancellationToken()

        def cancel_after_first(prompt, config):
            token.cancel("user request")
            return echo(prompt, config)

        generator = ResponseGenerator(db, FakeLLMAdapter(cancel_after_first))
        with pytest.raises(AnalysisCancelled) as exc_info:
            await generator.run_responses(items, brand.id, "user-1", "s1", cancel_token=token)

        stored = len(exc_info.value.batch.responses)
        assert 1 <= stored < 3
        assert await response_count(db) == stored

    @pytest.mark.asyncio
    async def test_get_responses_by_session(self, db, brand, category):
        generator = ResponseGenerator(db, FakeLLMAdapter(echo))
        await generator.run_responses(await stored_prompts(db, brand, category, ["Q1?"], "s1"), brand.id, "u", "s1")
        await generator.run_responses(await stored_prompts(db, brand, category, ["Q2?", "Q3?"], "s2"), brand.id, "u", "s2")

        assert len(await generator.get_responses("s1")) == 1
        assert len(await generator.get_responses("s2", brand.id)) == 2
