"""
Pytest Configuration and Shared Fixtures

In-memory SQLite database per test, a scripted model adapter, and seed
records for the brand "Acme".
"""

from typing import Callable, List, Optional, Sequence, Tuple, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sovtrack.adapters.llm import (
    BaseLLMAdapter,
    LLMAdapterError,
    LLMConfig,
    LLMMessage,
    LLMProviderType,
    LLMResponse,
    LLMUsage,
)
from sovtrack.models import AIResponse, Base, Brand, Category, Prompt
from sovtrack.utils import enable_sqlite_savepoints


# ============================================================================
# Fake model adapter
# ============================================================================

Reply = Union[str, Exception]

# Fragments that identify each template, most specific first
RESPONSE_REQUEST = "IMPORTANT: In your response"
PROFILE_REQUEST = "Analyze the domain"
LOCATION_REQUEST = "identify the primary location"
CATEGORY_REQUEST = "identify 4 content categories"
DESCRIPTION_REQUEST = "provide a brief overview of what they do"
COMPETITOR_REQUEST = "Identify 5 real, direct competitors"
KEYWORD_REQUEST = "Generate 10 long-tail keywords"
QUESTION_REQUEST = "Generate 5 natural, conversational questions"


class FakeLLMAdapter(BaseLLMAdapter):
    """
    Scripted adapter.

    `responder(prompt, config)` returns the reply text, or an exception to
    raise. Every request is recorded on `calls`.
    """

    def __init__(
        self,
        responder: Optional[Callable[[str, LLMConfig], Reply]] = None,
        configured: bool = True,
    ):
        super().__init__(api_key="test-key" if configured else None)
        self.responder = responder or (lambda prompt, config: "")
        self.calls: List[Tuple[str, LLMConfig, Optional[str]]] = []

    @property
    def provider(self) -> LLMProviderType:
        return LLMProviderType.OPENAI

    @property
    def default_model(self) -> str:
        return "fake-model"

    async def execute_chat(self, messages: List[LLMMessage], config: Optional[LLMConfig] = None) -> LLMResponse:
        config = config or LLMConfig(model=self.default_model)
        system = next((m.content for m in messages if m.role == "system"), None)
        prompt = messages[-1].content
        self.calls.append((prompt, config, system))

        reply = self.responder(prompt, config)
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(
            content=reply,
            raw_response={},
            provider=self.provider,
            model=config.model,
            usage=LLMUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
            latency_ms=5,
        )

    def prompts_containing(self, fragment: str) -> List[str]:
        return [prompt for prompt, _, _ in self.calls if fragment in prompt]


def unreachable(prompt: str, config: LLMConfig) -> Reply:
    return LLMAdapterError("Connection refused", LLMProviderType.OPENAI)


def routed(rules: Sequence[Tuple[str, Union[Reply, Callable[[str], Reply]]]], default: Reply = "") -> Callable:
    """Responder picking the first rule whose fragment is in the prompt"""
    def responder(prompt: str, config: LLMConfig) -> Reply:
        for fragment, reply in rules:
            if fragment in prompt:
                return reply(prompt) if callable(reply) else reply
        return default
    return responder


HAPPY_PATH_RULES = [
    (RESPONSE_REQUEST, "For widgets most buyers pick acme-widgets, with Widget World as a runner-up."),
    (PROFILE_REQUEST, "OVERVIEW: Acme Widgets builds industrial widgets.\nDESCRIPTION: Industrial widget maker in Denver."),
    (LOCATION_REQUEST, "Denver, CO"),
    (CATEGORY_REQUEST, '{"categories": ["Industrial Widgets", "Widget Repair"]}'),
    (DESCRIPTION_REQUEST, "Acme Widgets sells industrial widgets to manufacturers."),
    (COMPETITOR_REQUEST, '["Widget World", "Gadget Hub"]'),
    (KEYWORD_REQUEST, '["industrial widget supplier", "widget repair near me"]'),
    (QUESTION_REQUEST, '["Who sells the most reliable industrial widgets?", "Where can I get widgets repaired?"]'),
]


@pytest.fixture
def fake_adapter() -> FakeLLMAdapter:
    """Adapter that answers every stage sensibly"""
    return FakeLLMAdapter(routed(HAPPY_PATH_RULES))


@pytest.fixture
def unreachable_adapter() -> FakeLLMAdapter:
    """Adapter whose every call fails"""
    return FakeLLMAdapter(unreachable)


# ============================================================================
# Database
# ============================================================================

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine) -> AsyncSession:
    session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_maker() as session:
        yield session
        await session.rollback()


# ============================================================================
# Seed records
# ============================================================================

@pytest_asyncio.fixture
async def brand(db) -> Brand:
    brand = Brand(
        owner_user_id="user-1",
        domain="acme.com",
        brand_name="Acme",
        description="Acme makes widgets.",
        competitors=["Acme Rival", "Widget World"],
    )
    db.add(brand)
    await db.flush()
    return brand


@pytest_asyncio.fixture
async def category(db, brand) -> Category:
    category = Category(brand_id=brand.id, category_name="Industrial Widgets", analysis_session_id="analysis_1_seed")
    db.add(category)
    await db.flush()
    return category


@pytest_asyncio.fixture
async def make_response(db, brand, category):
    """Factory: store a prompt and its response text for a session"""
    async def factory(text: str, session_id: str = "analysis_1_seed", prompt_text: str = "Best widgets?") -> AIResponse:
        prompt = Prompt(
            category_id=category.id,
            brand_id=brand.id,
            prompt_text=prompt_text,
            analysis_session_id=session_id,
        )
        db.add(prompt)
        await db.flush()
        response = AIResponse(
            prompt_id=prompt.id,
            brand_id=brand.id,
            user_id=brand.owner_user_id,
            response_text=text,
            analysis_session_id=session_id,
        )
        db.add(response)
        await db.flush()
        return response
    return factory
