"""
Tests for the LLM Layer

Covers:
1. Prompt rendering and response parsing (pydantic schema)
2. Expected-relation mapping
3. SemanticCache TTL and LRU eviction
4. LLMClient HTTP handling against a mocked aiohttp session
5. MinuteWindowRateLimiter quota handling
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.models import ExpectedRelation, SemanticRelationship
from llm.llm_client import LLMClient
from llm.prompt_templates import (
    SemanticAnalysisResult,
    build_user_prompt,
    map_expected_relation,
    parse_analysis_response,
    to_analysis_result,
)
from llm.semantic_cache import SemanticCache, pair_key
from utils.exceptions import APIError, APITimeoutError, InvalidResponseError, RateLimitError
from utils.rate_limiter import MinuteWindowRateLimiter

from conftest import FakeClock, build_settings


SUPERSET_REPLY = {
    'relationship_type': 'superset',
    'confidence': 0.9,
    'reasoning': 'Winning the presidency requires the nomination',
    'constraint': {
        'type': 'probability_bound',
        'expression': 'P(A) >= P(B)',
        'market1_should_be': 'higher',
    },
    'arbitrage_possible': True,
    'arbitrage_direction': {'buy': 'market1', 'sell': 'market2'},
}


def mock_response(status=200, json_data=None, text=''):
    """Async context manager standing in for session.post(...)"""
    response = MagicMock()
    response.status = status
    response.headers = {}
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def mock_session(*responses):
    session = MagicMock()
    session.closed = False
    session.post = MagicMock(side_effect=list(responses))
    return session


# ============================================================================
# PROMPTS & PARSING
# ============================================================================

class TestPromptTemplates:
    """Test prompt rendering and reply parsing"""

    def test_user_prompt_renders_percentages(self):
        prompt = build_user_prompt('Will A happen?', 0.305, 'Will B happen?', 0.4)

        assert 'Question: "Will A happen?"' in prompt
        assert 'Current YES Price: 30.5% (probability)' in prompt
        assert 'Current YES Price: 40.0% (probability)' in prompt

    def test_parses_plain_json(self):
        parsed = parse_analysis_response(json.dumps(SUPERSET_REPLY))

        assert parsed.ok
        assert parsed.response.relationship == SemanticRelationship.SUPERSET
        assert parsed.response.arbitrage_direction.buy == 'market1'

    def test_parses_fenced_json_with_prose(self):
        reply = f"Here is my analysis:\n```json\n{json.dumps(SUPERSET_REPLY)}\n```\nHope this helps."

        assert parse_analysis_response(reply).ok

    def test_relationship_type_is_normalized(self):
        reply = dict(SUPERSET_REPLY, relationship_type='  Mutual_Exclusion ')

        parsed = parse_analysis_response(json.dumps(reply))

        assert parsed.response.relationship == SemanticRelationship.MUTUAL_EXCLUSION

    @pytest.mark.parametrize('reply', [
        'I cannot determine a relationship.',
        '{"relationship_type": "superset", "confidence": 0.9',
        json.dumps(dict(SUPERSET_REPLY, relationship_type='causal')),
        json.dumps(dict(SUPERSET_REPLY, confidence=1.5)),
        json.dumps(dict(SUPERSET_REPLY, arbitrage_direction={'buy': 'market3', 'sell': 'market1'})),
    ])
    def test_invalid_replies_fail_without_raising(self, reply):
        parsed = parse_analysis_response(reply)

        assert not parsed.ok
        assert parsed.error

    def test_empty_reply(self):
        assert not parse_analysis_response('').ok


class TestExpectedRelation:
    """Test the constraint -> expected relation mapping"""

    @pytest.mark.parametrize('should_be,expected', [
        ('higher', ExpectedRelation.GTE),
        ('lower', ExpectedRelation.LTE),
        ('equal', ExpectedRelation.EQ),
        (None, ExpectedRelation.GTE),
    ])
    def test_market1_should_be(self, should_be, expected):
        reply = dict(SUPERSET_REPLY, constraint=dict(SUPERSET_REPLY['constraint'], market1_should_be=should_be))

        assert map_expected_relation(parse_analysis_response(json.dumps(reply)).response) == expected

    def test_mutual_exclusion_is_exclusive(self):
        reply = dict(SUPERSET_REPLY, relationship_type='mutual_exclusion')

        assert map_expected_relation(parse_analysis_response(json.dumps(reply)).response) == ExpectedRelation.EXCLUSIVE

    def test_exclusive_constraint_type(self):
        reply = dict(SUPERSET_REPLY, constraint={'type': 'exclusive', 'expression': 'P(A) + P(B) <= 1'})

        assert map_expected_relation(parse_analysis_response(json.dumps(reply)).response) == ExpectedRelation.EXCLUSIVE

    def test_to_analysis_result_resolves_market_ids(self):
        reply = dict(SUPERSET_REPLY, arbitrage_direction={'buy': 'market2', 'sell': 'market1'})
        response = parse_analysis_response(json.dumps(reply)).response

        result = to_analysis_result('m-1', 'm-2', response)

        assert result.buy_market_id == 'm-2'
        assert result.sell_market_id == 'm-1'
        assert result.constraint.expected_relation == ExpectedRelation.GTE
        assert not result.is_negative


# ============================================================================
# CACHE
# ============================================================================

def analysis(m1: str, m2: str) -> SemanticAnalysisResult:
    return SemanticAnalysisResult(
        market1_id=m1,
        market2_id=m2,
        relationship=SemanticRelationship.SUBSET,
        confidence=0.9,
        reasoning='test',
    )


class TestSemanticCache:
    """Test LRU + TTL semantics"""

    def test_pair_key_is_order_independent(self):
        assert pair_key('b', 'a') == pair_key('a', 'b') == 'a:b'

    def test_lookup_in_either_order(self):
        cache = SemanticCache()
        cache.set(analysis('x', 'y'))

        assert cache.get('y', 'x') is not None
        assert cache.hits == 1

    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = SemanticCache(ttl_sec=3600, clock=clock)
        cache.set(analysis('x', 'y'))

        clock.advance(3599)
        assert cache.has('x', 'y')

        clock.advance(2)
        assert cache.get('x', 'y') is None
        assert len(cache) == 0
        assert cache.misses == 1

    def test_evicts_least_recently_used_at_capacity(self):
        cache = SemanticCache(max_size=10)
        for i in range(10):
            cache.set(analysis(f'a{i}', f'b{i}'))

        # Touch the oldest so the second-oldest becomes LRU
        cache.get('a0', 'b0')
        cache.set(analysis('new', 'pair'))

        assert len(cache) == 10
        assert cache.has('a0', 'b0')
        assert not cache.has('a1', 'b1')
        assert cache.evictions == 1

    def test_peek_does_not_count(self):
        cache = SemanticCache()
        cache.set(analysis('x', 'y'))

        assert cache.peek('x', 'y') is not None
        assert cache.hits == 0
        assert cache.misses == 0

    def test_cleanup_removes_expired(self):
        clock = FakeClock()
        cache = SemanticCache(ttl_sec=10, clock=clock)
        cache.set(analysis('old', 'pair'))
        clock.advance(20)
        cache.set(analysis('fresh', 'pair'))

        assert cache.cleanup() == 1
        assert len(cache) == 1

    def test_stats(self):
        cache = SemanticCache(max_size=100)
        cache.set(analysis('x', 'y'))
        cache.get('x', 'y')
        cache.get('x', 'z')

        stats = cache.get_stats()

        assert stats['size'] == 1
        assert stats['hit_rate'] == pytest.approx(0.5)


# ============================================================================
# CLIENT
# ============================================================================

@pytest.fixture
def llm_settings():
    return build_settings(
        enable_semantic_dependency=True,
        llm_enabled=True,
        llm_api_key='sk-test',
        llm_base_url='https://llm.example.com/v1/',
        llm_model='test-model',
    )


class TestLLMClient:
    """Test chat-completions request handling"""

    def test_enabled_requires_key(self):
        assert not LLMClient(build_settings(llm_enabled=True)).is_enabled()
        assert LLMClient(build_settings(llm_enabled=True, llm_api_key='sk')).is_enabled()

    @pytest.mark.asyncio
    async def test_chat_returns_first_choice(self, llm_settings):
        session = mock_session(mock_response(json_data={
            'choices': [{'message': {'content': 'hello'}}],
            'usage': {'total_tokens': 42},
        }))
        client = LLMClient(llm_settings, session=session)

        content = await client.chat([{'role': 'user', 'content': 'hi'}])

        assert content == 'hello'
        assert client.total_requests == 1
        assert client.total_tokens == 42

        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == 'https://llm.example.com/v1/chat/completions'
        assert kwargs['json']['model'] == 'test-model'
        assert kwargs['headers']['Authorization'] == 'Bearer sk-test'

    @pytest.mark.asyncio
    async def test_missing_choices_returns_empty_string(self, llm_settings):
        client = LLMClient(llm_settings, session=mock_session(mock_response(json_data={'choices': []})))

        assert await client.chat([]) == ''

    @pytest.mark.asyncio
    async def test_rate_limited(self, llm_settings):
        client = LLMClient(llm_settings, session=mock_session(mock_response(status=429)))

        with pytest.raises(RateLimitError):
            await client.chat([])
        assert client.failed_requests == 1

    @pytest.mark.asyncio
    async def test_server_error(self, llm_settings):
        client = LLMClient(llm_settings, session=mock_session(mock_response(status=500, text='boom')))

        with pytest.raises(APIError) as exc_info:
            await client.chat([])
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_timeout(self, llm_settings):
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(side_effect=asyncio.TimeoutError())
        client = LLMClient(llm_settings, session=session)

        with pytest.raises(APITimeoutError):
            await client.chat([])

    @pytest.mark.asyncio
    async def test_unexpected_body_shape(self, llm_settings):
        client = LLMClient(llm_settings, session=mock_session(mock_response(json_data=['not', 'a', 'dict'])))

        with pytest.raises(InvalidResponseError):
            await client.chat([])

    @pytest.mark.asyncio
    async def test_does_not_close_injected_session(self, llm_settings):
        session = mock_session()
        session.close = AsyncMock()
        client = LLMClient(llm_settings, session=session)

        await client.close()

        session.close.assert_not_awaited()


class TestMinuteWindowRateLimiter:
    """Test the per-minute request window"""

    @pytest.mark.asyncio
    async def test_waits_for_window_reset_when_exhausted(self):
        clock = FakeClock()
        limiter = MinuteWindowRateLimiter(max_requests=2, window_sec=60, clock=clock)

        await limiter.acquire()
        clock.advance(10)
        await limiter.acquire()

        with patch('utils.rate_limiter.asyncio.sleep', new=AsyncMock()) as sleep:
            await limiter.acquire()

        sleep.assert_awaited_once_with(50)
        assert limiter.get_stats()['times_throttled'] == 1
        assert limiter.requests_this_window == 1

    @pytest.mark.asyncio
    async def test_new_window_resets_count(self):
        clock = FakeClock()
        limiter = MinuteWindowRateLimiter(max_requests=1, window_sec=60, clock=clock)

        await limiter.acquire()
        clock.advance(61)
        await limiter.acquire()

        assert limiter.get_stats()['times_throttled'] == 0

    def test_rejects_zero_quota(self):
        with pytest.raises(ValueError):
            MinuteWindowRateLimiter(max_requests=0)
