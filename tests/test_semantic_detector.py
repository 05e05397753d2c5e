"""
Tests for the Semantic Dependency Detector

The LLM client is replaced by a Mock whose chat() returns canned replies, so
these tests cover candidate selection, caching and opportunity construction
without any network access.
"""

import json
from unittest.mock import AsyncMock, Mock

import pytest

from core.models import ExpectedRelation, SemanticRelationship
from llm.semantic_cache import SemanticCache
from strategies.semantic_dependency_detector import SemanticDependencyDetector, compute_violation
from utils.exceptions import APIError

from conftest import build_settings, make_market


NOMINATION = 'Will Donald Trump win the 2028 Republican nomination?'
PRESIDENCY = 'Will Donald Trump win the 2028 presidential election?'


def reply(**overrides) -> str:
    body = {
        'relationship_type': 'superset',
        'confidence': 0.9,
        'reasoning': 'The presidency requires the nomination',
        'constraint': {
            'type': 'probability_bound',
            'expression': 'P(nomination) >= P(presidency)',
            'market1_should_be': 'higher',
        },
        'arbitrage_possible': True,
        'arbitrage_direction': {'buy': 'market1', 'sell': 'market2'},
    }
    body.update(overrides)
    return json.dumps(body)


@pytest.fixture
def llm_client():
    client = Mock()
    client.is_enabled = Mock(return_value=True)
    client.chat = AsyncMock(return_value=reply())
    client.get_stats = Mock(return_value={})
    return client


@pytest.fixture
def detector(llm_client):
    settings = build_settings(enable_semantic_dependency=True, llm_enabled=True, llm_api_key='sk-test')
    return SemanticDependencyDetector(settings, llm_client, SemanticCache())


@pytest.fixture
def markets():
    return [
        make_market('nomination', NOMINATION, yes=0.30, category='politics'),
        make_market('presidency', PRESIDENCY, yes=0.40, category='politics'),
    ]


class TestComputeViolation:
    """Test the violation formula per expected relation"""

    @pytest.mark.parametrize('relation,p1,p2,expected', [
        (ExpectedRelation.GTE, 0.30, 0.40, 0.10),
        (ExpectedRelation.GTE, 0.50, 0.40, 0.0),
        (ExpectedRelation.LTE, 0.50, 0.40, 0.10),
        (ExpectedRelation.LTE, 0.30, 0.40, 0.0),
        (ExpectedRelation.EQ, 0.30, 0.40, 0.10),
        (ExpectedRelation.EXCLUSIVE, 0.60, 0.50, 0.10),
        (ExpectedRelation.EXCLUSIVE, 0.30, 0.50, 0.0),
    ])
    def test_violation(self, relation, p1, p2, expected):
        assert compute_violation(relation, p1, p2) == pytest.approx(expected)


class TestSemanticDependencyDetector:
    """Test LLM-backed dependency detection"""

    @pytest.mark.asyncio
    async def test_detects_violated_superset(self, detector, markets, llm_client):
        """
        TEST: P(nomination) 0.30 < P(presidency) 0.40

        Scenario:
        - Model says market1 should price higher (gte)
        - 10pp violation, 9% net profit
        """
        opportunities = await detector.detect(markets)

        assert len(opportunities) == 1
        opportunity = opportunities[0]
        assert opportunity.market1_id == 'nomination'
        assert opportunity.market2_id == 'presidency'
        assert opportunity.semantic_relationship == SemanticRelationship.SUPERSET
        assert opportunity.expected_relation == ExpectedRelation.GTE
        assert opportunity.constraint_violation == pytest.approx(0.10)
        assert opportunity.profit_percent == pytest.approx(9.0)
        assert opportunity.confidence_score == pytest.approx(0.92)
        assert opportunity.legacy_relationship == 'superset'
        llm_client.chat.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_prompt_carries_both_questions(self, detector, markets, llm_client):
        await detector.detect(markets)

        messages = llm_client.chat.call_args.args[0]
        assert messages[0]['role'] == 'system'
        assert NOMINATION in messages[1]['content']
        assert PRESIDENCY in messages[1]['content']

    @pytest.mark.asyncio
    async def test_classification_is_cached(self, detector, markets, llm_client):
        await detector.detect(markets)
        await detector.detect(markets)

        assert llm_client.chat.await_count == 1
        assert detector.pairs_analyzed == 1

    @pytest.mark.asyncio
    async def test_none_relationship_is_cached_and_skipped(self, detector, markets, llm_client):
        llm_client.chat.return_value = reply(relationship_type='none', constraint=None, arbitrage_direction=None)

        assert await detector.detect(markets) == []
        assert detector.find_candidate_pairs(markets) == []
        assert llm_client.chat.await_count == 1

    @pytest.mark.asyncio
    async def test_llm_failure_is_cached_as_negative(self, detector, markets, llm_client):
        llm_client.chat.side_effect = APIError("LLM request failed: HTTP 503", status_code=503)

        assert await detector.detect(markets) == []
        assert detector.analysis_failures == 1

        await detector.detect(markets)
        assert llm_client.chat.await_count == 1

    @pytest.mark.asyncio
    async def test_unparseable_reply_yields_nothing(self, detector, markets, llm_client):
        llm_client.chat.return_value = 'I am not sure.'

        assert await detector.detect(markets) == []
        assert detector.analysis_failures == 1

    @pytest.mark.asyncio
    async def test_low_model_confidence_is_rejected(self, detector, markets, llm_client):
        llm_client.chat.return_value = reply(confidence=0.6)

        assert await detector.detect(markets) == []

    @pytest.mark.asyncio
    async def test_satisfied_constraint_yields_nothing(self, detector, llm_client):
        markets = [
            make_market('nomination', NOMINATION, yes=0.45, category='politics'),
            make_market('presidency', PRESIDENCY, yes=0.40, category='politics'),
        ]

        assert await detector.detect(markets) == []

    @pytest.mark.asyncio
    async def test_disabled_client_makes_no_requests(self, detector, markets, llm_client):
        llm_client.is_enabled.return_value = False

        assert await detector.detect(markets) == []
        llm_client.chat.assert_not_awaited()

    def test_candidates_need_shared_name_and_keyword(self, detector):
        markets = [
            make_market('a', NOMINATION),
            make_market('b', 'Will Kamala Harris win the 2028 presidential election?'),
            make_market('c', 'Will Donald Trump tweet today?'),
        ]

        assert detector.find_candidate_pairs(markets) == []

    def test_candidates_are_capped_per_cycle(self, llm_client):
        settings = build_settings(llm_max_pairs_per_cycle=1)
        detector = SemanticDependencyDetector(settings, llm_client, SemanticCache())
        markets = [
            make_market('a', NOMINATION),
            make_market('b', PRESIDENCY),
            make_market('c', 'Will Donald Trump win the 2028 Iowa caucus?'),
        ]

        assert len(detector.find_candidate_pairs(markets)) == 1

    def test_thin_markets_are_not_candidates(self, detector):
        markets = [make_market('a', NOMINATION), make_market('b', PRESIDENCY, liquidity=100)]

        assert detector.find_candidate_pairs(markets) == []

    @pytest.mark.asyncio
    async def test_buy_direction_follows_model(self, detector, markets, llm_client):
        """Model says buy market2 under an lte constraint"""
        llm_client.chat.return_value = reply(
            constraint={'type': 'probability_bound', 'expression': 'P(A) <= P(B)', 'market1_should_be': 'lower'},
            arbitrage_direction={'buy': 'market2', 'sell': 'market1'},
        )
        markets = [
            make_market('nomination', NOMINATION, yes=0.50, category='politics'),
            make_market('presidency', PRESIDENCY, yes=0.40, category='politics'),
        ]

        opportunities = await detector.detect(markets)

        assert len(opportunities) == 1
        assert opportunities[0].market1_id == 'presidency'
        assert opportunities[0].market2_id == 'nomination'
        assert opportunities[0].expected_relation == ExpectedRelation.LTE
