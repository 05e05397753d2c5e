"""
Tests for the Outer Service Adapters

Covers:
1. Market feeds (static and Gamma, against a mocked aiohttp session) and
   the token bucket that throttles them
2. Repositories (in-memory and JSON-lines)
3. Notification formatting and the Telegram channel
4. Resolution lookups
5. Adapter conformance to the collaborator interfaces
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.models import OpportunityStatus
from services.interfaces import MarketFeed, Notifier, OpportunityRepository, ResolutionSource
from services.market_feed import GammaMarketFeed, StaticMarketFeed
from services.notifier import (
    LogNotifier,
    TelegramNotifier,
    TELEGRAM_MAX_MESSAGE_CHARS,
    format_execution_message,
    format_opportunity_message,
)
from services.repository import InMemoryRepository, JsonlRepository
from services.resolution import GammaResolutionSource, NullResolutionSource
from utils.exceptions import APITimeoutError, NotificationError, PersistenceError, RateLimitError
from utils.rate_limiter import TokenBucketRateLimiter

from conftest import FakeClock, make_market


def mock_response(status=200, json_data=None, text=''):
    """Async context manager standing in for session.get/post(...)"""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=response)
    context.__aexit__ = AsyncMock(return_value=False)
    return context


def mock_session(method='get', response=None, side_effect=None):
    session = MagicMock()
    session.closed = False
    setattr(session, method, MagicMock(return_value=response, side_effect=side_effect))
    return session


def gamma_record(**overrides):
    record = {
        'id': '501',
        'conditionId': '0xabc',
        'question': 'Will the Fed cut rates in March 2025?',
        'outcomes': '["Yes", "No"]',
        'outcomePrices': '["0.62", "0.36"]',
        'liquidity': '15000.5',
        'volume': '250000',
        'tags': [{'label': 'Economics'}],
        'endDate': '2025-03-20T00:00:00Z',
        'negRisk': False,
    }
    record.update(overrides)
    return record


# ============================================================================
# MARKET FEEDS
# ============================================================================

class TestStaticMarketFeed:

    @pytest.mark.asyncio
    async def test_serves_current_snapshot(self):
        feed = StaticMarketFeed([make_market('m1', 'Q1?')])

        first = await feed.fetch_markets()
        feed.set_markets([make_market('m2', 'Q2?'), make_market('m3', 'Q3?')])
        second = await feed.fetch_markets()

        assert [m.id for m in first] == ['m1']
        assert [m.id for m in second] == ['m2', 'm3']
        assert feed.fetch_count == 2


class TestGammaMarketFeed:
    """Test Gamma record parsing and HTTP handling"""

    def test_parse_record(self):
        snapshot = GammaMarketFeed.parse_record(gamma_record())

        assert snapshot.id == '0xabc'
        assert snapshot.yes_price == 0.62
        assert snapshot.no_price == 0.36
        assert snapshot.liquidity == 15000.5
        assert snapshot.category == 'economics'
        assert snapshot.end_date is not None

    @pytest.mark.parametrize('overrides', [
        {'liquidity': '-5'},
        {'outcomePrices': '["1.5", "0.2"]'},
    ])
    def test_invalid_records_are_skipped(self, overrides):
        assert GammaMarketFeed.parse_record(gamma_record(**overrides)) is None

    def test_missing_prices_default_to_even(self):
        snapshot = GammaMarketFeed.parse_record(gamma_record(outcomePrices=None))

        assert snapshot.prices == (0.5, 0.5)

    @pytest.mark.asyncio
    async def test_fetch_skips_bad_records(self):
        records = [gamma_record(), gamma_record(conditionId='0xdef', liquidity='-1')]
        session = mock_session(response=mock_response(json_data=records))
        feed = GammaMarketFeed(limit=50, base_url='https://gamma.example/', session=session)

        markets = await feed.fetch_markets()

        assert [m.id for m in markets] == ['0xabc']
        assert feed.get_stats() == {'total_fetches': 1, 'skipped_records': 1}

        url = session.get.call_args.args[0]
        params = session.get.call_args.kwargs['params']
        assert url == 'https://gamma.example/markets'
        assert params['limit'] == 50
        assert params['order'] == 'volume24hr'

    @pytest.mark.asyncio
    async def test_fetch_accepts_wrapped_response(self):
        session = mock_session(response=mock_response(json_data={'data': [gamma_record()]}))
        feed = GammaMarketFeed(session=session)

        assert len(await feed.fetch_markets()) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_fetch_is_retried_then_raised(self):
        session = mock_session(response=mock_response(status=429))
        feed = GammaMarketFeed(session=session)

        with patch('utils.helpers.asyncio.sleep', new=AsyncMock()):
            with pytest.raises(RateLimitError):
                await feed.fetch_markets()

        assert session.get.call_count == 3

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = mock_session(side_effect=asyncio.TimeoutError())
        feed = GammaMarketFeed(session=session)

        with patch('utils.helpers.asyncio.sleep', new=AsyncMock()):
            with pytest.raises(APITimeoutError):
                await feed.fetch_markets()

    @pytest.mark.asyncio
    async def test_does_not_close_injected_session(self):
        session = mock_session()
        session.close = AsyncMock()

        await GammaMarketFeed(session=session).close()

        session.close.assert_not_awaited()


class TestTokenBucketRateLimiter:
    """Test burst capacity and sustained throttling"""

    @pytest.mark.asyncio
    async def test_burst_then_throttle(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(rate=2.0, capacity=2.0, clock=clock)

        async def advance(seconds):
            clock.advance(seconds)

        with patch('utils.rate_limiter.asyncio.sleep', new=AsyncMock(side_effect=advance)) as sleep:
            await limiter.acquire()
            await limiter.acquire()
            sleep.assert_not_awaited()

            await limiter.acquire()

        sleep.assert_awaited_once_with(0.5)
        assert limiter.tokens == pytest.approx(0.0)

    @pytest.mark.asyncio
    async def test_idle_refill_is_capped_at_capacity(self):
        clock = FakeClock()
        limiter = TokenBucketRateLimiter(rate=5.0, capacity=3.0, clock=clock)

        await limiter.acquire(cost=3.0)
        clock.advance(100)
        await limiter.acquire()

        assert limiter.tokens == pytest.approx(2.0)


# ============================================================================
# REPOSITORIES
# ============================================================================

class TestInMemoryRepository:

    @pytest.mark.asyncio
    async def test_save_and_update_status(self, multi_outcome_opportunity):
        repo = InMemoryRepository()

        opportunity_id = await repo.save_opportunity(multi_outcome_opportunity)
        await repo.update_opportunity_status(opportunity_id, OpportunityStatus.EXPIRED)

        assert repo.get_status(opportunity_id) == OpportunityStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_existing_id_is_kept(self, multi_outcome_opportunity):
        multi_outcome_opportunity.id = 'opp-1'

        assert await InMemoryRepository().save_opportunity(multi_outcome_opportunity) == 'opp-1'

    @pytest.mark.asyncio
    async def test_unknown_id(self):
        with pytest.raises(PersistenceError):
            await InMemoryRepository().update_opportunity_status('missing', OpportunityStatus.EXECUTED)


class TestJsonlRepository:

    @pytest.mark.asyncio
    async def test_records_are_appended(self, tmp_path, executor, cross_market_opportunity):
        repo = JsonlRepository(str(tmp_path / 'store' / 'opportunities.jsonl'))
        result = await executor.execute(cross_market_opportunity, 100.0)

        opportunity_id = await repo.save_opportunity(cross_market_opportunity)
        await repo.update_opportunity_status(opportunity_id, OpportunityStatus.EXECUTED)
        await repo.save_execution(result)

        records = repo.read_records()
        assert [r['record'] for r in records] == ['opportunity', 'status', 'execution']
        assert records[0]['data']['opportunity_type'] == 'cross_market'
        assert records[0]['data']['match_type'] == 'exact'
        assert records[1]['status'] == 'executed'
        assert records[2]['data']['legs'][1]['side'] == 'SELL'
        assert repo.records_written == 3

    def test_missing_file_reads_empty(self, tmp_path):
        assert JsonlRepository(str(tmp_path / 'nothing.jsonl')).read_records() == []

    @pytest.mark.asyncio
    async def test_unwritable_path(self, tmp_path, multi_outcome_opportunity):
        repo = JsonlRepository(str(tmp_path))

        with pytest.raises(PersistenceError):
            await repo.save_opportunity(multi_outcome_opportunity)


# ============================================================================
# NOTIFIERS
# ============================================================================

class TestMessageFormatting:

    def test_cross_market_message(self, cross_market_opportunity):
        text = format_opportunity_message(cross_market_opportunity)

        assert 'Cross-Market Opportunity' in text
        assert '11.50%' in text
        assert 'Market 2' in text
        assert 'Sell YES on market 2 @ 45.0%' in text

    def test_multi_outcome_message(self, multi_outcome_opportunity):
        text = format_opportunity_message(multi_outcome_opportunity)

        assert 'Sum: 97.0% (underpriced)' in text
        assert 'Market 2' not in text

    @pytest.mark.asyncio
    async def test_execution_message(self, executor, multi_outcome_opportunity):
        result = await executor.execute(multi_outcome_opportunity, 1000.0)

        text = format_execution_message(result)

        assert 'SUCCESS' in text
        assert 'Realized: $+10.0000' in text

    @pytest.mark.asyncio
    async def test_log_notifier_counts(self, multi_outcome_opportunity):
        notifier = LogNotifier()

        await notifier.send_opportunity(multi_outcome_opportunity)
        await notifier.send_message('hello')

        assert notifier.sent == 2


class TestTelegramNotifier:

    def test_requires_credentials(self):
        with pytest.raises(NotificationError):
            TelegramNotifier('', 'chat')

    @pytest.mark.asyncio
    async def test_posts_markdown_message(self):
        session = mock_session('post', response=mock_response())
        notifier = TelegramNotifier('TOKEN', '42', session=session, api_base='https://tg.example')

        await notifier.send_message('x' * 5000)

        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs['json']
        assert url == 'https://tg.example/botTOKEN/sendMessage'
        assert payload['chat_id'] == '42'
        assert payload['parse_mode'] == 'Markdown'
        assert len(payload['text']) == TELEGRAM_MAX_MESSAGE_CHARS
        assert notifier.messages_sent == 1

    @pytest.mark.asyncio
    async def test_non_200_raises(self):
        session = mock_session('post', response=mock_response(status=403, text='Forbidden'))
        notifier = TelegramNotifier('TOKEN', '42', session=session)

        with pytest.raises(NotificationError):
            await notifier.send_message('hi')
        assert notifier.messages_failed == 1


# ============================================================================
# RESOLUTION
# ============================================================================

class TestResolution:

    @pytest.mark.parametrize('record,expected', [
        ({'closed': True, 'outcomes': '["Yes","No"]', 'outcomePrices': '["1","0"]'}, 1.0),
        ({'closed': True, 'outcomes': '["Yes","No"]', 'outcomePrices': '["0.004","0.996"]'}, 0.0),
        ({'closed': True, 'outcomes': '["Yes","No"]', 'outcomePrices': '["0.5","0.5"]'}, None),
        ({'closed': False, 'outcomes': '["Yes","No"]', 'outcomePrices': '["1","0"]'}, None),
    ])
    def test_resolve_record(self, record, expected):
        assert GammaResolutionSource.resolve_record(record) == expected

    @pytest.mark.asyncio
    async def test_null_source_never_resolves(self):
        assert await NullResolutionSource().get_resolution('m1') is None

    @pytest.mark.asyncio
    async def test_resolved_markets_are_cached(self):
        record = {'closed': True, 'outcomes': json.dumps(['Yes', 'No']), 'outcomePrices': json.dumps(['0', '1'])}
        session = mock_session(response=mock_response(json_data=[record]))
        source = GammaResolutionSource(session=session)

        assert await source.get_resolution('0xabc') == 0.0
        assert await source.get_resolution('0xabc') == 0.0
        assert session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_unknown_market(self):
        source = GammaResolutionSource(session=mock_session(response=mock_response(json_data=[])))

        assert await source.get_resolution('0xabc') is None


# ============================================================================
# INTERFACES
# ============================================================================

class TestAdapterInterfaces:
    """Every bundled adapter satisfies the interface the bot is typed against"""

    @pytest.mark.parametrize('build,interface', [
        (lambda tmp: StaticMarketFeed(), MarketFeed),
        (lambda tmp: GammaMarketFeed(session=mock_session()), MarketFeed),
        (lambda tmp: InMemoryRepository(), OpportunityRepository),
        (lambda tmp: JsonlRepository(str(tmp / 'records.jsonl')), OpportunityRepository),
        (lambda tmp: LogNotifier(), Notifier),
        (lambda tmp: TelegramNotifier('TOKEN', '42', session=mock_session('post')), Notifier),
        (lambda tmp: NullResolutionSource(), ResolutionSource),
        (lambda tmp: GammaResolutionSource(session=mock_session()), ResolutionSource),
    ])
    def test_adapter_satisfies_interface(self, tmp_path, build, interface):
        assert isinstance(build(tmp_path), interface)

    def test_feed_is_not_a_notifier(self):
        assert not isinstance(StaticMarketFeed(), Notifier)
