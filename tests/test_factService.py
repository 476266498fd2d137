from unittest.mock import MagicMock, patch

import pytest

from feed.cacheManager import fact_key, feed_key
from feed.factService import FactService
from feed.rankingEngine import rank_feed
from shared.errors import NotFoundError, ValidationError


# Writes and facts_count

def test_create_validates_input(fact_service, science):
    with pytest.raises(ValidationError):
        fact_service.create(title=' ', description='text', category_id=science.id)
    with pytest.raises(NotFoundError):
        fact_service.create(title='Title', description='text', category_id='missing')


def test_facts_count_tracks_create_move_and_delete(fact_service, store, science, history, make_fact):
    first = make_fact(science)
    make_fact(science)
    assert store.get_category(science.id).facts_count == 2

    fact_service.update(first.id, category_id=history.id)
    assert store.get_category(science.id).facts_count == 1
    assert store.get_category(history.id).facts_count == 1

    fact_service.delete(first.id)
    assert store.get_category(history.id).facts_count == 0


def test_cached_counts_follow_writes(fact_service, science, make_fact):
    make_fact(science)
    assert fact_service.get_facts_count_by_category(science.id) == 1
    assert fact_service.get_total_facts_count() == 1

    make_fact(science)
    assert fact_service.get_facts_count_by_category(science.id) == 2
    assert fact_service.get_total_facts_count() == 2


def test_recalculate_all_category_facts_count(fact_service, store, science, history, make_fact):
    make_fact(science)
    make_fact(history)
    store.set_category_facts_count(science.id, 99)

    assert fact_service.recalculate_all_category_facts_count() == 2
    assert store.get_category(science.id).facts_count == 1


def test_update_rejects_unknown_fields_and_missing_facts(fact_service, science, make_fact):
    fact = make_fact(science)

    with pytest.raises(ValidationError):
        fact_service.update(fact.id, views=10)
    with pytest.raises(NotFoundError):
        fact_service.update('missing', title='New')
    with pytest.raises(NotFoundError):
        fact_service.delete('missing')


def test_get_fact_is_cached_and_refreshed_on_update(fact_service, cache, science, make_fact):
    fact = make_fact(science, title='Honey never spoils')

    assert fact_service.get_fact(fact.id).title == 'Honey never spoils'
    assert cache.get(fact_key(fact.id))['title'] == 'Honey never spoils'

    fact_service.update(fact.id, title='Honey keeps for millennia')
    assert fact_service.get_fact(fact.id).title == 'Honey keeps for millennia'

    with pytest.raises(NotFoundError):
        fact_service.get_fact('missing')


def test_cache_outage_never_fails_writes_or_reads(store, config, clock, rng, science):
    broken = MagicMock()
    for method in ('get', 'set', 'delete', 'delete_by_pattern', 'list_keys'):
        getattr(broken, method).side_effect = RuntimeError('cache down')
    service = FactService(store, broken, config, clock=clock, rng=rng)

    fact = service.create(title='Bananas are berries', description='Botanically', category_id=science.id)
    assert service.get_fact(fact.id).id == fact.id
    assert service.mark_as_viewed(fact.id, anon_id='a1') is True
    assert service.get_feed(limit=1, anon_id='a1').facts[0].id == fact.id


# Listing

def test_listing_filters_sorts_and_paginates(fact_service, science, history, make_fact):
    make_fact(science, title='Venus spins backwards', description='Retrograde rotation')
    make_fact(science, title='Light bends', description='Gravitational lensing')
    make_fact(history, title='Cleopatra and the pyramids', description='Closer in time to the Moon landing')

    page = fact_service.get_facts(page=1, limit=2)
    assert page.total == 3
    assert [f.title for f in page.facts] == ['Cleopatra and the pyramids', 'Light bends']

    second = fact_service.get_facts(page=2, limit=2)
    assert [f.title for f in second.facts] == ['Venus spins backwards']

    by_title = fact_service.get_facts(sort_by='title', sort_order='asc', category_id=science.id)
    assert [f.title for f in by_title.facts] == ['Light bends', 'Venus spins backwards']

    searched = fact_service.get_facts(search='MOON')
    assert [f.title for f in searched.facts] == ['Cleopatra and the pyramids']
    assert searched.facts[0].category_name == 'History'


def test_listing_date_range_combines_both_bounds(fact_service, science, make_fact):
    make_fact(science, title='At ten')
    make_fact(science, title='At eleven')
    make_fact(science, title='At noon')

    page = fact_service.get_facts(start_date='2024-03-01T10:30:00Z', end_date='2024-03-01T11:30:00Z')

    assert [f.title for f in page.facts] == ['At eleven']


def test_listing_rejects_bad_parameters(fact_service):
    with pytest.raises(ValidationError):
        fact_service.get_facts(page=0)
    with pytest.raises(ValidationError):
        fact_service.get_facts(sort_by='views')
    with pytest.raises(ValidationError):
        fact_service.get_facts(sort_order='sideways')
    with pytest.raises(ValidationError):
        fact_service.get_facts(start_date='not a date')


def test_listing_reports_view_counts(fact_service, science, make_fact):
    viewed = make_fact(science)
    make_fact(science)
    fact_service.mark_as_viewed(viewed.id, anon_id='a1')
    fact_service.mark_as_viewed(viewed.id, user_id='u1')

    views = {f.id: f.views for f in fact_service.get_facts().facts}

    assert views[viewed.id] == 2
    assert sorted(views.values()) == [0, 2]


def test_latest_facts(fact_service, science, make_fact):
    facts = [make_fact(science) for _ in range(3)]

    latest = fact_service.get_latest_facts(limit=2)

    assert [f.id for f in latest.facts] == [facts[2].id, facts[1].id]
    assert latest.has_more is True
    assert fact_service.get_latest_facts(limit=3).has_more is False


# Feeds

def test_feed_requires_a_subject_and_a_valid_limit(fact_service):
    with pytest.raises(ValidationError):
        fact_service.get_feed(limit=5)
    with pytest.raises(ValidationError):
        fact_service.get_feed(limit=0, anon_id='a1')
    with pytest.raises(ValidationError):
        fact_service.get_feed(limit=101, anon_id='a1')


def test_feed_excludes_viewed_facts(fact_service, science, make_fact):
    facts = [make_fact(science) for _ in range(5)]
    fact_service.mark_as_viewed(facts[0].id, anon_id='a1')
    fact_service.mark_as_viewed(facts[1].id, anon_id='a1')

    result = fact_service.get_feed(limit=3, anon_id='a1')

    assert {f.id for f in result.facts} == {f.id for f in facts[2:]}
    assert result.has_more is False


def test_feed_never_repeats_facts(fact_service, science, history, make_fact):
    for i in range(12):
        make_fact(science if i % 3 else history)

    result = fact_service.get_feed(limit=8, anon_id='a1')

    assert len(result.facts) == 8
    assert len({f.id for f in result.facts}) == 8
    assert result.has_more is True


def test_feed_tops_up_with_previously_viewed_facts(fact_service, clock, science, make_fact):
    facts = [make_fact(science) for _ in range(10)]
    for fact in facts[:8]:
        clock.advance(minutes=1)
        fact_service.mark_as_viewed(fact.id, anon_id='a1')

    result = fact_service.get_feed(limit=5, anon_id='a1')
    ids = [f.id for f in result.facts]

    assert len(ids) == 5
    assert len(set(ids)) == 5
    assert set(ids[:2]) == {facts[8].id, facts[9].id}
    assert set(ids[2:]) <= {f.id for f in facts[:8]}
    assert result.has_more is False


def test_feed_is_cached_per_subject(fact_service, cache, science, make_fact):
    facts = [make_fact(science) for _ in range(4)]

    fact_service.get_feed(limit=2, anon_id='a1')
    fact_service.get_feed(limit=2, anon_id='a2')
    assert cache.get(feed_key(limit=2, anon_id='a1')) is not None

    fact_service.mark_as_viewed(facts[0].id, anon_id='a2')

    assert cache.get(feed_key(limit=2, anon_id='a1')) is not None
    assert cache.get(feed_key(limit=2, anon_id='a2')) is None


def test_authenticated_feed_needs_a_known_user(fact_service, science, make_fact):
    make_fact(science)

    with pytest.raises(NotFoundError):
        fact_service.get_feed(limit=1, user_id='ghost')


def test_user_id_wins_over_anonymous_id(fact_service, user_service, science, make_fact):
    facts = [make_fact(science) for _ in range(2)]
    user_service.set_interests('u1', [])
    fact_service.mark_as_viewed(facts[1].id, user_id='u1')

    result = fact_service.get_feed(limit=1, user_id='u1', anon_id='a1')

    assert [f.id for f in result.facts] == [facts[0].id]


def test_declared_interest_lifts_its_category(fact_service, user_service, science, history, make_fact):
    older_history = make_fact(history)
    make_fact(science)
    newest_science = make_fact(science)

    user_service.set_interests('u1', [])
    assert fact_service.get_feed(limit=1, user_id='u1').facts[0].id == newest_science.id

    user_service.set_interests('u1', [history.id])
    assert fact_service.get_feed(limit=1, user_id='u1').facts[0].id == older_history.id


def test_category_feed_stays_in_its_category(fact_service, science, history, make_fact):
    science_facts = [make_fact(science) for _ in range(3)]
    make_fact(history)
    fact_service.mark_as_viewed(science_facts[0].id, anon_id='a1')

    result = fact_service.get_feed_by_category(science.id, limit=2, anon_id='a1')

    assert {f.id for f in result.facts} == {f.id for f in science_facts[1:]}
    assert all(f.category_id == science.id for f in result.facts)
    assert result.has_more is False


def test_category_feed_for_unknown_category(fact_service):
    with pytest.raises(NotFoundError):
        fact_service.get_feed_by_category('missing', limit=2, anon_id='a1')


def test_category_feed_rejects_missing_interest_category(fact_service, user_service, store, science, history,
                                                         make_fact):
    make_fact(science)
    user_service.set_interests('u1', [history.id])
    # Removed underneath the user record, leaving a dangling interest
    store.delete_category(history.id)

    with pytest.raises(NotFoundError):
        fact_service.get_feed_by_category(science.id, limit=1, user_id='u1')


def test_category_feed_boosts_declared_interests(fact_service, user_service, science, make_fact):
    facts = [make_fact(science) for _ in range(3)]
    user_service.set_interests('plain', [])
    user_service.set_interests('fan', [science.id])

    with patch('feed.factService.rank_feed', wraps=rank_feed) as ranker:
        fact_service.get_feed_by_category(science.id, limit=2, user_id='plain')
        fact_service.get_feed_by_category(science.id, limit=2, user_id='fan')

    plain_weight = ranker.call_args_list[0].args[2]
    fan_weight = ranker.call_args_list[1].args[2]
    assert plain_weight(facts[0]) == pytest.approx(0.5)
    assert fan_weight(facts[0]) == pytest.approx(0.75)
    assert ranker.call_args_list[1].args[6] is fact_service.rng


# Views

def test_mark_as_viewed_is_idempotent(fact_service, science, make_fact):
    fact = make_fact(science)

    assert fact_service.mark_as_viewed(fact.id, anon_id='a1') is True
    assert fact_service.mark_as_viewed(fact.id, anon_id='a1') is False


def test_mark_as_viewed_validates_metrics(fact_service, science, make_fact):
    fact = make_fact(science)

    with pytest.raises(ValidationError):
        fact_service.mark_as_viewed(fact.id, anon_id='a1', completion_rate=1.5)
    with pytest.raises(ValidationError):
        fact_service.mark_as_viewed(fact.id, anon_id='a1', view_duration=-1)
