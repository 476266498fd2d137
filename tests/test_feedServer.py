import pytest
from fastapi.testclient import TestClient

from server.feedServer import FeedServer


@pytest.fixture
def client(store, cache, config, clock, rng):
    server = FeedServer(store=store, cache=cache, config=config, clock=clock, rng=rng)
    return TestClient(server.app)


@pytest.fixture
def category(client):
    response = client.post('/categories', json={'name': 'Space', 'description': 'Beyond the sky'})
    assert response.status_code == 201
    return response.json()


def create_fact(client, category, title):
    response = client.post('/facts', json={
        'title': title,
        'description': f"About {title.lower()}",
        'category_id': category['id'],
    })
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get('/health')

    assert response.status_code == 200
    assert response.json()['status'] == 'healthy'


def test_fact_crud(client, category):
    fact = create_fact(client, category, 'A day on Venus outlasts its year')

    assert client.get(f"/facts/{fact['id']}").json()['title'] == 'A day on Venus outlasts its year'

    updated = client.patch(f"/facts/{fact['id']}", json={'title': 'Venus rotates slowly'})
    assert updated.status_code == 200
    assert updated.json()['title'] == 'Venus rotates slowly'

    assert client.get('/facts/count').json() == {'count': 1}
    assert client.get(f"/categories/{category['id']}").json()['facts_count'] == 1

    assert client.delete(f"/facts/{fact['id']}").status_code == 200
    assert client.get(f"/facts/{fact['id']}").status_code == 404


def test_listing_response_shape(client, category):
    for title in ('One', 'Two', 'Three'):
        create_fact(client, category, title)

    body = client.get('/facts', params={'limit': 2}).json()

    assert body['total'] == 3
    assert body['total_pages'] == 2
    assert len(body['facts']) == 2


def test_feed_uses_identity_headers(client, category):
    facts = [create_fact(client, category, title) for title in ('One', 'Two', 'Three')]

    viewed = client.post(f"/facts/{facts[0]['id']}/view", headers={'X-Anon-Id': 'anon-1'})
    assert viewed.json() == {'fact_id': facts[0]['id'], 'recorded': True}

    feed = client.get('/facts/feed', params={'limit': 2}, headers={'X-Anon-Id': 'anon-1'})
    assert feed.status_code == 200
    body = feed.json()
    assert {f['id'] for f in body['facts']} == {facts[1]['id'], facts[2]['id']}
    assert body['has_more'] is False

    category_feed = client.get(
        f"/facts/feed/category/{category['id']}", params={'limit': 2}, headers={'X-Anon-Id': 'anon-1'}
    )
    assert category_feed.status_code == 200


def test_view_with_metrics_and_repeat(client, category):
    fact = create_fact(client, category, 'Mars has blue sunsets')
    payload = {'view_duration': 12.5, 'completion_rate': 0.9}

    first = client.post(f"/facts/{fact['id']}/view", json=payload, headers={'X-User-Id': 'u1'})
    second = client.post(f"/facts/{fact['id']}/view", json=payload, headers={'X-User-Id': 'u1'})

    assert first.json()['recorded'] is True
    assert second.json()['recorded'] is False


def test_errors_map_to_status_codes(client, category):
    assert client.get('/facts/feed').status_code == 400
    assert client.get('/facts/feed', params={'limit': 0}, headers={'X-Anon-Id': 'a1'}).status_code == 400
    assert client.get('/facts/feed', headers={'X-User-Id': 'ghost'}).status_code == 404
    assert client.post('/categories', json={'name': 'Space'}).status_code == 409

    response = client.post('/facts/missing/view', headers={'X-Anon-Id': 'a1'})
    assert response.status_code == 404
    assert response.json() == {'error': 'Fact not found'}


def test_interests_and_stats(client, category):
    create_fact(client, category, 'Neutron stars are dense')

    response = client.put('/users/u1/interests', json={'interests': [category['id']]})
    assert response.json() == {'user_id': 'u1', 'interests': [category['id']]}

    feed = client.get('/facts/feed', params={'limit': 1}, headers={'X-User-Id': 'u1'})
    assert feed.status_code == 200

    stats = client.get('/stats').json()
    assert stats['total_facts'] == 1
    assert stats['total_categories'] == 1
