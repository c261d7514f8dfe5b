import pytest

pytestmark = pytest.mark.asyncio


async def test_weekly_completion_creates_next_occurrence(client):
    tag = (await client.post('/api/tags', json={'name': 'chores'})).json()['tag']
    r = await client.post('/api/todos', json={
        'title': 'Take out bins',
        'due_date': '2025-03-10T09:00',
        'recurrence_pattern': 'weekly',
        'priority': 'high',
        'reminder_minutes': 30,
        'tag_ids': [tag['id']],
    })
    assert r.status_code == 201
    original = r.json()

    r = await client.patch(f"/api/todos/{original['id']}", json={'completed': True})
    assert r.status_code == 200
    body = r.json()
    assert body['completed'] is True
    assert body['completed_at'] is not None

    nxt = body['next_todo']
    assert nxt is not None
    assert nxt['id'] != original['id']
    assert nxt['title'] == 'Take out bins'
    assert nxt['due_date'] == '2025-03-17T09:00:00+08:00'
    assert nxt['recurrence_pattern'] == 'weekly'
    assert nxt['priority'] == 'high'
    assert nxt['reminder_minutes'] == 30
    assert nxt['completed'] is False
    assert [t['id'] for t in nxt['tags']] == [tag['id']]

    r = await client.get(f"/api/todos/{nxt['id']}")
    assert r.status_code == 200


async def test_monthly_toggle_clamps_month_end(client):
    r = await client.post('/api/todos', json={
        'title': 'Invoice',
        'due_date': '2025-01-31T10:00',
        'recurrence_pattern': 'monthly',
    })
    todo = r.json()
    r = await client.post(f"/api/todos/{todo['id']}/toggle")
    assert r.status_code == 200
    assert r.json()['next_todo']['due_date'] == '2025-02-28T10:00:00+08:00'


async def test_completing_twice_does_not_duplicate(client):
    r = await client.post('/api/todos', json={
        'title': 'Stretch', 'due_date': '2025-03-10T07:00', 'recurrence_pattern': 'daily',
    })
    todo = r.json()
    first = await client.patch(f"/api/todos/{todo['id']}", json={'completed': True})
    assert first.json()['next_todo'] is not None
    second = await client.patch(f"/api/todos/{todo['id']}", json={'completed': True})
    assert second.json()['next_todo'] is None

    r = await client.get('/api/todos', params={'q': 'Stretch'})
    assert len(r.json()) == 2


async def test_reopening_does_not_create_next(client):
    r = await client.post('/api/todos', json={
        'title': 'Water plants', 'due_date': '2025-03-10T07:00', 'recurrence_pattern': 'daily',
    })
    todo = r.json()
    await client.post(f"/api/todos/{todo['id']}/toggle")
    r = await client.post(f"/api/todos/{todo['id']}/toggle")
    assert r.json()['completed'] is False
    assert r.json()['next_todo'] is None


async def test_roll_over_past_year_9999_is_rejected(client):
    r = await client.post('/api/todos', json={
        'title': 'Far future', 'due_date': '9999-12-15T09:00', 'recurrence_pattern': 'monthly',
    })
    assert r.status_code == 201
    todo = r.json()
    r = await client.post(f"/api/todos/{todo['id']}/toggle")
    assert r.status_code == 400
    r = await client.get(f"/api/todos/{todo['id']}")
    assert r.json()['completed'] is False
