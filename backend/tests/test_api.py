def _create(client, **extra):
    body = {'player_id': 'host', 'name': 'Hana', **extra}
    res = client.post('/api/games/create', json=body)
    assert res.status_code == 201
    return res.get_json()['game_code']


def _join(client, code, player_id, name):
    return client.post('/api/games/join', json={'game_code': code, 'player_id': player_id, 'name': name})


def test_create_game(client):
    res = client.post('/api/games/create', json={'name': 'Hana'})
    assert res.status_code == 201
    data = res.get_json()
    assert len(data['game_code']) == 6
    assert data['game']['players'][0]['is_host'] is True
    assert data['game']['players'][0]['id'] == data['player_id']


def test_create_rejects_bad_config(client):
    res = client.post('/api/games/create', json={'max_rounds': 50})
    assert res.status_code == 400
    assert res.get_json()['code'] == 'invalid_config'


def test_join_and_state(client):
    code = _create(client)
    res = _join(client, code.lower(), 'alice', 'Alice')
    assert res.status_code == 201
    assert res.get_json()['game_code'] == code

    res = client.get(f'/api/games/{code}/state')
    assert res.status_code == 200
    game = res.get_json()
    assert game['game_code'] == code
    assert game['phase'] == 'lobby'
    assert any(p['name'] == 'Alice' for p in game['players'])


def test_join_requires_code_and_name(client):
    res = client.post('/api/games/join', json={'name': 'Alice'})
    assert res.status_code == 400


def test_unknown_game_is_404(client):
    res = client.get('/api/games/ZZZZZZ/state')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'session_not_found'


def test_full_game_rejects_join(client):
    code = _create(client, max_players=2)
    assert _join(client, code, 'p2', 'Bo').status_code == 201
    res = _join(client, code, 'p3', 'Cy')
    assert res.status_code == 409
    assert res.get_json()['code'] == 'session_full'


def test_start_permissions(client):
    code = _create(client)
    res = client.post(f'/api/games/{code}/start', json={'player_id': 'host'})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'not_enough_players'

    _join(client, code, 'bo', 'Bo')
    res = client.post(f'/api/games/{code}/start', json={'player_id': 'bo'})
    assert res.status_code == 403
    assert res.get_json()['code'] == 'not_host'

    res = client.post(f'/api/games/{code}/start', json={'player_id': 'host'})
    assert res.status_code == 200
    assert res.get_json()['phase'] == 'round_intro'
    assert _join(client, code, 'late', 'Late').status_code == 409


def test_round_over_http(client):
    code = _create(client)
    _join(client, code, 'bo', 'Bo')
    _join(client, code, 'cy', 'Cy')
    client.post(f'/api/games/{code}/start', json={'player_id': 'host'})

    adv = client.post(f'/api/games/{code}/advance', json={'player_id': 'host'}).get_json()
    assert adv['advanced'] is True
    assert adv['phase'] == 'card_selection'
    judge_id = adv['judge_id']

    contributors = [pid for pid in ('host', 'bo', 'cy') if pid != judge_id]
    for pid in contributors:
        state = client.get(f'/api/games/{code}/state', query_string={'player_id': pid}).get_json()
        me = next(p for p in state['players'] if p['id'] == pid)
        cards = me['hand'][:state['blank_count']]
        res = client.post(f'/api/games/{code}/selections', json={'player_id': pid, 'cards': cards})
        assert res.status_code == 201

    state = client.get(f'/api/games/{code}/state').get_json()
    assert state['phase'] == 'judge_phase'
    # No image API key under test: every image falls back to the placeholder
    assert len(state['images']) == 2
    assert all(img['is_placeholder'] for img in state['images'])

    res = client.post(f'/api/games/{code}/ranking/submit',
                      json={'judge_id': judge_id, 'first_place_id': contributors[0], 'second_place_id': contributors[1]})
    assert res.status_code == 409
    assert res.get_json()['code'] == 'not_ready'

    res = client.post(f'/api/games/{code}/images/{contributors[0]}/loaded', json={})
    assert res.status_code == 400
    res = client.post(f'/api/games/{code}/images/{contributors[0]}/loaded', json={'judge_id': contributors[1]})
    assert res.status_code == 403
    assert res.get_json()['code'] == 'not_judge'
    assert client.get(f'/api/games/{code}/ranking').get_json()['loaded'] == []

    for pid in contributors:
        res = client.post(f'/api/games/{code}/images/{pid}/loaded', json={'judge_id': judge_id})
        assert res.status_code == 200
    assert res.get_json()['all_loaded'] is True

    res = client.post(f'/api/games/{code}/ranking/submit',
                      json={'judge_id': judge_id, 'first_place_id': contributors[0], 'second_place_id': contributors[1]})
    assert res.status_code == 200
    result = res.get_json()
    assert result['phase'] == 'results'
    scores = {p['id']: p['score'] for p in result['players']}
    assert scores[contributors[0]] == 5
    assert scores[contributors[1]] == 2
    assert result['last_results']['first_place_id'] == contributors[0]


def test_selection_from_judge_is_forbidden(client):
    code = _create(client)
    _join(client, code, 'bo', 'Bo')
    client.post(f'/api/games/{code}/start', json={'player_id': 'host'})
    state = client.post(f'/api/games/{code}/advance', json={'player_id': 'host'}).get_json()
    judge_id = state['judge_id']
    res = client.post(f'/api/games/{code}/selections', json={'player_id': judge_id, 'cards': ['x']})
    assert res.status_code == 403
    assert res.get_json()['code'] == 'judge_cannot_submit'


def test_end_session_archives_snapshot(client):
    code = _create(client)
    _join(client, code, 'bo', 'Bo')
    assert client.post(f'/api/games/{code}/end', json={'player_id': 'bo'}).status_code == 403

    res = client.post(f'/api/games/{code}/end', json={'player_id': 'host'})
    assert res.status_code == 200
    assert client.get(f'/api/games/{code}/state').status_code == 404

    res = client.get(f'/api/games/archive/{code}')
    assert res.status_code == 200
    archived = res.get_json()
    assert archived[0]['reason'] == 'ended'
    assert archived[0]['player_count'] == 2


def test_leave_last_player_ends_game(client):
    code = _create(client)
    res = client.post(f'/api/games/{code}/leave', json={'player_id': 'host'})
    assert res.status_code == 200
    assert res.get_json()['game_ended'] is True
    assert client.get(f'/api/games/archive/{code}').get_json()[0]['reason'] == 'empty'


def test_stats(client):
    _create(client)
    stats = client.get('/api/games/stats').get_json()
    assert stats['total_active_sessions'] == 1
    assert stats['lobby_count'] == 1


def test_health(client):
    assert client.get('/health').get_json()['status'] == 'ok'
