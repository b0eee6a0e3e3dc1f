from quizparty import db, store
from quizparty.services.games.lifecycle import finish_session, start_session


def _answer(client, code, player_id, index, points, is_correct=None):
    return client.post(f'/api/games/{code}/answers', json={
        'player_id': player_id,
        'question_index': index,
        'points_earned': points,
        'is_correct': points > 0 if is_correct is None else is_correct,
    })


def _start(client, code, host_id):
    return client.post(f'/api/games/{code}/start', json={'host_id': host_id})


def test_create_game(client, quiz_id):
    res = client.post('/api/games/create', json={'quiz_id': quiz_id, 'time_limit': 60, 'question_count': 3})
    assert res.status_code == 201
    data = res.get_json()
    assert len(data['game_code']) == 6
    assert data['host_id']
    assert data['game']['phase'] == 'waiting'
    assert data['game']['is_started'] is False
    assert data['game']['quiz_start_time'] is None


def test_create_game_validates_input(client, quiz_id):
    assert client.post('/api/games/create', json={}).status_code == 400
    res = client.post('/api/games/create', json={'quiz_id': quiz_id, 'question_count': 99})
    assert res.status_code == 400
    assert client.post('/api/games/create', json={'quiz_id': 9999}).status_code == 404


def test_join_and_state(client, make_game):
    code, _ = make_game()
    res = client.post('/api/games/join', json={'game_code': code, 'name': 'Alice', 'avatar': 'fox'})
    assert res.status_code == 201
    alice = res.get_json()
    # Rejoining with the same id is not a second player
    res = client.post('/api/games/join', json={'game_code': code, 'name': 'Alice', 'player_id': alice['id']})
    assert res.status_code == 200

    state = client.get(f'/api/games/{code}/state').get_json()
    assert state['game']['code'] == code
    assert [p['name'] for p in state['players']] == ['Alice']
    assert state['progress'][0]['answered_count'] == 0
    assert state['progress'][0]['current_question'] == 1
    assert state['answers'] == []
    assert state['time_remaining'] is None
    assert state['server_time'] > 0


def test_join_requires_code_and_name(client, make_game):
    code, _ = make_game()
    assert client.post('/api/games/join', json={'game_code': code}).status_code == 400
    assert client.post('/api/games/join', json={'game_code': 'NOPE00', 'name': 'A'}).status_code == 404


def test_unknown_game_is_404(client):
    res = client.get('/api/games/ZZZZZZ')
    assert res.status_code == 404
    assert res.get_json()['error'] == 'Game not found'


def test_start_without_players_is_rejected(client, make_game):
    code, host_id = make_game()
    res = _start(client, code, host_id)
    assert res.status_code == 400
    game = client.get(f'/api/games/{code}').get_json()
    assert game['phase'] == 'waiting'
    assert game['quiz_start_time'] is None


def test_only_host_controls_lifecycle(client, make_game, join):
    code, host_id = make_game()
    join(code, 'Alice')
    assert _start(client, code, 'someone-else').status_code == 403
    assert _start(client, code, None).status_code == 403
    assert client.post(f'/api/games/{code}/exit', json={'host_id': 'x'}).status_code == 403
    assert client.get(f'/api/games/{code}').get_json()['is_started'] is False


def test_second_start_keeps_start_time(client, make_game, join):
    code, host_id = make_game()
    join(code, 'Alice')
    first = _start(client, code, host_id).get_json()
    assert first['changed'] is True
    started_at = first['game']['quiz_start_time']
    assert started_at is not None

    second = _start(client, code, host_id).get_json()
    assert second['changed'] is False
    assert second['game']['quiz_start_time'] == started_at


def test_racing_start_cannot_move_start_time(client, make_game, join):
    code, host_id = make_game()
    join(code, 'Alice')
    # A second request loaded the game before the first one committed
    racing = store.read_session(code=code)
    db.session.expunge(racing)
    started_at = _start(client, code, host_id).get_json()['game']['quiz_start_time']

    game, changed = start_session(racing, host_id, now_ms=started_at + 5_000)
    assert changed is False
    assert game.quiz_start_time == started_at
    assert client.get(f'/api/games/{code}').get_json()['quiz_start_time'] == started_at


def test_join_after_start_is_rejected(client, make_game, join):
    code, host_id = make_game()
    alice = join(code, 'Alice')
    _start(client, code, host_id)
    assert client.post('/api/games/join', json={'game_code': code, 'name': 'Late'}).status_code == 400
    # A known player may still rejoin after a refresh
    res = client.post('/api/games/join', json={'game_code': code, 'name': 'Alice', 'player_id': alice['id']})
    assert res.status_code == 200


def test_leave_waiting_room(client, make_game, join):
    code, _ = make_game()
    alice = join(code, 'Alice')
    join(code, 'Bob')
    res = client.post(f'/api/games/{code}/leave', json={'player_id': alice['id']})
    assert res.status_code == 200
    assert [p['name'] for p in client.get(f'/api/games/{code}/players').get_json()] == ['Bob']


def test_end_keeps_players_for_results(client, make_game, join):
    code, host_id = make_game()
    join(code, 'Alice')
    _start(client, code, host_id)
    res = client.post(f'/api/games/{code}/end', json={'host_id': host_id})
    assert res.status_code == 200
    game = res.get_json()['game']
    assert game['finished'] is True
    assert game['is_started'] is False
    assert game['phase'] == 'finished'
    assert len(client.get(f'/api/games/{code}/players').get_json()) == 1


def test_exit_removes_players(client, make_game, join):
    code, host_id = make_game()
    alice = join(code, 'Alice')
    join(code, 'Bob')
    _start(client, code, host_id)
    _answer(client, code, alice['id'], 0, 10)

    res = client.post(f'/api/games/{code}/exit', json={'host_id': host_id})
    assert res.get_json()['removed_players'] == 2
    assert client.get(f'/api/games/{code}/players').get_json() == []
    # Answers are history and stay behind
    assert len(client.get(f'/api/games/{code}/answers').get_json()) == 1


def test_answers_rejected_outside_running_quiz(client, make_game, join):
    code, host_id = make_game()
    alice = join(code, 'Alice')
    assert _answer(client, code, alice['id'], 0, 10).status_code == 400
    _start(client, code, host_id)
    assert _answer(client, code, alice['id'], 5, 10).status_code == 400
    assert _answer(client, code, alice['id'], 0, -1).status_code == 400
    assert _answer(client, code, 'ghost', 0, 10).status_code == 404


def test_answer_updates_player_and_duplicates_are_ignored(client, make_game, join):
    code, host_id = make_game()
    alice = join(code, 'Alice')
    _start(client, code, host_id)

    res = _answer(client, code, alice['id'], 0, 10)
    assert res.status_code == 201
    assert res.get_json()['created'] is True
    res = _answer(client, code, alice['id'], 0, 10)
    assert res.status_code == 200
    assert res.get_json()['created'] is False

    player = client.get(f'/api/games/{code}/players').get_json()[0]
    assert player['score'] == 10
    assert player['current_question'] == 1
    assert len(client.get(f'/api/games/{code}/answers').get_json()) == 1


def test_progress_prefers_answered_count_over_score(client, make_game, join):
    code, host_id = make_game(question_count=5)
    x = join(code, 'X')
    y = join(code, 'Y')
    _start(client, code, host_id)
    for index, points in enumerate([10, 0, 10, 0, 0]):
        _answer(client, code, x['id'], index, points)
    for index, points in enumerate([10, 10, 10]):
        _answer(client, code, y['id'], index, points)

    progress = client.get(f'/api/games/{code}/progress').get_json()
    assert [(p['name'], p['rank'], p['score'], p['answered_count']) for p in progress] == [
        ('X', 1, 20, 5),
        ('Y', 2, 30, 3),
    ]
    assert progress[0]['is_active'] is False
    assert progress[1]['is_active'] is True

    podium = client.get(f'/api/games/{code}/results').get_json()['results']
    assert [p['name'] for p in podium] == ['Y', 'X']


def test_bonus_points_do_not_count_as_answers(client, make_game, join):
    code, host_id = make_game(question_count=5)
    alice = join(code, 'Alice')
    _start(client, code, host_id)
    _answer(client, code, alice['id'], 0, 10)
    _answer(client, code, alice['id'], 1, 10)
    assert _answer(client, code, alice['id'], -1, 45, is_correct=False).status_code == 201

    progress = client.get(f'/api/games/{code}/progress').get_json()[0]
    assert progress['score'] == 65
    assert progress['answered_count'] == 2
    player = client.get(f'/api/games/{code}/players').get_json()[0]
    assert player['score'] == 65
    assert player['current_question'] == 2


def test_finish_is_idempotent(client, make_game, join):
    code, host_id = make_game()
    join(code, 'Alice')
    assert client.post(f'/api/games/{code}/finish', json={'reason': 'completed'}).status_code == 400
    _start(client, code, host_id)
    assert client.post(f'/api/games/{code}/finish', json={'reason': 'bogus'}).status_code == 400

    first = client.post(f'/api/games/{code}/finish', json={'reason': 'expired'}).get_json()
    second = client.post(f'/api/games/{code}/finish', json={'reason': 'completed'}).get_json()
    assert first['changed'] is True
    assert second['changed'] is False
    assert second['game']['finished'] is True
    assert second['game']['is_started'] is False


def test_racing_finish_writes_once(client, make_game, join):
    code, host_id = make_game()
    join(code, 'Alice')
    _start(client, code, host_id)
    racing = store.read_session(code=code)
    db.session.expunge(racing)
    assert client.post(f'/api/games/{code}/finish', json={'reason': 'completed'}).get_json()['changed'] is True

    assert racing.finished is False
    assert finish_session(racing, 'expired') is False
    game = client.get(f'/api/games/{code}').get_json()
    assert game['finished'] is True
    assert game['is_started'] is False


def test_questions_are_stable_per_player(client, make_game, join):
    code, _ = make_game(question_count=4)
    alice = join(code, 'Alice')
    first = client.get(f'/api/games/{code}/questions', query_string={'player_id': alice['id']}).get_json()
    again = client.get(f'/api/games/{code}/questions', query_string={'player_id': alice['id']}).get_json()
    assert first == again
    assert [q['question_index'] for q in first] == [0, 1, 2, 3]
    for question in first:
        assert 0 <= question['correct_index'] < len(question['choices'])
    assert client.get(f'/api/games/{code}/questions').status_code == 400


def test_finished_code_still_resolves_for_results(client, make_game, join):
    code, host_id = make_game()
    join(code, 'Alice')
    _start(client, code, host_id)
    client.post(f'/api/games/{code}/end', json={'host_id': host_id})
    res = client.get(f'/api/games/{code.lower()}/results')
    assert res.status_code == 200
    data = res.get_json()
    assert data['game']['phase'] == 'finished'
    assert [p['name'] for p in data['results']] == ['Alice']


def test_server_time(client):
    data = client.get('/api/server-time').get_json()
    assert isinstance(data['timestamp'], int)
    assert data['iso'].endswith('+00:00')
