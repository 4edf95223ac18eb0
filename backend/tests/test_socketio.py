from predictoor import socketio


def _names(events):
    return [e['name'] for e in events]


def test_socket_connect_and_join(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')

    received = sio_client.get_received('/ws')
    assert 'connected' in _names(received)

    # Join a round room and expect a joined ack
    sio_client.emit('join_round', {'round_id': 1, 'participant_id': 'alice'}, namespace='/ws')
    received = sio_client.get_received('/ws')
    joined = [e for e in received if e['name'] == 'joined']
    assert joined and joined[0]['args'][0]['room'] == 'round:1'


def test_join_requires_round_id(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('join_round', {'participant_id': 'alice'}, namespace='/ws')
    assert 'error' in _names(sio_client.get_received('/ws'))


def test_round_updates_are_broadcast(sio_client, client):
    sio_client.get_received('/ws')  # flush
    report = client.post('/api/rounds/tick').get_json()
    events = [e for e in sio_client.get_received('/ws') if e['name'] == 'round_update']
    assert events
    payload = events[0]['args'][0]
    assert payload['id'] == report['created'][0]
    assert payload['round']['status'] == 'waiting'
    assert payload['version'] == 0


def test_ghost_prediction_skips_the_submitter(flask_app, client, clock):
    round_id = client.post('/api/rounds/tick').get_json()['created'][0]
    clock.set(client.get(f'/api/rounds/{round_id}').get_json()['start_time'])
    client.post('/api/rounds/tick')

    alice = socketio.test_client(flask_app, namespace='/ws')
    bob = socketio.test_client(flask_app, namespace='/ws')
    try:
        alice.emit('join_round', {'round_id': round_id, 'participant_id': 'alice'}, namespace='/ws')
        bob.emit('join_round', {'round_id': round_id, 'participant_id': 'bob'}, namespace='/ws')
        alice.get_received('/ws')
        bob.get_received('/ws')

        res = client.post(f'/api/rounds/{round_id}/predictions', json={'participant_id': 'alice', 'target_value': 100.0})
        assert res.status_code == 201

        bob_events = [e for e in bob.get_received('/ws') if e['name'] == 'ghost_prediction']
        assert len(bob_events) == 1
        assert bob_events[0]['args'][0]['prediction']['participant_id'] == 'alice'
        assert 'ghost_prediction' not in _names(alice.get_received('/ws'))
    finally:
        alice.disconnect(namespace='/ws')
        bob.disconnect(namespace='/ws')


def test_ping_pong(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    pongs = [e for e in sio_client.get_received('/ws') if e['name'] == 'pong']
    assert pongs and pongs[0]['args'][0] == {'n': 1}
