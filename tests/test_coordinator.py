"""
Tests for the coordinator: matchmaking, gameplay broadcasts and reconnection.
"""

from events import CommitNumber, GameAction, JoinLobby, ResumeSession, SubmitGuess
from game_logic import validate_number

ALICE_NUMBER = '12345'
BOB_NUMBER = '67890'
MISS = '13579'


def named(outbox, event):
    return [m for m in outbox if m.event == event]


def pair(coord):
    """Pair Alice (sid-a) and Bob (sid-b) and return their game."""
    coord.join_lobby('sid-a', JoinLobby('Alice', 'session-a'))
    outbox = coord.join_lobby('sid-b', JoinLobby('Bob', 'session-b'))
    return coord.games[outbox[0].data['gameId']]


def pid(coord, session_id):
    return coord.sessions.get(session_id).participant_id


def start_round(coord, game, first='session-a'):
    """Give ``first`` the opening turn and commit both numbers."""
    game.current_turn = game.round_starter = pid(coord, first)
    coord.commit_number('sid-a', CommitNumber(game.game_id, ALICE_NUMBER))
    coord.commit_number('sid-b', CommitNumber(game.game_id, BOB_NUMBER))


def finish_round(coord, game):
    """Alice misses, Bob hits Alice's number: Bob wins round."""
    start_round(coord, game)
    coord.submit_guess('sid-a', SubmitGuess(game.game_id, MISS))
    coord.submit_guess('sid-b', SubmitGuess(game.game_id, ALICE_NUMBER))
    assert game.ended


class TestMatchmaking:
    """Tests for lobby registration and pairing."""

    def test_first_player_waits(self, coord):
        """The first player to join should wait for an opponent."""
        outbox = coord.join_lobby('sid-a', JoinLobby('Alice', 'session-a'))
        assert len(outbox) == 1
        assert outbox[0].to == 'sid-a'
        assert outbox[0].event == 'waiting'
        assert outbox[0].data['sessionId'] == 'session-a'

    def test_fifo_pairing(self, coord):
        """Players should be paired in arrival order."""
        coord.join_lobby('sid-x', JoinLobby('X', 'session-x'))
        outbox = coord.join_lobby('sid-y', JoinLobby('Y', 'session-y'))
        found = named(outbox, 'game-found')
        assert {m.to for m in found} == {'sid-x', 'sid-y'}
        assert len({m.data['gameId'] for m in found}) == 1
        assert len(coord.games) == 1

        outbox = coord.join_lobby('sid-z', JoinLobby('Z', 'session-z'))
        assert [m.event for m in outbox] == ['waiting']
        assert len(coord.queue) == 1
        assert 'sid-z' in coord.queue
        assert len(coord.games) == 1

    def test_game_found_is_personalised(self, coord):
        """Each player should receive their own playerId and sessionId."""
        coord.join_lobby('sid-a', JoinLobby('Alice', 'session-a'))
        outbox = coord.join_lobby('sid-b', JoinLobby('Bob', 'session-b'))
        by_sid = {m.to: m.data for m in outbox}
        assert by_sid['sid-a']['sessionId'] == 'session-a'
        assert by_sid['sid-b']['playerId'] == pid(coord, 'session-b')
        assert by_sid['sid-a']['currentTurn'] in {pid(coord, 'session-a'), pid(coord, 'session-b')}
        assert [p['name'] for p in by_sid['sid-a']['players']] == ['Alice', 'Bob']

    def test_name_conflict_changes_nothing(self, coord):
        """A name conflict should leave the lobby untouched."""
        coord.join_lobby('sid-a', JoinLobby('Alice', 'session-a'))
        outbox = coord.join_lobby('sid-b', JoinLobby(' alice ', 'session-b'))
        assert [(m.to, m.event) for m in outbox] == [('sid-b', 'name-error')]
        assert coord.sessions.get('session-b') is None
        assert len(coord.queue) == 1
        assert coord.games == {}

    def test_empty_name_rejected(self, coord):
        """An empty name should be refused."""
        outbox = coord.join_lobby('sid-a', JoinLobby(''))
        assert [m.event for m in outbox] == ['name-error']

    def test_waiting_player_disconnect_frees_queue_and_name(self, coord):
        """A waiting player who disconnects should leave the queue and release the name."""
        coord.join_lobby('sid-a', JoinLobby('Alice', 'session-a'))
        assert coord.disconnect('sid-a') == []
        assert len(coord.queue) == 0
        outbox = coord.join_lobby('sid-c', JoinLobby('Alice', 'session-c'))
        assert [m.event for m in outbox] == ['waiting']

    def test_rejoin_from_same_session_while_waiting(self, coord):
        """Rejoining from the same session should not duplicate the queue entry."""
        coord.join_lobby('sid-a', JoinLobby('Alice', 'session-a'))
        outbox = coord.join_lobby('sid-a2', JoinLobby('Alice', 'session-a'))
        assert [m.event for m in outbox] == ['waiting']
        assert len(coord.queue) == 1
        assert 'sid-a2' in coord.queue

    def test_rejoin_without_session_id_keeps_own_name(self, coord):
        """A waiting client rejoining without a session id should keep its session and name."""
        first = coord.join_lobby('sid-a', JoinLobby('Alice'))
        session_id = first[0].data['sessionId']
        outbox = coord.join_lobby('sid-a', JoinLobby('Alice'))
        assert [m.event for m in outbox] == ['waiting']
        assert outbox[0].data['sessionId'] == session_id
        assert len(coord.queue) == 1
        assert len(coord.sessions) == 1


class TestSetup:
    """Tests for committing secret numbers."""

    def test_commit_shows_ready_before_start(self, coord):
        """The first commit should announce the player as ready."""
        game = pair(coord)
        outbox = coord.commit_number('sid-a', CommitNumber(game.game_id, ALICE_NUMBER))
        assert {m.to for m in named(outbox, 'player-ready')} == {'sid-a', 'sid-b'}

        state = coord.game_state(game, pid(coord, 'session-a'))
        alice = state['players'][0]
        assert alice['ready'] is True
        assert alice['number'] == ALICE_NUMBER
        assert state['gameStarted'] is False

    def test_numbers_hidden_from_opponent(self, coord):
        """Committed numbers should be hidden from the opponent."""
        game = pair(coord)
        coord.commit_number('sid-a', CommitNumber(game.game_id, ALICE_NUMBER))
        state = coord.game_state(game, pid(coord, 'session-b'))
        assert state['players'][0]['number'] is None

    def test_both_commits_start_game(self, coord):
        """The second commit should start the round."""
        game = pair(coord)
        coord.commit_number('sid-a', CommitNumber(game.game_id, ALICE_NUMBER))
        outbox = coord.commit_number('sid-b', CommitNumber(game.game_id, BOB_NUMBER))
        started = named(outbox, 'game-started')
        assert {m.to for m in started} == {'sid-a', 'sid-b'}
        assert started[0].data['currentTurn'] == game.current_turn

    def test_invalid_number_reported_to_sender_only(self, coord):
        """An invalid number should be reported to the sender only."""
        game = pair(coord)
        outbox = coord.commit_number('sid-a', CommitNumber(game.game_id, '11234'))
        assert [(m.to, m.event) for m in outbox] == [('sid-a', 'number-rejected')]
        assert game.participants[pid(coord, 'session-a')].ready is False

    def test_commit_for_unknown_game_dropped(self, coord):
        """A commit for an unknown game should be ignored."""
        pair(coord)
        assert coord.commit_number('sid-a', CommitNumber('game_nope', ALICE_NUMBER)) == []

    def test_random_number_suggestion(self, coord):
        """A random number suggestion should always be valid."""
        outbox = coord.request_random_number('sid-a')
        assert outbox[0].event == 'number-suggestion'
        assert validate_number(outbox[0].data['number'])


class TestGuessing:
    """Tests for guess processing and round outcomes."""

    def test_miss_broadcasts_guess(self, coord):
        """A missed guess should be broadcast and pass the turn."""
        game = pair(coord)
        start_round(coord, game)
        outbox = coord.submit_guess('sid-a', SubmitGuess(game.game_id, MISS))
        made = named(outbox, 'guess-made')
        assert {m.to for m in made} == {'sid-a', 'sid-b'}
        assert made[0].data['currentTurn'] == pid(coord, 'session-b')
        assert made[0].data['guess']['feedback'] == {'correctPosition': 0, 'correctDigitWrongPosition': 2}

    def test_invalid_guess_reported_to_sender_only(self, coord):
        """An invalid guess should be reported to the sender only."""
        game = pair(coord)
        start_round(coord, game)
        outbox = coord.submit_guess('sid-a', SubmitGuess(game.game_id, '1234'))
        assert [(m.to, m.event) for m in outbox] == [('sid-a', 'guess-rejected')]
        assert game.current_turn == pid(coord, 'session-a')

    def test_out_of_turn_guess_silently_dropped(self, coord):
        """A guess out of turn should be ignored."""
        game = pair(coord)
        start_round(coord, game)
        assert coord.submit_guess('sid-b', SubmitGuess(game.game_id, MISS)) == []
        assert game.participants[pid(coord, 'session-b')].guesses == []

    def test_pending_response_then_draw(self, coord):
        """Both players hitting in the same turn should draw."""
        game = pair(coord)
        start_round(coord, game)
        for _ in range(2):
            coord.submit_guess('sid-a', SubmitGuess(game.game_id, MISS))
            coord.submit_guess('sid-b', SubmitGuess(game.game_id, MISS))

        outbox = coord.submit_guess('sid-a', SubmitGuess(game.game_id, BOB_NUMBER))
        pending = named(outbox, 'round-continues-pending-response')
        assert len(pending) == 2
        assert pending[0].data['winnerName'] == 'Alice'
        assert pending[0].data['currentTurn'] == pid(coord, 'session-b')

        outbox = coord.submit_guess('sid-b', SubmitGuess(game.game_id, ALICE_NUMBER))
        ended = named(outbox, 'round-ended')
        assert len(ended) == 2
        assert ended[0].data['isDraw'] is True
        assert ended[0].data['winner'] is None
        assert all(p['gamesWon'] == 0 for p in ended[0].data['players'])

    def test_provisional_winner_wins_when_response_misses(self, coord):
        """The provisional winner should win if the response misses."""
        game = pair(coord)
        start_round(coord, game)
        coord.submit_guess('sid-a', SubmitGuess(game.game_id, MISS))
        coord.submit_guess('sid-b', SubmitGuess(game.game_id, MISS))
        coord.submit_guess('sid-a', SubmitGuess(game.game_id, BOB_NUMBER))

        outbox = coord.submit_guess('sid-b', SubmitGuess(game.game_id, MISS))
        ended = named(outbox, 'round-ended')[0].data
        assert ended['winner'] == 'Alice'
        assert ended['isDraw'] is False
        wins = {p['name']: p['gamesWon'] for p in ended['players']}
        assert wins == {'Alice': 1, 'Bob': 0}
        # numbers are revealed once the round is over
        assert {p['number'] for p in ended['players']} == {ALICE_NUMBER, BOB_NUMBER}

    def test_guess_after_end_is_ignored(self, coord):
        """A guess after the round ended should be ignored."""
        game = pair(coord)
        finish_round(coord, game)
        before = [len(p.guesses) for p in game.participants.values()]
        assert coord.submit_guess('sid-a', SubmitGuess(game.game_id, BOB_NUMBER)) == []
        assert coord.submit_guess('sid-a', SubmitGuess(game.game_id, 'junk')) == []
        assert coord.submit_guess('sid-b', SubmitGuess(game.game_id, MISS)) == []
        assert [len(p.guesses) for p in game.participants.values()] == before


class TestNewRounds:
    """Tests for new rounds and rematches."""

    def test_new_round_mid_game_dropped(self, coord):
        """A new round request mid-round should be ignored."""
        game = pair(coord)
        start_round(coord, game)
        assert coord.request_new_round('sid-a', GameAction(game.game_id)) == []
        assert game.round_number == 1

    def test_new_round_after_end(self, coord):
        """A new round after the end should reset both players."""
        game = pair(coord)
        finish_round(coord, game)
        outbox = coord.request_new_round('sid-a', GameAction(game.game_id))
        reset = named(outbox, 'round-reset')
        assert {m.to for m in reset} == {'sid-a', 'sid-b'}
        assert reset[0].data['round'] == 2
        assert reset[0].data['currentTurn'] == pid(coord, 'session-b')

    def test_rematch_flow(self, coord):
        """An accepted rematch should notify both players and reset the round."""
        game = pair(coord)
        finish_round(coord, game)

        outbox = coord.request_rematch('sid-a', GameAction(game.game_id))
        assert [(m.to, m.event) for m in outbox] == [('sid-b', 'rematch-requested')]
        assert outbox[0].data['playerName'] == 'Alice'

        assert coord.accept_rematch('sid-a', GameAction(game.game_id)) == []

        outbox = coord.accept_rematch('sid-b', GameAction(game.game_id))
        assert [m.event for m in outbox] == ['rematch-accepted', 'rematch-accepted',
                                             'round-reset', 'round-reset']
        assert game.round_number == 2
        assert game.phase.value == 'setup'


class TestReconnection:
    """Tests for disconnect, resume and grace period expiry."""

    def test_reconnect_mid_setup(self, coord):
        """A player reconnecting during setup should get their number back."""
        game = pair(coord)
        alice = pid(coord, 'session-a')
        coord.commit_number('sid-a', CommitNumber(game.game_id, ALICE_NUMBER))
        turn_before = game.current_turn

        outbox = coord.disconnect('sid-a', now=1000.0)
        assert [(m.to, m.event) for m in outbox] == [('sid-b', 'opponent-disconnected')]
        assert outbox[0].data['canReconnect'] is True

        outbox = coord.resume_session('sid-a2', ResumeSession('session-a', 'Alice'))
        resumed = named(outbox, 'session-resumed')[0]
        assert resumed.to == 'sid-a2'
        state = resumed.data['gameState']
        assert state['players'][0]['ready'] is True
        assert state['players'][0]['number'] == ALICE_NUMBER
        assert state['currentTurn'] == turn_before
        assert [(m.to, m.event) for m in named(outbox, 'opponent-reconnected')] == [
            ('sid-b', 'opponent-reconnected')
        ]
        assert game.participants[alice].number == ALICE_NUMBER
        assert coord.sessions.pending_disconnection('session-a') is None

    def test_resumed_player_keeps_acting(self, coord):
        """A resumed player should be able to act from the new connection."""
        game = pair(coord)
        start_round(coord, game)
        coord.disconnect('sid-a', now=1000.0)
        coord.resume_session('sid-a2', ResumeSession('session-a'))

        assert coord.submit_guess('sid-a', SubmitGuess(game.game_id, MISS)) == []
        outbox = coord.submit_guess('sid-a2', SubmitGuess(game.game_id, MISS))
        assert {m.to for m in named(outbox, 'guess-made')} == {'sid-a2', 'sid-b'}

    def test_server_keeps_its_own_name_on_resume(self, coord):
        """The server should keep its own name on resume."""
        game = pair(coord)
        coord.disconnect('sid-a', now=1000.0)
        outbox = coord.resume_session('sid-a2', ResumeSession('session-a', 'Mallory'))
        assert named(outbox, 'session-resumed')[0].data['playerName'] == 'Alice'
        assert game.participants[pid(coord, 'session-a')].name == 'Alice'

    def test_join_lobby_with_live_session_resumes(self, coord):
        """Joining with the session of a live game should resume it."""
        game = pair(coord)
        coord.disconnect('sid-a', now=1000.0)
        outbox = coord.join_lobby('sid-a2', JoinLobby('Alice', 'session-a'))
        assert named(outbox, 'session-resumed')[0].data['gameState']['gameId'] == game.game_id
        assert len(coord.queue) == 0

    def test_unknown_session(self, coord):
        """Resuming an unknown session should be reported."""
        outbox = coord.resume_session('sid-q', ResumeSession('session-nope'))
        assert [(m.to, m.event) for m in outbox] == [('sid-q', 'session-not-found')]

    def test_name_reserved_while_reconnect_pending(self, coord):
        """A name should stay reserved while a reconnect is pending."""
        pair(coord)
        coord.disconnect('sid-a', now=1000.0)
        outbox = coord.join_lobby('sid-c', JoinLobby('alice', 'session-c'))
        assert [m.event for m in outbox] == ['name-error']

    def test_grace_period_expiry(self, coord):
        """An expired grace period should end the game for the remaining player."""
        game = pair(coord)
        coord.disconnect('sid-a', now=1000.0)
        assert coord.expire_disconnected(now=1299.0) == []

        outbox = coord.expire_disconnected(now=1300.0)
        assert [(m.to, m.event) for m in outbox] == [('sid-b', 'opponent-left')]
        assert outbox[0].data['reason'] == 'timeout'
        assert outbox[0].data['playerName'] == 'Alice'
        assert game.game_id not in coord.games
        assert coord.sessions.get('session-a') is None
        assert coord.sessions.get('session-b') is None

        outbox = coord.resume_session('sid-a2', ResumeSession('session-a'))
        assert [m.event for m in outbox] == ['session-not-found']

    def test_wait_for_disconnected_opponent(self, coord):
        """Waiting for a disconnected opponent should be acknowledged with the time left."""
        game = pair(coord)
        coord.disconnect('sid-a', now=1000.0)
        outbox = coord.wait_for_opponent('sid-b', GameAction(game.game_id), now=1100.0)
        assert [(m.to, m.event) for m in outbox] == [('sid-b', 'opponent-disconnected-waiting')]
        assert outbox[0].data == {
            'sessionId': 'session-b',
            'playerName': 'Alice',
            'secondsRemaining': 200,
        }

    def test_wait_with_connected_opponent_dropped(self, coord):
        """Waiting while the opponent is still connected should be ignored."""
        game = pair(coord)
        assert coord.wait_for_opponent('sid-b', GameAction(game.game_id)) == []

    def test_both_players_gone(self, coord):
        """The game should be removed when both players expire."""
        game = pair(coord)
        coord.disconnect('sid-a', now=1000.0)
        assert coord.disconnect('sid-b', now=1100.0) == []
        assert coord.expire_disconnected(now=1300.0) == []
        assert game.game_id not in coord.games
        assert len(coord.sessions) == 0

    def test_disconnect_after_round_end_tears_down(self, coord):
        """A disconnect after the round ended should tear the game down."""
        game = pair(coord)
        finish_round(coord, game)
        outbox = coord.disconnect('sid-a')
        assert [(m.to, m.event) for m in outbox] == [('sid-b', 'opponent-left')]
        assert game.game_id not in coord.games
        assert coord.sessions.pending_disconnection('session-a') is None


class TestLeaving:
    """Tests for leaving a game."""

    def test_leave_game_ends_it_for_both(self, coord):
        """Leaving should end the game for both players."""
        game = pair(coord)
        outbox = coord.leave_game('sid-a', GameAction(game.game_id))
        assert sorted((m.to, m.event) for m in outbox) == [
            ('sid-a', 'left-game'), ('sid-b', 'opponent-left'),
        ]
        assert coord.games == {}
        assert len(coord.sessions) == 0

        outbox = coord.join_lobby('sid-a', JoinLobby('Alice', 'session-a'))
        assert [m.event for m in outbox] == ['waiting']

    def test_leave_unknown_game_dropped(self, coord):
        """Leaving an unknown game should be ignored."""
        pair(coord)
        assert coord.leave_game('sid-a', GameAction('game_nope')) == []
