"""
Number Master Game Server

A real-time two-player game where each player picks a secret 5-digit number
with unique digits and both take turns guessing the other's number. Players
are paired from a lobby queue and may reconnect to a running game within a
grace period. Built with Flask and Socket.IO for WebSocket support.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit

from config import (
    CORS_ORIGINS,
    DEBUG,
    DISCONNECT_GRACE_SECONDS,
    HOST,
    LOG_FORMAT,
    LOG_LEVEL,
    PORT,
    SECRET_KEY,
    SWEEP_INTERVAL_SECONDS,
    VERSION,
)
from coordinator import Coordinator, Outbound
from events import CommitNumber, GameAction, JoinLobby, PayloadError, ResumeSession, SubmitGuess

# =============================================================================
# Logging Configuration
# =============================================================================

logging.basicConfig(level=getattr(logging, LOG_LEVEL), format=LOG_FORMAT)
logger = logging.getLogger(__name__)

# =============================================================================
# Flask Application Setup
# =============================================================================

app = Flask(__name__)
app.config['SECRET_KEY'] = SECRET_KEY

socketio = SocketIO(
    app,
    cors_allowed_origins=CORS_ORIGINS,
    logger=DEBUG,
    engineio_logger=DEBUG,
    async_mode='threading'
)

# =============================================================================
# Thread Safety
# =============================================================================

coordinator = Coordinator(grace_period=DISCONNECT_GRACE_SECONDS)
coordinator_lock = threading.Lock()
sweeper_started = threading.Event()

# =============================================================================
# Dispatch Helpers
# =============================================================================


def deliver(outbox: List[Outbound]) -> None:
    """Emit coordinator output, each message to its own connection."""
    for message in outbox:
        socketio.emit(message.event, message.data, to=message.to)


def handle(event: str, action: Callable[[], List[Outbound]]) -> None:
    """
    Run one coordinator action and emit its output under the coordinator lock.

    Holding the lock across both steps keeps a state change and its
    broadcast together. Errors never escape to Socket.IO: malformed payloads
    and unexpected failures are reported to the sender as ``error``.
    """
    try:
        with coordinator_lock:
            deliver(action())
    except PayloadError as e:
        logger.warning(f"Malformed {event} payload from {request.sid}: {e}")
        emit('error', {'message': str(e)})
    except Exception as e:
        logger.error(f"Error handling {event}: {e}")
        emit('error', {'message': 'Something went wrong. Please try again.'})


def run_sweep(now: Optional[float] = None) -> None:
    """Tear down games whose disconnected player never came back."""
    with coordinator_lock:
        deliver(coordinator.expire_disconnected(now))


def sweep_loop() -> None:
    logger.info(f"Disconnect sweep running every {SWEEP_INTERVAL_SECONDS} seconds")
    while True:
        socketio.sleep(SWEEP_INTERVAL_SECONDS)
        try:
            run_sweep()
        except Exception as e:
            logger.error(f"Error sweeping disconnected sessions: {e}")


def start_sweeper() -> None:
    if SWEEP_INTERVAL_SECONDS <= 0 or sweeper_started.is_set():
        return
    sweeper_started.set()
    socketio.start_background_task(sweep_loop)


# =============================================================================
# HTTP Routes
# =============================================================================


@app.route('/')
def index() -> Tuple[Dict[str, Any], int]:
    """Describe the service; the game UI is served separately."""
    return jsonify({
        'message': 'Number Master Game Server',
        'status': 'running',
    }), 200


@app.route('/health')
def health() -> Tuple[Dict[str, Any], int]:
    """Health check endpoint for monitoring."""
    with coordinator_lock:
        games = len(coordinator.games)
        waiting = len(coordinator.queue)
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.utcnow().isoformat(),
        'version': VERSION,
        'games': games,
        'waiting': waiting,
    }), 200


# =============================================================================
# Socket.IO Event Handlers
# =============================================================================


@socketio.on('connect')
def on_connect() -> None:
    """Handle client connection."""
    logger.info(f"Client connected: {request.sid}")


@socketio.on('disconnect')
def on_disconnect(*_args: Any) -> None:
    """Keep the player's game open for reconnection, or clean up."""
    sid = request.sid
    logger.info(f"Client disconnected: {sid}")
    handle('disconnect', lambda: coordinator.disconnect(sid))


@socketio.on('join-lobby')
def on_join_lobby(data: Any = None) -> None:
    """Join the lobby and get paired with the oldest waiting player."""
    sid = request.sid
    handle('join-lobby', lambda: coordinator.join_lobby(sid, JoinLobby.from_payload(data)))


@socketio.on('resume-session')
def on_resume_session(data: Any = None) -> None:
    """Reattach a reconnecting client to its game."""
    sid = request.sid
    handle('resume-session', lambda: coordinator.resume_session(sid, ResumeSession.from_payload(data)))


@socketio.on('commit-number')
def on_commit_number(data: Any = None) -> None:
    """Set a player's secret number for the current round."""
    sid = request.sid
    handle('commit-number', lambda: coordinator.commit_number(sid, CommitNumber.from_payload(data)))


@socketio.on('submit-guess')
def on_submit_guess(data: Any = None) -> None:
    """Guess the opponent's secret number."""
    sid = request.sid
    handle('submit-guess', lambda: coordinator.submit_guess(sid, SubmitGuess.from_payload(data)))


@socketio.on('request-new-round')
def on_request_new_round(data: Any = None) -> None:
    """Play again with the same opponent once a round has ended."""
    sid = request.sid
    handle('request-new-round', lambda: coordinator.request_new_round(sid, GameAction.from_payload(data)))


@socketio.on('request-rematch')
def on_request_rematch(data: Any = None) -> None:
    """Ask the opponent for a rematch after the round has ended."""
    sid = request.sid
    handle('request-rematch', lambda: coordinator.request_rematch(sid, GameAction.from_payload(data)))


@socketio.on('accept-rematch')
def on_accept_rematch(data: Any = None) -> None:
    """Accept the opponent's rematch request and start a new round."""
    sid = request.sid
    handle('accept-rematch', lambda: coordinator.accept_rematch(sid, GameAction.from_payload(data)))


@socketio.on('request-random-number')
def on_request_random_number(_data: Any = None) -> None:
    """Suggest a valid secret number."""
    sid = request.sid
    handle('request-random-number', lambda: coordinator.request_random_number(sid))


@socketio.on('wait-for-opponent')
def on_wait_for_opponent(data: Any = None) -> None:
    """Keep waiting for a disconnected opponent instead of leaving."""
    sid = request.sid
    handle('wait-for-opponent', lambda: coordinator.wait_for_opponent(sid, GameAction.from_payload(data)))


@socketio.on('leave-game')
def on_leave_game(data: Any = None) -> None:
    """Return to the lobby, ending the game for both players."""
    sid = request.sid
    handle('leave-game', lambda: coordinator.leave_game(sid, GameAction.from_payload(data)))


# =============================================================================
# Application Entry Point
# =============================================================================

if __name__ == '__main__':
    logger.info("=" * 50)
    logger.info("Starting Number Master Game Server")
    logger.info(f"Debug mode: {DEBUG}")
    logger.info(f"Host: {HOST}, Port: {PORT}")
    logger.info(f"Reconnect grace period: {DISCONNECT_GRACE_SECONDS} seconds")
    logger.info("=" * 50)
    start_sweeper()
    socketio.run(app, host=HOST, port=PORT, debug=DEBUG, allow_unsafe_werkzeug=DEBUG)
