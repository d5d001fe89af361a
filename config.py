"""
Configuration settings for the Number Master game server.

This module centralizes all configuration constants and environment variables
to make the application easier to configure and maintain.
"""

import os
from typing import List

# =============================================================================
# Game Settings
# =============================================================================

DIGIT_COUNT: int = 5
"""Number of digits in a secret number or guess. Digits must be unique."""

NAME_MAX_LENGTH: int = 20
"""Maximum length of a display name after trimming."""

ID_SUFFIX_LENGTH: int = 9
"""Length of the random suffix appended to generated session and game ids."""

# =============================================================================
# Reconnection Settings
# =============================================================================

DISCONNECT_GRACE_SECONDS: int = int(os.environ.get('DISCONNECT_GRACE_SECONDS', '300'))
"""Seconds a disconnected player may take to resume before the game is discarded."""

SWEEP_INTERVAL_SECONDS: int = int(os.environ.get('SWEEP_INTERVAL_SECONDS', '60'))
"""Interval between scans for expired disconnections."""

# =============================================================================
# Server Settings
# =============================================================================

DEBUG: bool = os.environ.get('DEBUG', 'false').lower() == 'true'
"""Enable debug mode. Set DEBUG=true in environment for development."""

HOST: str = os.environ.get('HOST', '0.0.0.0')
"""Host address to bind the server."""

PORT: int = int(os.environ.get('PORT', '3001'))
"""Port number for the server."""

SECRET_KEY: str = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
"""Flask secret key for session management."""

VERSION: str = '1.0.0'
"""Server version reported by the health endpoint."""

# =============================================================================
# CORS Settings
# =============================================================================

def get_cors_origins() -> List[str]:
    """
    Get allowed CORS origins from environment.

    Returns:
        List of allowed origin URLs, or ['*'] if not configured in debug mode.
    """
    origins = os.environ.get('CORS_ORIGINS', '')
    if not origins:
        if DEBUG:
            return ['*']
        return ['http://localhost:5173', 'http://127.0.0.1:5173']
    return [o.strip() for o in origins.split(',') if o.strip()]

CORS_ORIGINS: List[str] = get_cors_origins()
"""List of allowed CORS origins for Socket.IO connections."""

# =============================================================================
# Logging Settings
# =============================================================================

LOG_LEVEL: str = os.environ.get('LOG_LEVEL', 'DEBUG' if DEBUG else 'INFO')
"""Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

LOG_FORMAT: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
"""Format string for log messages."""
