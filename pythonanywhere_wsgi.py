"""
PythonAnywhere WSGI entrypoint for the Elephant Puzzle classroom server.

Exposes ``application`` (the Flask ``app.app``) which serves the Game Master
API under /api/gm, the player API under /api/play, leaderboards under
/api/leaderboards and uploaded avatars under /avatars/<bucket>/<key>.

Usage on PythonAnywhere:
1. Point the web app's WSGI file (/var/www/<username>_pythonanywhere_com_wsgi.py)
   at this module, or paste its contents there.
2. Set ELEPHANT_PROJECT_ROOT to the checkout, or edit DEFAULT_PROJECT_ROOT.
3. Put the settings in <project root>/.env:
   - GAME_API_URL / GAME_API_KEY to use the hosted PostgREST tables, or
     APP_STANDALONE=true to keep everything in the local SQLite file GAME_DB.
   - AVATAR_UPLOAD_DIR must be writable by the web worker.
   - PUBLIC_BASE_URL is the https:// origin used in avatar URLs.
4. Configure exactly one worker process. The game session, every joined
   player's engine, the change feed and the hint/timer scheduler all live in
   memory; a second worker would hold a separate game.
5. Reload the web app from the dashboard.

PythonAnywhere does not start workers in the project directory, so relative
GAME_DB, AVATAR_UPLOAD_DIR and LOG_FILE values are resolved against the
project root before the app is imported.
"""

from __future__ import annotations

import os
import sys

from dotenv import load_dotenv

DEFAULT_PROJECT_ROOT = "/home/you/elephant-puzzle"

# Relative values are anchored to PROJECT_ROOT; defaults match AppServiceConfig.
DATA_PATH_DEFAULTS = {
    "GAME_DB": "elephant.db",
    "AVATAR_UPLOAD_DIR": "uploads",
    "LOG_FILE": "app.log",
}

PROJECT_ROOT = os.getenv("ELEPHANT_PROJECT_ROOT", DEFAULT_PROJECT_ROOT)
if not os.path.isdir(PROJECT_ROOT):
    # Fallback to this file's directory when used directly inside project root.
    PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))

if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

load_dotenv(os.path.join(PROJECT_ROOT, ".env"))

for name, default in DATA_PATH_DEFAULTS.items():
    value = os.getenv(name, default)
    if not os.path.isabs(value):
        os.environ[name] = os.path.join(PROJECT_ROOT, value)

from app import app as application  # noqa: E402
