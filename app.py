import atexit
import logging
import os
import secrets

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from app_services import AppServiceConfig, AppServices
from avatar_storage import AvatarStorage
from blueprints.api import create_api_blueprint
from game_store import get_game_store
from leaderboard import LeaderboardService
from multiplayer_service_core import Scheduler
from player_engine import PlayerRegistry, PlayerSessionEngine
from session_controller import SessionController

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)s: %(message)s",
)

# Load the .env file
load_dotenv()

app = Flask(__name__)
app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", secrets.token_hex(32))
# Avatars are capped at 2 MiB; leave headroom for the multipart envelope.
app.config["MAX_CONTENT_LENGTH"] = 4 * 1024 * 1024

IS_PROD = os.getenv("IS_PROD", "False").lower() in ("true", "1", "t")
HOST = os.getenv("HOST", "127.0.0.1")
PORT = os.getenv("PORT", "8040")

config = AppServiceConfig.from_env()
services = AppServices(app=app, config=config)
services.configure_logging()

for warning in services.validate_runtime_config():
    app.logger.warning("Config warning: %s", warning)

game_store = get_game_store()
scheduler = Scheduler()
leaderboard = LeaderboardService(game_store)
controller = SessionController(store=game_store, leaderboard=leaderboard, scheduler=scheduler)
if controller.init_session() is None:
    app.logger.error("No game session could be resolved at startup.")


def _new_player_engine() -> PlayerSessionEngine:
    return PlayerSessionEngine(store=game_store, leaderboard=leaderboard, scheduler=scheduler)


registry = PlayerRegistry(_new_player_engine)
avatar_storage = AvatarStorage(config.avatar_upload_dir, config.public_base_url)

app.register_blueprint(
    create_api_blueprint(
        store=game_store,
        controller=controller,
        registry=registry,
        leaderboard=leaderboard,
        avatar_storage=avatar_storage,
        services=services,
    )
)


@atexit.register
def _shutdown():
    registry.close_all()
    controller.close()
    scheduler.cancel_all()


@app.before_request
def start_timer():
    services.start_timer()


@app.after_request
def log_request(response):
    return services.log_request(response)


@app.teardown_request
def log_exception(exception):
    services.log_exception(exception)


@app.route("/health")
def health():
    return jsonify(
        status="ok",
        session=controller.session.id if controller.session else None,
        players=len(registry),
        store="remote" if game_store.is_remote else "local",
    )


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify(error=e.name, description=e.description), e.code


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    app.logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.path,
        exc_info=(type(e), e, e.__traceback__),
    )
    description = (
        "The server encountered an internal error and was unable to complete your request. "
        "Either the server is overloaded or there is an error in the application."
    )
    return jsonify(error="Internal Server Error", description=description), 500


if __name__ == "__main__":
    app.run(debug=not IS_PROD, host=HOST, port=PORT)
