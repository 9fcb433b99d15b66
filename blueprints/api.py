import os

from flask import Blueprint, abort, current_app, send_from_directory

from api_errors import ValidationError
from blueprints.api_routes.gamemaster import register_gamemaster_api_routes
from blueprints.api_routes.leaderboards import register_leaderboard_api_routes
from blueprints.api_routes.play import register_play_api_routes


def create_api_blueprint(*, store, controller, registry, leaderboard, avatar_storage, services):
    bp = Blueprint("api", __name__)
    context = {
        "store": store,
        "controller": controller,
        "registry": registry,
        "leaderboard": leaderboard,
        "avatar_storage": avatar_storage,
        "services": services,
    }

    register_gamemaster_api_routes(bp, context)
    register_play_api_routes(bp, context)
    register_leaderboard_api_routes(bp, context)

    @bp.route("/avatars/<string:bucket>/<string:key>", endpoint="avatar_file")
    def avatar_file(bucket: str, key: str):
        try:
            path = avatar_storage.path_for(bucket, key)
        except ValidationError:
            abort(404)
        if not os.path.isfile(path):
            current_app.logger.info("Avatar not found: %s/%s", bucket, key)
            abort(404)
        response = send_from_directory(
            os.path.abspath(os.path.dirname(path)),
            key,
            mimetype=avatar_storage.mimetype_for(key),
        )
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    return bp
