import random
import sys
from pathlib import Path

import pytest
from flask import Flask

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app_services import AppServiceConfig, AppServices
from avatar_storage import AvatarStorage
from blueprints.api import create_api_blueprint
from game_store import LocalGameStore
from leaderboard import LeaderboardService
from player_engine import PlayerRegistry, PlayerSessionEngine
from session_controller import SessionController

BASE_TS = 1_735_680_000.0


class FakeClock:
    def __init__(self, start: float = BASE_TS):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class ManualCall:
    def __init__(self, due: float, fn):
        self.due = due
        self.fn = fn
        self.fired = False
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Runs delayed callbacks only when the test advances the fake clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[ManualCall] = []

    def call_later(self, delay, fn) -> ManualCall:
        call = ManualCall(self.clock() + delay, fn)
        self.calls.append(call)
        return call

    @property
    def pending_count(self) -> int:
        return sum(1 for c in self.calls if not c.fired and not c.cancelled)

    def advance(self, seconds: float) -> int:
        self.clock.advance(seconds)
        fired = 0
        for call in list(self.calls):
            if call.fired or call.cancelled or call.due > self.clock():
                continue
            call.fired = True
            call.fn()
            fired += 1
        return fired

    def cancel_all(self) -> None:
        for call in self.calls:
            call.cancel()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def store(tmp_path, clock):
    return LocalGameStore(str(tmp_path / "game.db"), clock=clock)


@pytest.fixture
def leaderboard(store):
    return LeaderboardService(store)


@pytest.fixture
def controller(store, leaderboard, scheduler, clock):
    gm = SessionController(
        store=store, leaderboard=leaderboard, scheduler=scheduler, clock=clock
    )
    gm.init_session()
    yield gm
    gm.close()


@pytest.fixture
def make_engine(store, leaderboard, scheduler, clock):
    engines = []

    def _make(seed: int = 7) -> PlayerSessionEngine:
        engine = PlayerSessionEngine(
            store=store,
            leaderboard=leaderboard,
            scheduler=scheduler,
            clock=clock,
            rng=random.Random(seed),
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.close()


@pytest.fixture
def joined_engine(controller, make_engine):
    engine = make_engine()
    engine.load()
    assert engine.join("Ada") is True
    engine.notifier.drain()
    return engine


@pytest.fixture
def app_ctx(tmp_path, store, controller, leaderboard, make_engine):
    app = Flask(__name__)
    app.config["TESTING"] = True
    app.config["SECRET_KEY"] = "test-secret"

    services = AppServices(
        app=app,
        config=AppServiceConfig(
            public_base_url="http://localhost:8040",
            is_prod=False,
            game_db=str(tmp_path / "game.db"),
            avatar_upload_dir=str(tmp_path / "uploads"),
            log_file=str(tmp_path / "app.log"),
        ),
    )
    registry = PlayerRegistry(make_engine)
    avatar_storage = AvatarStorage(str(tmp_path / "uploads"), "http://localhost:8040")

    app.register_blueprint(
        create_api_blueprint(
            store=store,
            controller=controller,
            registry=registry,
            leaderboard=leaderboard,
            avatar_storage=avatar_storage,
            services=services,
        )
    )
    yield {
        "app": app,
        "services": services,
        "registry": registry,
        "avatar_storage": avatar_storage,
    }
    registry.close_all()


@pytest.fixture
def app(app_ctx):
    return app_ctx["app"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def registry(app_ctx):
    return app_ctx["registry"]
