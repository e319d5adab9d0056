from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config, payout_sink=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Process-scoped game state: one ledger, engine and payout job per app
    from memorix.settings import GameSettings
    from memorix.services import GameServices
    from memorix.services.ledger import RewardLedger
    from memorix.services.leaderboard import LeaderboardAccumulator, LeaderboardPayoutJob
    from memorix.services.games.engine import RoundEngine

    settings = GameSettings.from_config(flask_app.config)
    ledger = RewardLedger(settings, payout_sink=payout_sink)
    accumulator = LeaderboardAccumulator()
    flask_app.extensions['memorix'] = GameServices(
        settings=settings,
        ledger=ledger,
        accumulator=accumulator,
        engine=RoundEngine(settings, ledger, accumulator),
        payout_job=LeaderboardPayoutJob(settings, ledger, accumulator),
    )

    # Import and register blueprints here
    from memorix.main import main
    flask_app.register_blueprint(main)

    from memorix.api.rounds import rounds
    flask_app.register_blueprint(rounds, url_prefix='/api')

    from memorix.api.ledger import ledger_api
    flask_app.register_blueprint(ledger_api, url_prefix='/api')

    from memorix.errors import MemorixError

    @flask_app.errorhandler(MemorixError)
    def handle_memorix_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    # Background loops; no-ops under TESTING unless ENABLE_SCHEDULER_IN_TESTS
    if flask_app.config.get('RUN_SCHEDULERS', True):
        from memorix.services.games.scheduler import schedule_leaderboard_payout, schedule_round_sweep
        schedule_leaderboard_payout(flask_app)
        schedule_round_sweep(flask_app)

    # Register Socket.IO event handlers
    from memorix.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('ledger-init')
    @click.option('--reset', is_flag=True, help='Drop all tables first.')
    def ledger_init_command(reset):
        """Creates the schema, funds escrow and sets up today's daily challenge."""
        from memorix.services.games.engine import today_date_num
        from memorix.settings import format_units
        with flask_app.app_context():
            if reset:
                db.drop_all()
            db.create_all()

            owner = settings.ledger_owner
            date = today_date_num()
            daily = settings.daily
            ledger.deposit(owner, settings.initial_funding)
            ledger.set_daily_challenge(
                owner, date, daily.grid_size, daily.steps, daily.show_duration,
                daily.interval_between, daily.time_limit, daily.max_tries,
            )
            ledger.fund_daily_challenge(owner, date, daily.pool_funding)

            print(f"Escrow balance: {format_units(ledger.escrow_balance())}")
            print(f"Daily challenge set for date: {date}")

    flask_app.cli.add_command(ledger_init_command)

    return flask_app
