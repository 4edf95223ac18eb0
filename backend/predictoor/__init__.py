from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import json
import time
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config, clock=None, oracle=None):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    allowed_origins = flask_app.config.get('CORS_ORIGINS') or []

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Round engine (store, gate, scheduler, gateway) for this app
    from predictoor.engine import init_engine
    init_engine(flask_app, socketio=socketio, clock=clock, oracle=oracle)

    # Import and register blueprints here
    from predictoor.main import main
    flask_app.register_blueprint(main)

    from predictoor.api.rounds import rounds
    flask_app.register_blueprint(rounds, url_prefix='/api/rounds')

    from predictoor.api.leaderboard import leaderboard
    flask_app.register_blueprint(leaderboard, url_prefix='/api/leaderboard')

    from predictoor.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates all tables."""
        import predictoor.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('tick')
    def tick_command():
        """Runs one scheduler tick and prints its report."""
        from predictoor.services.rounds.ticker import run_tick
        report = run_tick(flask_app)
        print(json.dumps(report.to_dict(), indent=2))

    @click.command('run-ticker')
    @click.option('--max-ticks', type=int, default=None, help='Stop after this many ticks.')
    def run_ticker_command(max_ticks):
        """Ticks forever; safe to run alongside other tickers."""
        from predictoor.services.rounds.ticker import ticker_loop
        ticker_loop(flask_app, max_ticks=max_ticks, sleep=time.sleep)

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(tick_command)
    flask_app.cli.add_command(run_ticker_command)

    return flask_app
