from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from skatebattle.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from skatebattle.api.battles import battles
    flask_app.register_blueprint(battles, url_prefix='/api/battles')

    from skatebattle.api.cron import cron
    flask_app.register_blueprint(cron, url_prefix='/api/cron')

    # Register Socket.IO event handlers
    from skatebattle.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    from skatebattle.services.scheduler import run_sweeps, start_sweep_scheduler

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the database."""
        import skatebattle.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('run-sweeps')
    def run_sweeps_command():
        """Runs every timeout sweep once (for an external cron host)."""
        counts = run_sweeps(flask_app)
        for name, value in counts.items():
            print(f'{name}: {value}')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(run_sweeps_command)

    if flask_app.config.get('ENABLE_SWEEP_SCHEDULER'):
        start_sweep_scheduler(flask_app)

    return flask_app
