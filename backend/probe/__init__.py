from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config, DEFAULT_CORS_ORIGINS

db = SQLAlchemy()
migrate = Migrate()
socketio = SocketIO(cors_allowed_origins=DEFAULT_CORS_ORIGINS, async_mode=None)

SEED_USERNAMES = ('alice', 'bob', 'cara', 'dan')


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(flask_app.config.get('LOG_LEVEL', 'INFO'))
    origins = flask_app.config.get('CORS_ORIGINS', DEFAULT_CORS_ORIGINS)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=origins)
    socketio.init_app(flask_app, cors_allowed_origins=origins)

    # Engine and bot driver hang off the app so tests can swap them
    from probe.services.games.engine import GameEngine
    from probe.bots.driver import BotDriver
    engine = GameEngine.from_config(flask_app.config)
    flask_app.extensions['probe.engine'] = engine
    flask_app.extensions['probe.bot_driver'] = BotDriver.from_config(engine, flask_app.config)
    flask_app.logger.info(
        f"[boot] archive={flask_app.config.get('ARCHIVE_DIR')} ollama={flask_app.config.get('OLLAMA_URL')}"
    )

    from probe.main import main
    flask_app.register_blueprint(main)

    from probe.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    from probe.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the schema, then adds a few players for local games."""
        from probe.models import User
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            db.session.add_all([User(username=name) for name in SEED_USERNAMES])
            db.session.commit()
            print(f"Database reset; seeded players: {', '.join(SEED_USERNAMES)}")

    @click.command('archive-game')
    @click.argument('room_code')
    def archive_game_command(room_code):
        """Re-writes the archive file for a completed game."""
        with flask_app.app_context():
            path = flask_app.extensions['probe.engine'].rearchive(room_code)
            print(f'Archived {room_code} to {path}')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(archive_game_command)

    return flask_app
