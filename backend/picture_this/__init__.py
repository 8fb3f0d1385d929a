from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
import logging
from config import Config
from picture_this.services.games import GameEngine

db = SQLAlchemy()
migrate = Migrate()
engine = GameEngine()
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

    if not flask_app.config.get('TESTING'):
        logging.basicConfig(level=logging.INFO, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Engine components are rebuilt per app; subscribers attach afterwards
    engine.init_app(flask_app)

    from picture_this.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    @flask_app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'sessions': len(engine.registry)})

    from picture_this.socketio_events import register_socketio_handlers, broadcast_event
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))
    engine.events.subscribe(broadcast_event)

    from picture_this.services.games.archiver import archive_ended_sessions
    archive_ended_sessions(flask_app, engine)

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the session archive tables."""
        import picture_this.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Database has been reset!')

    @click.command('sweep-sessions')
    def sweep_sessions_command():
        """Evicts sessions idle for longer than SESSION_TIMEOUT_MIN."""
        evicted = engine.sweep()
        print(f'Evicted {len(evicted)} session(s)')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(sweep_sessions_command)

    return flask_app
