# app.py
from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError
from extensions import login_manager
from blueprints.auth          import bp as auth_bp
from blueprints.shipments     import bp as shipments_bp
from blueprints.workflow      import bp as workflow_bp
from blueprints.archives      import bp as archives_bp
from blueprints.warehouse     import bp as warehouse_bp
from blueprints.notifications import bp as notifications_bp
from dashboard import bp as dashboard_bp
from exceptions import BusinessException
from models import model, init_db
import logging
import click
import mailer
from datetime import datetime
from config import Config


logging.basicConfig(
    level=Config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

app = Flask(__name__)

app.config.from_object(Config)

login_manager.init_app(app)

from werkzeug.serving import WSGIRequestHandler

# keep a reference to the original
_orig_log_request = WSGIRequestHandler.log_request

def log_request_no_static(self, code='-', size='-'):
    # self.path is the raw path + querystring, e.g. "/static/js/app.js?…"
    path = self.path.split('?', 1)[0]

    if path.startswith((
        '/static/',
        '/.well-known/',
        '/favicon.ico',
        '/api/health',
    )):
        return

    return _orig_log_request(self, code, size)

WSGIRequestHandler.log_request = log_request_no_static


# register blueprints
app.register_blueprint(auth_bp)            # /api/auth
app.register_blueprint(shipments_bp)       # /api/shipments
app.register_blueprint(workflow_bp)        # /api/shipments/<id>/<step>
app.register_blueprint(archives_bp)        # /api/shipments/archives, auto/manual archive
app.register_blueprint(warehouse_bp)       # /api/warehouse-capacity
app.register_blueprint(notifications_bp)   # /api/notifications
app.register_blueprint(dashboard_bp)       # /api/reports


@app.errorhandler(BusinessException)
def handle_business_exception(e):
    return jsonify(e.to_dict()), e.status_code

@app.errorhandler(SQLAlchemyError)
def handle_db_error(e):
    model.rollback()
    log.exception("Database error")
    return jsonify({"error": "Database operation failed"}), 500

@app.teardown_appcontext
def remove_session(exc=None):
    model.remove()


@app.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "timestamp": datetime.utcnow().isoformat() + "Z"})


# schedule from cron: `flask --app app send-digests daily` every morning,
# `flask --app app send-digests weekly` on mondays
@app.cli.command("send-digests")
@click.argument("frequency", type=click.Choice(mailer.DIGEST_FREQUENCIES))
def send_digests_command(frequency):
    result = mailer.send_digests(frequency)
    click.echo(f"{frequency} digests: {result['sent']} sent, {result['failed']} failed, "
               f"{result['skipped']} skipped")


with app.app_context():
    init_db()


if __name__ == '__main__':
    app.run(host='0.0.0.0', port=8080, debug=True)
