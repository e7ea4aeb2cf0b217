from functools import wraps
import logging
from flask import Blueprint, request, jsonify, current_app
from flask_login import login_required, UserMixin, current_user
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from werkzeug.security import generate_password_hash, check_password_hash
from extensions import login_manager
from models import Users, model


bp = Blueprint('auth', __name__, url_prefix='/api/auth')

log = logging.getLogger(__name__)

ROLES = ("user", "admin")


class User(UserMixin):
    def __init__(self, user_id, username, role, email, Fullname):
        self.id = user_id
        self.username = username
        self.role = role
        self.email = email
        self.fullname = Fullname

    @property
    def is_admin(self):
        return self.role == "admin"


def _to_user(row):
    return User(row.UserID, row.Username, row.Role, row.Email, row.Fullname)

def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")

def issue_token(user_id):
    return _serializer().dumps({"uid": user_id})


@login_manager.user_loader
def load_user(user_id):
    user = model.get(Users, int(user_id))
    if user:
        return _to_user(user)
    return None

@login_manager.request_loader
def load_user_from_request(req):
    header = req.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    try:
        data = _serializer().loads(header[7:], max_age=current_app.config["TOKEN_MAX_AGE"])
    except SignatureExpired:
        log.info("Expired token presented")
        return None
    except BadSignature:
        log.warning("Invalid token presented")
        return None
    user = model.get(Users, data.get("uid"))
    return _to_user(user) if user else None

@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required"}), 401


def admin_required(view):
    @wraps(view)
    @login_required
    def wrapper(*args, **kwargs):
        if not current_user.is_admin:
            return jsonify({"error": "Admin access required"}), 403
        return view(*args, **kwargs)
    return wrapper


@bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return jsonify({"error": "Username and password are required"}), 400

    user_data = model.query(Users).filter_by(Username=username).first()
    if not user_data or not check_password_hash(user_data.Password, password):
        log.info("Failed login for %s", username)
        return jsonify({"error": "Invalid credentials"}), 401

    return jsonify({"token": issue_token(user_data.UserID), "user": user_data.as_dict()})

@bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(model.get(Users, current_user.id).as_dict())

@bp.route("/change-password", methods=["POST"])
@login_required
def change_password():
    data = request.get_json(silent=True) or {}
    current_pw = data.get("currentPassword") or ""
    new_pw = data.get("newPassword") or ""
    if len(new_pw) < 6:
        return jsonify({"error": "New password must be at least 6 characters"}), 400

    user = model.get(Users, current_user.id)
    if not check_password_hash(user.Password, current_pw):
        return jsonify({"error": "Current password is incorrect"}), 400

    user.Password = generate_password_hash(new_pw)
    model.commit()
    return jsonify({"message": "Password changed successfully"})

@bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    users = model.query(Users).order_by(Users.Username).all()
    return jsonify([u.as_dict() for u in users])

@bp.route("/users", methods=["POST"])
@admin_required
def create_user():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    role = data.get("role") or "user"

    if not username or len(password) < 6:
        return jsonify({"error": "Username and a password of at least 6 characters are required"}), 400
    if role not in ROLES:
        return jsonify({"error": f"Role must be one of: {', '.join(ROLES)}"}), 400
    if model.query(Users).filter_by(Username=username).first():
        return jsonify({"error": "Username already exists"}), 409

    user = Users(
        Username=username,
        Password=generate_password_hash(password),
        Role=role,
        Email=data.get("email"),
        Fullname=data.get("fullName"),
    )
    model.add(user)
    model.commit()
    log.info("User %s created by %s", username, current_user.username)
    return jsonify(user.as_dict()), 201
