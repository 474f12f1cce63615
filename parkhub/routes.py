from flask import Blueprint, jsonify
from flask_login import login_required, login_user, logout_user, current_user
from werkzeug.security import check_password_hash, generate_password_hash
import logging

from . import db
from .errors import ValidationError
from .models import User
from .schemas import Credentials, parse_body

logger = logging.getLogger(__name__)

main = Blueprint('main', __name__)


@main.route('/register', methods=['POST'])
def register():
    body = parse_body(Credentials)
    if User.query.filter_by(username=body.username).first():
        raise ValidationError('Username already exists')

    user = User(username=body.username, password=generate_password_hash(body.password))
    db.session.add(user)
    db.session.commit()
    logger.info(f"Registered user {user.id} '{user.username}'")
    return jsonify(user.to_dict()), 201


@main.route('/login', methods=['POST'])
def login():
    body = parse_body(Credentials)
    user = User.query.filter_by(username=body.username).first()
    if not user or not check_password_hash(user.password, body.password):
        return jsonify({"error": "unauthorized", "message": "Invalid username or password",
                        "retryable": False}), 401

    login_user(user)
    return jsonify(user.to_dict())


@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out"})


@main.route('/me')
@login_required
def me():
    return jsonify(current_user.to_dict())
