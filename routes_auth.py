import logging

from flask import Blueprint, jsonify, request, session

from auth import check_password, current_user, hash_password, issue_token, login_required, revoke_current_token
from models import ROLES, USER_STATUSES, User, db
from utils import retry_db_operation, utcnow
from validation import Validator, validation_error

logger = logging.getLogger(__name__)

INACTIVE_AFTER_DAYS = 30

auth_bp = Blueprint('auth', __name__, url_prefix='/api')


def _email_taken(email, exclude_id=None):
    query = User.query.filter(db.func.lower(User.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(User.user_id != exclude_id)
    return query.first() is not None


def _user_row(user):
    status = user.status
    # accounts untouched for a month are shown as inactive
    if status == 'active' and user.updated_at and (utcnow() - user.updated_at).days > INACTIVE_AFTER_DAYS:
        status = 'inactive'
    return {
        'id': user.user_id,
        'name': user.name,
        'email': user.email,
        'role': user.role,
        'status': status,
        'joined': user.created_at.strftime('%Y-%m-%d') if user.created_at else None,
        'lastActive': user.updated_at.strftime('%Y-%m-%d') if user.updated_at else None,
    }


@auth_bp.route('/register', methods=['POST'])
@retry_db_operation()
def register():
    data = request.get_json(silent=True)
    logger.debug(f"Register request for: {(data or {}).get('email')}")
    v = Validator(data)
    v.string('name', required=True, max_length=100)
    email = v.email('email', required=True)
    password = v.string('password', required=True, strip=False)
    if password is not None and len(password) < 8:
        v.add('password', 'The password must be at least 8 characters.')
    confirmation = v.data.get('password_confirmation')
    if password is not None and confirmation is not None and confirmation != password:
        v.add('password', 'The password confirmation does not match.')
    if email and _email_taken(email):
        v.add('email', 'The email has already been taken.')
    if v.fails:
        return validation_error(v.errors)
    try:
        user = User(
            name=v.cleaned['name'],
            email=email,
            password=hash_password(password),
            role='student',
            status='active'
        )
        db.session.add(user)
        token = issue_token(user)
        db.session.commit()
        session['user_id'] = user.user_id
        logger.debug(f"User registered: {email}")
        return jsonify({'message': 'User registered successfully', 'token': token, 'user': user.to_dict()}), 201
    except Exception as e:
        logger.error(f"Registration error: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to register user'}), 500


@auth_bp.route('/login', methods=['POST'])
@retry_db_operation()
def login():
    data = request.get_json(silent=True)
    if not isinstance(data, dict) or 'email' not in data or 'password' not in data:
        logger.error("Invalid login payload")
        return jsonify({'message': 'Missing email or password'}), 400
    user = User.query.filter(db.func.lower(User.email) == str(data['email']).lower()).first()
    if not user or not check_password(str(data['password']), user.password):
        logger.debug(f"Invalid credentials for: {data['email']}")
        return jsonify({'message': 'Invalid credentials'}), 401
    if user.status == 'inactive':
        logger.debug(f"Inactive account login attempt: {user.email}")
        return jsonify({'message': 'This account is inactive'}), 403
    try:
        token = issue_token(user)
        db.session.commit()
        session['user_id'] = user.user_id
        logger.debug(f"Session created for user: {user.email}")
        return jsonify({'message': 'Login successful', 'token': token, 'user': user.to_dict()}), 200
    except Exception as e:
        logger.error(f"Login error: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'An unexpected error occurred'}), 500


@auth_bp.route('/logout', methods=['POST'])
@login_required()
def logout():
    revoke_current_token()
    db.session.commit()
    session.pop('user_id', None)
    logger.debug(f"User logged out: user_id={current_user().user_id}")
    return jsonify({'message': 'Logout successful'}), 200


@auth_bp.route('/user', methods=['GET'])
@login_required()
def me():
    return jsonify(current_user().to_dict()), 200


@auth_bp.route('/users', methods=['GET'])
@login_required(role=('admin', 'librarian'))
@retry_db_operation()
def list_users():
    students = User.query.filter_by(role='student').order_by(User.name).all()
    return jsonify({'users': [_user_row(u) for u in students]}), 200


@auth_bp.route('/users/<int:user_id>', methods=['GET'])
@login_required(role=('admin', 'librarian'))
def show_user(user_id):
    user = db.get_or_404(User, user_id, description='User not found')
    return jsonify({'user': user.to_dict()}), 200


@auth_bp.route('/users', methods=['POST'])
@login_required(role='admin')
@retry_db_operation()
def create_user():
    v = Validator(request.get_json(silent=True))
    v.string('name', required=True, max_length=255)
    email = v.email('email', required=True)
    v.one_of('role', ROLES, required=True)
    password = v.string('password', required=True, strip=False)
    if password is not None and len(password) < 8:
        v.add('password', 'The password must be at least 8 characters.')
    if email and _email_taken(email):
        v.add('email', 'The email has already been taken.')
    if v.fails:
        return validation_error(v.errors)
    try:
        user = User(
            name=v.cleaned['name'],
            email=email,
            password=hash_password(password),
            role=v.cleaned['role'],
            status='active'
        )
        db.session.add(user)
        db.session.commit()
        logger.debug(f"User created by admin: {email} ({user.role})")
        return jsonify({'message': 'User created successfully', 'user': user.to_dict()}), 201
    except Exception as e:
        logger.error(f"Error creating user: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to create user'}), 500


@auth_bp.route('/users/<int:user_id>', methods=['PUT'])
@login_required(role='admin')
@retry_db_operation()
def update_user(user_id):
    user = db.get_or_404(User, user_id, description='User not found')
    v = Validator(request.get_json(silent=True))
    v.string('name', max_length=255)
    email = v.email('email')
    v.one_of('role', ROLES)
    v.one_of('status', USER_STATUSES)
    if email and _email_taken(email, exclude_id=user_id):
        v.add('email', 'The email has already been taken.')
    if v.fails:
        return validation_error(v.errors)
    try:
        for field in ('name', 'email', 'role', 'status'):
            if v.cleaned.get(field) is not None:
                setattr(user, field, v.cleaned[field])
        db.session.commit()
        logger.debug(f"User updated: user_id={user_id}")
        return jsonify({'message': 'User updated successfully', 'user': user.to_dict()}), 200
    except Exception as e:
        logger.error(f"Error updating user: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to update user'}), 500


@auth_bp.route('/users/<int:user_id>', methods=['DELETE'])
@login_required(role='admin')
@retry_db_operation()
def delete_user(user_id):
    user = db.get_or_404(User, user_id, description='User not found')
    if user.user_id == current_user().user_id:
        return jsonify({'message': 'You cannot delete your own account'}), 400
    if any(r.returned_at is None for r in user.borrow_records):
        return jsonify({'message': 'Cannot delete a user with books still on loan'}), 400
    try:
        db.session.delete(user)
        db.session.commit()
        logger.debug(f"User deleted: user_id={user_id}")
        return jsonify({'message': 'User deleted successfully'}), 200
    except Exception as e:
        logger.error(f"Error deleting user: {str(e)}")
        db.session.rollback()
        return jsonify({'message': 'Failed to delete user'}), 500
