from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required
from servicedesk.models.user import User
from servicedesk.models.audit import AuditLog
from servicedesk import get_db
from servicedesk.services.policy import build_claims, current_user_id, has_permissions
from servicedesk.services import users as accounts
from servicedesk.constants.permissions import permissions_for_role
from servicedesk.utils.listing import make_cached_item_response, paged_list_response, iso
from servicedesk.utils.sorting import apply_multi_sort
from servicedesk.decorators.audit import audit_log
from servicedesk.decorators.auth import require_permissions, require_self_or_permissions

iam_bp = Blueprint('iam', __name__)

USER_SORTABLE = {
    'created_at': User.created_at,
    'full_name': User.full_name,
    'email': User.email,
    'role': User.role,
}


def _user_json(u: User):
    return {
        'id': u.id,
        'email': u.email,
        'full_name': u.full_name,
        'role': u.role,
        'phone': u.phone,
        'active': u.active,
        'has_account': u.has_account,
        'created_by': u.created_by,
        'created_at': iso(u.created_at),
        'updated_at': iso(u.updated_at),
    }


# ---------------- Auth ---------------- #

@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    user = accounts.find_by_email(email)
    if not user or not user.verify_password(password):
        abort(401, description='invalid credentials')
    if not user.active:
        abort(403, description='account deactivated')
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=build_claims(user))
    return {'access_token': token, 'user': _user_json(user)}


@iam_bp.post('/auth/register')
@audit_log('USER.REGISTER', entity='User', entity_id_key='id', meta_keys=['role'])
def register():
    data = request.json or {}
    # self-registration always yields a client
    user = accounts.create_user_with_account({**data, 'role': User.ROLE_CLIENT}, data.get('password'))
    return _user_json(user), 201


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    user = get_db().get(User, current_user_id())
    if not user:
        abort(404)
    return {**_user_json(user), 'perms': permissions_for_role(user.role)}


# ---------------- Users ---------------- #

@iam_bp.get('/users')
@require_permissions('USER.READ')
def list_users():
    session = get_db()
    q = session.query(User)
    role = request.args.get('role')
    if role:
        q = q.filter(User.role == role)
    active = request.args.get('active')
    if active is not None:
        q = q.filter(User.active.is_(active.lower() in ('1', 'true', 'yes')))
    q = apply_multi_sort(q, request.args.get('sort'), USER_SORTABLE, User.id, default='full_name')
    return paged_list_response(q, _user_json, lambda u: u.updated_at)


@iam_bp.get('/users/<user_id>')
@require_self_or_permissions('user_id', 'USER.READ')
def get_user(user_id: str):
    u = accounts.get_user(user_id)
    return make_cached_item_response(_user_json(u), u.updated_at, None)


@iam_bp.post('/users')
@require_permissions('USER.READ')
@audit_log('USER.CREATE', entity='User', entity_id_key='id', meta_keys=['role', 'has_account'])
def create_user():
    data = request.json or {}
    role = data.get('role') or User.ROLE_CLIENT
    if not has_permissions('USER.MANAGE'):
        # front desk may only register clients
        if role != User.ROLE_CLIENT or not has_permissions('TKT.CREATE'):
            abort(403, description='Missing permission')
    data = {**data, 'role': role}
    if data.get('password'):
        user = accounts.create_user_with_account(data, data['password'], created_by=current_user_id())
    else:
        user = accounts.create_user_profile(data, created_by=current_user_id())
    return _user_json(user), 201


@iam_bp.patch('/users/<user_id>')
@require_self_or_permissions('user_id', 'USER.MANAGE')
@audit_log('USER.UPDATE', entity='User', entity_id_key='id', diff_keys=['email', 'full_name', 'phone'], pre_fetch=lambda a, kw: _user_json(accounts.get_user(kw.get('user_id'))))
def update_user(user_id: str):
    user = accounts.update_user(user_id, request.json or {})
    return _user_json(user)


@iam_bp.post('/users/<user_id>/role')
@require_permissions('USER.MANAGE')
@audit_log('USER.ROLE.SET', entity='User', entity_id_key='id', diff_keys=['role'], pre_fetch=lambda a, kw: _user_json(accounts.get_user(kw.get('user_id'))))
def set_role(user_id: str):
    data = request.json or {}
    if not data.get('role'):
        abort(400, description='role required')
    return _user_json(accounts.change_role(user_id, data['role']))


@iam_bp.post('/users/<user_id>/activate')
@require_permissions('USER.MANAGE')
@audit_log('USER.ACTIVATE', entity='User', entity_id_key='id')
def activate_user(user_id: str):
    return _user_json(accounts.set_active(user_id, True))


@iam_bp.post('/users/<user_id>/deactivate')
@require_permissions('USER.MANAGE')
@audit_log('USER.DEACTIVATE', entity='User', entity_id_key='id')
def deactivate_user(user_id: str):
    if user_id == current_user_id():
        abort(400, description='cannot deactivate yourself')
    return _user_json(accounts.set_active(user_id, False))


@iam_bp.delete('/users/<user_id>')
@require_permissions('USER.MANAGE')
@audit_log('USER.DELETE', entity='User', entity_id_arg='user_id')
def delete_user(user_id: str):
    if user_id == current_user_id():
        abort(400, description='cannot delete yourself')
    accounts.delete_user(user_id)
    return '', 204


# ---------------- Audit ---------------- #

def _audit_json(r: AuditLog):
    return {
        'id': r.id,
        'actor_user_id': r.actor_user_id,
        'action': r.action,
        'entity': r.entity,
        'entity_id': r.entity_id,
        'role_snapshot': r.role_snapshot,
        'meta': r.meta,
        'created_at': iso(r.created_at),
    }


@iam_bp.get('/audit/logs')
@require_permissions('USER.MANAGE')
def list_audit_logs():
    session = get_db()
    q = session.query(AuditLog)
    for key in ('actor_user_id', 'action', 'entity', 'entity_id'):
        value = request.args.get(key)
        if value:
            q = q.filter(getattr(AuditLog, key) == value)
    return paged_list_response(q.order_by(AuditLog.id.desc()), _audit_json, lambda r: r.created_at)
