from flask import Blueprint, send_from_directory
from servicedesk.decorators.auth import require_permissions
from servicedesk.services.storage import storage_root

storage_bp = Blueprint('storage', __name__)


@storage_bp.get('/<path:path>')
@require_permissions('TKT.READ')
def get_object(path: str):
    # send_from_directory refuses paths escaping the root
    return send_from_directory(storage_root(), path)
