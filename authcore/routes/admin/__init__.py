"""
Routes Admin - Blueprint principal
Regroupe les actions d'administration des comptes
"""

from flask import Blueprint

# Blueprint principal admin
admin_bp = Blueprint('admin', __name__)

# Import des sous-modules après création du blueprint
from authcore.routes.admin import users  # noqa: E402,F401
