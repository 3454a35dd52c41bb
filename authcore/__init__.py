"""
Application Flask - Auth Core
Authentification sans mot de passe (code OTP par email) et cycle de vie des sessions
"""

from flask import Flask, request
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from config import config
import logging

db = SQLAlchemy()
jwt = JWTManager()
migrate = Migrate()


def get_rate_limit_key():
    """
    Retourne la clé pour le rate limiting.
    - Clé commune pour les requêtes OPTIONS (CORS preflight), exemptées
    - IP de l'utilisateur sinon
    """
    if request.method == 'OPTIONS':
        return 'preflight'

    # Essayer d'obtenir l'IP réelle
    ip = get_remote_address()
    if not ip:
        # Fallback si l'IP n'est pas détectée
        ip = request.headers.get('X-Forwarded-For', request.headers.get('X-Real-IP', '127.0.0.1'))
        if ',' in ip:
            ip = ip.split(',')[0].strip()

    return ip or '127.0.0.1'


# Stockage (RATELIMIT_STORAGE_URI) et activation (RATELIMIT_ENABLED) lus depuis la config
limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["500 per day", "100 per hour"],
    default_limits_exempt_when=lambda: request.method == 'OPTIONS'
)

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def create_app(config_name='default', **overrides):
    """
    Factory function pour créer l'application Flask

    Args:
        config_name: Nom de la configuration (development, production, testing)
        overrides: otp_store, session_store, audit, mailer, clock
                   (voir init_auth_services)

    Returns:
        Flask app configurée
    """
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # Vérifications de sécurité en production
    if config_name == 'production':
        config[config_name].init_app(app)

    logging.getLogger().setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    from authcore.utils.audit import configure_audit_logger
    configure_audit_logger(app.config.get('AUDIT_LOG_FILE'))

    # Initialisation des extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # CORS - Utiliser les origines configurées (PAS de wildcard en prod!)
    cors_origins = app.config.get('CORS_ORIGINS', ['http://localhost:3000'])
    CORS(app, resources={
        r"/api/*": {
            "origins": cors_origins,
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": app.config.get('CORS_ALLOW_HEADERS', ["Content-Type", "Authorization"]),
            "supports_credentials": app.config.get('CORS_SUPPORTS_CREDENTIALS', True)
        }
    })

    # Headers de sécurité
    @app.after_request
    def add_security_headers(response):
        # HSTS - Force HTTPS (seulement en production)
        if config_name == 'production':
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'

        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
        response.headers['Cache-Control'] = 'no-store'

        return response

    # ==================== SERVICES ====================

    from authcore.services import init_auth_services
    init_auth_services(app, **overrides)

    # ==================== BLUEPRINTS ====================

    # Routes OTP (demande / vérification de code)
    from authcore.routes.otp import otp_bp
    app.register_blueprint(otp_bp, url_prefix='/api/auth')

    # Routes sessions (refresh, logout, profil)
    from authcore.routes.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    # Routes admin (gestion des comptes)
    from authcore.routes.admin import admin_bp
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    # Commandes CLI (flask auth ...)
    from authcore.cli import auth_cli
    app.cli.add_command(auth_cli, 'auth')

    # ==================== ERROR HANDLERS ====================

    from authcore.models.enums import ErrorCode
    from authcore.utils.helpers import error_response

    @app.errorhandler(400)
    def bad_request(error):
        return error_response(ErrorCode.VALIDATION_ERROR, 'Requête invalide', 400)

    @app.errorhandler(401)
    def unauthorized(error):
        return error_response(ErrorCode.UNAUTHORIZED, 'Non autorisé', 401)

    @app.errorhandler(403)
    def forbidden(error):
        return error_response(ErrorCode.FORBIDDEN, 'Accès refusé', 403)

    @app.errorhandler(404)
    def not_found(error):
        return error_response(ErrorCode.NOT_FOUND, 'Ressource non trouvée', 404)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return error_response(ErrorCode.VALIDATION_ERROR, 'Méthode non autorisée', 405)

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        return error_response(ErrorCode.RATE_LIMITED, 'Trop de requêtes. Réessayez plus tard.', 429)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        logger.error(f"Erreur interne: {str(error)}")
        return error_response(ErrorCode.INTERNAL_ERROR, 'Erreur interne du serveur', 500)

    # ==================== HEALTH CHECK ====================

    @app.route('/api/health')
    def health_check():
        """Endpoint de vérification de santé"""
        return {'status': 'healthy', 'version': '1.0.0'}

    logger.info(f"Application démarrée en mode {config_name}")

    return app
