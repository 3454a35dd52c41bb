"""
Point d'entrée local: `python run.py` ou `flask --app run auth ...`
Le schéma se crée via `flask auth init-db` (ou `flask db upgrade`).
"""
import os
import logging
from dotenv import load_dotenv

load_dotenv()

from authcore import create_app  # noqa: E402

config_name = os.environ.get('FLASK_ENV', 'development')
app = create_app(config_name)

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    logging.getLogger(__name__).info(f"Auth core [{config_name}] sur le port {port}")
    app.run(debug=app.config.get('DEBUG', False), port=port)
