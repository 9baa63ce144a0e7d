import logging
from typing import Optional
from flask import Flask

from .config import ServerConfig

logger = logging.getLogger(__name__)


def create_app(config: Optional[ServerConfig] = None) -> Flask:
	"""Create and configure the Flask application."""
	if config is None:
		config = ServerConfig()
	
	app = Flask(__name__)
	app.config["GALLERIA_CONFIG"] = config
	
	# Register blueprints
	from .routes.gallery import gallery_bp
	
	app.register_blueprint(gallery_bp, url_prefix="/gallery")
	
	logger.info(f"Album host initialized (root: {config.root_dir})")
	
	return app


def run_server(config: Optional[ServerConfig] = None):
	"""Run the album host."""
	if config is None:
		config = ServerConfig()
	
	app = create_app(config)
	
	logger.info(f"Serving albums on http://{config.host}:{config.port}/gallery/")
	
	app.run(
		host=config.host,
		port=config.port,
		debug=config.debug,
		threaded=True
	)
