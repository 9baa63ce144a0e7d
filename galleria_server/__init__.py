from .config import ServerConfig
from .server import create_app, run_server
