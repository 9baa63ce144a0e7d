import logging
import re
from flask import Blueprint, abort, current_app, jsonify, send_from_directory

logger = logging.getLogger(__name__)

gallery_bp = Blueprint("gallery", __name__)

ALBUM_FILE = re.compile(r"^(manifest|(thumbs|originals|videos)-\d+)\.enc$")


def get_config():
	return current_app.config["GALLERIA_CONFIG"]


@gallery_bp.route("/", methods=["GET"])
def list_albums():
	"""Albums available under the output root."""
	return jsonify({"albums": get_config().list_albums()})


@gallery_bp.route("/<album>/<filename>", methods=["GET"])
def get_album_file(album: str, filename: str):
	"""Serve one sealed album file. Everything else is a 404."""
	config = get_config()
	
	if not ALBUM_FILE.match(filename) or album.startswith(".") or "/" in album or "\\" in album:
		abort(404)
	
	album_dir = config.album_dir(album)
	if not (album_dir / filename).is_file():
		logger.debug(f"Not found: {album}/{filename}")
		abort(404)
	
	response = send_from_directory(album_dir, filename, mimetype="application/octet-stream")
	response.headers["Cache-Control"] = "no-cache"
	return response
