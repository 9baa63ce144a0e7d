import argparse
import asyncio
import logging
import sys
from pathlib import Path

from galleria.config import BuildConfig, ViewerConfig
from galleria.crypto import AlbumKey, KeyRole
from galleria.errors import ALBUM_OPEN_FAILED, AuthenticationError, GalleryError
from galleria.job import BuildJob
from galleria.logger import setup_logging
from galleria.models import ChunkKind
from galleria.session import open_album
from galleria.transport import transport_for
from galleria_server import ServerConfig, run_server

DEFAULT_OUTPUT = "output"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
MB = 1024 * 1024


def cmd_build(args) -> int:
	if not args.album or not args.password:
		logging.error("Both --album and --password are required")
		return 1

	config = BuildConfig(jobs=args.jobs)
	if args.chunk_size is not None:
		config.chunk_size = int(args.chunk_size * MB)
	if not config.validate():
		return 1

	try:
		result = BuildJob(args.album, args.password, config).run(Path(args.source), Path(args.output))
	except OSError as e:
		logging.critical(f"Build failed: {e}")
		return 1

	if result.failed:
		logging.warning(f"{result.failed} asset(s) failed to convert; rerun to retry them")
	return 0


def cmd_crypt(args) -> int:
	role = KeyRole.ENCRYPT if args.command == "encrypt" else KeyRole.DECRYPT
	key = AlbumKey.derive(args.password, args.album, role)
	try:
		if role is KeyRole.ENCRYPT:
			key.seal_file(Path(args.input), Path(args.output))
		else:
			key.open_file(Path(args.input), Path(args.output))
	except AuthenticationError:
		logging.error(ALBUM_OPEN_FAILED)
		return 1
	except OSError as e:
		logging.error(f"{args.command.capitalize()} failed: {e}")
		return 1
	logging.info(f"{args.command.capitalize()}ed {args.input} -> {args.output}")
	return 0


def cmd_serve(args) -> int:
	config = ServerConfig(host=args.host, port=args.port, debug=args.debug, root_dir=args.root)
	logging.info("Press Ctrl+C to stop")
	run_server(config)
	return 0


async def _fetch(args) -> int:
	config = ViewerConfig()
	if args.cache:
		config.cache_dir = Path(args.cache)

	transport = transport_for(args.source, args.album, timeout=config.request_timeout)
	try:
		session = await open_album(args.album, args.password, transport, config)
	except GalleryError as e:
		logging.debug(f"Open failed: {e}")
		logging.error(ALBUM_OPEN_FAILED)
		return 1

	async with session:
		try:
			data = await session.get_asset(ChunkKind(args.kind), args.id)
		except GalleryError as e:
			logging.error(f"Could not load asset {args.id}: {e}")
			return 1

	if data is None:
		logging.error(f"Album has no {args.kind} entry for asset {args.id}")
		return 1

	with open(args.out, 'wb') as f:
		f.write(data)
	logging.info(f"Wrote {len(data)} bytes to {args.out}")
	return 0


def cmd_fetch(args) -> int:
	return asyncio.run(_fetch(args))


def main():
	parser = argparse.ArgumentParser(description="Encrypted photo album builder and viewer")
	common = argparse.ArgumentParser(add_help=False)
	common.add_argument("--debug", action="store_true", help="Enable debug logging")
	sub = parser.add_subparsers(dest="command", required=True)

	build = sub.add_parser("build", parents=[common], help="Convert, chunk and encrypt a source directory")
	build.add_argument("source", help="Directory of photos and videos")
	build.add_argument("output", nargs="?", default=DEFAULT_OUTPUT, help="Output root directory")
	build.add_argument("--album", default=None, help="Album name")
	build.add_argument("--password", "-p", default=None, help="Album password")
	build.add_argument("--jobs", "-j", type=int, default=0, help="Parallel conversions (default: CPU count)")
	build.add_argument("--chunk-size", type=float, default=None, help="Chunk size in MB (default: 500)")
	build.set_defaults(func=cmd_build)

	for name, help_text in (("encrypt", "Encrypt one file with an album key"),
							("decrypt", "Decrypt one file with an album key")):
		crypt = sub.add_parser(name, parents=[common], help=help_text)
		crypt.add_argument("input")
		crypt.add_argument("output")
		crypt.add_argument("--album", required=True, help="Album name")
		crypt.add_argument("--password", "-p", required=True, help="Album password")
		crypt.set_defaults(func=cmd_crypt)

	serve = sub.add_parser("serve", parents=[common], help="Serve built albums over HTTP")
	serve.add_argument("root", nargs="?", default=DEFAULT_OUTPUT, help="Output root directory")
	serve.add_argument("--host", default=DEFAULT_HOST, help="Server host")
	serve.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server port")
	serve.set_defaults(func=cmd_serve)

	fetch = sub.add_parser("fetch", parents=[common], help="Decrypt a single asset from an album")
	fetch.add_argument("source", help="Album host URL or output root directory")
	fetch.add_argument("album", help="Album name")
	fetch.add_argument("--password", "-p", required=True, help="Album password")
	fetch.add_argument("--id", type=int, required=True, help="Asset id")
	fetch.add_argument("--kind", default=ChunkKind.ORIGINALS.value,
					   choices=[k.value for k in ChunkKind], help="Which variant to fetch")
	fetch.add_argument("--out", required=True, help="Output file")
	fetch.add_argument("--cache", default=None, help="Local cache directory")
	fetch.set_defaults(func=cmd_fetch)

	args = parser.parse_args()

	setup_logging(level=logging.DEBUG if args.debug else logging.INFO)

	try:
		sys.exit(args.func(args))
	except KeyboardInterrupt:
		logging.info("Shutting down...")
		sys.exit(130)


if __name__ == "__main__":
	main()
