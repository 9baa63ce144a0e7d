import logging, sys

def setup_logging(level = logging.INFO):
	root_logger = logging.getLogger()
	root_logger.setLevel(level)

	for existing in list(root_logger.handlers):
		if getattr(existing, "_galleria", False):
			root_logger.removeHandler(existing)

	handler = logging.StreamHandler(sys.stdout)
	handler._galleria = True
	
	formatter = logging.Formatter(
		"[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
		datefmt="%H:%M:%S"
	)
	handler.setFormatter(formatter)
	root_logger.addHandler(handler)

	# urllib3 logs every connection at DEBUG
	logging.getLogger("urllib3").setLevel(max(level, logging.INFO))
