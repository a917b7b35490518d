from PyQt6.QtWidgets import QApplication
import sys

import logging
from logging.handlers import RotatingFileHandler

from main_window import MainWindow
from utils.settings import CONFIG_DIR


def _configure_logging():
    """Set up logging for the desktop app.

    - Logs DEBUG+ to console via basicConfig
    - Also writes to a rotating file under the config directory's logs folder
    """
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s %(levelname)-8s %(name)-20s: %(message)s',
        force=True  # Override any existing basicConfig
    )
    # SQLAlchemy is noisy below WARNING
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
    logging.getLogger('session').setLevel(logging.DEBUG)
    logging.getLogger('db').setLevel(logging.DEBUG)

    log_dir = CONFIG_DIR / 'logs'
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / 'sqltabs.log'
        handler = RotatingFileHandler(str(log_file), maxBytes=5 * 1024 * 1024, backupCount=3, encoding='utf-8')
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter('%(asctime)s %(levelname)-8s %(name)-20s: %(message)s')
        handler.setFormatter(formatter)
        logging.getLogger().addHandler(handler)
    except Exception:
        # best-effort: if file logging cannot be configured, continue with console logging only
        logging.getLogger(__name__).exception('Failed to configure file logger')


def main():
    _configure_logging()
    app = QApplication(sys.argv)

    window = MainWindow()
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
