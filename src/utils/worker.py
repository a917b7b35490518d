from PyQt6.QtCore import QObject, QThread, pyqtSignal
from typing import Any, Callable, Optional
import logging

logger = logging.getLogger(__name__)


class CallWorker(QThread):
    """Run a blocking callable in a background thread and emit its outcome.

    Signals are connected from the GUI thread, so handlers run there (queued delivery).
    """

    results_ready = pyqtSignal(object)
    error = pyqtSignal(str)
    finished_signal = pyqtSignal()

    def __init__(self, fn: Callable[[], Any], parent=None):
        super().__init__(parent)
        self.fn = fn

    def run(self):
        try:
            results = self.fn()
            self.results_ready.emit(results)
        except Exception as e:
            logger.debug("Background call failed: %s", e, exc_info=True)
            self.error.emit(str(e))
        finally:
            self.finished_signal.emit()


class ThreadRunner(QObject):
    """Default runner: runner(fn, on_result, on_error) starts one CallWorker per call.

    Workers are referenced until they finish so they are not garbage collected mid-run.
    """

    def __init__(self, parent=None):
        super().__init__(parent)
        self._workers: set = set()

    def __call__(self, fn: Callable[[], Any], on_result: Callable[[Any], None], on_error: Optional[Callable[[str], None]] = None) -> CallWorker:
        worker = CallWorker(fn)
        self._workers.add(worker)
        worker.results_ready.connect(on_result)
        if on_error is not None:
            worker.error.connect(on_error)

        def on_finished():
            self._workers.discard(worker)
            worker.deleteLater()

        worker.finished_signal.connect(on_finished)
        worker.start()
        return worker

    def wait_all(self, msecs: int = 5000) -> None:
        """Block until running workers finish (used on shutdown)."""
        for worker in list(self._workers):
            worker.wait(msecs)
