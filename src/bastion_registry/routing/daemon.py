"""Routing daemon (sshpiperd) process supervision."""

import logging
import subprocess
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class PiperDaemon:
    """Keeps one routing daemon process running and restarts it on demand.

    ``reload`` is fire-and-forget: the restart happens on a background
    thread so the mutating request never waits for it.
    """

    def __init__(self, command: list[str], stop_timeout: float = 10.0):
        self.command = command
        self.stop_timeout = stop_timeout
        self._process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def _spawn(self) -> None:
        self._process = subprocess.Popen(self.command)
        logger.info("Started %s (pid %d)", self.command[0], self._process.pid)

    def _terminate(self) -> None:
        proc = self._process
        self._process = None
        if proc is None or proc.poll() is not None:
            return
        proc.terminate()
        try:
            proc.wait(timeout=self.stop_timeout)
        except subprocess.TimeoutExpired:
            logger.warning("%s did not exit after SIGTERM, killing", self.command[0])
            proc.kill()
            proc.wait()

    def start(self) -> None:
        with self._lock:
            if self._process is not None and self._process.poll() is None:
                return
            self._spawn()

    def restart(self) -> None:
        with self._lock:
            self._terminate()
            self._spawn()

    def reload(self) -> None:
        logger.info("Config changed, restarting %s", self.command[0])
        thread = threading.Thread(target=self._restart_logged, daemon=True)
        thread.start()

    def _restart_logged(self) -> None:
        try:
            self.restart()
        except OSError:
            logger.exception("Failed to restart %s", self.command[0])

    def stop(self) -> None:
        with self._lock:
            self._terminate()
