"""
Single-instance guard based on a PID-stamped lock file
"""

import os
import json
import socket
import logging
from datetime import datetime, timezone
from typing import Optional


class InstanceLockError(Exception):
    """Raised when the lock cannot be taken"""

    def __init__(self, message: str, pid: Optional[int] = None):
        self.pid = pid
        super().__init__(message)


def is_pid_alive(pid) -> bool:
    """Signal-0 probe; False for anything that isn't a positive int"""
    if not isinstance(pid, int) or isinstance(pid, bool) or pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


class InstanceLock:
    """Exclusive lock file holding {pid, startedAt, hostname, cwd}"""

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        self._fd: Optional[int] = None
        self.logger = logging.getLogger('clankclaw')

    def _payload(self) -> bytes:
        return json.dumps({
            'pid': os.getpid(),
            'startedAt': datetime.now(timezone.utc).isoformat(),
            'hostname': socket.gethostname(),
            'cwd': os.getcwd(),
        }).encode('utf-8')

    def _try_create(self):
        fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
        try:
            os.write(fd, self._payload())
        except OSError:
            os.close(fd)
            raise
        self._fd = fd

    def read_record(self) -> Optional[dict]:
        try:
            with open(self.lock_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def acquire(self):
        """Take the lock, reclaiming it if the recorded PID is dead"""
        directory = os.path.dirname(self.lock_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        try:
            self._try_create()
            return
        except FileExistsError:
            pass
        except OSError as e:
            raise InstanceLockError(f"Cannot create lock file ({self.lock_path}): {e}") from e

        record = self.read_record() or {}
        try:
            existing_pid = int(record.get('pid'))
        except (TypeError, ValueError):
            existing_pid = None

        if is_pid_alive(existing_pid):
            raise InstanceLockError(
                f"Another bot instance is already running (PID {existing_pid}). "
                f"Stop it first to avoid getUpdates conflict.",
                pid=existing_pid,
            )

        self.logger.warning(f"Reclaiming stale lock {self.lock_path} (PID {existing_pid})")
        try:
            os.unlink(self.lock_path)
        except FileNotFoundError:
            pass

        try:
            self._try_create()
        except OSError as e:
            raise InstanceLockError(f"Cannot create lock file ({self.lock_path}): {e}") from e

    def release(self):
        """Close and delete the lock file; safe to call more than once"""
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None

            try:
                os.unlink(self.lock_path)
            except FileNotFoundError:
                pass

    @property
    def held(self) -> bool:
        return self._fd is not None
