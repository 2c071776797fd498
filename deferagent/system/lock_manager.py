"""
Manages the invocation lease that keeps overlapping agent runs from prompting
or enforcing at the same time.

The scheduler starts a new invocation on a fixed interval even while an older
one is still waiting on a prompt or an install. The lease file records the
holder's PID and an expiry; a newer invocation that finds a live, unexpired
holder steps aside.
"""
import os
import json
import time
import fcntl
import atexit
from typing import Any, Callable, Dict, Optional

import psutil

from ..utils import get_logger

logger = get_logger(__name__)

LEASE_GRACE_SECONDS = 600


def lease_ttl(prompt_timeout: int, update_delay: int, hard_restart_delay: int) -> int:
    """Longest time one invocation can legitimately block, plus a grace period."""
    return max(prompt_timeout, update_delay + hard_restart_delay) + LEASE_GRACE_SECONDS


class InvocationLease:
    """
    Lease file with PID and expiry, created atomically and locked with flock.

    The flock is held for as long as the lease is held, so the kernel drops it
    if the holder dies. The PID and expiry in the file cover holders whose lock
    was lost, e.g. after the file was replaced.
    """

    def __init__(self, storage_path: str, name: str, ttl: int,
                 clock: Callable[[], float] = time.time):
        """
        Initializes the InvocationLease.

        :param storage_path: Directory path for storing the lease file
        :type storage_path: str
        :param name: Base name of the lease file, normally the bundle identifier
        :type name: str
        :param ttl: Seconds after which an unrenewed lease is considered stale
        :type ttl: int
        :param clock: Source of the current epoch time
        :raises ValueError: If storage_path is empty
        """
        if not storage_path:
            raise ValueError(f"Invalid storage path provided to InvocationLease: {storage_path}")
        self.lease_file_path = os.path.join(storage_path, f"{name}.lease")
        self.ttl = ttl
        self._clock = clock
        self._lease_fd: Optional[int] = None
        logger.debug(f"InvocationLease initialized. Lease file path: {self.lease_file_path}")

    @property
    def held(self) -> bool:
        return self._lease_fd is not None

    def _read_lease_content(self, fd: int) -> Optional[Dict[str, Any]]:
        """
        Reads the holder record from the lease file descriptor.

        :param fd: File descriptor to read from
        :return: Holder record, or None if it cannot be parsed
        :rtype: Optional[Dict[str, Any]]
        """
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            content = os.read(fd, 4096).decode('utf-8').strip()
            data = json.loads(content)
            if isinstance(data, dict) and isinstance(data.get('pid'), int):
                return data
            logger.warning(f"Invalid content format in lease file: {content!r}")
        except (OSError, ValueError, UnicodeDecodeError) as e:
            logger.error(f"Error reading or parsing lease file content: {e}")
        return None

    def _write_lease_content(self, fd: int) -> bool:
        """
        Writes the current PID and a fresh expiry to the lease file descriptor.

        :param fd: File descriptor to write to
        :return: True if write succeeded, False otherwise
        :rtype: bool
        """
        now = int(self._clock())
        content = json.dumps({
            'pid': os.getpid(),
            'acquired_at': now,
            'expires_at': now + self.ttl
        }).encode('utf-8')
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            bytes_written = os.write(fd, content)
            os.ftruncate(fd, bytes_written)
            os.fsync(fd)
            logger.debug(f"Wrote lease for PID {os.getpid()}, expiring at {now + self.ttl}.")
            return True
        except OSError as e:
            logger.error(f"Failed to write lease file {self.lease_file_path}: {e}")
            return False

    def _is_stale(self, holder: Optional[Dict[str, Any]]) -> bool:
        if holder is None:
            logger.warning("Could not read a valid holder from the existing lease file. Assuming stale.")
            return True
        pid = holder['pid']
        if pid == os.getpid():
            return True
        if not psutil.pid_exists(pid):
            logger.warning(f"Detected stale lease: PID {pid} does not exist.")
            return True
        expires_at = holder.get('expires_at')
        if not isinstance(expires_at, (int, float)) or expires_at <= self._clock():
            logger.warning(f"Detected stale lease: held by PID {pid} but expired at {expires_at}.")
            return True
        return False

    def _take(self, fd: int) -> bool:
        self._lease_fd = fd
        if not self._write_lease_content(fd):
            self.release()
            return False
        atexit.register(self.release)
        logger.info(f"Acquired invocation lease: {self.lease_file_path}")
        return True

    def acquire(self) -> bool:
        """
        Attempts to acquire the lease.

        :return: True if this invocation now holds the lease, False if another live invocation does
        :rtype: bool
        """
        if self._lease_fd is not None:
            logger.warning("Acquire called when lease is already held.")
            return True

        try:
            os.makedirs(os.path.dirname(self.lease_file_path), exist_ok=True)
            fd = os.open(self.lease_file_path, os.O_CREAT | os.O_EXCL | os.O_RDWR, 0o600)
        except FileExistsError:
            return self._acquire_existing()
        except OSError as e:
            logger.critical(f"OS error creating lease file {self.lease_file_path}: {e}")
            return False

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            logger.critical(f"Created lease file {self.lease_file_path} but could not lock it.")
            os.close(fd)
            return False
        return self._take(fd)

    def _acquire_existing(self) -> bool:
        logger.info(f"Lease file {self.lease_file_path} exists. Checking for staleness...")
        try:
            fd = os.open(self.lease_file_path, os.O_RDWR)
        except FileNotFoundError:
            logger.info("Lease file was released while checking it. Retrying.")
            return self.acquire()
        except OSError as e:
            logger.error(f"Failed to open existing lease file {self.lease_file_path}: {e}")
            return False

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.info(f"Lease file {self.lease_file_path} is locked by another running invocation.")
            os.close(fd)
            return False
        except OSError as e:
            logger.error(f"Failed to lock existing lease file {self.lease_file_path}: {e}")
            os.close(fd)
            return False

        try:
            same_file = os.fstat(fd).st_ino == os.stat(self.lease_file_path).st_ino
        except FileNotFoundError:
            same_file = False
        if not same_file:
            logger.info("Lease file was replaced while checking it. Deferring to the new holder.")
            os.close(fd)
            return False

        holder = self._read_lease_content(fd)
        if not self._is_stale(holder):
            logger.info(f"Lease held by running invocation PID {holder['pid']}.")
            os.close(fd)
            return False

        logger.info("Stale lease detected. Taking over.")
        return self._take(fd)

    def renew(self) -> bool:
        """
        Pushes the expiry forward by one TTL. Used by invocations that block for long.

        :return: True if renewed, False if the lease is not held
        :rtype: bool
        """
        if self._lease_fd is None:
            logger.warning("Renew called but the lease is not held.")
            return False
        return self._write_lease_content(self._lease_fd)

    def release(self):
        """
        Releases the lease by deleting the file and closing the descriptor.
        Safe to call even if the lease wasn't acquired or was already released.
        """
        try:
            atexit.unregister(self.release)
        except (AttributeError, ValueError):
            pass

        if self._lease_fd is None:
            logger.debug("Release called but no active lease.")
            return

        fd = self._lease_fd
        self._lease_fd = None
        try:
            os.remove(self.lease_file_path)
            logger.info(f"Released invocation lease: {self.lease_file_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Error removing lease file {self.lease_file_path}: {e}")
        try:
            os.close(fd)
        except OSError as e:
            logger.error(f"Error closing lease file descriptor {self.lease_file_path}: {e}")

    def current_holder(self) -> Optional[Dict[str, Any]]:
        """
        Reports the recorded holder without acquiring the lease.

        :return: Holder record if a live, unexpired holder exists, otherwise None
        :rtype: Optional[Dict[str, Any]]
        """
        try:
            fd = os.open(self.lease_file_path, os.O_RDONLY)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to open lease file {self.lease_file_path}: {e}")
            return None
        try:
            holder = self._read_lease_content(fd)
        finally:
            os.close(fd)
        if holder is None or holder['pid'] == os.getpid() or self._is_stale(holder):
            return None
        return holder
