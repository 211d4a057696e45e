"""
Interactive shell session over a LiveConnection.

SessionDriver opens a channel, requests a PTY with explicit terminal
modes, starts the remote shell and copies bytes between the local
streams and the channel until the remote side exits.
"""

from __future__ import annotations
import logging
import os
import selectors
import socket
import struct
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum
from typing import BinaryIO, Callable, Mapping, Optional

import paramiko
from paramiko.common import cMSG_CHANNEL_REQUEST

from ..errors import (
    PtyRequestFailedError,
    SessionCancelledError,
    SessionError,
    ShellStartFailedError,
)
from .cancel import CancelToken
from .terminal import TerminalSize, raw_mode, terminal_size
from .transport import LiveConnection

logger = logging.getLogger(__name__)

READ_BUFFER_SIZE = 32768
DEFAULT_TERM_TYPE = "xterm"
DEFAULT_CHANNEL_TIMEOUT = 10.0
DEFAULT_EXIT_STATUS_TIMEOUT = 30.0

# Terminal mode opcodes, RFC 4254 section 8
TTY_OP_END = 0
ECHO = 53
TTY_OP_ISPEED = 128
TTY_OP_OSPEED = 129

DEFAULT_TERMINAL_MODES = {
    ECHO: 1,
    TTY_OP_ISPEED: 14400,
    TTY_OP_OSPEED: 14400,
}


def encode_terminal_modes(modes: Mapping[int, int]) -> bytes:
    """Encode opcode/value pairs as the pty-req modes string."""
    encoded = b"".join(struct.pack(">BI", opcode, value) for opcode, value in modes.items())
    return encoded + bytes([TTY_OP_END])


def request_pty(
    channel: paramiko.Channel,
    term: str,
    size: TerminalSize,
    modes: Mapping[int, int],
) -> None:
    """
    Send a pty-req carrying terminal modes and wait for the reply.

    Channel.get_pty always sends an empty modes string, so the request is
    built here the same way Paramiko builds it, with the modes filled in.

    Raises:
        paramiko.SSHException: the server refused or the channel closed
    """
    if channel.closed or not channel.active:
        raise paramiko.SSHException("channel is not open")
    m = paramiko.Message()
    m.add_byte(cMSG_CHANNEL_REQUEST)
    m.add_int(channel.remote_chanid)
    m.add_string("pty-req")
    m.add_boolean(True)
    m.add_string(term)
    m.add_int(size.cols)
    m.add_int(size.rows)
    m.add_int(0)
    m.add_int(0)
    m.add_string(encode_terminal_modes(modes))
    channel._event_pending()
    channel.transport._send_user_message(m)
    channel._wait_for_event()


def _fileno(stream) -> Optional[int]:
    try:
        return stream.fileno()
    except (AttributeError, ValueError, OSError):
        return None


class SessionState(Enum):
    """Interactive session lifecycle. Transitions only move forward."""
    OPENED = 1
    CHANNEL_REQUESTED = 2
    PTY_ALLOCATED = 3
    SHELL_STARTED = 4
    STREAMING = 5
    EXITED = 6
    CLOSED = 7


class InteractiveSession:
    """
    One remote channel, its PTY, and the local streams bound to it.

    Streams are binary. A stdin without a file descriptor is read until EOF;
    one with a descriptor is multiplexed with a wake socket so the input
    pump stops as soon as the remote output is drained.
    """

    def __init__(
        self,
        connection: LiveConnection,
        stdin: BinaryIO,
        stdout: BinaryIO,
        stderr: BinaryIO,
    ):
        self.connection = connection
        self.stdin = stdin
        self.stdout = stdout
        self.stderr = stderr

        self.channel: Optional[paramiko.Channel] = None
        self.size: Optional[TerminalSize] = None
        self.exit_status: Optional[int] = None

        self._state = SessionState.OPENED
        self._state_lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        with self._state_lock:
            return self._state

    def _advance(self, new_state: SessionState) -> None:
        with self._state_lock:
            old_state = self._state
            if new_state.value <= old_state.value:
                raise RuntimeError(
                    f"Illegal session transition {old_state.name} -> {new_state.name}"
                )
            self._state = new_state
        logger.debug(f"Session state: {old_state.name} -> {new_state.name}")

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    def open_channel(self, timeout: float = DEFAULT_CHANNEL_TIMEOUT) -> None:
        try:
            self.channel = self.connection.transport.open_session(timeout=timeout)
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise SessionError(f"failed to open session channel: {e}") from e
        self._advance(SessionState.CHANNEL_REQUESTED)

    def request_pty(
        self,
        term: str,
        size: TerminalSize,
        modes: Mapping[int, int] = DEFAULT_TERMINAL_MODES,
    ) -> None:
        try:
            request_pty(self.channel, term, size, modes)
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise PtyRequestFailedError(f"request for pseudo terminal failed: {e}") from e
        self.size = size
        self._advance(SessionState.PTY_ALLOCATED)
        logger.info(f"PTY allocated: {term} {size}")

    def start_shell(self) -> None:
        try:
            self.channel.invoke_shell()
        except (paramiko.SSHException, EOFError, OSError) as e:
            raise ShellStartFailedError(f"failed to start shell: {e}") from e
        self._advance(SessionState.SHELL_STARTED)

    def resize(self, size: TerminalSize) -> None:
        if self.state is not SessionState.STREAMING:
            return
        try:
            self.channel.resize_pty(width=size.cols, height=size.rows)
            self.size = size
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"Resize error: {e}")

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    def stream(
        self,
        cancel: CancelToken,
        exit_status_timeout: float = DEFAULT_EXIT_STATUS_TIMEOUT,
    ) -> int:
        """
        Copy I/O until the remote side closes, then return its exit status.

        Three tasks run in one executor scope: channel stdout, channel
        stderr and local stdin. A failing task closes the channel so the
        others unblock; the exit status is read only after both output
        tasks drained.
        """
        self._advance(SessionState.STREAMING)

        wake_r, wake_w = socket.socketpair()
        try:
            with ThreadPoolExecutor(max_workers=3, thread_name_prefix="sshm-io") as pool:
                outputs = [
                    pool.submit(self._pump_output, self.channel.recv, self.stdout, "stdout"),
                    pool.submit(self._pump_output, self.channel.recv_stderr, self.stderr, "stderr"),
                ]
                tasks = outputs + [pool.submit(self._pump_input, wake_r)]
                for task in tasks:
                    task.add_done_callback(self._abort_on_failure)

                wait(outputs)
                wake_w.send(b"\0")
        finally:
            wake_r.close()
            wake_w.close()

        cancel.raise_if_cancelled("streaming")

        errors = [task.exception() for task in tasks if task.exception() is not None]
        if errors:
            raise SessionError(f"session I/O failed: {errors[0]}") from errors[0]

        self.channel.status_event.wait(exit_status_timeout)
        status = self.channel.exit_status if self.channel.status_event.is_set() else -1
        cancel.raise_if_cancelled("streaming")
        if status < 0:
            raise SessionError("channel closed without an exit status")

        self.exit_status = status
        self._advance(SessionState.EXITED)
        logger.info(f"Remote shell exited with status {status}")
        return status

    def _abort_on_failure(self, task: Future) -> None:
        if task.exception() is not None:
            logger.error(f"Session I/O task failed: {task.exception()}")
            self.abort()

    def _pump_output(self, recv: Callable[[int], bytes], stream: BinaryIO, name: str) -> int:
        total = 0
        while True:
            data = recv(READ_BUFFER_SIZE)
            if not data:
                break
            stream.write(data)
            stream.flush()
            total += len(data)
        logger.debug(f"Remote {name} drained after {total} bytes")
        return total

    def _pump_input(self, wake: socket.socket) -> None:
        fd = _fileno(self.stdin)
        if fd is None:
            self._copy_stream_input()
            return

        with selectors.DefaultSelector() as selector:
            try:
                selector.register(fd, selectors.EVENT_READ)
            except OSError:
                # epoll refuses regular files and /dev/null; both hit EOF without blocking
                logger.debug("stdin is not pollable, reading it directly")
                self._copy_stream_input()
                return
            selector.register(wake, selectors.EVENT_READ)
            while True:
                for key, _ in selector.select():
                    if key.fileobj is wake:
                        return
                    data = os.read(fd, READ_BUFFER_SIZE)
                    if not data:
                        self._send_eof()
                        return
                    if not self._send(data):
                        return

    def _copy_stream_input(self) -> None:
        read = getattr(self.stdin, "read1", self.stdin.read)
        while True:
            data = read(READ_BUFFER_SIZE)
            if not data:
                self._send_eof()
                return
            if not self._send(data):
                return

    def _send(self, data: bytes) -> bool:
        """Forward input; False once the channel is gone."""
        try:
            self.channel.sendall(data)
        except OSError:
            if self.channel.closed:
                return False
            raise
        return True

    def _send_eof(self) -> None:
        logger.debug("Local input reached EOF")
        try:
            self.channel.shutdown_write()
        except (paramiko.SSHException, EOFError, OSError) as e:
            logger.debug(f"Could not send EOF: {e}")

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def abort(self) -> None:
        """Close channel and connection from any thread to unblock every task."""
        if self.channel is not None:
            self.channel.close()
        self.connection.close()

    def close(self) -> None:
        if self.state is SessionState.CLOSED:
            return
        if self.channel is not None:
            try:
                self.channel.close()
            except Exception as e:
                logger.debug(f"Channel close error: {e}")
        self._advance(SessionState.CLOSED)


class SessionDriver:
    """
    Runs one interactive shell to completion.

    Usage:
        driver = SessionDriver()
        status = driver.interact(connection, terminal_size())

    ``interact`` owns the connection it is given: channel and connection
    are closed on every exit path.
    """

    def __init__(
        self,
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        term_type: str = DEFAULT_TERM_TYPE,
        terminal_modes: Optional[Mapping[int, int]] = None,
        cancel: Optional[CancelToken] = None,
        channel_timeout: float = DEFAULT_CHANNEL_TIMEOUT,
    ):
        self.stdin = stdin if stdin is not None else getattr(sys.stdin, "buffer", sys.stdin)
        self.stdout = stdout if stdout is not None else getattr(sys.stdout, "buffer", sys.stdout)
        self.stderr = stderr if stderr is not None else getattr(sys.stderr, "buffer", sys.stderr)
        self.term_type = term_type
        self.terminal_modes = dict(terminal_modes or DEFAULT_TERMINAL_MODES)
        self.cancel = cancel or CancelToken()
        self.channel_timeout = channel_timeout

        self._session: Optional[InteractiveSession] = None

    @property
    def session(self) -> Optional[InteractiveSession]:
        return self._session

    def interact(self, connection: LiveConnection, size: Optional[TerminalSize] = None) -> int:
        """
        Run a remote shell and return its exit status.

        Raises:
            SessionError: channel open failure or abnormal closure
            PtyRequestFailedError: server refused the PTY
            ShellStartFailedError: server refused the shell
            SessionCancelledError: ``cancel`` fired
        """
        size = size or terminal_size()
        session = InteractiveSession(connection, self.stdin, self.stdout, self.stderr)
        self._session = session

        try:
            with self.cancel.on_cancel(session.abort):
                try:
                    session.open_channel(self.channel_timeout)
                    session.request_pty(self.term_type, size, self.terminal_modes)
                    session.start_shell()
                except SessionError:
                    self.cancel.raise_if_cancelled("session setup")
                    raise

                with raw_mode(self.stdin):
                    return session.stream(self.cancel)
        finally:
            session.close()
            connection.close()
            self._session = None

    def resize(self, cols: int, rows: int) -> None:
        """Forward a local window change to the remote PTY."""
        session = self._session
        if session is not None:
            session.resize(TerminalSize(cols, rows).clamped())
