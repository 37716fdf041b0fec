"""One-shot command execution on managed hosts.

Remote targets use a paramiko ``SSHClient`` driven from a thread pool so the
FastAPI event loop is never blocked; local targets use an asyncio
subprocess. Every session is connect -> run one command -> disconnect.
Output is delivered as an async stream of events ending in exactly one
``ExitEvent``.
"""

from __future__ import annotations

import asyncio
import codecs
import io
import time
from concurrent.futures import ThreadPoolExecutor
from typing import AsyncIterator, Callable, Optional

import paramiko

from pvefleet.config import Settings, settings
from pvefleet.errors import CommandFailureError, ConnectionError, PveFleetError
from pvefleet.models.target import (
    AuthMethod,
    CommandResult,
    ConnectionTestResult,
    ExitEvent,
    OutputEvent,
    RemoteTarget,
    StreamEvent,
)
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)

CHUNK_SIZE = 32768
TEST_COMMAND = 'echo "SSH connection test successful"'

# Exit code reported when the channel closes without an exit status
LOST_EXIT_CODE = -1

OutputCallback = Callable[[str], None]
ExitCallback = Callable[[int], None]


class SSHCommandExecutor:
    """Runs shell commands on a RemoteTarget and streams the output back."""

    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._executor = ThreadPoolExecutor(
            max_workers=self._cfg.ssh_max_workers,
            thread_name_prefix="ssh",
        )

    # ── connection ────────────────────────────────────────────────────

    def _connect_sync(self, target: RemoteTarget) -> paramiko.SSHClient:
        log.debug("ssh.connecting", host=target.host, port=target.port)
        client = paramiko.SSHClient()
        # Hosts are registered by IP in the inventory; there is no
        # known_hosts to check against.
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        timeout = self._cfg.ssh_connect_timeout_seconds
        kwargs: dict = dict(
            hostname=target.host,
            port=target.port,
            username=target.username,
            timeout=timeout,
            banner_timeout=timeout,
            auth_timeout=timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        try:
            if target.auth_method == AuthMethod.password:
                kwargs["password"] = target.password
            else:
                kwargs["pkey"] = load_private_key(
                    target.ssh_key or "", target.ssh_key_passphrase,
                )
            client.connect(**kwargs)
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            log.warning("ssh.connect_failed", host=target.host, error=str(exc))
            raise ConnectionError(target.host, exc) from exc
        log.debug("ssh.connected", host=target.host)
        return client

    async def _connect(self, target: RemoteTarget) -> paramiko.SSHClient:
        """Open a session; a client that arrives after the caller gave up is closed."""
        loop = asyncio.get_running_loop()
        pending = loop.run_in_executor(self._executor, self._connect_sync, target)
        try:
            return await asyncio.shield(pending)
        except asyncio.CancelledError:
            pending.add_done_callback(_close_abandoned)
            raise

    # ── public: streaming ─────────────────────────────────────────────

    async def stream(
        self,
        target: RemoteTarget,
        command: str,
    ) -> AsyncIterator[StreamEvent]:
        """Yield stdout/stderr events in emission order, then one ExitEvent.

        Raises ConnectionError before the first event if the session
        cannot be opened. Once connected the exit event is always yielded,
        with ``LOST_EXIT_CODE`` if the channel dropped mid-command.
        """
        if target.local:
            async for event in self._stream_local(command):
                yield event
            return

        client = await self._connect(target)
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[StreamEvent] = asyncio.Queue()

        def emit(event: StreamEvent) -> None:
            loop.call_soon_threadsafe(queue.put_nowait, event)

        pump = loop.run_in_executor(
            self._executor, _pump_channel, client, command, emit, target.host,
        )
        while True:
            event = await queue.get()
            yield event
            if isinstance(event, ExitEvent):
                break
        await pump

    async def _stream_local(self, command: str) -> AsyncIterator[StreamEvent]:
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ConnectionError("localhost", exc) from exc

        queue: asyncio.Queue[Optional[OutputEvent]] = asyncio.Queue()

        async def read(reader: asyncio.StreamReader, kind: str) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                chunk = await reader.read(CHUNK_SIZE)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    queue.put_nowait(OutputEvent(type=kind, data=text))
            tail = decoder.decode(b"", final=True)
            if tail:
                queue.put_nowait(OutputEvent(type=kind, data=tail))

        readers = asyncio.gather(
            read(proc.stdout, "stdout"),
            read(proc.stderr, "stderr"),
        )
        readers.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            await readers
            yield ExitEvent(exit_code=await proc.wait())
        finally:
            # Consumer went away before the exit event
            if proc.returncode is None:
                readers.cancel()
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                else:
                    log.debug("local.killed", pid=proc.pid)

    # ── public: callbacks / collected ─────────────────────────────────

    async def execute(
        self,
        target: RemoteTarget,
        command: str,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
        on_exit: ExitCallback | None = None,
    ) -> CommandResult:
        """Run *command*, invoking the callbacks on the calling event loop.

        ``on_exit`` is invoked exactly once, after every fragment callback.
        The collected output is also returned.
        """
        started = time.monotonic()
        stdout: list[str] = []
        stderr: list[str] = []
        exit_code = LOST_EXIT_CODE
        async for event in self.stream(target, command):
            if isinstance(event, ExitEvent):
                exit_code = event.exit_code
                if on_exit:
                    on_exit(exit_code)
            elif event.type == "stdout":
                stdout.append(event.data)
                if on_stdout:
                    on_stdout(event.data)
            else:
                stderr.append(event.data)
                if on_stderr:
                    on_stderr(event.data)
        return CommandResult(
            command=command,
            exit_code=exit_code,
            stdout="".join(stdout),
            stderr="".join(stderr),
            elapsed_time=time.monotonic() - started,
        )

    async def run(
        self,
        target: RemoteTarget,
        command: str,
        *,
        check: bool = False,
    ) -> CommandResult:
        result = await self.execute(target, command)
        log.debug(
            "ssh.exec",
            host=target.host,
            rc=result.exit_code,
            elapsed=round(result.elapsed_time, 3),
        )
        if check and not result.ok:
            raise CommandFailureError(
                command, result.exit_code, result.stdout, result.stderr,
            )
        return result

    async def test_connection(self, target: RemoteTarget) -> ConnectionTestResult:
        """Run a no-op command; never raises."""
        timeout = self._cfg.ssh_connect_timeout_seconds + 20
        try:
            result = await asyncio.wait_for(
                self.run(target, TEST_COMMAND), timeout=timeout,
            )
        except asyncio.TimeoutError:
            return ConnectionTestResult(
                ok=False, message=f"Connection timed out after {timeout}s",
            )
        except PveFleetError as exc:
            return ConnectionTestResult(ok=False, message=str(exc))
        if not result.ok:
            return ConnectionTestResult(
                ok=False,
                message=(result.stderr or result.stdout).strip()
                or f"Test command exited with code {result.exit_code}",
            )
        return ConnectionTestResult(ok=True, message=result.stdout.strip())

    # ── lifecycle ─────────────────────────────────────────────────────

    async def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


# ── module-level helpers (run inside the executor) ────────────────────────

def load_private_key(
    key_text: str,
    passphrase: str | None = None,
) -> paramiko.PKey:
    """Load an OpenSSH/PEM private key of any type paramiko supports."""
    last_error: Exception | None = None
    for key_cls in (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey):
        try:
            return key_cls.from_private_key(
                io.StringIO(key_text), password=passphrase or None,
            )
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError) as exc:
            last_error = exc
    raise paramiko.SSHException(f"Unsupported private key: {last_error}")


def _close_abandoned(pending: asyncio.Future) -> None:
    if pending.cancelled() or pending.exception() is not None:
        return
    pending.result().close()
    log.debug("ssh.abandoned_client_closed")


def _pump_channel(
    client: paramiko.SSHClient,
    command: str,
    emit: Callable[[StreamEvent], None],
    host: str,
) -> None:
    """Read one exec channel to completion, emitting events in order."""
    exit_code = LOST_EXIT_CODE
    out_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    err_decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        transport = client.get_transport()
        if transport is None:
            raise paramiko.SSHException("transport closed")
        chan = transport.open_session()
        chan.exec_command(command)
        while True:
            progressed = False
            if chan.recv_ready():
                text = out_decoder.decode(chan.recv(CHUNK_SIZE))
                if text:
                    emit(OutputEvent(type="stdout", data=text))
                progressed = True
            if chan.recv_stderr_ready():
                text = err_decoder.decode(chan.recv_stderr(CHUNK_SIZE))
                if text:
                    emit(OutputEvent(type="stderr", data=text))
                progressed = True
            if (
                chan.exit_status_ready()
                and not chan.recv_ready()
                and not chan.recv_stderr_ready()
            ):
                exit_code = chan.recv_exit_status()
                break
            if not progressed:
                time.sleep(0.02)
    except (paramiko.SSHException, OSError, EOFError) as exc:
        log.warning("ssh.channel_lost", host=host, error=str(exc))
    finally:
        tail = out_decoder.decode(b"", final=True)
        if tail:
            emit(OutputEvent(type="stdout", data=tail))
        tail = err_decoder.decode(b"", final=True)
        if tail:
            emit(OutputEvent(type="stderr", data=tail))
        emit(ExitEvent(exit_code=exit_code))
        client.close()


# ── Singleton instance ────────────────────────────────────────────────────

ssh_executor = SSHCommandExecutor()
