"""
Run mutating package-manager commands and stream their output.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence, Set

from brewcatalog.domain.errors import (
    CommandError,
    CommandFailedError,
    CommandNotSupportedError,
    CommandSpawnError,
)
from brewcatalog.domain.models import Package

logger = logging.getLogger(__name__)

# Longest output line accepted from the subprocess.
STREAM_LIMIT = 1024 * 1024


class CommandType(str, enum.Enum):
    UPGRADE_ALL = "upgrade_all"
    UPGRADE = "upgrade"
    INSTALL = "install"
    UNINSTALL = "uninstall"
    PIN = "pin"
    UNPIN = "unpin"
    CLEANUP = "cleanup"


# Commands acting on exactly one package.
SINGLE_PACKAGE_COMMANDS = {
    CommandType.UPGRADE,
    CommandType.INSTALL,
    CommandType.UNINSTALL,
    CommandType.PIN,
    CommandType.UNPIN,
}


@dataclass
class CommandStarted:
    command: CommandType


@dataclass
class CommandOutput:
    line: str


@dataclass
class CommandFinished:
    command: CommandType
    packages: List[Package] = field(default_factory=list)
    error: Optional[CommandError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_args(command: CommandType, packages: Sequence[Package]) -> List[str]:
    """Command-line arguments (without the executable) for a command."""
    if command is CommandType.UPGRADE_ALL:
        return ["upgrade"]
    if command is CommandType.CLEANUP:
        return ["cleanup", "--prune=all"]

    pkg = packages[0]
    if command in (CommandType.PIN, CommandType.UNPIN):
        return [command.value, pkg.name]
    args = [command.value]
    if pkg.is_cask:
        args.append("--cask")
    args.append(pkg.name)
    return args


def _unsupported_reason(command: CommandType, pkg: Package) -> Optional[str]:
    if command in (CommandType.INSTALL, CommandType.UNINSTALL) and not pkg.install_supported:
        return f"{pkg.name} can't be {command.value}ed because it's a .pkg and may need sudo"
    if command in (CommandType.PIN, CommandType.UNPIN) and pkg.is_cask:
        return f"{pkg.name} is a cask and casks can't be {command.value}ned"
    return None


SuccessHook = Callable[[CommandFinished], Awaitable[None]]


async def read_lines(stream: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """
    Yield the lines of `stream` including their terminator.

    A line longer than the reader's limit is read in pieces and yielded whole.
    """
    pending: List[bytes] = []
    while True:
        try:
            chunk = await stream.readuntil(b"\n")
        except asyncio.LimitOverrunError as e:
            pending.append(await stream.readexactly(e.consumed))
            continue
        except asyncio.IncompleteReadError as e:
            if pending or e.partial:
                yield b"".join(pending) + e.partial
            return
        yield b"".join(pending) + chunk
        pending = []


class CommandExecutor:
    """
    Spawns one subprocess per command.

    stdout and stderr are read by two concurrent tasks into a single queue;
    the CommandFinished event is queued only after the process has exited and
    both readers have drained their streams.

    A started command runs to completion even when the consumer of `run`
    stops iterating; its success hook still fires. Only `close()` kills
    commands still running.
    """

    def __init__(self, executable: str = "brew"):
        self.executable = executable
        self._running: Set[asyncio.Task] = set()

    async def run(
        self,
        command: CommandType,
        packages: Sequence[Package] = (),
        on_success: Optional[SuccessHook] = None,
    ) -> AsyncIterator[object]:
        """
        Yield CommandStarted, then CommandOutput lines, then exactly one
        CommandFinished. Failures are reported through CommandFinished.error.

        `on_success` is awaited before a successful CommandFinished is queued.
        """
        packages = list(packages)
        if command in SINGLE_PACKAGE_COMMANDS and len(packages) != 1:
            raise ValueError(f"{command.value} needs exactly one package, got {len(packages)}")

        queue: asyncio.Queue = asyncio.Queue()
        supervisor = asyncio.create_task(self._supervise(command, packages, queue, on_success))
        self._running.add(supervisor)
        supervisor.add_done_callback(self._running.discard)
        try:
            yield CommandStarted(command)
            while True:
                event = await queue.get()
                yield event
                if isinstance(event, CommandFinished):
                    break
        finally:
            if not supervisor.done():
                logger.info(f"Consumer of {command.value} went away, command keeps running")

    async def join(self) -> None:
        """Wait for every command still running."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def close(self) -> None:
        """Cancel every command still running, killing its process."""
        tasks = list(self._running)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _supervise(
        self,
        command: CommandType,
        packages: List[Package],
        queue: asyncio.Queue,
        on_success: Optional[SuccessHook],
    ) -> None:
        try:
            try:
                error = await self._execute(command, packages, queue)
            except Exception as e:
                logger.error(f"Unexpected failure running {command.value}: {e}", exc_info=True)
                error = CommandError(str(e))

            finished = CommandFinished(command=command, packages=packages, error=error)
            if finished.ok and on_success is not None:
                try:
                    await on_success(finished)
                except Exception as e:
                    logger.error(f"Post-processing of {command.value} failed: {e}", exc_info=True)
        except asyncio.CancelledError:
            queue.put_nowait(CommandFinished(command=command, packages=packages, error=CommandError("cancelled")))
            raise
        queue.put_nowait(finished)

    async def _execute(
        self, command: CommandType, packages: List[Package], queue: asyncio.Queue
    ) -> Optional[CommandError]:
        args = build_args(command, packages)
        command_line = " ".join([self.executable, *args])

        if packages:
            reason = _unsupported_reason(command, packages[0])
            if reason:
                lines = [reason, f"please run '{command_line}' in command line"]
                for line in lines:
                    await queue.put(CommandOutput(line))
                return CommandNotSupportedError(f"{command.value} not supported", lines)

        await queue.put(CommandOutput(f"> {command_line}"))
        logger.info(f"Running {command_line}")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            return CommandSpawnError(f"failed to start command '{command_line}': {e}")

        output: List[str] = []

        async def feed(stream: asyncio.StreamReader) -> None:
            async for line in read_lines(stream):
                text = line.decode(errors="replace").rstrip("\r\n")
                output.append(text)
                await queue.put(CommandOutput(text))

        feeders = [asyncio.create_task(feed(proc.stdout)), asyncio.create_task(feed(proc.stderr))]
        try:
            await asyncio.gather(*feeders)
            returncode = await proc.wait()
        finally:
            for feeder in feeders:
                feeder.cancel()
            await asyncio.gather(*feeders, return_exceptions=True)
            if proc.returncode is None:
                logger.warning(f"Killing '{command_line}'")
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        if returncode != 0:
            logger.warning(f"'{command_line}' exited with status {returncode}")
            return CommandFailedError(command_line, returncode, output)
        return None
