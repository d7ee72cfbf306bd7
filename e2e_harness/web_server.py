"""Start the configured web server before a run and stop it afterwards."""

import asyncio
import logging
import os
import signal
import subprocess
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import aiohttp

from e2e_harness.errors import WebServerError
from e2e_harness.models.config import WebServerConfig

log = logging.getLogger(__name__)

# Statuses that show a server is up even when the probed page needs auth.
AVAILABLE_STATUSES = frozenset({400, 401, 402, 403})


async def probe(url: str) -> bool:
    """Check whether a server answers on url."""
    timeout = aiohttp.ClientTimeout(total=5)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        try:
            async with session.get(url) as response:
                return response.status < 400 or response.status in AVAILABLE_STATUSES
        except (aiohttp.ClientError, TimeoutError):
            return False


async def wait_until_available(
    url: str,
    timeout: float,
    poll_interval: float = 0.5,
    process: subprocess.Popen[bytes] | None = None,
) -> None:
    """Poll url until it answers.

    Raises:
        WebServerError: If the server process exits or url does not answer
            within timeout seconds

    """
    deadline = asyncio.get_running_loop().time() + timeout

    while True:
        if await probe(url):
            return

        if process is not None and process.poll() is not None:
            raise WebServerError(
                f"Web server exited with code {process.returncode} before {url} answered"
            )

        if asyncio.get_running_loop().time() >= deadline:
            raise WebServerError(f"{url} did not answer within {timeout} seconds")

        await asyncio.sleep(poll_interval)


@contextmanager
def web_server(
    config: WebServerConfig | None, *, ci: bool, root: Path
) -> Iterator[None]:
    """Run the configured server for the duration of the block.

    An already running server is reused unless reuse_existing_server is
    false, which it is by default on CI.
    """
    if config is None:
        yield
        return

    reuse = config.reuse_existing_server
    if reuse is None:
        reuse = not ci

    if asyncio.run(probe(config.url)):
        if not reuse:
            raise WebServerError(
                f"{config.url} is already in use, stop the running server "
                "or set reuse_existing_server"
            )
        log.info("Reusing server already running at %s", config.url)
        yield
        return

    cwd = root / config.cwd if config.cwd else root
    log.info("Starting web server: %s", config.command)
    # A new session lets the whole process tree be signalled at once.
    process = subprocess.Popen(
        config.command, shell=True, cwd=cwd, start_new_session=True
    )
    try:
        asyncio.run(wait_until_available(config.url, config.timeout, process=process))
        log.info("Web server is up at %s", config.url)
        yield
    finally:
        stop_process(process)


def stop_process(process: subprocess.Popen[bytes]) -> None:
    """Terminate the server and every process it started."""
    signal_group(process, signal.SIGTERM)
    try:
        process.wait(timeout=10)
    except subprocess.TimeoutExpired:
        log.warning("Web server did not stop, killing it")
        signal_group(process, signal.SIGKILL)
        process.wait()


def signal_group(process: subprocess.Popen[bytes], sig: signal.Signals) -> None:
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        log.debug("Web server process group %d already exited", process.pid)
