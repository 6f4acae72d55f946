# UPS Fleet Supervisor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 GPL-3.0 License

"""Remote shutdown over SSH.

Runs ``ssh user@host <command>`` with key-based auth only (BatchMode), so
a missing key fails fast instead of hanging on a password prompt.
"""

import asyncio
import logging
import shlex

from .client_config import Client
from .config import Config

logger = logging.getLogger(__name__)

SSH = "ssh"


class SSHShutdown:
    """Deliver an immediate power-off instruction to one client."""

    def __init__(self, user: str = "root", connect_timeout: int = 10,
                 command: str = "shutdown -h now"):
        self._user = user
        self._connect_timeout = connect_timeout
        self._command = command

    @classmethod
    def from_config(cls, config: Config) -> "SSHShutdown":
        return cls(
            user=config.ssh_user,
            connect_timeout=config.ssh_connect_timeout,
            command=config.ssh_command,
        )

    @property
    def required_commands(self) -> list[str]:
        return [SSH]

    def build_argv(self, client: Client) -> list[str]:
        return [
            SSH,
            "-o", f"ConnectTimeout={self._connect_timeout}",
            "-o", "StrictHostKeyChecking=no",
            "-o", "BatchMode=yes",
            f"{self._user}@{client.address}",
            *shlex.split(self._command),
        ]

    async def __call__(self, client: Client) -> None:
        """Run the shutdown command. Raises RuntimeError/OSError on failure.

        Cancellation (the fleet controller's timeout) kills the ssh process.
        """
        argv = self.build_argv(client)
        logger.debug("Running %s", " ".join(argv))
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            err = stderr.decode(errors="replace").strip() if stderr else ""
            raise RuntimeError(f"ssh exited {proc.returncode}: {err}".rstrip(": "))
