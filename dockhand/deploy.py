"""Compose redeploy — brings a stack up after its secrets changed."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

COMPOSE_FILE_NAMES = ("compose.yaml", "compose.yml", "docker-compose.yml", "docker-compose.yaml")


@dataclass(frozen=True)
class DeployResult:
    success: bool
    output: str = ""
    error: str | None = None


class ComposeDeployer:
    """Run ``docker compose up -d`` for a stack directory."""

    def __init__(self, docker_bin: str | None = None, timeout: float = 600.0) -> None:
        self.docker_bin = docker_bin or shutil.which("docker") or "docker"
        self.timeout = timeout

    def deploy(
        self,
        stack_dir: Path | str,
        *,
        env: dict[str, str] | None = None,
        force: bool = False,
    ) -> DeployResult:
        """Bring the stack up. ``env`` is exported to compose for variable substitution."""
        stack_dir = Path(stack_dir)
        compose_file = next(
            (stack_dir / n for n in COMPOSE_FILE_NAMES if (stack_dir / n).is_file()), None
        )
        if compose_file is None:
            return DeployResult(success=False, error=f"No compose file in {stack_dir}")

        cmd = [self.docker_bin, "compose", "-f", compose_file.name, "up", "-d", "--remove-orphans"]
        if force:
            cmd.append("--force-recreate")

        proc_env = os.environ.copy()
        proc_env.update(env or {})

        logger.info("Deploying %s (force=%s)", stack_dir, force)
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(stack_dir),
                env=proc_env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Deploy of %s failed: %s", stack_dir, e)
            return DeployResult(success=False, error=str(e))

        output = (proc.stdout or "") + (proc.stderr or "")
        if proc.returncode != 0:
            logger.warning("Deploy of %s exited %d", stack_dir, proc.returncode)
            return DeployResult(
                success=False, output=output, error=f"docker compose exited {proc.returncode}"
            )
        return DeployResult(success=True, output=output)
