"""
Scheduled secret sync — APScheduler interval job over every Git stack.

Stacks whose flagged secrets changed are redeployed right after the sync.
max_instances=1 keeps a slow pass from overlapping the next one.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dockhand.vault.sync import should_redeploy

if TYPE_CHECKING:
    from dockhand.deploy import ComposeDeployer
    from dockhand.vault.models import SyncResult
    from dockhand.vault.sync import SecretSync

logger = logging.getLogger(__name__)

JOB_ID = "vault-secret-sync"


class SecretSyncScheduler:
    """Runs SecretSync.sync_all() every ``interval_minutes``."""

    def __init__(
        self,
        syncer: SecretSync,
        deployer: ComposeDeployer | None = None,
        interval_minutes: int = 0,
    ) -> None:
        self.syncer = syncer
        self.deployer = deployer
        self.interval_minutes = interval_minutes
        self.scheduler = BackgroundScheduler()

    @property
    def enabled(self) -> bool:
        return self.interval_minutes > 0

    def start(self) -> bool:
        """Register the job and start. Returns False when the interval is 0."""
        if not self.enabled:
            logger.info("Scheduled secret sync disabled")
            return False
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="vault secret sync",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("Scheduled secret sync every %d minutes", self.interval_minutes)
        return True

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduled secret sync stopped")

    def run_once(self) -> dict[str, SyncResult]:
        results = self.syncer.sync_all()
        failed = [name for name, r in results.items() if not r.success]
        if failed:
            logger.warning("Secret sync failed for: %s", ", ".join(failed))

        if self.deployer is None or self.syncer.stacks is None:
            return results

        for stack in self.syncer.stacks.list_git_stacks():
            result = results.get(stack.stack_name)
            if result is None or not should_redeploy(result):
                continue
            stack_dir = self.syncer.stacks.stack_directory(stack)
            if stack_dir is None:
                continue
            logger.info(
                "Redeploying %s: changed %s", stack.stack_name, ", ".join(result.trigger_redeploy_secrets)
            )
            try:
                env = self.syncer.env_store.get_secret_values(
                    stack.stack_name, result.environment_id
                )
            except Exception as e:
                logger.warning("Could not load secrets for %s deploy: %s", stack.stack_name, e)
                continue
            deploy = self.deployer.deploy(stack_dir, env=env, force=True)
            if not deploy.success:
                logger.warning("Redeploy of %s failed: %s", stack.stack_name, deploy.error)
        return results
