"""Runs the update workflow on every configured target"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Optional

from winupdate.core.config import Config, UpdateSettings
from winupdate.core.errors import ConfigurationError, WinUpdateError, WorkflowCancelledError
from winupdate.core.orchestrator import Orchestrator, WorkflowResult
from winupdate.core.payload import load_payload
from winupdate.core.restart import Restarter
from winupdate.core.ui import Ui, LogUi
from winupdate.transport.base import BaseTransport, RemoteHost
from winupdate.transport.local import LocalTransport
from winupdate.transport.ssh import SSHTransport

logger = logging.getLogger(__name__)

LOCAL_HOST = RemoteHost(host="localhost", user="")


class Provisioner:
    """Applies Windows updates to all targets, each with its own workflow"""

    def __init__(self, config: Config, skip_host_verification: bool = False,
                 max_concurrent: int = 2, disable_restart: bool = False,
                 ui_factory: Optional[Callable[[RemoteHost], Ui]] = None):
        """Initialize provisioner

        Args:
            config: Configuration instance
            skip_host_verification: Skip SSH host key verification (insecure)
            max_concurrent: Maximum number of targets updated at once (1-10)
            disable_restart: Never restart targets, overriding the config
            ui_factory: Builds the status sink for a target
        """
        self.config = config
        self.transport: Optional[BaseTransport] = None
        self.skip_host_verification = skip_host_verification
        self.max_concurrent = max_concurrent
        self.disable_restart = disable_restart
        self.ui_factory = ui_factory or (lambda host: LogUi(prefix=host.host))
        self.cancel_event = threading.Event()
        self.results: Dict[str, WorkflowResult] = {}

    def cancel(self) -> None:
        """Stop all workflows at their next retry or poll point"""
        logger.warning("Cancellation requested")
        self.cancel_event.set()

    def _init_transport(self) -> bool:
        """Create the transport named in the config

        Returns:
            True if successful, False otherwise
        """
        transport_config = self.config.transport_config
        transport_type = transport_config.get("type", "ssh")
        options = transport_config.get("options", {}) or {}

        try:
            if transport_type == "ssh":
                self.transport = SSHTransport(
                    key_file=options.get("key_file"),
                    password=options.get("password"),
                    ssh_config=options.get("ssh_config"),
                    skip_host_verification=self.skip_host_verification,
                    staging_dir=options.get("staging_dir"),
                )
                logger.info("Initialized SSH transport")
            elif transport_type == "local":
                self.transport = LocalTransport(staging_dir=options.get("staging_dir"))
                logger.info("Initialized local transport")
            else:
                logger.error(f"Unsupported transport type: {transport_type}")
                return False
            return True
        except Exception as e:
            logger.error(f"Failed to initialize transport: {e}")
            return False

    def _targets(self):
        if self.config.transport_config.get("type", "ssh") == "local":
            return [LOCAL_HOST]
        return self.config.targets

    def _update_target(self, target: RemoteHost, settings: UpdateSettings, payload: bytes) -> bool:
        """Run the workflow (and restart if needed) on one target

        Returns:
            True if updates were applied successfully
        """
        ui = self.ui_factory(target)
        try:
            orchestrator = Orchestrator(settings, self.transport, target, payload,
                                        ui=ui, cancel_event=self.cancel_event)
            result = orchestrator.run()
            self.results[target.host] = result

            if result.restart_pending:
                if settings.disable_restart or self.disable_restart:
                    ui.say("Restart pending, but restarts are disabled.")
                else:
                    Restarter(self.transport, target, settings.restart_policy(),
                              ui=ui, cancel_event=self.cancel_event).restart()

            logger.info(f"Windows Update completed on {target.host} (exit code {result.final_exit_code})")
            return True
        except WorkflowCancelledError as e:
            ui.error(f"Cancelled: {e}")
            return False
        except WinUpdateError as e:
            ui.error(f"Windows Update failed: {e}")
            logger.debug(f"Workflow failure on {target.host}", exc_info=True)
            return False
        except Exception as e:
            logger.error(f"Unexpected error updating {target.host}: {e}", exc_info=True)
            return False

    def _update_targets(self, settings: UpdateSettings, payload: bytes) -> bool:
        """Update all targets, concurrently when there is more than one

        Returns:
            True if every target succeeded
        """
        targets = self._targets()

        if len(targets) == 1:
            return self._update_target(targets[0], settings, payload)

        logger.info(f"Updating {len(targets)} target(s) with max {self.max_concurrent} concurrent workflows")

        all_success = True
        with ThreadPoolExecutor(max_workers=self.max_concurrent) as executor:
            future_to_target = {
                executor.submit(self._update_target, target, settings, payload): target
                for target in targets
            }

            try:
                for future in as_completed(future_to_target):
                    target = future_to_target[future]
                    try:
                        if not future.result():
                            all_success = False
                    except Exception as e:
                        logger.error(f"Unexpected error for {target.host}: {e}")
                        all_success = False
            except KeyboardInterrupt:
                # Workers must see the signal before the pool waits for them
                self.cancel()
                raise

        return all_success

    def run(self) -> bool:
        """Execute the update workflow on all targets

        Returns:
            True if all targets were updated successfully
        """
        logger.info("=" * 60)
        logger.info("Starting Windows Update workflow")
        logger.info("=" * 60)

        if not self.config.validate():
            logger.error("Configuration validation failed")
            return False

        try:
            settings = self.config.update_settings
            payload = load_payload(settings.script)
        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return False

        if not self._init_transport():
            return False

        try:
            if not self._update_targets(settings, payload):
                logger.error("Windows Update failed on one or more targets")
                return False

            logger.info("=" * 60)
            logger.info("Workflow completed successfully!")
            logger.info("=" * 60)
            return True

        finally:
            self.transport.close()
