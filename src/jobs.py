"""
CI job monitor: trigger a build and wait for its verdict.
"""

import logging
import sys
import time
from typing import Callable, Dict

from config import MonitorSettings
from models import BuildResult, BuildVerdict

logger = logging.getLogger(__name__)

LOG_FRAME = "=============Build Failed Log============="


class JobMonitor:
    """Triggers a CI job and polls it until it stops running."""

    def __init__(
        self,
        ci,
        settings: MonitorSettings,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        write: Callable[[str], object] = sys.stdout.write,
    ):
        """
        Args:
            ci: CI client (trigger_build, poll, is_running, is_successful,
                result, console_output)
            settings: Uses job_poll_interval and log_stream_after
            sleep: Blocking sleep used between polls
            clock: Monotonic clock for elapsed time
            write: Sink for raw console output
        """
        self.ci = ci
        self.settings = settings
        self._sleep = sleep
        self._clock = clock
        self._write = write

    def run(self, job_name: str, params: Dict[str, str]) -> BuildResult:
        """
        Trigger the job and wait for it to finish.

        Args:
            job_name: CI job name
            params: Build parameters

        Returns:
            BuildResult (console log attached on failure)

        Raises:
            CiClientError: If triggering or polling the build fails
        """
        logger.info(f"Triggering build job: {job_name} params: {params}")
        start = self._clock()
        build = self.ci.trigger_build(job_name, params)
        logger.info(f"Build started: {job_name} #{build.number} ({build.url})")

        streamed = 0
        streaming = False
        while self.ci.is_running(build):
            self._sleep(self.settings.job_poll_interval)
            build = self.ci.poll(build)

            if self._clock() - start > self.settings.log_stream_after:
                if not streaming:
                    logger.info(f"Build still running, streaming console output of #{build.number}")
                    streaming = True
                output = self.ci.console_output(build)
                if len(output) > streamed:
                    self._write(output[streamed:])
                    streamed = len(output)

        duration = self._clock() - start
        result_label = self.ci.result(build)

        if self.ci.is_successful(build):
            logger.info(f"Build succeeded: {job_name} #{build.number}")
            return BuildResult(
                verdict=BuildVerdict.SUCCEEDED,
                job_name=job_name,
                number=build.number,
                result_label=result_label,
                duration_seconds=duration,
            )

        console_log = self.ci.console_output(build)
        self._write("\n")
        self._write(LOG_FRAME + "\n")
        self._write(console_log)
        if console_log and not console_log.endswith("\n"):
            self._write("\n")
        self._write(LOG_FRAME + "\n\n")
        logger.error(f"Build failed: {job_name} #{build.number} result={result_label}")
        return BuildResult(
            verdict=BuildVerdict.FAILED,
            job_name=job_name,
            number=build.number,
            result_label=result_label,
            console_log=console_log,
            duration_seconds=duration,
        )
