"""
Deployment status reporter: polls stored deployment state until it settles.

Used three ways: as a generator (poll), as a blocking wait (wait) and as an
async generator for the SSE endpoint (apoll). Reported progress never moves
backwards within one reporter, even if a stale read comes back lower.
"""
import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Iterator, Optional

from models import DeploymentStatusView

logger = logging.getLogger(__name__)

Fetch = Callable[[], Optional[DeploymentStatusView]]


class DeploymentStatusReporter:
    def __init__(
        self,
        fetch: Fetch,
        interval: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
        on_terminal: Optional[Callable[[DeploymentStatusView], None]] = None,
        max_polls: Optional[int] = None,
    ):
        self.fetch = fetch
        self.interval = interval
        self._sleep = sleep
        self.on_terminal = on_terminal
        self.max_polls = max_polls
        self._high_water = 0
        self.last: Optional[DeploymentStatusView] = None

    def _observe(self, view: DeploymentStatusView) -> DeploymentStatusView:
        if view.deployment_status == "Pending" and view.deployment_progress < self._high_water:
            view = view.model_copy(update={"deployment_progress": self._high_water})
        self._high_water = max(self._high_water, view.deployment_progress)
        self.last = view
        return view

    def _finish(self, view: DeploymentStatusView) -> None:
        logger.info("Deployment of %s settled: %s", view.project_id, view.deployment_status)
        if self.on_terminal is not None:
            self.on_terminal(view)

    def poll(self) -> Iterator[DeploymentStatusView]:
        """Yield a snapshot per poll. Stops once the status is terminal or the project is gone."""
        polls = 0
        while True:
            view = self.fetch()
            if view is None:
                logger.warning("Project disappeared while polling deployment status")
                return
            view = self._observe(view)
            yield view
            if view.is_terminal:
                self._finish(view)
                return
            polls += 1
            if self.max_polls is not None and polls >= self.max_polls:
                return
            self._sleep(self.interval)

    def wait(self) -> Optional[DeploymentStatusView]:
        """Block until a terminal state and return it (or the last state seen)."""
        for _ in self.poll():
            pass
        return self.last

    async def apoll(self) -> AsyncIterator[DeploymentStatusView]:
        """Async variant of poll(); the fetch runs in a worker thread."""
        polls = 0
        while True:
            view = await asyncio.to_thread(self.fetch)
            if view is None:
                return
            view = self._observe(view)
            yield view
            if view.is_terminal:
                self._finish(view)
                return
            polls += 1
            if self.max_polls is not None and polls >= self.max_polls:
                return
            await asyncio.sleep(self.interval)
