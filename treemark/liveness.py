"""
Dead link detection over the flattened link list
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

import requests

from .dispatcher import BatchDispatcher, Progress
from .models import BookmarkNode, LinkStatus

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class HttpLivenessProbe:
    """Reachable iff the server answers with a status below 400"""

    def __init__(self, timeout: float = 2.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": USER_AGENT})

    def check(self, url: str) -> bool:
        try:
            response = self.session.head(url, timeout=self.timeout, allow_redirects=True)
            if response.status_code in (405, 501):
                # Some servers refuse HEAD outright
                response = self.session.get(url, timeout=self.timeout, allow_redirects=True, stream=True)
                response.close()
            return response.status_code < 400
        except requests.RequestException as e:
            logger.debug(f"Probe failed for {url}: {e}")
            return False

    async def is_reachable(self, url: str) -> bool:
        return await asyncio.to_thread(self.check, url)


@dataclass
class LivenessReport:
    checked: int = 0
    dead: List[BookmarkNode] = field(default_factory=list)


async def probe_link(node: BookmarkNode, probe, deadline: float) -> bool:
    """Set the node's status from one probe; any failure counts as dead"""
    node.status = LinkStatus.CHECKING
    if not node.url:
        node.status = LinkStatus.DEAD
        return False
    try:
        reachable = await asyncio.wait_for(probe.is_reachable(node.url), timeout=deadline)
    except asyncio.TimeoutError:
        reachable = False
    except Exception as e:
        logger.debug(f"Probe raised for {node.url}: {e}")
        reachable = False
    node.status = LinkStatus.ACTIVE if reachable else LinkStatus.DEAD
    return reachable


async def check_links(
    links: Sequence[BookmarkNode],
    probe,
    dispatcher: BatchDispatcher,
    deadline: float = 2.0,
    on_progress: Optional[Callable[[Progress], None]] = None,
    on_dead: Optional[Callable[[BookmarkNode], None]] = None,
) -> LivenessReport:
    """Probe every link in place. Statuses end as active or dead, never checking."""
    report = LivenessReport()

    async def check_batch(batch: List[BookmarkNode]):
        results = await asyncio.gather(*(probe_link(node, probe, deadline) for node in batch))
        for node, reachable in zip(batch, results):
            report.checked += 1
            if not reachable:
                report.dead.append(node)
                if on_dead:
                    on_dead(node)

    def degrade(batch: List[BookmarkNode], error: BaseException):
        for node in batch:
            if node.status in (LinkStatus.CHECKING, LinkStatus.UNCHECKED):
                node.status = LinkStatus.DEAD
                report.dead.append(node)

    await dispatcher.run(list(links), check_batch, on_progress=on_progress, on_batch_error=degrade)
    return report
