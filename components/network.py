from __future__ import annotations

import logging
from collections import deque
from typing import Iterator, List, Set

from c2c.host import HostAPI, HostError

logger = logging.getLogger(__name__)


def walk_network(host: HostAPI, root: str = "home") -> Iterator[str]:
    """
    Breadth-first walk of the node graph starting at ``root`` (yielded first).

    Neighbours are scanned lazily when a node is reached, so nodes that show
    up while the walk is in progress are still visited. A node whose scan
    fails is yielded but not expanded.
    """
    seen: Set[str] = {root}
    queue = deque([root])
    while queue:
        node = queue.popleft()
        yield node
        try:
            neighbours = host.scan(node)
        except HostError as e:
            logger.warning("[network] scan of %s failed: %s", node, e)
            continue
        for n in neighbours:
            if n not in seen:
                seen.add(n)
                queue.append(n)


def list_servers(host: HostAPI, root: str = "home") -> List[str]:
    """Every node reachable from ``root``, excluding ``root`` itself."""
    return [n for n in walk_network(host, root) if n != root]
