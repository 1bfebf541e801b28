"""IssueFetcher — pulls the current issue set of one source."""
import logging

from services.jira.identity import IdentityResolver
from services.jira.sources import SourceAdapter, TaskFields

logger = logging.getLogger("relay.jira.fetcher")


class IssueFetcher:

    def __init__(self, adapter: SourceAdapter, identities: IdentityResolver):
        self.adapter = adapter
        self.identities = identities

    async def fetch(self) -> list[TaskFields]:
        """Search the source and normalize every issue.

        Raises JiraError / httpx.HTTPError; the caller isolates the source.
        Issues that cannot be normalized are skipped, not fatal.
        """
        raw = await self.adapter.client.search(
            self.adapter.jql, fields=self.adapter.search_fields(),
        )
        tasks: list[TaskFields] = []
        for issue in raw:
            try:
                tasks.append(self.adapter.normalize(issue, self.identities))
            except (KeyError, TypeError, AttributeError) as exc:
                logger.warning(
                    "Jira %s: skipping malformed issue %s: %s",
                    self.adapter.name, issue.get("key", "?"), exc,
                )
        logger.info("Jira %s: fetched %d issues", self.adapter.name, len(tasks))
        return tasks
