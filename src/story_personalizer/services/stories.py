"""Story template lookup port."""

from typing import Protocol

from story_personalizer.domain.story import StoryTemplate


class StoryRepository(Protocol):
    """Read access to story templates held by the content backend."""

    async def get_story(self, story_id: str) -> StoryTemplate:
        """Return a story template or raise StoryNotFound."""
