"""ASGI entrypoint for the story personalizer API."""

from story_personalizer.api.app import create_app
from story_personalizer.containers import build_container

app = create_app(build_container())
