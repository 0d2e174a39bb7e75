"""ASGI entrypoint for the EatLock vision API."""

from eatlock.api.app import create_app
from eatlock.containers import build_container

app = create_app(build_container())
