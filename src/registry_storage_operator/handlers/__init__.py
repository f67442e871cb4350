"""Handler modules for the image registry Config resource."""

# Import handlers to register them - handlers register themselves via @kopf decorators
from . import storage  # noqa: F401
