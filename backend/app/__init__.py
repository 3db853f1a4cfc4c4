"""Video delivery backend.

Modules:
    - core: Configuration, database, Redis, Celery, storage, logging, metrics
    - modules.transcoding: Transcoding orchestration and delivery cache
"""

__version__ = "0.1.0"
