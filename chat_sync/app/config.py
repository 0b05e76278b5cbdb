import logging
import socket
from typing import Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

MB = 1024 * 1024


class Settings(BaseSettings):
    """
    Service settings.

    Every field can be overridden by an environment variable with the same name
    (case-insensitive), e.g. ``STORE_BACKEND=firebase``.
    """
    environment: str = 'DEV'  # 'DEV' accepts the bearer token as the uid
    path_prefix: str = ''
    service_name: str = 'chat-sync'
    log_level: str = 'INFO'

    # Persistence
    store_backend: str = 'memory'  # 'memory' or 'firebase'
    firebase_db_url: str = 'https://chat-sync-default-rtdb.firebaseio.com/'
    firebase_secret: str = ''
    store_retry_attempts: int = 3
    store_retry_backoff: float = 0.2

    # Optimistic concurrency on denormalized fields
    counter_max_attempts: int = 3

    # Messages
    message_page_size: int = 50
    preview_max_length: int = 100

    # Realtime events
    redis_enabled: bool = True
    redis_host: str = '127.0.0.1'
    redis_port: int = 6379
    redis_db: int = 0
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None
    redis_ssl: bool = False
    instance_id: str = socket.gethostname()

    # S3 media storage
    aws_access_key_id: str = ''
    aws_secret_access_key: str = ''
    aws_region: str = 'ap-southeast-1'
    aws_s3_bucket_name: str = 'chat-sync-media'
    aws_s3_base_url: str = ''

    # Media size limits in bytes
    max_image_size: int = 5 * MB
    max_audio_size: int = 10 * MB
    max_video_size: int = 50 * MB
    max_file_size: int = 20 * MB

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._validate_settings()

    def _validate_settings(self):
        self.environment = self.environment.upper()
        if self.environment not in ('DEV', 'PROD'):
            raise ValueError("ENVIRONMENT must be either 'DEV' or 'PROD'")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Invalid LOG_LEVEL: {self.log_level}")
        if self.store_backend not in ('memory', 'firebase'):
            raise ValueError("STORE_BACKEND must be either 'memory' or 'firebase'")
        if self.counter_max_attempts < 1:
            raise ValueError("COUNTER_MAX_ATTEMPTS must be at least 1")
        if self.store_backend == 'firebase' and not self.firebase_secret:
            logger.warning("FIREBASE_SECRET is not set, falling back to the default Firebase app credentials.")
        if not self.aws_s3_base_url:
            self.aws_s3_base_url = f"https://{self.aws_s3_bucket_name}.s3.{self.aws_region}.amazonaws.com"


settings = Settings()


def is_dev_environment() -> bool:
    return settings.environment == 'DEV'


def get_prefix(api_version: str) -> str:
    path_prefix = settings.path_prefix
    if not path_prefix.startswith('/'):
        path_prefix = f'/{path_prefix}'
    if path_prefix.endswith('/'):
        path_prefix = path_prefix.rstrip('/')
    return f'{path_prefix}{api_version}'
