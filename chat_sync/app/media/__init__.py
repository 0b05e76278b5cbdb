from .policy import validate_upload
from .s3_store import S3BlobStore
