import logging
import time

from pythonjsonlogger import jsonlogger

from .config import is_dev_environment, settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ServiceJsonFormatter(jsonlogger.JsonFormatter):
    """Structured log records tagged with the service and environment"""

    def add_fields(self, log_record, record, message_dict):
        super(ServiceJsonFormatter, self).add_fields(log_record, record, message_dict)
        log_record['service'] = settings.service_name
        log_record['environment'] = settings.environment
        log_record['timestamp'] = time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created))


def setup_logging() -> None:
    """Plain text logs in DEV, JSON logs in PROD"""
    handler = logging.StreamHandler()
    if is_dev_environment():
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        handler.setFormatter(ServiceJsonFormatter('%(timestamp)s %(levelname)s %(service)s %(environment)s %(name)s %(message)s'))

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level.upper())
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)

    logging.getLogger('boto3').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
