import json
import logging

import firebase_admin
from firebase_admin import credentials, db

from ..config import settings

logger = logging.getLogger(__name__)


class FirebaseDB:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(FirebaseDB, cls).__new__(cls)
            cls._instance.initialized = False
        return cls._instance

    def __init__(self):
        if self.initialized:
            return
        logger.info("FirebaseDB.__init__() called")
        self.db_url = settings.firebase_db_url
        self.app = None
        self.connect()
        self.initialized = True

    def reference(self, path: str) -> db.Reference:
        return db.reference(path, app=self.app)

    def connect(self) -> None:
        try:
            # Reuse the default app if something already initialized it
            self.app = firebase_admin.get_app()
            logger.info("Retrieved existing Firebase app")
        except ValueError:
            cert_json = settings.firebase_secret
            if cert_json:
                cert_dict = json.loads(cert_json)
                if isinstance(cert_dict, str):
                    cert_dict = json.loads(cert_dict)
                cred = credentials.Certificate(cert_dict)
            else:
                cred = credentials.ApplicationDefault()

            self.app = firebase_admin.initialize_app(
                credential=cred,
                options={"databaseURL": self.db_url},
            )
            logger.info(f"Connected to Firebase Realtime Database. App name: {self.app.name}")
