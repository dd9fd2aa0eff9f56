import json
import os

import firebase_admin
from firebase_admin import credentials, firestore

from marketplace_ops.core.config import settings
from marketplace_ops.core.logging import logger

_firebase_app = None


def _app_options() -> dict | None:
    if settings.FIREBASE_PROJECT_ID:
        return {"projectId": settings.FIREBASE_PROJECT_ID}
    return None


def get_firebase_app(cred_path: str | None = None):
    """
    Initialize the Admin SDK once per process.

    ``cred_path`` (the CLI's ``--credentials``) wins over the configured
    GOOGLE_APPLICATION_CREDENTIALS file, which wins over the JSON string in
    FIREBASE_CREDENTIALS_JSON.
    """
    global _firebase_app
    if _firebase_app:
        return _firebase_app

    if cred_path and not os.path.exists(cred_path):
        raise RuntimeError(f"Credentials file not found: {cred_path}")

    cred_path = cred_path or settings.GOOGLE_APPLICATION_CREDENTIALS

    if cred_path and os.path.exists(cred_path):
        cred = credentials.Certificate(cred_path)
        _firebase_app = firebase_admin.initialize_app(cred, _app_options())
        logger.info({"event_type": "firebase", "event_name": "initialized_from_file", "path": cred_path})
        return _firebase_app

    firebase_creds_json = settings.FIREBASE_CREDENTIALS_JSON
    if firebase_creds_json:
        try:
            cred_dict = json.loads(firebase_creds_json)
        except json.JSONDecodeError as e:
            logger.error({"event_type": "firebase", "event_name": "init_error", "source": "json", "error": str(e)})
            return None
        cred = credentials.Certificate(cred_dict)
        _firebase_app = firebase_admin.initialize_app(cred, _app_options())
        logger.info({"event_type": "firebase", "event_name": "initialized_from_json"})
        return _firebase_app

    logger.warning({"event_type": "firebase", "event_name": "not_initialized", "reason": "no_credentials", "path": cred_path})
    return None


def get_firestore_client(cred_path: str | None = None):
    app = get_firebase_app(cred_path)
    if not app:
        raise RuntimeError(
            "Firebase is not configured. Pass --credentials or set "
            "GOOGLE_APPLICATION_CREDENTIALS / FIREBASE_CREDENTIALS_JSON."
        )
    return firestore.client(app)
