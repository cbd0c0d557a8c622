"""
GCS access for the consultation ledger and the clinic rosters.

GCSBucketManager wraps a single bucket.  All calls are synchronous; async
callers go through ``asyncio.to_thread``.
"""

import json
import logging
import os

from google.cloud import storage
from google.cloud.exceptions import NotFound

logger = logging.getLogger("gcs-manager")


class GCSBucketManager:
    def __init__(self, bucket_name, service_account_json_path=None):
        """
        Initializes the GCS Client (lazy - only on first use).

        :param bucket_name: The name of the GCS bucket.
        :param service_account_json_path: Path to service account JSON key.
                                          If None, uses GOOGLE_APPLICATION_CREDENTIALS
                                          or default environment auth.
        """
        self.bucket_name = bucket_name
        self.service_account_json_path = service_account_json_path
        self._client = None
        self._bucket = None

    # HTTP timeout for individual GCS operations (seconds)
    GCS_TIMEOUT = 30

    def _ensure_initialized(self):
        """Lazy initialization of GCS client and bucket"""
        if self._client is None:
            project_id = os.getenv("PROJECT_ID")
            try:
                if self.service_account_json_path:
                    self._client = storage.Client.from_service_account_json(
                        self.service_account_json_path,
                        project=project_id,
                    )
                else:
                    self._client = storage.Client(project=project_id)
                self._bucket = self._client.bucket(self.bucket_name)
            except Exception as e:
                logger.error("Error initializing GCS client: %s", e)
                raise

    @property
    def client(self):
        self._ensure_initialized()
        return self._client

    @property
    def bucket(self):
        self._ensure_initialized()
        return self._bucket

    def create_file_from_string(self, file_content, destination_blob_name, content_type="text/plain"):
        try:
            blob = self.bucket.blob(destination_blob_name)
            blob.upload_from_string(
                file_content, content_type=content_type, timeout=self.GCS_TIMEOUT
            )
            logger.debug("Uploaded gs://%s/%s", self.bucket_name, destination_blob_name)
            return True
        except Exception as e:
            logger.error("Failed to write %s: %s", destination_blob_name, e)
            return False

    def write_json(self, destination_blob_name, data):
        return self.create_file_from_string(
            json.dumps(data, indent=2, default=str),
            destination_blob_name,
            content_type="application/json",
        )

    def read_file_as_string(self, source_blob_name):
        """Blob text, or None when the blob does not exist or cannot be read."""
        try:
            blob = self.bucket.blob(source_blob_name)
            return blob.download_as_text(timeout=self.GCS_TIMEOUT)
        except NotFound:
            logger.info("File %s not found in bucket", source_blob_name)
            return None
        except Exception as e:
            logger.error("Error reading %s: %s", source_blob_name, e)
            return None

    def read_json(self, source_blob_name):
        content = self.read_file_as_string(source_blob_name)
        if content is None:
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            logger.error("Error decoding JSON in %s", source_blob_name)
            return None
