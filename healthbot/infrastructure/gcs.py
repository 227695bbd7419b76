"""
GCS bucket access used by the GCS-backed state store.
"""

import os
import logging
from google.cloud import storage

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
            if not self._bucket.exists():
                logger.warning(
                    "Bucket '%s' does not exist or you lack permission", self.bucket_name
                )

    @property
    def client(self):
        self._ensure_initialized()
        return self._client

    @property
    def bucket(self):
        self._ensure_initialized()
        return self._bucket

    def list_files(self, folder_path=None):
        """Names directly under ``folder_path``, relative to it; sub-folders end with '/'."""
        prefix = folder_path if folder_path else ""
        if prefix and not prefix.endswith('/'):
            prefix += '/'

        iterator = self.client.list_blobs(self.bucket_name, prefix=prefix, delimiter='/')

        items = []
        for blob in iterator:
            if blob.name.startswith(prefix):
                relative_name = blob.name[len(prefix):]
                if relative_name:
                    items.append(relative_name)

        # Prefixes are only populated once the iterator has been consumed
        for p in iterator.prefixes:
            if p.startswith(prefix):
                relative_name = p[len(prefix):]
                if relative_name:
                    items.append(relative_name)

        return items
