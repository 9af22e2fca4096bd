"""
Supabase persistence for portraits, marketing emails and the public counter
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import config
from security_utils import sanitize_filename

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when Supabase storage or a table write fails"""
    pass


class PortraitStore:
    """Thin wrapper around the Supabase client for the portraits service"""

    def __init__(self, supabase_client, bucket: str = config.STORAGE_BUCKET):
        self.supabase = supabase_client
        self.bucket = bucket

    def upload_image(self, image_data: bytes, filename: str, content_type: str = "image/png") -> str:
        """
        Upload a file to the portraits bucket and return its public URL

        Args:
            image_data: File bytes
            filename: Object name inside the bucket
            content_type: MIME type stored with the object

        Returns:
            Public URL of the uploaded object
        """
        filename = sanitize_filename(filename)
        logger.info(f"Uploading {filename} to Supabase storage bucket '{self.bucket}'")
        try:
            self.supabase.storage.from_(self.bucket).upload(filename, image_data, {
                'content-type': content_type,
                'upsert': 'true'
            })
            url = self.supabase.storage.from_(self.bucket).get_public_url(filename)
        except Exception as e:
            logger.error(f"❌ Error uploading to Supabase: {e}")
            raise StorageError(f"Failed to upload {filename}") from e

        logger.info(f"✅ Successfully uploaded to Supabase: {url[:100]}...")
        return url

    def save_metadata(self, image_id: str, fields: Dict[str, Any]) -> None:
        """Insert or update the portrait row keyed by image id"""
        row = dict(fields)
        row["id"] = image_id
        row["updated_at"] = datetime.utcnow().isoformat()
        try:
            self.supabase.table(config.PORTRAITS_TABLE).upsert(row, on_conflict="id").execute()
        except Exception as e:
            logger.error(f"❌ Error saving metadata for {image_id}: {e}")
            raise StorageError(f"Failed to save metadata for {image_id}") from e

    def get_metadata(self, image_id: str) -> Optional[Dict[str, Any]]:
        response = self.supabase.table(config.PORTRAITS_TABLE).select("*").eq("id", image_id).execute()
        if response.data and len(response.data) > 0:
            return response.data[0]
        return None

    def mark_paid(self, image_id: str, session_id: Optional[str], customer_email: Optional[str]) -> None:
        self.save_metadata(image_id, {
            "paid": True,
            "paid_at": datetime.utcnow().isoformat(),
            "stripe_session_id": session_id,
            "customer_email": customer_email,
        })
        logger.info(f"✅ Portrait {image_id} marked as paid")

    def mark_expired(self, image_id: str) -> None:
        self.save_metadata(image_id, {
            "status": "expired",
            "expired_at": datetime.utcnow().isoformat(),
        })
        logger.info(f"Portrait {image_id} marked as expired")

    def save_email(self, email: str, image_id: Optional[str] = None, source: str = "checkout") -> None:
        """
        Store a customer email for marketing. Failures are logged only; checkout
        must not depend on the emails table.
        """
        try:
            self.supabase.table(config.EMAILS_TABLE).upsert({
                "email": email.lower(),
                "image_id": image_id,
                "source": source,
                "created_at": datetime.utcnow().isoformat(),
            }, on_conflict="email").execute()
        except Exception as e:
            logger.warning(f"⚠️ Could not save email: {e}")

    def increment_portrait_count(self) -> None:
        try:
            self.supabase.rpc("increment_portrait_count").execute()
        except Exception as e:
            logger.warning(f"⚠️ Could not increment portrait count: {e}")

    def get_portrait_count(self) -> int:
        """Public counter shown on the landing page; falls back to a fixed number"""
        try:
            response = self.supabase.table(config.STATS_TABLE).select("portraits_created").eq("id", "global").execute()
            if response.data and len(response.data) > 0:
                count = response.data[0].get("portraits_created")
                if isinstance(count, int) and count > 0:
                    return count
        except Exception as e:
            logger.warning(f"⚠️ Could not read portrait count: {e}")
        return config.FALLBACK_PORTRAIT_COUNT
