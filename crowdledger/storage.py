import logging
import os
import re
from io import BytesIO
from urllib.parse import unquote

import boto3
from botocore.client import Config

logger = logging.getLogger("crowdledger.storage")

DEFAULT_WORKER_URL = "https://crowdledger-files.workers.dev"

_s3_client = None


def get_s3_client():
    """Cloudflare R2 client, built on first use so imports never need credentials."""
    global _s3_client
    if _s3_client is None:
        access_key = os.getenv("CF_ACCESS_KEY_ID")
        secret_key = os.getenv("CF_SECRET_ACCESS_KEY")
        endpoint_url = os.getenv("CLOUDFLARE_R2_ENDPOINT")
        logger.info(f"R2 Credentials - Access Key: {'Available' if access_key else 'Missing'}")
        logger.info(f"R2 Credentials - Secret Key: {'Available' if secret_key else 'Missing'}")
        logger.info(f"R2 Credentials - Endpoint: {endpoint_url or 'Missing'}")
        if not all([access_key, secret_key, endpoint_url]):
            raise ValueError("Missing R2 credentials or configuration")
        _s3_client = boto3.client(
            's3',
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version='s3v4'),
            region_name='auto'
        )
    return _s3_client


def _bucket_name(bucket: str) -> str:
    # Logical buckets map onto key prefixes inside the single R2 bucket.
    return os.getenv("CLOUDFLARE_R2_BUCKET") or bucket


def _object_key(bucket: str, path: str) -> str:
    return f"{bucket}/{path.lstrip('/')}"


def _public_url(object_key: str) -> str:
    worker_url = os.getenv("CLOUDFLARE_WORKER_URL", DEFAULT_WORKER_URL)
    if worker_url.endswith('/'):
        return f"{worker_url}{object_key}"
    return f"{worker_url}/{object_key}"


def sanitize_filename(filename: str) -> str:
    """
    Sanitize filename to make it safe for URLs and object keys.
    Keeps the extension, replaces anything outside [a-zA-Z0-9-_].
    """
    if not filename:
        return "unnamed_file"

    filename = unquote(filename)
    if '.' in filename:
        name, ext = filename.rsplit('.', 1)
        ext = f".{ext}"
    else:
        name, ext = filename, ""

    name = name.replace(' ', '')
    name = re.sub(r'[^a-zA-Z0-9\-_]', '_', name)
    name = re.sub(r'_{2,}', '_', name)
    name = name.strip('_') or "file"
    return f"{name[:50]}{ext}".lower()


def upload_to_storage(bucket: str, path: str, data: bytes, mime: str) -> str:
    """Upload raw bytes and return the public URL of the stored object."""
    object_key = _object_key(bucket, path)
    logger.info(f"Uploading file to R2: {object_key}")
    get_s3_client().upload_fileobj(
        BytesIO(data),
        _bucket_name(bucket),
        object_key,
        ExtraArgs={"ContentType": mime},
    )
    file_url = _public_url(object_key)
    logger.info(f"File uploaded successfully: {file_url}")
    return file_url


def delete_from_storage(bucket: str, path: str):
    """Delete an object given either its storage path or the public URL it was served under."""
    worker_url = os.getenv("CLOUDFLARE_WORKER_URL", DEFAULT_WORKER_URL).rstrip('/')
    if path.startswith(worker_url):
        object_key = path[len(worker_url):].lstrip('/')
    else:
        object_key = _object_key(bucket, path)
    logger.info(f"Deleting file from R2: {object_key}")
    get_s3_client().delete_object(Bucket=_bucket_name(bucket), Key=object_key)
