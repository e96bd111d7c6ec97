import csv
import io
import logging
import os
import uuid
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.config import Config
from fastapi import HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from sqlalchemy.orm import Session

from models import AdminLog, User

logger = logging.getLogger(__name__)

AWS_REGION = os.environ.get("AWS_REGION")
S3_BUCKET_NAME = os.environ.get("S3_BUCKET_NAME")
S3_ACCESS_KEY = os.environ.get("S3_ACCESS_KEY") or os.environ.get("AWS_ACCESS_KEY_ID")
S3_SECRET_KEY = os.environ.get("S3_SECRET_KEY") or os.environ.get("AWS_SECRET_ACCESS_KEY")
UPLOAD_DIR = Path(os.environ.get("UPLOAD_DIR") or Path(__file__).parent / "uploads")

PAYMENT_PROOF_TYPES = ["image/png", "image/jpeg", "image/webp", "application/pdf"]
MAX_UPLOAD_BYTES = 5 * 1024 * 1024

S3_CLIENT = None
if AWS_REGION and S3_BUCKET_NAME and S3_ACCESS_KEY and S3_SECRET_KEY:
    s3_config = Config(signature_version="s3v4", s3={"addressing_style": "virtual"})
    S3_CLIENT = boto3.client(
        "s3",
        region_name=AWS_REGION,
        aws_access_key_id=S3_ACCESS_KEY,
        aws_secret_access_key=S3_SECRET_KEY,
        endpoint_url=f"https://s3.{AWS_REGION}.amazonaws.com",
        config=s3_config,
    )


def log_admin_action(db: Session, admin: User, action: str, method: Optional[str] = None, path: Optional[str] = None, meta: Optional[dict] = None):
    db.add(AdminLog(
        admin_id=admin.id if admin else None,
        admin_email=admin.email if admin else "",
        action=action,
        method=method,
        path=path,
        meta=meta
    ))
    db.commit()


def _build_s3_url(key: str) -> str:
    if not S3_BUCKET_NAME or not AWS_REGION:
        raise RuntimeError("S3 configuration missing")
    return f"https://{S3_BUCKET_NAME}.s3.{AWS_REGION}.amazonaws.com/{key}"


def _unique_name(filename: Optional[str]) -> str:
    extension = Path(filename or "").suffix.lower()
    return f"{uuid.uuid4().hex}{extension}"


def _upload_to_s3(data: bytes, key_prefix: str, filename: str, content_type: str) -> str:
    key = f"{key_prefix.rstrip('/')}/{_unique_name(filename)}"
    try:
        S3_CLIENT.put_object(
            Bucket=S3_BUCKET_NAME,
            Key=key,
            Body=data,
            ContentType=content_type
        )
    except Exception as exc:
        logger.exception("S3 upload failed for %s", key)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Upload failed") from exc
    return _build_s3_url(key)


def _save_locally(data: bytes, key_prefix: str, filename: str) -> str:
    target_dir = UPLOAD_DIR / key_prefix.strip("/")
    target_dir.mkdir(parents=True, exist_ok=True)
    name = _unique_name(filename)
    (target_dir / name).write_bytes(data)
    return f"/uploads/{key_prefix.strip('/')}/{name}"


def store_payment_proof(file: UploadFile) -> str:
    """Persist an uploaded payment proof and return the URL it is served from.

    Goes to S3 when a bucket is configured, otherwise to ``UPLOAD_DIR`` which the
    app mounts at ``/uploads``.
    """
    if not file.content_type:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing file content type")
    if file.content_type not in PAYMENT_PROOF_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file type")

    data = file.file.read()
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File too large")

    if S3_CLIENT:
        return _upload_to_s3(data, "payment-proofs", file.filename, file.content_type)
    return _save_locally(data, "payment-proofs", file.filename)


def discard_upload(url: Optional[str]) -> None:
    """Remove a stored upload whose owning row was never committed."""
    if not url:
        return
    if url.startswith("/uploads/"):
        (UPLOAD_DIR / url[len("/uploads/"):]).unlink(missing_ok=True)
        return
    if S3_CLIENT and ".amazonaws.com/" in url:
        key = url.split(".amazonaws.com/", 1)[1]
        try:
            S3_CLIENT.delete_object(Bucket=S3_BUCKET_NAME, Key=key)
        except Exception:
            logger.exception("S3 delete failed for %s", key)


def export_to_csv(headers: List[str], rows: List[List[object]]) -> bytes:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(headers)
    writer.writerows(rows)
    return output.getvalue().encode("utf-8")


def export_to_xlsx(headers: List[str], rows: List[List[object]]) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.append(headers)
    for row in rows:
        ws.append(row)
    out = io.BytesIO()
    wb.save(out)
    out.seek(0)
    return out.read()


def export_response(headers: List[str], rows: List[List[object]], basename: str, format: str = "csv") -> StreamingResponse:
    if format == "xlsx":
        content = export_to_xlsx(headers, rows)
        media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        filename = f"{basename}.xlsx"
    else:
        content = export_to_csv(headers, rows)
        media_type = "text/csv"
        filename = f"{basename}.csv"
    return StreamingResponse(io.BytesIO(content), media_type=media_type, headers={"Content-Disposition": f"attachment; filename={filename}"})


def format_datetime(value) -> str:
    return value.isoformat() if value else ""
