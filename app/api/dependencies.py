"""
app/api/dependencies.py

Shared FastAPI dependencies for request validation.
"""

from __future__ import annotations

from fastapi import File, HTTPException, UploadFile, status

DELIMITED_EXTENSIONS = (".csv", ".tsv", ".txt")

DELIMITED_CONTENT_TYPES = {
    "text/csv",
    "text/plain",
    "text/tab-separated-values",
    "application/csv",
    "application/vnd.ms-excel",
}


def get_delimited_upload(file: UploadFile = File(...)) -> UploadFile:
    """
    Validate that the uploaded file is delimited text by extension or MIME type.
    """

    filename = (file.filename or "").strip().lower()
    content_type = (file.content_type or "").split(";", 1)[0].strip().lower()

    is_delimited_filename = filename.endswith(DELIMITED_EXTENSIONS)
    is_delimited_content_type = content_type in DELIMITED_CONTENT_TYPES

    if not is_delimited_filename and not is_delimited_content_type:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only delimited text files (CSV, TSV) are allowed.",
        )

    return file
