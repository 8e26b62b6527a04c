"""Pipeline services: OCR client, chunk processing, scheduling and persistence."""
