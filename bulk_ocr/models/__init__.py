"""Domain records for OCR jobs."""
