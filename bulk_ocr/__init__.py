"""Bulk OCR: queued, chunked page-level OCR for multi-page documents."""
