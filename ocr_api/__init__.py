"""OCR auto-merge stage API."""
