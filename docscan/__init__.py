"""Document Scanner OCR core.

Preprocessing pipeline and multi-engine text recognition for photographed
documents, combining a remote OCR.space-compatible engine with a local
Tesseract worker behind a single fallback-aware orchestrator.
"""

__version__ = "1.0.0"
