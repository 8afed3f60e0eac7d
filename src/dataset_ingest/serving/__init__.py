"""
Serving: FastAPI application for collection management.

Exposes collection creation, synchronous processing, deletion and index
enhancement requests over HTTP; the training workers run separately.
"""
