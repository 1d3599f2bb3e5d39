"""Pydantic schemas for request/response bodies and validated JSON blobs."""
