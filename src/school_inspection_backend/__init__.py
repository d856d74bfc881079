"""
School Inspection Backend - REST API for school inspection submissions

This package provides a FastAPI-based web service that receives school
inspection forms. It enables:

- Multipart submissions with a board document and per-room photographs
- UDISE code validation against the registered user registry
- Uploading of every submitted file to S3-compatible blob storage
- Persistence of the resulting inspection record in an async SQL database

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - submission_handler: The request pipeline and its timeout guard
    - blob_service: Blob uploads returning retrievable URLs
    - database: Lazily connected user registry and inspection store
    - models: Pydantic models for records, results and form metadata
    - configuration: Settings loading from defaults and the environment
    - errors: Failure taxonomy shared by every component

Usage:
    Run the API server with:
        uvicorn school_inspection_backend.main:app --reload --host 0.0.0.0 --port 8000

    Register a school before it can submit:
        python register_school.py 1234567 --school-name "GPS Rampur"
"""
